import sys

from reelforge.main import main

sys.exit(main())
