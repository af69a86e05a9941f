"""
Reelforge - batch strategy renderer for short vertical video clips.

Drives ffmpeg under a fixed set of visual/audio strategies, with an optional
timed image overlay, through a concurrency-bounded processing queue.
"""

__version__ = "0.3.0"
