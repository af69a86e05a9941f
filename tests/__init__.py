"""
Reelforge Test Suite

This package contains all tests for the Reelforge project:
- unit/: Unit tests for individual components (ffmpeg is never spawned)
"""
