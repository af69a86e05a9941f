"""
Unit Tests

Tests for individual components and functions:
- filters.py: strategy filter expressions
- encoders.py / ffmpeg_utils.py: encoder selection and engine process handling
- render_executor.py: invocation building and fallback policy
- processing_queue.py: concurrency, cancellation and status aggregation
"""
