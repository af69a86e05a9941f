"""
Reelforge Core Module

Retry policy shared by the processing queue and the preview operations.
"""

from .error_handler import RetryConfig, calculate_retry_delay, retry_async

__all__ = [
    'RetryConfig',
    'calculate_retry_delay',
    'retry_async',
]
