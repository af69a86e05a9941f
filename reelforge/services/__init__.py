"""
Services module for Reelforge
"""

from .processing_queue import FileProgress, ProcessingQueue, QueueState, QueueSummary

__all__ = ["FileProgress", "ProcessingQueue", "QueueState", "QueueSummary"]
