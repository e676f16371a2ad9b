"""
Utility modules for order loading.

This package contains memory monitoring, retry/backoff handling, progress
reporting, error types and logging setup.
"""

from .memory_optimizer import MemoryMonitor, MemoryStats
from .progress_tracker import LoggingProgressSink, RecordingProgressSink, as_progress_sink
from .retry_handler import ExponentialBackoff, WriteErrorType, classify_write_error

__all__ = [
    "MemoryMonitor",
    "MemoryStats",
    "LoggingProgressSink",
    "RecordingProgressSink",
    "as_progress_sink",
    "ExponentialBackoff",
    "WriteErrorType",
    "classify_write_error",
]
