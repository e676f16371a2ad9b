"""
Error Handling for the Order Loader

Unified exception hierarchy for the batch-insertion engine. Per-record and
per-batch failures are counted rather than raised; the classes below cover
the failures that do surface (configuration, storage writes).
"""


# ============================================================================
# Unified Exception Hierarchy for Order Loader
# ============================================================================
# All custom exceptions for the order loader project are defined here.
# Import these exceptions from order_loader.utils.error_handler
# ============================================================================


class OrderLoaderError(Exception):
    """Base exception for all order loader errors."""

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(OrderLoaderError):
    """Configuration-related errors. Fatal for a run."""

    pass


class InvalidTableNameError(ConfigurationError, ValueError):
    """Destination table name failed the naming policy."""

    def __init__(self, table_name, reason: str = ""):
        self.table_name = table_name
        self.reason = reason
        message = f"Invalid table name: {table_name!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class BatchSizeOutOfRangeError(ConfigurationError, ValueError):
    """Manually requested batch size is outside the configured bounds."""

    def __init__(self, batch_size: int, min_size: int, max_size: int):
        self.batch_size = batch_size
        self.min_size = min_size
        self.max_size = max_size
        super().__init__(
            f"Batch size must be between {min_size} and {max_size} (got {batch_size})"
        )


# ============================================================================
# Storage Errors
# ============================================================================


class StorageError(OrderLoaderError):
    """Base class for errors raised by an invoice store write."""

    pass


class TransientWriteError(StorageError):
    """Recoverable write failure (timeout, lock contention)."""

    pass


class OutOfMemoryCondition(StorageError):
    """
    The write path ran out of memory.

    Handled by shrinking the batch and retrying the same offset instead of
    the normal backoff path.
    """

    pass


# ============================================================================
# Input Errors
# ============================================================================


class InputFileError(OrderLoaderError):
    """Order input file is missing or unreadable."""

    pass
