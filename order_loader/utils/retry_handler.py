"""
Retry Handler Module

Classifies storage write failures and provides the backoff schedule used
between write attempts.
"""

import random
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .error_handler import OutOfMemoryCondition, TransientWriteError


class WriteErrorType(Enum):
    """Categories of write errors for retry logic"""

    OUT_OF_MEMORY = "out_of_memory"
    TRANSIENT = "transient"
    OTHER = "other"


# Message fragments that mark a database error as recoverable
TRANSIENT_PATTERNS = ["locked", "busy", "timeout", "timed out", "deadlock"]


def classify_write_error(error: BaseException) -> WriteErrorType:
    """
    Classify a write failure.

    Out-of-memory is kept apart from the other categories because it is
    handled by shrinking the batch instead of retrying as-is.
    """
    if isinstance(error, (OutOfMemoryCondition, MemoryError)):
        return WriteErrorType.OUT_OF_MEMORY

    if isinstance(error, (TransientWriteError, TimeoutError, ConnectionError)):
        return WriteErrorType.TRANSIENT

    if isinstance(error, sqlite3.OperationalError):
        message = str(error).lower()
        if any(pattern in message for pattern in TRANSIENT_PATTERNS):
            return WriteErrorType.TRANSIENT

    return WriteErrorType.OTHER


@dataclass
class RetryAttempt:
    """Information about a failed write attempt"""

    attempt: int
    timestamp: datetime
    error_type: WriteErrorType
    error_message: str
    duration: float = 0.0


@dataclass
class RetryHistory:
    """Failed attempts recorded for one batch"""

    attempts: List[RetryAttempt] = field(default_factory=list)

    def record(
        self, error: BaseException, duration: float = 0.0
    ) -> RetryAttempt:
        """Add a failed attempt record"""
        attempt = RetryAttempt(
            attempt=len(self.attempts) + 1,
            timestamp=datetime.now(),
            error_type=classify_write_error(error),
            error_message=str(error),
            duration=duration,
        )
        self.attempts.append(attempt)
        return attempt

    @property
    def last_error(self) -> Optional[str]:
        if not self.attempts:
            return None
        return self.attempts[-1].error_message


class ExponentialBackoff:
    """
    Exponential backoff strategy.

    With the defaults the delays before retries 1, 2 and 3 are 1s, 2s and
    4s. Jitter is off by default so the schedule is exact.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
        max_retries: int = 3,
        jitter: bool = False,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.max_retries = max_retries
        self.jitter = jitter

    def get_delay(self, retry_index: int) -> float:
        """Delay before the retry with the given zero-based index."""
        delay = min(self.base_delay * (self.multiplier**retry_index), self.max_delay)

        if self.jitter:
            delay = delay * (0.5 + random.random() * 0.5)

        return delay

    @property
    def delays(self) -> List[float]:
        return [self.get_delay(i) for i in range(self.max_retries)]
