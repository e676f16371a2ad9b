"""
Adaptive Batch Sizing

Owns the current batch size and moves it within [min_size, max_size] in
response to memory readings and out-of-memory signals.
"""

import logging
import threading
from typing import Tuple

from ..utils.error_handler import BatchSizeOutOfRangeError

logger = logging.getLogger(__name__)

MIN_BATCH_SIZE = 50
MAX_BATCH_SIZE = 2000
DEFAULT_BATCH_SIZE = 500
MEMORY_THRESHOLD_MB = 500

# Available-memory bands used for the initial size
HIGH_AVAILABLE_MEMORY_MB = 1000
LOW_AVAILABLE_MEMORY_MB = 200


class AdaptiveBatchSizer:
    """
    Batch size controller.

    Shrinks by 3/4 above the memory threshold, grows by 5/4 when usage
    falls under half the threshold while the size is below the default,
    and halves on an out-of-memory condition. All access goes through a
    lock so parallel batch execution can share one sizer.

    Example:
        >>> sizer = AdaptiveBatchSizer()
        >>> sizer.adjust_for_memory_pressure(600)
        (375, True)
    """

    def __init__(
        self,
        min_size: int = MIN_BATCH_SIZE,
        max_size: int = MAX_BATCH_SIZE,
        default_size: int = DEFAULT_BATCH_SIZE,
        memory_threshold_mb: int = MEMORY_THRESHOLD_MB,
    ):
        if not min_size <= default_size <= max_size:
            raise ValueError(
                f"Batch size bounds must satisfy min <= default <= max "
                f"(got {min_size}, {default_size}, {max_size})"
            )
        self.min_size = min_size
        self.max_size = max_size
        self.default_size = default_size
        self.memory_threshold_mb = memory_threshold_mb
        self._current_size = default_size
        self._pinned = False
        self.lock = threading.RLock()

    @property
    def current_size(self) -> int:
        with self.lock:
            return self._current_size

    @property
    def is_pinned(self) -> bool:
        with self.lock:
            return self._pinned

    def _clamp(self, size: int) -> int:
        return max(self.min_size, min(self.max_size, size))

    def initial_size(self, available_mb: int) -> int:
        """
        Pick the starting size for a run from available memory.

        A manually pinned size is kept as-is.

        Args:
            available_mb: Available memory in MB

        Returns:
            The size the run starts with
        """
        with self.lock:
            if self._pinned:
                logger.info(f"Using manually set batch size: {self._current_size}")
                return self._current_size

            if available_mb > HIGH_AVAILABLE_MEMORY_MB:
                size = min(self.max_size, self.default_size * 2)
            elif available_mb < LOW_AVAILABLE_MEMORY_MB:
                size = max(self.min_size, self.default_size // 2)
            else:
                size = self.default_size

            self._current_size = self._clamp(size)
            logger.info(
                f"Initial batch size: {self._current_size} "
                f"(available memory: {available_mb}MB)"
            )
            return self._current_size

    def adjust_for_memory_pressure(self, used_mb: int) -> Tuple[int, bool]:
        """
        Adjust the size after a batch from the current memory reading.

        Args:
            used_mb: Memory in use, in MB

        Returns:
            (new size, whether it changed)
        """
        with self.lock:
            previous = self._current_size

            if used_mb > self.memory_threshold_mb:
                self._current_size = max(previous * 3 // 4, self.min_size)
            elif (
                used_mb < self.memory_threshold_mb / 2
                and previous < self.default_size
            ):
                self._current_size = min(previous * 5 // 4, self.max_size)

            changed = self._current_size != previous
            if changed:
                direction = "Reduced" if self._current_size < previous else "Increased"
                logger.info(
                    f"{direction} batch size {previous} -> {self._current_size} "
                    f"(memory in use: {used_mb}MB)"
                )
            return self._current_size, changed

    def halve_on_out_of_memory(self) -> int:
        """Halve the size after an allocation failure"""
        with self.lock:
            previous = self._current_size
            self._current_size = max(previous // 2, self.min_size)
            logger.warning(
                f"Out of memory: batch size {previous} -> {self._current_size}"
            )
            return self._current_size

    def set_manual(self, size: int) -> None:
        """
        Pin the batch size.

        Raises:
            BatchSizeOutOfRangeError: If size is outside [min_size, max_size]
        """
        if size < self.min_size or size > self.max_size:
            raise BatchSizeOutOfRangeError(size, self.min_size, self.max_size)
        with self.lock:
            self._current_size = size
            self._pinned = True
        logger.info(f"Batch size manually set to {size}")

    def clear_manual(self) -> None:
        """Release a pinned size so the next run sizes itself again"""
        with self.lock:
            self._pinned = False
