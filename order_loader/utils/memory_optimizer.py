"""
Memory Monitoring Module

Samples process memory for the adaptive batch sizer. Every call takes a
fresh reading; nothing is cached beyond the optional stats history.
"""

import gc
import logging
import threading
import tracemalloc
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List

import psutil

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


@dataclass
class MemoryStats:
    """Memory usage statistics"""
    current_mb: int
    available_mb: int
    gc_collections: Dict[str, int]
    timestamp: datetime


class MemoryMonitor:
    """Monitor process memory usage and available system memory"""

    # Reported when the platform cannot be measured
    FALLBACK_MB = 200

    def __init__(
        self,
        fallback_mb: int = FALLBACK_MB,
        history_limit: int = 100,
        trace_allocations: bool = False,
    ):
        """
        Initialize memory monitor

        Args:
            fallback_mb: Value returned when a measurement fails
            history_limit: Number of MemoryStats snapshots to keep
            trace_allocations: Start tracemalloc so usage counts live Python
                allocations instead of the process RSS
        """
        if trace_allocations and not tracemalloc.is_tracing():
            tracemalloc.start()
            logger.info("Started tracemalloc for memory measurement")
        self.fallback_mb = fallback_mb
        self.history_limit = history_limit
        self.history: List[MemoryStats] = []
        self.lock = threading.RLock()

    def current_used_mb(self) -> int:
        """
        Get current memory usage in MB.

        Uses the Python allocation counter while tracemalloc is tracing,
        otherwise the process resident set size. RSS includes interpreter
        overhead and may lag behind freed objects; pass trace_allocations=True
        (config: batch.trace_allocations) to measure managed memory only.
        """
        try:
            if tracemalloc.is_tracing():
                current, _peak = tracemalloc.get_traced_memory()
                return int(current // BYTES_PER_MB)
            return int(psutil.Process().memory_info().rss // BYTES_PER_MB)
        except Exception as e:
            logger.debug(f"Memory usage measurement failed: {e}")
            return self.fallback_mb

    def available_mb(self) -> int:
        """Get available system memory in MB"""
        try:
            return int(psutil.virtual_memory().available // BYTES_PER_MB)
        except Exception as e:
            logger.debug(f"Available memory measurement failed: {e}")
            return self.fallback_mb

    def get_memory_stats(self) -> MemoryStats:
        """Take a snapshot and append it to the history"""
        with self.lock:
            counts = gc.get_count()
            stats = MemoryStats(
                current_mb=self.current_used_mb(),
                available_mb=self.available_mb(),
                gc_collections={f"gen_{i}": counts[i] for i in range(3)},
                timestamp=datetime.now(),
            )

            self.history.append(stats)
            if len(self.history) > self.history_limit:
                self.history = self.history[-self.history_limit:]

            return stats

    def force_cleanup(self) -> int:
        """Force garbage collection of all generations"""
        collected = gc.collect()
        logger.debug(f"Garbage collection freed {collected} objects")
        return collected
