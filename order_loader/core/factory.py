"""
Processor Factory

Factory methods for creating dataset processors with dependency injection.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..config.pydantic_config import LoaderConfig
    from ..utils.progress_tracker import ProgressLike
    from .dataset_processor import DatasetProcessor
    from .interfaces import InvoiceStore


class ProcessorFactory:
    """Factory for creating dataset processors with dependency injection."""

    @staticmethod
    def create(
        config: "LoaderConfig",
        store: Optional["InvoiceStore"] = None,
        progress: "ProgressLike" = None,
    ) -> "DatasetProcessor":
        """
        Create a dataset processor with all default components.

        Args:
            config: Loader configuration
            store: Invoice store; a SQLite store at config.database.path by default
            progress: Progress sink or callable

        Returns:
            Configured DatasetProcessor
        """
        from ..utils.memory_optimizer import MemoryMonitor
        from ..utils.retry_handler import ExponentialBackoff
        from .batch_inserter import BatchInserter
        from .batch_sizer import AdaptiveBatchSizer
        from .database import SQLiteInvoiceStore
        from .dataset_processor import DatasetProcessor
        from .table_name_resolver import TableNameResolver

        if store is None:
            store = SQLiteInvoiceStore(
                config.database.path, timeout=config.database.timeout
            )

        backoff = ExponentialBackoff(
            base_delay=config.retry.base_delay,
            max_delay=config.retry.max_delay,
            multiplier=config.retry.backoff_multiplier,
            max_retries=config.retry.max_retries,
            jitter=config.retry.jitter,
        )

        inserter = BatchInserter(
            store,
            progress=progress,
            backoff=backoff,
            slow_write_seconds=config.retry.slow_write_warning_seconds,
        )

        sizer = AdaptiveBatchSizer(
            min_size=config.batch.min_size,
            max_size=config.batch.max_size,
            default_size=config.batch.default_size,
            memory_threshold_mb=config.batch.memory_threshold_mb,
        )

        resolver = TableNameResolver(
            config.table.default_table_name,
            references=config.table.references,
            reference_prefix=config.table.reference_prefix,
        )

        return DatasetProcessor(
            inserter,
            sizer,
            MemoryMonitor(trace_allocations=config.batch.trace_allocations),
            resolver,
            progress=progress,
            gc_interval=config.batch.gc_interval,
            parallel_enabled=config.batch.parallel_enabled,
            max_parallel_batches=config.batch.max_parallel_batches,
            max_oom_retries=config.batch.max_oom_retries,
            failure_warning_rate=config.retry.failure_warning_rate,
        )
