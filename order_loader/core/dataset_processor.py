"""
Dataset Processing

Drives a full load: resolves the destination table, slices the orders
into batches sized by the adaptive sizer, hands each batch to the batch
inserter and aggregates the results.

Per-batch failures are counted and the run continues. Out-of-memory
conditions shrink the batch size and retry the same offset. Only
configuration errors (raised before the first batch) and errors in the
orchestration itself reach the caller.

Batches run one at a time unless parallel execution is enabled, in which
case they run in waves of at most ``min(max_parallel_batches, cpu_count)``
batches and the counters are summed once each wave completes.
"""

import asyncio
import logging
import os
from collections import deque
from datetime import datetime
from typing import Deque, Dict, Iterable, List, Optional, Tuple, Union

from ..utils.error_handler import OutOfMemoryCondition
from ..utils.memory_optimizer import MemoryMonitor
from ..utils.progress_tracker import ProgressLike, SafeProgressSink, as_progress_sink
from .batch_inserter import BatchInserter
from .batch_sizer import AdaptiveBatchSizer
from .data_models import Batch, BatchResult, Order, ProcessingResult, ProcessorStatus
from .table_name_resolver import TableNameResolver
from .validation import is_valid_order, missing_fields

logger = logging.getLogger(__name__)

DEFAULT_GC_INTERVAL = 10
DEFAULT_MAX_OOM_RETRIES = 3
FAILURE_WARNING_RATE = 5.0

# Invalid orders itemized in the pre-scan log
PRESCAN_SAMPLE_SIZE = 10

BatchOutcome = Union[BatchResult, BaseException]


class DatasetProcessor:
    """
    Orchestrates loading an order dataset in adaptive batches.

    Example:
        >>> processor = DatasetProcessor(inserter, sizer, monitor, resolver)
        >>> result = await processor.process_dataset(orders, table_name="Tables.Invoice.Seoul")
        >>> success, failure = result
    """

    def __init__(
        self,
        inserter: BatchInserter,
        sizer: AdaptiveBatchSizer,
        memory_monitor: MemoryMonitor,
        resolver: TableNameResolver,
        progress: ProgressLike = None,
        gc_interval: int = DEFAULT_GC_INTERVAL,
        parallel_enabled: bool = False,
        max_parallel_batches: int = 4,
        max_oom_retries: int = DEFAULT_MAX_OOM_RETRIES,
        failure_warning_rate: float = FAILURE_WARNING_RATE,
    ):
        """
        Initialize the dataset processor.

        Args:
            inserter: Batch inserter used for every slice
            sizer: Adaptive batch sizer owning the batch size
            memory_monitor: Memory monitor sampled after each batch
            resolver: Table name resolver
            progress: Default progress sink or callable
            gc_interval: Force garbage collection every N completed batches
            parallel_enabled: Run batches in concurrent waves
            max_parallel_batches: Upper bound on batches in flight
            max_oom_retries: Out-of-memory retries allowed for one offset
                once the batch is at the minimum size
            failure_warning_rate: Failure percentage that triggers a warning
        """
        self.inserter = inserter
        self.sizer = sizer
        self.memory_monitor = memory_monitor
        self.resolver = resolver
        self.progress = as_progress_sink(progress)
        self.gc_interval = gc_interval
        self.parallel_enabled = parallel_enabled
        self.max_parallel_batches = max_parallel_batches
        self.max_oom_retries = max_oom_retries
        self.failure_warning_rate = failure_warning_rate

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_dataset(
        self,
        records: Optional[Iterable[Order]],
        progress: ProgressLike = None,
        table_name: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProcessingResult:
        """
        Load all records into the destination table.

        Args:
            records: Orders to load
            progress: Progress sink for this run (defaults to the processor's)
            table_name: Table name, symbolic reference, or None for the default
            cancel_event: When set, the run stops before the next batch

        Returns:
            ProcessingResult; unpacks as (success_count, failure_count)

        Raises:
            ValueError: If records is None
            InvalidTableNameError: If the table name fails the naming policy
        """
        if records is None:
            raise ValueError("records must not be None")

        sink = self.progress if progress is None else as_progress_sink(progress)
        orders = list(records)
        total = len(orders)

        if total == 0:
            sink.report("No orders to process")
            return ProcessingResult()

        target_table = self.resolver.resolve(table_name)
        sink.report(f"Target table: {target_table}")

        result = ProcessingResult(
            total_records=total, table_name=target_table, started_at=datetime.now()
        )
        logger.info(f"Starting load of {total:,} orders into {target_table}")
        sink.report(f"Starting load of {total:,} orders")

        self._log_validity_scan(orders, sink)

        initial_size = self.sizer.initial_size(self.memory_monitor.available_mb())
        sink.report(f"Initial batch size: {initial_size}")

        try:
            await self._run_batches(orders, target_table, result, sink, cancel_event)
        except Exception as e:
            logger.exception(f"Fatal error while loading into {target_table}: {e}")
            sink.report(f"Fatal error: {e}")
            raise

        result.completed_at = datetime.now()
        self._log_summary(result, sink)
        return result

    def get_status(self) -> ProcessorStatus:
        """Current batch size and memory readings"""
        return ProcessorStatus(
            current_batch_size=self.sizer.current_size,
            current_memory_mb=self.memory_monitor.current_used_mb(),
            available_memory_mb=self.memory_monitor.available_mb(),
        )

    def set_batch_size(self, batch_size: int) -> None:
        """Pin the batch size; see AdaptiveBatchSizer.set_manual"""
        self.sizer.set_manual(batch_size)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def _run_batches(
        self,
        orders: List[Order],
        table_name: str,
        result: ProcessingResult,
        sink: SafeProgressSink,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        total = len(orders)
        # Offset ranges still to load; a slice that ran out of memory goes
        # back to the front so the same offset is retried with a smaller width.
        pending: Deque[Tuple[int, int]] = deque([(0, total)])
        oom_at_min_size: Dict[int, int] = {}
        processed = 0
        next_number = 1

        while pending:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                sink.report(f"Cancelled - {total - processed:,} orders not processed")
                logger.info("Load cancelled before next batch")
                break

            wave = self._next_wave(orders, pending, next_number)
            next_number += len(wave)

            for batch in wave:
                sink.report(
                    f"Batch {batch.number} started - range {batch.start + 1}~{batch.end} "
                    f"({len(batch)} orders)"
                )

            outcomes = await self._execute_wave(wave, table_name, cancel_event)

            retry_ranges: List[Tuple[int, int]] = []
            stop = False

            for batch, outcome in zip(wave, outcomes):
                if isinstance(outcome, (OutOfMemoryCondition, MemoryError)):
                    if self._handle_out_of_memory(batch, oom_at_min_size, result, sink):
                        retry_ranges.append((batch.start, batch.end))
                    else:
                        processed += len(batch)
                        self._periodic_cleanup(result.batches_processed)
                    continue

                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome

                if isinstance(outcome, BaseException):
                    logger.error(
                        f"Batch {batch.number} failed: {outcome}", exc_info=outcome
                    )
                    sink.report(f"Batch {batch.number} failed: {outcome}")
                    result.failure_count += len(batch)
                    result.batches_processed += 1
                    processed += len(batch)
                    self._periodic_cleanup(result.batches_processed)
                    continue

                if outcome.is_cancelled:
                    retry_ranges.append((batch.start, batch.end))
                    stop = True
                    continue

                result.add(outcome)
                processed += len(batch)
                oom_at_min_size.pop(batch.start, None)

                sink.report(
                    f"Batch {batch.number} complete - success: {outcome.success_count}, "
                    f"failure: {outcome.failure_count}"
                )
                percent = int(processed / total * 100)
                sink.report(f"Progress: {percent}% ({processed:,}/{total:,})")

                self._adjust_for_memory(sink)
                self._periodic_cleanup(result.batches_processed)

            for start, end in reversed(retry_ranges):
                self._requeue(pending, start, end)

            if stop:
                result.cancelled = True
                sink.report(f"Cancelled - {total - processed:,} orders not processed")
                logger.info("Load cancelled during batch retries")
                break

    def _wave_width(self) -> int:
        if not self.parallel_enabled:
            return 1
        cores = os.cpu_count() or 1
        return max(1, min(self.max_parallel_batches, cores))

    def _next_wave(
        self, orders: List[Order], pending: Deque[Tuple[int, int]], first_number: int
    ) -> List[Batch]:
        width = self._wave_width()
        size = self.sizer.current_size
        wave: List[Batch] = []

        while pending and len(wave) < width:
            start, end = pending.popleft()
            stop = min(start + size, end)
            if stop < end:
                pending.appendleft((stop, end))
            wave.append(
                Batch(
                    number=first_number + len(wave),
                    records=orders[start:stop],
                    start=start,
                    end=stop,
                )
            )

        return wave

    @staticmethod
    def _requeue(pending: Deque[Tuple[int, int]], start: int, end: int) -> None:
        if pending and pending[0][0] == end:
            pending[0] = (start, pending[0][1])
        else:
            pending.appendleft((start, end))

    async def _execute_wave(
        self,
        wave: List[Batch],
        table_name: str,
        cancel_event: Optional[asyncio.Event],
    ) -> List[BatchOutcome]:
        return await asyncio.gather(
            *(
                self.inserter.insert_batch(
                    batch.records, table_name, batch.number, cancel_event
                )
                for batch in wave
            ),
            return_exceptions=True,
        )

    def _handle_out_of_memory(
        self,
        batch: Batch,
        oom_at_min_size: Dict[int, int],
        result: ProcessingResult,
        sink: SafeProgressSink,
    ) -> bool:
        """
        React to an out-of-memory batch.

        Returns:
            True if the batch should be retried at the same offset
        """
        sink.report(
            f"Out of memory in batch {batch.number} "
            f"(batch size {self.sizer.current_size})"
        )

        if len(batch) <= self.sizer.min_size:
            count = oom_at_min_size.get(batch.start, 0) + 1
            oom_at_min_size[batch.start] = count
            if count > self.max_oom_retries:
                logger.error(
                    f"Batch {batch.number} still out of memory at minimum size "
                    f"after {self.max_oom_retries} retries - counting "
                    f"{len(batch)} orders as failed"
                )
                sink.report(f"Batch {batch.number} abandoned - {len(batch)} orders failed")
                result.failure_count += len(batch)
                result.batches_processed += 1
                oom_at_min_size.pop(batch.start, None)
                return False

        previous = self.sizer.current_size
        new_size = self.sizer.halve_on_out_of_memory()
        result.out_of_memory_retries += 1
        sink.report(f"Batch size {previous} -> {new_size}, retrying from offset {batch.start + 1}")
        return True

    def _adjust_for_memory(self, sink: SafeProgressSink) -> None:
        used_mb = self.memory_monitor.current_used_mb()
        previous = self.sizer.current_size
        new_size, changed = self.sizer.adjust_for_memory_pressure(used_mb)
        if changed:
            sink.report(
                f"Batch size adjusted {previous} -> {new_size} (memory: {used_mb}MB)"
            )

    def _periodic_cleanup(self, completed_batches: int) -> None:
        """Collect garbage every gc_interval batches, whatever their outcome"""
        if self.gc_interval > 0 and completed_batches % self.gc_interval == 0:
            freed = self.memory_monitor.force_cleanup()
            logger.info(
                f"Garbage collection after batch {completed_batches}: "
                f"{freed} objects freed"
            )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _log_validity_scan(self, orders: List[Order], sink: SafeProgressSink) -> None:
        invalid = [order for order in orders if not is_valid_order(order)]
        valid_count = len(orders) - len(invalid)

        message = f"Pre-scan - valid: {valid_count:,}, invalid: {len(invalid):,}"
        logger.info(message)
        sink.report(message)

        for order in invalid[:PRESCAN_SAMPLE_SIZE]:
            logger.info(
                f"  - order number: {getattr(order, 'order_number', None) or '(none)'}, "
                f"invalid fields: {', '.join(missing_fields(order))}"
            )

    def _log_summary(self, result: ProcessingResult, sink: SafeProgressSink) -> None:
        summary = (
            f"Load complete - success: {result.success_count:,}, "
            f"failure: {result.failure_count:,}, table: {result.table_name}"
        )
        logger.info(summary)
        sink.report(summary)

        if result.failure_count == 0 and not result.cancelled:
            logger.info("All orders loaded (success rate: 100%)")
            return

        failure_rate = result.failure_rate
        if failure_rate > self.failure_warning_rate:
            logger.warning(
                f"Failure rate {failure_rate:.1f}% exceeds "
                f"{self.failure_warning_rate:.1f}% threshold"
            )
            sink.report(f"Warning: failure rate {failure_rate:.1f}%")
        else:
            logger.info(f"Failure rate: {failure_rate:.1f}%")
