"""
Batch Insertion with Retry

Validates and converts one batch of orders, writes the surviving rows
through the invoice store, and retries failed writes with backoff.

Accounting rules:
- invalid orders and invalid DTOs count as failures; the rest of the batch
  is still written
- a batch whose write fails on every attempt counts as failed in full,
  including rows that passed validation
- an out-of-memory condition is not retried here; it is raised to the
  caller, which shrinks the batch and retries the same offset
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from ..utils.error_handler import OutOfMemoryCondition
from ..utils.progress_tracker import ProgressLike, as_progress_sink
from ..utils.retry_handler import (
    ExponentialBackoff,
    RetryHistory,
    WriteErrorType,
    classify_write_error,
)
from .converter import to_storage_dto
from .data_models import BatchResult, BatchStatus, InvoiceDto, Order
from .interfaces import InvoiceStore
from .validation import is_valid_order, missing_fields

logger = logging.getLogger(__name__)

# Writes slower than this are logged as a performance warning
SLOW_WRITE_SECONDS = 5.0

# Invalid orders listed per batch in the progress output
INVALID_SAMPLE_SIZE = 3


@dataclass
class PreparedBatch:
    """Rows ready to write plus the counts of rows dropped on the way"""

    dtos: List[InvoiceDto] = field(default_factory=list)
    invalid_orders: List[Order] = field(default_factory=list)
    invalid_dto_count: int = 0

    @property
    def failure_count(self) -> int:
        return len(self.invalid_orders) + self.invalid_dto_count


class BatchInserter:
    """
    Insert one batch of orders, retrying failed writes.

    Example:
        >>> inserter = BatchInserter(store)
        >>> result = await inserter.insert_batch(orders, "invoices", batch_number=1)
        >>> success, failure = result
    """

    def __init__(
        self,
        store: InvoiceStore,
        progress: ProgressLike = None,
        backoff: Optional[ExponentialBackoff] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        slow_write_seconds: float = SLOW_WRITE_SECONDS,
    ):
        """
        Initialize the batch inserter.

        Args:
            store: Invoice store used for the write
            progress: Progress sink or callable receiving status messages
            backoff: Backoff schedule between write attempts
            clock: Monotonic clock used for timing writes
            sleep: Awaitable delay used between attempts
            slow_write_seconds: Threshold for the slow-write warning
        """
        self.store = store
        self.progress = as_progress_sink(progress)
        self.backoff = backoff or ExponentialBackoff()
        self.clock = clock
        self.sleep = sleep
        self.slow_write_seconds = slow_write_seconds

    @property
    def max_attempts(self) -> int:
        return self.backoff.max_retries + 1

    def prepare(self, records: List[Order], batch_number: int) -> PreparedBatch:
        """
        Validate and convert a batch.

        Args:
            records: Orders in the batch
            batch_number: Batch ordinal, used in log output

        Returns:
            PreparedBatch with the DTOs to write and the dropped counts
        """
        prepared = PreparedBatch()
        valid_orders: List[Order] = []

        for order in records:
            if is_valid_order(order):
                valid_orders.append(order)
            else:
                prepared.invalid_orders.append(order)

        if prepared.invalid_orders:
            self.progress.report(
                f"[Batch {batch_number}] {len(prepared.invalid_orders)} invalid orders found"
            )
            for order in prepared.invalid_orders[:INVALID_SAMPLE_SIZE]:
                self.progress.report(
                    f"[Batch {batch_number}]   - order number: "
                    f"{getattr(order, 'order_number', None) or '(none)'}, "
                    f"missing: {', '.join(missing_fields(order))}"
                )

        for order in valid_orders:
            dto = to_storage_dto(order)
            if dto.is_valid():
                prepared.dtos.append(dto)
            else:
                prepared.invalid_dto_count += 1
                logger.debug(
                    f"[Batch {batch_number}] Invalid DTO for order "
                    f"{order.order_number or '(none)'}: "
                    f"{dto.conversion_error or 'required field empty after conversion'}"
                )

        self.progress.report(
            f"[Batch {batch_number}] Conversion complete - "
            f"ready: {len(prepared.dtos)}, failed: {prepared.invalid_dto_count}"
        )
        return prepared

    async def insert_batch(
        self,
        records: List[Order],
        table_name: str,
        batch_number: int = 1,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """
        Insert a batch, retrying failed writes.

        Args:
            records: Orders in the batch
            table_name: Validated destination table
            batch_number: Batch ordinal, used in log output
            cancel_event: When set, remaining retries are abandoned

        Returns:
            BatchResult with success/failure counts and the final status

        Raises:
            OutOfMemoryCondition: If the write ran out of memory
        """
        batch_size = len(records)
        history = RetryHistory()
        started = self.clock()

        for attempt in range(self.max_attempts):
            if attempt > 0:
                if self._is_cancelled(cancel_event):
                    return self._cancelled(batch_number, attempt, history, started)

                delay = self.backoff.get_delay(attempt - 1)
                self.progress.report(
                    f"[Batch {batch_number}] Waiting {delay:.0f}s before retry "
                    f"{attempt}/{self.backoff.max_retries}"
                )
                await self.sleep(delay)

                if self._is_cancelled(cancel_event):
                    return self._cancelled(batch_number, attempt, history, started)

            prepared = self.prepare(records, batch_number)

            if not prepared.dtos:
                self.progress.report(
                    f"[Batch {batch_number}] No valid rows to insert - "
                    f"all {batch_size} orders counted as failed"
                )
                return BatchResult(
                    success_count=0,
                    failure_count=batch_size,
                    status=BatchStatus.NO_VALID_ROWS,
                    attempts=attempt + 1,
                    duration_seconds=self.clock() - started,
                )

            self.progress.report(
                f"[Batch {batch_number}] Inserting {len(prepared.dtos)} rows into {table_name}"
            )
            write_started = self.clock()
            try:
                inserted = await self.store.write_batch(table_name, prepared.dtos)
            except Exception as e:
                duration = self.clock() - write_started
                if classify_write_error(e) is WriteErrorType.OUT_OF_MEMORY:
                    logger.warning(f"[Batch {batch_number}] Out of memory during write")
                    if isinstance(e, OutOfMemoryCondition):
                        raise
                    raise OutOfMemoryCondition(str(e) or "out of memory") from e

                failed = history.record(e, duration)
                self.progress.report(
                    f"[Batch {batch_number}] Insert failed "
                    f"(attempt {attempt + 1}/{self.max_attempts}): {e}"
                )
                logger.warning(
                    f"[Batch {batch_number}] Write attempt {failed.attempt} failed "
                    f"({failed.error_type.value}) after {duration * 1000:.0f}ms",
                    exc_info=True,
                )
                continue

            duration = self.clock() - write_started
            self.progress.report(
                f"[Batch {batch_number}] Insert complete - "
                f"{inserted} rows in {duration * 1000:.0f}ms"
            )
            if duration > self.slow_write_seconds:
                logger.warning(
                    f"[Batch {batch_number}] Slow insert: {duration * 1000:.0f}ms "
                    f"for {len(prepared.dtos)} rows"
                )

            shortfall = max(len(prepared.dtos) - inserted, 0)
            return BatchResult(
                success_count=inserted,
                failure_count=prepared.failure_count + shortfall,
                status=BatchStatus.INSERTED,
                attempts=attempt + 1,
                last_error=history.last_error,
                duration_seconds=self.clock() - started,
            )

        logger.error(
            f"[Batch {batch_number}] Giving up after {self.max_attempts} attempts - "
            f"all {batch_size} orders counted as failed. Last error: {history.last_error}"
        )
        self.progress.report(
            f"[Batch {batch_number}] Retries exhausted - {batch_size} orders failed"
        )
        return BatchResult(
            success_count=0,
            failure_count=batch_size,
            status=BatchStatus.WRITE_FAILED,
            attempts=self.max_attempts,
            last_error=history.last_error,
            duration_seconds=self.clock() - started,
        )

    @staticmethod
    def _is_cancelled(cancel_event: Optional[asyncio.Event]) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def _cancelled(
        self, batch_number: int, attempts: int, history: RetryHistory, started: float
    ) -> BatchResult:
        self.progress.report(f"[Batch {batch_number}] Cancelled, remaining retries skipped")
        return BatchResult(
            success_count=0,
            failure_count=0,
            status=BatchStatus.CANCELLED,
            attempts=attempts,
            last_error=history.last_error,
            duration_seconds=self.clock() - started,
        )
