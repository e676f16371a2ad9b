"""
Tests for the dataset processor.

Tests cover:
- End-to-end loads against an in-memory store
- Out-of-memory recovery at the same offset
- Retry exhaustion without aborting the run
- Cancellation, parallel waves and configuration failures
"""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from order_loader.core.batch_inserter import BatchInserter
from order_loader.core.batch_sizer import AdaptiveBatchSizer
from order_loader.core.data_models import BatchResult, ProcessorStatus
from order_loader.core.dataset_processor import DatasetProcessor
from order_loader.core.table_name_resolver import TableNameResolver
from order_loader.utils.error_handler import (
    BatchSizeOutOfRangeError,
    InvalidTableNameError,
    OutOfMemoryCondition,
    TransientWriteError,
)

DEFAULT_TABLE = "invoice_orders"


# ============ Fixtures ============


@pytest.fixture
def resolver():
    return TableNameResolver(
        DEFAULT_TABLE, references={"Tables.Invoice.Test": "invoice_orders_test"}
    )


@pytest.fixture
def make_processor(resolver, memory_monitor, recording_sink, recording_sleep):
    def factory(store, sizer=None, monitor=None, **kwargs):
        inserter = BatchInserter(store, progress=recording_sink, sleep=recording_sleep)
        return DatasetProcessor(
            inserter,
            sizer or AdaptiveBatchSizer(),
            monitor or memory_monitor,
            resolver,
            progress=recording_sink,
            **kwargs,
        )

    return factory


@pytest.fixture
def mixed_orders(make_orders, make_order):
    """1,050 orders; every 21st one is missing its address."""
    orders = []
    for i, order in enumerate(make_orders(1050)):
        if i % 21 == 20:
            order = make_order(i + 1, address="")
        orders.append(order)
    return orders


# ============ End-to-end ============


class TestEndToEnd:
    """Test complete loads."""

    @pytest.mark.asyncio
    async def test_mixed_valid_and_invalid(self, make_processor, fake_store, mixed_orders):
        processor = make_processor(fake_store)

        result = await processor.process_dataset(mixed_orders)

        assert tuple(result) == (1000, 50)
        assert result.batches_processed == 3
        assert result.total_records == 1050
        assert result.table_name == DEFAULT_TABLE
        assert len(fake_store.calls) == 3
        assert sum(fake_store.call_sizes) == 1000
        assert all(table == DEFAULT_TABLE for table, _ in fake_store.calls)

    @pytest.mark.asyncio
    async def test_batch_boundaries(self, make_processor, fake_store, make_orders):
        processor = make_processor(fake_store)

        result = await processor.process_dataset(make_orders(1050))

        assert tuple(result) == (1050, 0)
        assert fake_store.call_sizes == [500, 500, 50]
        assert result.completed_at is not None

    @pytest.mark.asyncio
    async def test_every_row_written_once(self, make_processor, fake_store, make_orders):
        orders = make_orders(1234)

        await make_processor(fake_store).process_dataset(orders)

        written = [dto.order_number for dto in fake_store.rows]
        assert written == [order.order_number for order in orders]

    @pytest.mark.asyncio
    async def test_accepts_any_iterable(self, make_processor, fake_store, make_orders):
        orders = make_orders(20)

        result = await make_processor(fake_store).process_dataset(iter(orders))

        assert tuple(result) == (20, 0)

    @pytest.mark.asyncio
    async def test_symbolic_table_reference(self, make_processor, fake_store, make_orders):
        result = await make_processor(fake_store).process_dataset(
            make_orders(10), table_name="Tables.Invoice.Test"
        )

        assert result.table_name == "invoice_orders_test"
        assert fake_store.calls == [("invoice_orders_test", 10)]

    @pytest.mark.asyncio
    async def test_progress_reaches_100_percent(
        self, make_processor, fake_store, make_orders, recording_sink
    ):
        await make_processor(fake_store).process_dataset(make_orders(1050))

        progress = [m for m in recording_sink.messages if m.startswith("Progress:")]
        assert progress[-1] == "Progress: 100% (1,050/1,050)"
        assert f"Target table: {DEFAULT_TABLE}" in recording_sink.messages

    @pytest.mark.asyncio
    async def test_call_level_progress_overrides_default(
        self, make_processor, fake_store, make_orders
    ):
        messages = []

        await make_processor(fake_store).process_dataset(
            make_orders(5), progress=messages.append
        )

        assert any(m.startswith("Load complete") for m in messages)


# ============ Empty and invalid input ============


class TestInputHandling:
    """Test edge cases before the first batch."""

    @pytest.mark.asyncio
    async def test_none_rejected(self, make_processor, fake_store):
        with pytest.raises(ValueError):
            await make_processor(fake_store).process_dataset(None)

    @pytest.mark.asyncio
    async def test_empty_input(self, make_processor, fake_store, recording_sink):
        result = await make_processor(fake_store).process_dataset([])

        assert tuple(result) == (0, 0)
        assert result.batches_processed == 0
        assert fake_store.calls == []
        assert "No orders to process" in recording_sink.messages

    @pytest.mark.asyncio
    async def test_invalid_table_name_raises_before_writing(
        self, make_processor, fake_store, make_orders
    ):
        with pytest.raises(InvalidTableNameError):
            await make_processor(fake_store).process_dataset(
                make_orders(10), table_name="orders; DROP TABLE x"
            )

        assert fake_store.calls == []

    @pytest.mark.asyncio
    async def test_all_invalid(self, make_processor, fake_store, make_order):
        orders = [make_order(i, quantity=0) for i in range(30)]

        result = await make_processor(fake_store).process_dataset(orders)

        assert tuple(result) == (0, 30)
        assert fake_store.calls == []

    @pytest.mark.asyncio
    async def test_prescan_logs_sample(self, make_processor, fake_store, mixed_orders, caplog):
        with caplog.at_level(logging.INFO, logger="order_loader.core.dataset_processor"):
            await make_processor(fake_store).process_dataset(mixed_orders)

        assert "Pre-scan - valid: 1,000, invalid: 50" in caplog.text
        assert caplog.text.count("invalid fields: address") == 10


# ============ Out of memory ============


class TestOutOfMemory:
    """Test recovery from out-of-memory writes."""

    @pytest.mark.asyncio
    async def test_halves_and_retries_same_offset(
        self, make_processor, store_factory, make_orders
    ):
        store = store_factory(failures=[OutOfMemoryCondition("no memory")])
        orders = make_orders(1050)
        processor = make_processor(store)

        result = await processor.process_dataset(orders)

        assert tuple(result) == (1050, 0)
        assert result.out_of_memory_retries == 1
        assert store.call_sizes == [500, 250, 250, 250, 250, 50]
        assert [dto.order_number for dto in store.rows] == [o.order_number for o in orders]
        assert processor.sizer.current_size == 250

    @pytest.mark.asyncio
    async def test_memory_error_handled_like_out_of_memory(
        self, make_processor, store_factory, make_orders
    ):
        store = store_factory(failures=[MemoryError()])

        result = await make_processor(store).process_dataset(make_orders(600))

        assert tuple(result) == (600, 0)
        assert result.out_of_memory_retries == 1

    @pytest.mark.asyncio
    async def test_gives_up_at_minimum_size(self, make_processor, store_factory, make_orders):
        store = store_factory(always_fail=OutOfMemoryCondition("no memory"))
        sizer = AdaptiveBatchSizer(min_size=50, default_size=100, max_size=200)

        result = await make_processor(store, sizer=sizer).process_dataset(make_orders(100))

        assert tuple(result) == (0, 100)
        assert result.out_of_memory_retries == 7
        assert store.call_sizes == [100] + [50] * 8


# ============ Retry exhaustion ============


class TestWriteFailures:
    """Test failed batches do not abort the run."""

    @pytest.mark.asyncio
    async def test_always_transient(
        self, make_processor, store_factory, make_orders, recording_sleep
    ):
        store = store_factory(always_fail=TransientWriteError("database is locked"))

        result = await make_processor(store).process_dataset(make_orders(1050))

        assert tuple(result) == (0, 1050)
        assert result.batches_processed == 3
        assert len(store.calls) == 12
        assert recording_sleep.delays == [1.0, 2.0, 4.0] * 3

    @pytest.mark.asyncio
    async def test_run_continues_after_failed_batch(
        self, make_processor, store_factory, make_orders
    ):
        failure = TransientWriteError("busy")
        store = store_factory(failures=[failure, failure, failure, failure])

        result = await make_processor(store).process_dataset(make_orders(1050))

        assert tuple(result) == (550, 500)
        assert result.batches_processed == 3

    @pytest.mark.asyncio
    async def test_unexpected_batch_error_counts_slice(self, resolver, memory_monitor, make_orders):
        inserter = MagicMock()
        inserter.insert_batch = AsyncMock(
            side_effect=[RuntimeError("bug"), BatchResult(success_count=50, failure_count=0)]
        )
        sizer = AdaptiveBatchSizer(min_size=50, default_size=50, max_size=100)
        processor = DatasetProcessor(inserter, sizer, memory_monitor, resolver)

        result = await processor.process_dataset(make_orders(100))

        assert tuple(result) == (50, 50)
        assert result.batches_processed == 2

    @pytest.mark.asyncio
    async def test_high_failure_rate_warns(self, make_processor, fake_store, make_orders, make_order, caplog):
        orders = make_orders(90) + [make_order(100 + i, product_name="") for i in range(10)]

        with caplog.at_level(logging.WARNING, logger="order_loader.core.dataset_processor"):
            result = await make_processor(fake_store).process_dataset(orders)

        assert result.failure_rate == 10.0
        assert "exceeds" in caplog.text

    @pytest.mark.asyncio
    async def test_orchestration_error_propagates(
        self, make_processor, fake_store, memory_monitor, make_orders
    ):
        memory_monitor.current_used_mb = MagicMock(side_effect=RuntimeError("sensor failure"))

        with pytest.raises(RuntimeError, match="sensor failure"):
            await make_processor(fake_store).process_dataset(make_orders(10))


# ============ Memory-driven sizing ============


class TestAdaptiveSizing:
    """Test batch size changes during a run."""

    @pytest.mark.asyncio
    async def test_shrinks_under_memory_pressure(
        self, make_processor, fake_store, memory_monitor, make_orders
    ):
        memory_monitor.used_mb = 600

        result = await make_processor(fake_store).process_dataset(make_orders(1050))

        assert tuple(result) == (1050, 0)
        assert fake_store.call_sizes == [500, 375, 175]

    @pytest.mark.asyncio
    async def test_plenty_of_memory_starts_larger(
        self, make_processor, fake_store, memory_monitor, make_orders
    ):
        memory_monitor.available = 8000

        await make_processor(fake_store).process_dataset(make_orders(1050))

        assert fake_store.call_sizes == [1000, 50]

    @pytest.mark.asyncio
    async def test_periodic_garbage_collection(
        self, make_processor, fake_store, memory_monitor, make_orders
    ):
        sizer = AdaptiveBatchSizer(min_size=10, default_size=10, max_size=100)

        result = await make_processor(fake_store, sizer=sizer, gc_interval=10).process_dataset(
            make_orders(205)
        )

        assert result.batches_processed == 21
        assert memory_monitor.cleanup_calls == 2

    @pytest.mark.asyncio
    async def test_garbage_collection_counts_failed_batches(
        self, resolver, memory_monitor, make_orders
    ):
        ok = BatchResult(success_count=10, failure_count=0)
        inserter = MagicMock()
        inserter.insert_batch = AsyncMock(
            side_effect=[ok, RuntimeError("bug"), ok, RuntimeError("bug")]
        )
        sizer = AdaptiveBatchSizer(min_size=10, default_size=10, max_size=100)
        processor = DatasetProcessor(
            inserter, sizer, memory_monitor, resolver, gc_interval=2
        )

        result = await processor.process_dataset(make_orders(40))

        assert tuple(result) == (20, 20)
        assert result.batches_processed == 4
        assert memory_monitor.cleanup_calls == 2

    @pytest.mark.asyncio
    async def test_garbage_collection_counts_abandoned_batches(
        self, make_processor, store_factory, memory_monitor, make_orders
    ):
        store = store_factory(always_fail=OutOfMemoryCondition("no memory"))
        sizer = AdaptiveBatchSizer(min_size=10, default_size=10, max_size=100)
        processor = make_processor(store, sizer=sizer, gc_interval=1, max_oom_retries=0)

        result = await processor.process_dataset(make_orders(10))

        assert tuple(result) == (0, 10)
        assert result.batches_processed == 1
        assert memory_monitor.cleanup_calls == 1

    @pytest.mark.asyncio
    async def test_manual_batch_size(self, make_processor, fake_store, make_orders):
        processor = make_processor(fake_store)
        processor.set_batch_size(100)

        await processor.process_dataset(make_orders(250))

        assert fake_store.call_sizes == [100, 100, 50]

    def test_manual_batch_size_bounds(self, make_processor, fake_store):
        processor = make_processor(fake_store)

        with pytest.raises(BatchSizeOutOfRangeError):
            processor.set_batch_size(49)
        with pytest.raises(BatchSizeOutOfRangeError):
            processor.set_batch_size(2001)

        processor.set_batch_size(50)
        processor.set_batch_size(2000)
        assert processor.sizer.current_size == 2000

    def test_get_status(self, make_processor, fake_store):
        status = make_processor(fake_store).get_status()

        assert status == ProcessorStatus(
            current_batch_size=500, current_memory_mb=300, available_memory_mb=500
        )


# ============ Cancellation ============


class TestCancellation:
    """Test cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, make_processor, fake_store, make_orders):
        cancel = asyncio.Event()
        cancel.set()

        result = await make_processor(fake_store).process_dataset(
            make_orders(100), cancel_event=cancel
        )

        assert result.cancelled
        assert tuple(result) == (0, 0)
        assert fake_store.calls == []

    @pytest.mark.asyncio
    async def test_cancelled_between_batches(self, make_processor, fake_store, make_orders):
        cancel = asyncio.Event()

        def on_progress(message):
            if message.startswith("Batch 1 complete"):
                cancel.set()

        result = await make_processor(fake_store).process_dataset(
            make_orders(1050), progress=on_progress, cancel_event=cancel
        )

        assert result.cancelled
        assert tuple(result) == (500, 0)
        assert fake_store.call_sizes == [500]

    @pytest.mark.asyncio
    async def test_cancelled_during_retry_wait(
        self, make_processor, store_factory, make_orders, recording_sleep
    ):
        store = store_factory(always_fail=TransientWriteError("busy"))
        cancel = asyncio.Event()
        recording_sleep.on_sleep = lambda delay: cancel.set()

        result = await make_processor(store).process_dataset(
            make_orders(1050), cancel_event=cancel
        )

        assert result.cancelled
        assert tuple(result) == (0, 0)
        assert len(store.calls) == 1


# ============ Parallel execution ============


class ConcurrencyTrackingStore:
    """Store that records how many writes overlap"""

    def __init__(self):
        self.in_flight = 0
        self.max_in_flight = 0
        self.sizes = []

    async def write_batch(self, table_name, rows):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.sizes.append(len(rows))
        self.in_flight -= 1
        return len(rows)


class TestParallel:
    """Test wave-based parallel execution."""

    @pytest.mark.asyncio
    async def test_parallel_totals_match_sequential(self, make_processor, mixed_orders):
        store = ConcurrencyTrackingStore()
        processor = make_processor(store, parallel_enabled=True, max_parallel_batches=2)

        with patch("order_loader.core.dataset_processor.os.cpu_count", return_value=4):
            result = await processor.process_dataset(mixed_orders)

        assert tuple(result) == (1000, 50)
        assert result.batches_processed == 3
        assert store.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_wave_width_capped_by_cpu_count(self, make_processor, make_orders):
        store = ConcurrencyTrackingStore()
        processor = make_processor(store, parallel_enabled=True, max_parallel_batches=8)

        with patch("order_loader.core.dataset_processor.os.cpu_count", return_value=1):
            result = await processor.process_dataset(make_orders(1050))

        assert tuple(result) == (1050, 0)
        assert store.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_parallel_out_of_memory_requeues(self, make_processor, store_factory, make_orders):
        store = store_factory(failures=[OutOfMemoryCondition("no memory")])
        processor = make_processor(store, parallel_enabled=True, max_parallel_batches=2)

        with patch("order_loader.core.dataset_processor.os.cpu_count", return_value=4):
            result = await processor.process_dataset(make_orders(1050))

        assert tuple(result) == (1050, 0)
        assert result.out_of_memory_retries == 1
        assert sorted(dto.order_number for dto in store.rows) == sorted(
            o.order_number for o in make_orders(1050)
        )
