"""
Pytest configuration and shared fixtures for order loader tests.

This module provides order factories, a scriptable in-memory invoice
store, a stub memory monitor and a recording sleep so the insertion
engine can be exercised without a database or real delays.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator, List, Optional

import pytest

from order_loader.core.data_models import InvoiceDto, Order
from order_loader.utils.progress_tracker import RecordingProgressSink

# ============================================================================
# Test Doubles
# ============================================================================


class FakeInvoiceStore:
    """
    In-memory invoice store.

    ``failures`` is consumed one entry per write call: an exception instance
    is raised, None lets the write succeed. Once exhausted every write
    succeeds, unless ``always_fail`` is set.
    """

    def __init__(
        self,
        failures: Optional[List[Optional[BaseException]]] = None,
        always_fail: Optional[BaseException] = None,
        inserted_override: Optional[int] = None,
    ):
        self.failures = list(failures or [])
        self.always_fail = always_fail
        self.inserted_override = inserted_override
        self.calls: List[tuple] = []
        self.rows: List[InvoiceDto] = []

    async def write_batch(self, table_name: str, rows: List[InvoiceDto]) -> int:
        self.calls.append((table_name, len(rows)))
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure
        if self.always_fail is not None:
            raise self.always_fail
        self.rows.extend(rows)
        if self.inserted_override is not None:
            return self.inserted_override
        return len(rows)

    @property
    def call_sizes(self) -> List[int]:
        return [size for _, size in self.calls]


class StubMemoryMonitor:
    """Memory monitor returning fixed readings"""

    def __init__(self, used_mb: int = 300, available_mb: int = 500):
        self.used_mb = used_mb
        self.available = available_mb
        self.cleanup_calls = 0

    def current_used_mb(self) -> int:
        return self.used_mb

    def available_mb(self) -> int:
        return self.available

    def force_cleanup(self) -> int:
        self.cleanup_calls += 1
        return 0


class RecordingSleep:
    """Async sleep replacement that records requested delays"""

    def __init__(self, on_sleep: Optional[Callable[[float], Any]] = None):
        self.delays: List[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.on_sleep is not None:
            self.on_sleep(delay)


# ============================================================================
# Temporary Directory Fixtures
# ============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp(prefix="order_loader_test_"))
    try:
        yield temp_path
    finally:
        if temp_path.exists():
            shutil.rmtree(temp_path)


# ============================================================================
# Order Fixtures
# ============================================================================


def _build_order(index: int = 1, **overrides) -> Order:
    values = {
        "order_number": f"ORD-{index:05d}",
        "order_date": "2024-03-01",
        "recipient_name": "홍길동",
        "recipient_phone": "010-1234-5678",
        "address": "서울특별시 강남구 테헤란로 1",
        "detail_address": "101호",
        "zip_code": "06236",
        "product_code": "P-100",
        "product_name": "생수 2L",
        "option_name": "6개입",
        "quantity": 2,
        "unit_price": 4500.0,
        "total_price": 9000.0,
        "store_name": "테스트몰",
    }
    values.update(overrides)
    return Order(**values)


@pytest.fixture
def make_order() -> Callable[..., Order]:
    """Factory for a valid order; keyword arguments override fields."""
    return _build_order


@pytest.fixture
def make_orders() -> Callable[..., List[Order]]:
    """Factory for ``count`` valid orders with sequential order numbers."""

    def factory(count: int, start: int = 1) -> List[Order]:
        return [_build_order(start + i) for i in range(count)]

    return factory


@pytest.fixture
def invalid_order() -> Order:
    """Order missing its recipient name."""
    return _build_order(999, recipient_name="")


# ============================================================================
# Collaborator Fixtures
# ============================================================================


@pytest.fixture
def fake_store() -> FakeInvoiceStore:
    """Store that accepts every write."""
    return FakeInvoiceStore()


@pytest.fixture
def store_factory() -> Callable[..., FakeInvoiceStore]:
    """Factory for scripted stores."""
    return FakeInvoiceStore


@pytest.fixture
def memory_monitor() -> StubMemoryMonitor:
    """Monitor reporting 300MB used and 500MB available."""
    return StubMemoryMonitor()


@pytest.fixture
def recording_sink() -> RecordingProgressSink:
    """Progress sink keeping every message."""
    return RecordingProgressSink()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Sleep replacement that records delays without waiting."""
    return RecordingSleep()
