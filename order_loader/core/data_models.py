"""
Data models for the Order Loader.

This module defines the internal data structures used to represent
orders, their storage-bound rows and batch outcomes throughout the
insertion pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional

DEFAULT_LOCATION = "기본위치"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _parse_int(value: Any) -> int:
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return 0


def _parse_float(value: Any) -> float:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class Order:
    """
    One order row as produced by the spreadsheet ingestion step.

    Orders are read-only to the loader; column mapping has already happened
    by the time an Order is constructed.
    """

    order_number: str = ""
    order_date: str = ""
    recipient_name: str = ""
    recipient_phone: str = ""
    address: str = ""
    detail_address: str = ""
    zip_code: str = ""
    product_code: str = ""
    product_name: str = ""
    option_name: str = ""
    quantity: int = 0
    unit_price: float = 0.0
    total_price: float = 0.0
    shipping_type: str = ""
    shipping_center: str = ""
    payment_method: str = ""
    shipping_cost: float = 0.0
    box_size: str = ""
    special_note: str = ""
    processing_status: str = ""
    store_name: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    _NUMERIC_PARSERS = {
        "quantity": _parse_int,
        "unit_price": _parse_float,
        "total_price": _parse_float,
        "shipping_cost": _parse_float,
    }

    def is_valid(self) -> bool:
        """Check the minimum fields needed to persist this order."""
        from .validation import is_valid_order

        return is_valid_order(self)

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "Order":
        """
        Build an Order from a mapping keyed by field name.

        Numeric columns fall back to zero when they cannot be parsed.
        Unknown keys are kept in ``extra``.

        Args:
            row: Mapping of field name to raw value

        Returns:
            Order instance
        """
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        values: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}

        for key, value in row.items():
            if key in cls._NUMERIC_PARSERS:
                values[key] = cls._NUMERIC_PARSERS[key](value)
            elif key in known:
                values[key] = _text(value)
            else:
                extra[key] = value

        return cls(extra=extra, **values)


@dataclass
class InvoiceDto:
    """
    Storage-bound representation of an Order.

    Created per order inside a batch and discarded once the batch is done.
    A DTO whose ``conversion_error`` is set is a sentinel for a failed
    conversion and must never be written.
    """

    order_number: str = ""
    order_date: str = ""
    recipient_name: str = ""
    recipient_phone: str = ""
    zip_code: str = ""
    address: str = ""
    detail_address: str = ""
    product_code: str = ""
    product_name: str = ""
    option_name: str = ""
    quantity: Optional[int] = None
    unit_price: float = 0.0
    total_price: float = 0.0
    shipping_type: str = ""
    shipping_center: str = ""
    payment_method: str = ""
    shipping_cost: float = 0.0
    box_size: str = ""
    special_note: str = ""
    order_status: str = ""
    store_name: str = ""
    collected_at: Optional[datetime] = None
    print_count: str = "1"
    invoice_quantity: str = "1"
    location: str = DEFAULT_LOCATION
    conversion_error: Optional[str] = None

    # Columns written by the store, in table order
    COLUMNS = (
        "order_number",
        "order_date",
        "recipient_name",
        "recipient_phone",
        "zip_code",
        "address",
        "detail_address",
        "product_code",
        "product_name",
        "option_name",
        "quantity",
        "unit_price",
        "total_price",
        "shipping_type",
        "shipping_center",
        "payment_method",
        "shipping_cost",
        "box_size",
        "special_note",
        "order_status",
        "store_name",
        "collected_at",
        "print_count",
        "invoice_quantity",
        "location",
    )

    @classmethod
    def invalid(cls, reason: str) -> "InvoiceDto":
        """Sentinel for an order that could not be converted."""
        return cls(conversion_error=reason or "conversion failed")

    def is_valid(self) -> bool:
        """Mirror of the order validity rule, applied to converted fields."""
        if self.conversion_error is not None:
            return False
        if not self.recipient_name.strip():
            return False
        if not self.address.strip():
            return False
        if not self.product_name.strip():
            return False
        return self.quantity is not None and self.quantity > 0

    def to_row(self) -> Dict[str, Any]:
        """Convert to the column/value mapping written to the table."""
        row = {column: getattr(self, column) for column in self.COLUMNS}
        if self.collected_at is not None:
            row["collected_at"] = self.collected_at.isoformat(sep=" ")
        return row


@dataclass
class Batch:
    """A contiguous slice of the input collection."""

    number: int
    records: List[Order]
    start: int
    end: int

    def __len__(self) -> int:
        return len(self.records)


class BatchStatus(Enum):
    """Outcome categories for a single batch insert"""

    INSERTED = "inserted"
    NO_VALID_ROWS = "no_valid_rows"
    WRITE_FAILED = "write_failed"
    CANCELLED = "cancelled"


@dataclass
class BatchResult:
    """Outcome of inserting one batch."""

    success_count: int
    failure_count: int
    status: BatchStatus = BatchStatus.INSERTED
    attempts: int = 1
    last_error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def is_cancelled(self) -> bool:
        return self.status is BatchStatus.CANCELLED

    def __iter__(self) -> Iterator[int]:
        yield self.success_count
        yield self.failure_count


@dataclass
class ProcessingResult:
    """Aggregate counters for one dataset run."""

    success_count: int = 0
    failure_count: int = 0
    total_records: int = 0
    batches_processed: int = 0
    out_of_memory_retries: int = 0
    cancelled: bool = False
    table_name: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def add(self, batch_result: BatchResult) -> None:
        """Fold one batch outcome into the totals."""
        self.success_count += batch_result.success_count
        self.failure_count += batch_result.failure_count
        self.batches_processed += 1

    @property
    def processed_count(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_rate(self) -> float:
        """Success rate as a percentage of all input records."""
        if self.total_records == 0:
            return 0.0
        return self.success_count / self.total_records * 100

    @property
    def failure_rate(self) -> float:
        """Failure rate as a percentage of all input records."""
        if self.total_records == 0:
            return 0.0
        return self.failure_count / self.total_records * 100

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def __iter__(self) -> Iterator[int]:
        yield self.success_count
        yield self.failure_count

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total_records": self.total_records,
            "batches_processed": self.batches_processed,
            "out_of_memory_retries": self.out_of_memory_retries,
            "cancelled": self.cancelled,
            "table_name": self.table_name,
            "success_rate": round(self.success_rate, 2),
            "failure_rate": round(self.failure_rate, 2),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class ProcessorStatus:
    """Snapshot of the processor's sizing and memory state."""

    current_batch_size: int
    current_memory_mb: int
    available_memory_mb: int
