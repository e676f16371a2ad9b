"""
Core order loading modules.

This package contains order validation and conversion, table name
resolution, adaptive batch sizing, batch insertion with retry, and the
dataset processor that drives a full load.
"""

from .batch_inserter import BatchInserter
from .batch_sizer import AdaptiveBatchSizer
from .data_models import (
    BatchResult,
    BatchStatus,
    InvoiceDto,
    Order,
    ProcessingResult,
    ProcessorStatus,
)
from .dataset_processor import DatasetProcessor
from .table_name_resolver import TableNameResolver

__all__ = [
    "AdaptiveBatchSizer",
    "BatchInserter",
    "BatchResult",
    "BatchStatus",
    "DatasetProcessor",
    "InvoiceDto",
    "Order",
    "ProcessingResult",
    "ProcessorStatus",
    "TableNameResolver",
]
