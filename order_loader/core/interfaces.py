"""
Collaborator Protocols for the Order Loader.

The insertion engine talks to storage and progress reporting only through
these protocols, so tests and alternative backends can be swapped in.
"""

from typing import List, Protocol, runtime_checkable

from .data_models import InvoiceDto


@runtime_checkable
class InvoiceStore(Protocol):
    """
    Protocol for the relational store the loader writes into.

    ``write_batch`` writes all rows as one unit and returns the number of
    inserted rows. It signals failures with:

    - ``OutOfMemoryCondition`` (or ``MemoryError``) when the write ran out
      of memory
    - ``TransientWriteError`` for timeouts and lock contention
    - any other exception for everything else
    """

    async def write_batch(self, table_name: str, rows: List[InvoiceDto]) -> int:
        ...


@runtime_checkable
class ProgressSink(Protocol):
    """Receives human-readable progress messages. Must not raise."""

    def report(self, message: str) -> None:
        ...
