"""
SQLite Invoice Store.

Writes converted invoice rows into a SQLite table and keeps a history of
load runs. Each batch is written in a single transaction, so a failed
write leaves no partial rows behind.
"""

import asyncio
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Union

from ..utils.error_handler import InvalidTableNameError, OutOfMemoryCondition, TransientWriteError
from ..utils.retry_handler import WriteErrorType, classify_write_error
from .data_models import InvoiceDto, ProcessingResult
from .table_name_resolver import TableNameResolver

# SQLite column types for the invoice table; everything else is TEXT
_COLUMN_TYPES = {
    "quantity": "INTEGER",
    "unit_price": "REAL",
    "total_price": "REAL",
    "shipping_cost": "REAL",
    "collected_at": "TIMESTAMP",
}


@dataclass
class LoadRun:
    """Represents a single recorded load run."""
    id: int
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    source: str
    table_name: str
    total_records: int
    total_succeeded: int
    total_failed: int
    cancelled: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "LoadRun":
        """Create from database row."""
        started = datetime.fromisoformat(row["started_at"]) if row["started_at"] else None
        completed = datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None

        return cls(
            id=row["id"],
            started_at=started,
            completed_at=completed,
            source=row["source"],
            table_name=row["table_name"],
            total_records=row["total_records"] or 0,
            total_succeeded=row["total_succeeded"] or 0,
            total_failed=row["total_failed"] or 0,
            cancelled=bool(row["cancelled"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "source": self.source,
            "table_name": self.table_name,
            "total_records": self.total_records,
            "total_succeeded": self.total_succeeded,
            "total_failed": self.total_failed,
            "cancelled": self.cancelled,
        }


class SQLiteInvoiceStore:
    """
    Invoice store backed by a SQLite database file.

    Example:
        >>> store = SQLiteInvoiceStore(Path("orders.db"))
        >>> inserted = await store.write_batch("invoice_orders", dtos)
        >>> store.count_rows("invoice_orders")
    """

    RUNS_SCHEMA = """
    CREATE TABLE IF NOT EXISTS load_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        started_at TIMESTAMP,
        completed_at TIMESTAMP,
        source TEXT NOT NULL,
        table_name TEXT NOT NULL,
        total_records INTEGER DEFAULT 0,
        total_succeeded INTEGER DEFAULT 0,
        total_failed INTEGER DEFAULT 0,
        cancelled INTEGER DEFAULT 0
    );

    CREATE INDEX IF NOT EXISTS idx_load_runs_started ON load_runs(started_at);
    """

    def __init__(self, db_path: Union[str, Path] = Path("orders.db"), timeout: float = 5.0):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)
        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        try:
            with self._get_connection() as conn:
                conn.executescript(self.RUNS_SCHEMA)
                conn.commit()
            self.logger.debug(f"Database initialized at {self.db_path}")

        except sqlite3.Error as e:
            self.logger.error(f"Failed to initialize database: {e}")
            raise

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get database connection."""
        conn = None
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
            conn.row_factory = sqlite3.Row
            yield conn
        finally:
            if conn:
                conn.close()

    @staticmethod
    def _quote(table_name: str) -> str:
        reason = TableNameResolver.validation_failure(table_name)
        if reason is not None:
            raise InvalidTableNameError(table_name, reason)
        return f'"{table_name}"'

    def _create_table_sql(self, table_name: str) -> str:
        columns = ",\n        ".join(
            f"{column} {_COLUMN_TYPES.get(column, 'TEXT')}" for column in InvoiceDto.COLUMNS
        )
        return (
            f"CREATE TABLE IF NOT EXISTS {self._quote(table_name)} (\n"
            f"        id INTEGER PRIMARY KEY AUTOINCREMENT,\n"
            f"        {columns}\n"
            f"    )"
        )

    def _insert_sql(self, table_name: str) -> str:
        columns = ", ".join(InvoiceDto.COLUMNS)
        placeholders = ", ".join("?" for _ in InvoiceDto.COLUMNS)
        return f"INSERT INTO {self._quote(table_name)} ({columns}) VALUES ({placeholders})"

    # ============ Write Methods ============

    def write_rows(self, table_name: str, rows: List[InvoiceDto]) -> int:
        """
        Write rows in one transaction, creating the table if needed.

        Args:
            table_name: Destination table
            rows: Converted invoice rows

        Returns:
            Number of rows inserted

        Raises:
            InvalidTableNameError: If the table name fails the naming policy
            TransientWriteError: If the database is locked or busy
            OutOfMemoryCondition: If SQLite ran out of memory
        """
        if not rows:
            return 0

        create_sql = self._create_table_sql(table_name)
        insert_sql = self._insert_sql(table_name)
        params = [
            tuple(dto.to_row()[column] for column in InvoiceDto.COLUMNS) for dto in rows
        ]

        try:
            with self._get_connection() as conn:
                with conn:
                    conn.execute(create_sql)
                    conn.executemany(insert_sql, params)
            return len(params)

        except MemoryError as e:
            raise OutOfMemoryCondition(f"out of memory writing {len(rows)} rows") from e

        except sqlite3.Error as e:
            if "out of memory" in str(e).lower():
                raise OutOfMemoryCondition(str(e)) from e
            if classify_write_error(e) is WriteErrorType.TRANSIENT:
                raise TransientWriteError(str(e)) from e
            self.logger.error(f"Error writing to {table_name}: {e}")
            raise

    async def write_batch(self, table_name: str, rows: List[InvoiceDto]) -> int:
        """Async wrapper running write_rows in a worker thread."""
        return await asyncio.to_thread(self.write_rows, table_name, rows)

    # ============ Query Methods ============

    def count_rows(self, table_name: str) -> int:
        """Count rows in a table; 0 if the table does not exist yet."""
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(f"SELECT COUNT(*) AS count FROM {self._quote(table_name)}")
                return cursor.fetchone()["count"]

        except sqlite3.OperationalError as e:
            if "no such table" in str(e):
                return 0
            raise

    def fetch_rows(self, table_name: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Return up to ``limit`` rows from a table as dictionaries."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"SELECT * FROM {self._quote(table_name)} ORDER BY id LIMIT ?", (limit,)
            )
            return [dict(row) for row in cursor.fetchall()]

    # ============ Run Management Methods ============

    def record_run(self, result: ProcessingResult, source: str) -> int:
        """
        Record a finished load run.

        Args:
            result: Aggregate result of the run
            source: Source identifier (usually the input file)

        Returns:
            Run ID
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO load_runs (
                        started_at, completed_at, source, table_name,
                        total_records, total_succeeded, total_failed, cancelled
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        result.started_at.isoformat() if result.started_at else None,
                        result.completed_at.isoformat() if result.completed_at else None,
                        source,
                        result.table_name or "",
                        result.total_records,
                        result.success_count,
                        result.failure_count,
                        int(result.cancelled),
                    )
                )
                conn.commit()
                return cursor.lastrowid

        except sqlite3.Error as e:
            self.logger.error(f"Error recording run: {e}")
            raise

    def get_run_history(self, limit: int = 10) -> List[LoadRun]:
        """Most recent load runs, newest first."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM load_runs ORDER BY id DESC LIMIT ?", (limit,)
            )
            return [LoadRun.from_row(row) for row in cursor.fetchall()]

    def __repr__(self) -> str:
        return f"SQLiteInvoiceStore(db_path={self.db_path})"
