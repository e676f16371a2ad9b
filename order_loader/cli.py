"""
Command-line interface for the Order Loader.

Loads already-mapped order rows from a CSV file into a SQLite invoice
table using adaptive batch sizing.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List

import pandas as pd

from order_loader.config.pydantic_config import ConfigurationManager
from order_loader.core.data_models import Order, ProcessingResult
from order_loader.core.database import SQLiteInvoiceStore
from order_loader.core.factory import ProcessorFactory
from order_loader.utils.error_handler import InputFileError, OrderLoaderError
from order_loader.utils.logging_setup import setup_logging
from order_loader.utils.progress_tracker import LoggingProgressSink


def load_orders(input_path: Path) -> List[Order]:
    """
    Read order rows from a CSV file.

    Column names must match Order field names; other columns are kept in
    ``Order.extra``. Every cell is read as text so order numbers and zip
    codes keep their leading zeros.

    Raises:
        InputFileError: If the file is missing or cannot be parsed
    """
    if not input_path.exists():
        raise InputFileError(f"Input file not found: {input_path}")

    try:
        frame = pd.read_csv(
            input_path, dtype=str, keep_default_na=False, encoding="utf-8-sig"
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise InputFileError(f"Could not read {input_path}: {e}") from e

    return [Order.from_mapping(row) for row in frame.to_dict(orient="records")]


class CLIInterface:
    """Command line interface for the order loader."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog="order-loader",
            description="Order Loader - insert order rows into an invoice table in adaptive batches",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  order-loader --input orders.csv --db orders.db
  order-loader --input orders.csv --table Tables.Invoice.Test
  order-loader --input orders.csv --config order_loader.toml --parallel --verbose
  order-loader --input orders.csv --batch-size 200
  order-loader --create-config order_loader.toml
            """,
        )

        parser.add_argument("--input", "-i", type=Path, help="CSV file with order rows")
        parser.add_argument("--db", type=Path, help="SQLite database file")
        parser.add_argument(
            "--table",
            "-t",
            help="Destination table name or symbolic reference (Tables.Invoice.<Name>)",
        )
        parser.add_argument("--config", "-c", type=Path, help="Configuration file (TOML or JSON)")
        parser.add_argument(
            "--batch-size", "-b", type=int, help="Starting batch size, within the configured bounds"
        )
        parser.add_argument(
            "--max-retries", "-m", type=int, help="Write retries per batch"
        )
        parser.add_argument(
            "--parallel", action="store_true", help="Insert batches concurrently"
        )
        parser.add_argument(
            "--verbose", "-v", action="store_true", help="Enable debug logging"
        )
        parser.add_argument(
            "--create-config",
            type=Path,
            metavar="PATH",
            help="Write a sample configuration file and exit",
        )

        return parser

    def parse_args(self, args=None) -> argparse.Namespace:
        """Parse command line arguments."""
        return self.parser.parse_args(args)

    def _handle_create_config(self, output_path: Path) -> int:
        """Write a sample configuration file."""
        if output_path.exists():
            print(f"Configuration file already exists: {output_path}", file=sys.stderr)
            return 1

        fmt = "json" if output_path.suffix.lower() == ".json" else "toml"
        ConfigurationManager().create_sample_config(output_path, format=fmt)
        print(f"Created configuration file: {output_path}")
        return 0

    def _print_summary(self, result: ProcessingResult) -> None:
        print()
        print("Load summary")
        print(f"  Table:     {result.table_name or '-'}")
        print(f"  Orders:    {result.total_records:,}")
        print(f"  Inserted:  {result.success_count:,}")
        print(f"  Failed:    {result.failure_count:,}")
        print(f"  Batches:   {result.batches_processed}")
        if result.out_of_memory_retries:
            print(f"  OOM retries: {result.out_of_memory_retries}")
        if result.cancelled:
            print("  Status:    cancelled")
        if result.duration_seconds is not None:
            print(f"  Duration:  {result.duration_seconds:.1f}s")

    def run(self, args=None) -> int:
        """Execute CLI interface."""
        logger = logging.getLogger(__name__)

        try:
            parsed_args = self.parse_args(args)

            if parsed_args.create_config:
                return self._handle_create_config(parsed_args.create_config)

            if not parsed_args.input:
                self.parser.print_usage(sys.stderr)
                print("Error: --input is required", file=sys.stderr)
                return 1

            manager = ConfigurationManager(parsed_args.config)
            manager.update_from_cli_args(
                {
                    "db_path": parsed_args.db,
                    "parallel": parsed_args.parallel,
                    "max_retries": parsed_args.max_retries,
                }
            )
            config = manager.config

            setup_logging("DEBUG" if parsed_args.verbose else "INFO")
            logger.info("Order Loader CLI starting")
            logger.info(f"Input file: {parsed_args.input}")
            logger.info(f"Database: {config.database.path}")

            orders = load_orders(parsed_args.input)
            logger.info(f"Read {len(orders):,} orders from {parsed_args.input}")

            store = SQLiteInvoiceStore(config.database.path, timeout=config.database.timeout)
            processor = ProcessorFactory.create(
                config, store=store, progress=LoggingProgressSink()
            )
            if parsed_args.batch_size is not None:
                processor.set_batch_size(parsed_args.batch_size)

            result = asyncio.run(
                processor.process_dataset(orders, table_name=parsed_args.table)
            )

            if result.total_records:
                store.record_run(result, source=str(parsed_args.input))
            self._print_summary(result)

            return 0 if result.failure_count == 0 and not result.cancelled else 1

        except OrderLoaderError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            print("Interrupted", file=sys.stderr)
            return 1
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            logger.exception("Unexpected error in CLI")
            return 1


def main(args=None) -> int:
    """Main entry point."""
    cli = CLIInterface()
    return cli.run(args)


if __name__ == "__main__":
    sys.exit(main())
