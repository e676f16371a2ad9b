"""
Logging configuration for the Order Loader.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Union


def setup_logging(
    level: Union[int, str] = "INFO",
    log_file: Optional[str] = None,
    log_dir: Optional[Path] = None,
    console_output: bool = True,
) -> Path:
    """
    Set up logging configuration.

    Args:
        level: Root log level name or number
        log_file: Base name of the log file; a timestamp is appended
        log_dir: Directory for log files (default: ./logs)
        console_output: Also log to stdout

    Returns:
        Path of the log file written
    """
    if log_file is None:
        log_file = "order_loader.log"

    if log_dir is None:
        if getattr(sys, "frozen", False):
            app_dir = Path(sys.executable).parent
        else:
            app_dir = Path.cwd()
        log_dir = app_dir / "logs"

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Create timestamped log file
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_path = log_dir / f"{Path(log_file).stem}_{timestamp}.log"

    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    handlers = []

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(log_format, date_format))
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(log_format, date_format))
        handlers.append(console_handler)

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    logger = logging.getLogger(__name__)
    logger.info(f"Order Loader starting - Log file: {log_path}")
    logger.info(f"Log level: {logging.getLevelName(level)}")

    # Per-message progress output is only useful when debugging
    if level > logging.DEBUG:
        logging.getLogger("order_loader.progress").setLevel(logging.WARNING)

    return log_path
