"""
Configuration for the Order Loader.
"""

from .pydantic_config import (
    BatchSizeConfig,
    ConfigurationManager,
    DatabaseConfig,
    LoaderConfig,
    RetryConfig,
    TableConfig,
    format_config_error,
)

__all__ = [
    "BatchSizeConfig",
    "ConfigurationManager",
    "DatabaseConfig",
    "LoaderConfig",
    "RetryConfig",
    "TableConfig",
    "format_config_error",
]
