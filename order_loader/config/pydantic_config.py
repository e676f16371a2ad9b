"""
Pydantic-based configuration system for the Order Loader.

Batch sizing, retry, table resolution and database settings are grouped
into small models and validated once at startup.
"""

import os
import sys
from pathlib import Path
from typing import Dict, Optional
from pydantic import (
    BaseModel,
    Field,
    field_validator,
    model_validator,
    ValidationError,
)
import json
import toml

from ..core.table_name_resolver import TableNameResolver
from ..utils.error_handler import ConfigurationError

DEFAULT_TABLE_NAME = "송장출력_사방넷원본변환"

# Environment variable overrides
ENV_DB_PATH = "ORDER_LOADER_DB_PATH"
ENV_DEFAULT_TABLE = "ORDER_LOADER_DEFAULT_TABLE"


class BatchSizeConfig(BaseModel):
    """Adaptive batch sizing settings."""

    min_size: int = Field(
        default=50,
        ge=1,
        le=100000,
        description="Smallest batch size the sizer may choose",
        json_schema_extra={
            "error_msg": "Minimum batch size must be at least 1. "
            "Recommended: 50 to keep per-batch overhead low."
        },
    )
    max_size: int = Field(
        default=2000,
        ge=1,
        le=100000,
        description="Largest batch size the sizer may choose",
        json_schema_extra={
            "error_msg": "Maximum batch size must be at least 1. "
            "Recommended: 2000 for typical order volumes."
        },
    )
    default_size: int = Field(
        default=500,
        ge=1,
        le=100000,
        description="Starting batch size",
        json_schema_extra={
            "error_msg": "Default batch size must lie between the minimum "
            "and maximum sizes."
        },
    )
    memory_threshold_mb: int = Field(
        default=500,
        ge=10,
        le=1000000,
        description="Memory usage (MB) above which batches shrink",
        json_schema_extra={
            "error_msg": "Memory threshold must be at least 10 MB. "
            "Recommended: 500 MB."
        },
    )
    gc_interval: int = Field(
        default=10,
        ge=0,
        le=10000,
        description="Force garbage collection every N batches (0 disables)",
    )
    parallel_enabled: bool = Field(
        default=False,
        description="Run batches concurrently",
    )
    max_parallel_batches: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum batches in flight when parallel execution is enabled",
        json_schema_extra={
            "error_msg": "Max parallel batches must be between 1 and 64. "
            "It is further capped by the number of CPU cores."
        },
    )
    max_oom_retries: int = Field(
        default=3,
        ge=0,
        le=100,
        description="Out-of-memory retries for one offset at the minimum size",
    )
    trace_allocations: bool = Field(
        default=False,
        description="Measure memory with tracemalloc instead of process RSS",
    )

    @model_validator(mode="after")
    def validate_size_order(self):
        """Ensure min <= default <= max."""
        if not self.min_size <= self.default_size <= self.max_size:
            raise ValueError(
                f"Batch sizes must satisfy min_size <= default_size <= max_size "
                f"(got {self.min_size}, {self.default_size}, {self.max_size})"
            )
        return self


class RetryConfig(BaseModel):
    """Write retry settings."""

    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the first failed write",
        json_schema_extra={
            "error_msg": "Max retries must be between 0 and 10. "
            "Values above 5 may stall a run on a failing database."
        },
    )
    base_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Delay before the first retry in seconds",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Multiplier applied to the delay for each further retry",
    )
    max_delay: float = Field(
        default=60.0,
        ge=0.0,
        le=600.0,
        description="Upper bound for a single retry delay in seconds",
    )
    jitter: bool = Field(
        default=False,
        description="Randomize retry delays",
    )
    slow_write_warning_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=3600.0,
        description="Writes slower than this are logged as warnings",
    )
    failure_warning_rate: float = Field(
        default=5.0,
        ge=0.0,
        le=100.0,
        description="Failure percentage above which a run ends with a warning",
    )


class TableConfig(BaseModel):
    """Destination table settings."""

    default_table_name: str = Field(
        default=DEFAULT_TABLE_NAME,
        description="Table used when no table name is given",
        json_schema_extra={
            "error_msg": "Default table name may only contain letters, digits "
            "and underscore, and may not start with a digit."
        },
    )
    reference_prefix: str = Field(
        default=TableNameResolver.DEFAULT_REFERENCE_PREFIX,
        min_length=1,
        description="Prefix marking a symbolic table reference",
    )
    references: Dict[str, str] = Field(
        default_factory=dict,
        description="Symbolic table reference -> table name",
    )

    @field_validator("default_table_name")
    @classmethod
    def validate_default_table_name(cls, v):
        """Apply the table naming policy to the default table."""
        reason = TableNameResolver.validation_failure(v)
        if reason is not None:
            raise ValueError(f"Invalid default table name {v!r}: {reason}")
        return v

    @model_validator(mode="after")
    def validate_references(self):
        """Apply the table naming policy to every configured reference."""
        for key, table_name in self.references.items():
            if not key.startswith(self.reference_prefix):
                raise ValueError(
                    f"Table reference {key!r} must start with {self.reference_prefix!r}"
                )
            if not table_name.strip():
                continue
            reason = TableNameResolver.validation_failure(table_name)
            if reason is not None:
                raise ValueError(
                    f"Invalid table name {table_name!r} for reference {key!r}: {reason}"
                )
        return self


class DatabaseConfig(BaseModel):
    """SQLite store settings."""

    path: Path = Field(
        default=Path("orders.db"),
        description="SQLite database file",
    )
    timeout: float = Field(
        default=5.0,
        gt=0.0,
        le=300.0,
        description="Seconds to wait on a locked database",
    )

    @field_validator("path", mode="before")
    @classmethod
    def validate_path(cls, v):
        """Ensure the database path is a Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class LoaderConfig(BaseModel):
    """Main configuration model."""

    batch: BatchSizeConfig = Field(default_factory=BatchSizeConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    table: TableConfig = Field(default_factory=TableConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)


class ConfigurationManager:
    """Manages loading and validation of configuration from multiple sources."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Optional path to configuration file (TOML or JSON)

        Raises:
            ConfigurationError: If the configuration cannot be loaded or is invalid
        """
        self._config: Optional[LoaderConfig] = None
        self._load_configuration(Path(config_path) if config_path else None)

    def _get_default_config_paths(self) -> list[Path]:
        """Get list of default configuration file paths to try."""
        if getattr(sys, "frozen", False):
            base_dir = Path(sys.executable).parent
        else:
            base_dir = Path.cwd()

        return [
            base_dir / "order_loader.toml",
            base_dir / "order_loader.json",
        ]

    def _load_configuration(self, config_path: Optional[Path] = None) -> None:
        """Load configuration from file or use defaults."""
        config_data: Dict = {}

        if config_path:
            config_data = self._load_config_file(config_path)
        else:
            for path in self._get_default_config_paths():
                if path.exists():
                    config_data = self._load_config_file(path)
                    break

        self._apply_env_overrides(config_data)

        try:
            self._config = LoaderConfig(**config_data)
        except ValidationError as e:
            raise ConfigurationError(format_config_error(e)) from e

    def _load_config_file(self, config_path: Path) -> Dict:
        """Load configuration from TOML or JSON file."""
        if not config_path.exists():
            raise ConfigurationError(
                format_config_error(
                    FileNotFoundError(2, "No such file or directory", str(config_path))
                )
            )

        suffix = config_path.suffix.lower()
        if suffix not in (".toml", ".json"):
            raise ConfigurationError(
                f"Unsupported configuration file format: {config_path.suffix}"
            )

        try:
            if suffix == ".toml":
                return toml.load(config_path)
            with open(config_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (toml.TomlDecodeError, json.JSONDecodeError, OSError) as e:
            raise ConfigurationError(
                f"Failed to load configuration from {config_path}: {e}"
            ) from e

    def _apply_env_overrides(self, config_data: Dict) -> None:
        """Environment variables take precedence over file values."""
        db_path = os.getenv(ENV_DB_PATH)
        default_table = os.getenv(ENV_DEFAULT_TABLE)

        if db_path:
            config_data.setdefault("database", {})["path"] = db_path

        if default_table:
            config_data.setdefault("table", {})["default_table_name"] = default_table

    def update_from_cli_args(self, args: Dict) -> None:
        """Update configuration from command-line arguments."""
        if not self._config:
            raise RuntimeError("Configuration not loaded")

        config_dict = self._config.model_dump()

        if args.get("db_path"):
            config_dict["database"]["path"] = args["db_path"]

        if args.get("parallel"):
            config_dict["batch"]["parallel_enabled"] = True

        if args.get("max_retries") is not None:
            config_dict["retry"]["max_retries"] = args["max_retries"]

        try:
            self._config = LoaderConfig(**config_dict)
        except ValidationError as e:
            raise ConfigurationError(format_config_error(e)) from e

    @property
    def config(self) -> LoaderConfig:
        """Get the current configuration."""
        if not self._config:
            raise RuntimeError("Configuration not loaded")
        return self._config

    def create_sample_config(self, output_path: Path, format: str = "toml") -> None:
        """Create a sample configuration file."""
        sample_config = {
            "batch": {
                "min_size": 50,
                "max_size": 2000,
                "default_size": 500,
                "memory_threshold_mb": 500,
                "gc_interval": 10,
                "parallel_enabled": False,
                "max_parallel_batches": 4,
                "trace_allocations": False,
            },
            "retry": {
                "max_retries": 3,
                "base_delay": 1.0,
                "backoff_multiplier": 2.0,
                "slow_write_warning_seconds": 5.0,
            },
            "table": {
                "default_table_name": DEFAULT_TABLE_NAME,
                "references": {
                    "Tables.Invoice.Test": "송장출력_사방넷원본변환_Test",
                },
            },
            "database": {"path": "orders.db"},
        }

        if format.lower() == "toml":
            with open(output_path, "w", encoding="utf-8") as f:
                toml.dump(sample_config, f)
        elif format.lower() == "json":
            with open(output_path, "w", encoding="utf-8") as f:
                json.dump(sample_config, f, indent=2, ensure_ascii=False)
        else:
            raise ValueError(f"Unsupported format: {format}")


class ConfigurationErrorFormatter:
    """Formats Pydantic validation errors into user-friendly messages."""

    @staticmethod
    def format_validation_error(error: ValidationError) -> str:
        """
        Convert Pydantic ValidationError into a user-friendly error message.

        Args:
            error: Pydantic ValidationError instance

        Returns:
            Formatted error message with helpful guidance
        """
        error_messages = []

        for error_detail in error.errors():
            location = ConfigurationErrorFormatter._format_error_location(
                error_detail["loc"]
            )
            error_messages.append(
                ConfigurationErrorFormatter._format_by_error_type(
                    location,
                    error_detail["type"],
                    error_detail,
                    error_detail.get("input", "N/A"),
                )
            )

        header = "Configuration Validation Failed:\n"
        separator = "\n" + "-" * 60 + "\n"

        footer = (
            "\n\nTips:\n"
            "* Check the configuration file format (TOML or JSON)\n"
            "* Keep min_size <= default_size <= max_size\n"
            "* Table names may only use letters, digits and underscore"
        )

        return header + separator + "\n".join(error_messages) + footer

    @staticmethod
    def _format_error_location(location: tuple) -> str:
        """Format the error location path."""
        if not location:
            return "Configuration"

        path_parts = []
        for part in location:
            if isinstance(part, str):
                path_parts.append(part)
            else:
                path_parts.append(f"[{part}]")

        return " -> ".join(path_parts)

    @staticmethod
    def _format_by_error_type(
        location: str, error_type: str, error_detail: dict, input_value
    ) -> str:
        """Format error message based on Pydantic error type."""

        if error_type == "missing":
            return f"x {location}: Required field is missing"

        elif error_type == "value_error":
            msg = error_detail.get("msg", "Invalid value")
            return f"x {location}: {msg}"

        elif error_type in [
            "greater_than_equal",
            "less_than_equal",
            "greater_than",
            "less_than",
        ]:
            ctx = error_detail.get("ctx", {})
            limit = next(iter(ctx.values()), "limit")
            operator = {
                "greater_than_equal": ">=",
                "less_than_equal": "<=",
                "greater_than": ">",
                "less_than": "<",
            }.get(error_type, "?")
            return f"x {location}: Value must be {operator} {limit} (got: {input_value})"

        else:
            msg = error_detail.get("msg", "Invalid configuration value")
            return f"x {location}: {msg} (got: {input_value})"


def format_config_error(error: Exception) -> str:
    """
    Format any configuration-related error into a user-friendly message.

    Args:
        error: Exception that occurred during configuration

    Returns:
        Formatted error message
    """
    if isinstance(error, ValidationError):
        return ConfigurationErrorFormatter.format_validation_error(error)

    elif isinstance(error, FileNotFoundError):
        return (
            f"Configuration File Not Found:\n"
            f"x Could not find configuration file: {error.filename}\n\n"
            f"Solutions:\n"
            f"* Create a configuration file using: order-loader --create-config PATH\n"
            f"* Use default configuration by omitting the --config parameter"
        )

    else:
        return f"Configuration Error:\nx {error}"
