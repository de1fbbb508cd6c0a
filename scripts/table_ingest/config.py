"""
Configuration management for table ingestion.
Handles environment variables, store tier selection, and runtime parameters.
"""
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

from .errors import ConfigError


# Store tiers
TIER_PREMIUM = "premium"
TIER_STANDARD = "standard"

TIER_CONNECTION_VARS = {
    TIER_PREMIUM: "PREMIUM_STORAGE_CONNECTION_STRING",
    TIER_STANDARD: "STANDARD_STORAGE_CONNECTION_STRING",
}

DEFAULT_TABLE_NAME = "flights"
DEFAULT_BATCH_SIZE = 100
DEFAULT_RATE_LIMIT_BACKOFF_MS = 1000
DEFAULT_RATE_LIMIT_RETRIES = 1


@dataclass
class IngestConfig:
    """Central configuration for one ingestion run."""

    # Store
    connection_string: str
    tier: str = TIER_PREMIUM
    table_name: str = DEFAULT_TABLE_NAME
    connection_pool_size: int = 4
    db_connect_timeout: int = 30

    # Batching
    batch_size: int = DEFAULT_BATCH_SIZE
    max_records_per_file: Optional[int] = None

    # Retry on rate limiting
    rate_limit_backoff_ms: int = DEFAULT_RATE_LIMIT_BACKOFF_MS
    rate_limit_retries: int = DEFAULT_RATE_LIMIT_RETRIES

    # Concurrency
    thread_count: int = 4
    parallel_groups: bool = False

    # Unclassified store errors abort the run unless this is set
    continue_on_error: bool = False

    # Input format
    delimiter: str = ","
    quote_char: str = '"'
    has_header: bool = True

    @property
    def rate_limit_backoff_seconds(self) -> float:
        return self.rate_limit_backoff_ms / 1000.0

    def validate(self) -> "IngestConfig":
        """
        Check value ranges.

        Returns:
            self, so calls can be chained

        Raises:
            ConfigError: if any value is out of range
        """
        if self.tier not in TIER_CONNECTION_VARS:
            raise ConfigError(
                f"Unknown store tier '{self.tier}', expected one of: "
                f"{', '.join(sorted(TIER_CONNECTION_VARS))}"
            )
        if not self.connection_string:
            raise ConfigError("Connection string must not be empty")
        if not self.table_name:
            raise ConfigError("Table name must not be empty")
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_records_per_file is not None and self.max_records_per_file < 1:
            raise ConfigError(
                f"max_records_per_file must be >= 1, got {self.max_records_per_file}"
            )
        if self.rate_limit_backoff_ms < 0:
            raise ConfigError(
                f"rate_limit_backoff_ms must be >= 0, got {self.rate_limit_backoff_ms}"
            )
        if self.rate_limit_retries < 0:
            raise ConfigError(
                f"rate_limit_retries must be >= 0, got {self.rate_limit_retries}"
            )
        if self.thread_count < 1:
            raise ConfigError(f"thread_count must be >= 1, got {self.thread_count}")
        if len(self.delimiter) != 1:
            raise ConfigError("delimiter must be a single character")
        return self

    def with_overrides(self, **overrides) -> "IngestConfig":
        """Return a validated copy with the non-None overrides applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values).validate()

    @classmethod
    def from_env(
        cls,
        tier: str = TIER_PREMIUM,
        env_file: Optional[Path] = None,
        **overrides
    ) -> "IngestConfig":
        """
        Load configuration from environment variables.

        Args:
            tier: Store tier - "premium" or "standard"; picks the connection string
            env_file: Explicit .env file (defaults to .env.local, then .env)
            overrides: Field values that win over the environment
        """
        if env_file is None:
            env_file = Path.cwd() / ".env.local"
            if not env_file.exists():
                env_file = Path.cwd() / ".env"

        if env_file.exists():
            load_dotenv(env_file)

        if tier not in TIER_CONNECTION_VARS:
            raise ConfigError(
                f"Unknown store tier '{tier}', expected one of: "
                f"{', '.join(sorted(TIER_CONNECTION_VARS))}"
            )

        var_name = TIER_CONNECTION_VARS[tier]
        connection_string = os.getenv(var_name)
        if not connection_string:
            raise ConfigError(f"Missing required environment variable: {var_name}")

        config = cls(
            connection_string=connection_string,
            tier=tier,
            table_name=os.getenv("INGEST_TABLE_NAME", DEFAULT_TABLE_NAME),
            batch_size=_int_env("INGEST_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            max_records_per_file=_int_env("INGEST_MAX_RECORDS_PER_FILE", None),
            rate_limit_backoff_ms=_int_env(
                "INGEST_RATE_LIMIT_BACKOFF_MS", DEFAULT_RATE_LIMIT_BACKOFF_MS
            ),
            rate_limit_retries=_int_env(
                "INGEST_RATE_LIMIT_RETRIES", DEFAULT_RATE_LIMIT_RETRIES
            ),
            thread_count=_int_env("INGEST_THREAD_COUNT", 4),
        )
        return config.with_overrides(**overrides)

    def is_premium(self) -> bool:
        """Check if running against the premium store."""
        return self.tier == TIER_PREMIUM


def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'")


# Message constants
MSG_RETRIEVING_FILES = "Retrieving files to import"
MSG_RETRIEVING_ENTITIES = "Retrieving entities to insert"
MSG_ENSURING_TABLE = "Ensuring target table exists"
MSG_RUN_COMPLETE = "Ingestion completed"

# Error messages
ERR_FOLDER_REQUIRED = "Need to provide a folder path"
ERR_FOLDER_NOT_FOUND = "Input folder not found"
ERR_BATCH_FAILED = "Batch execution failed"
