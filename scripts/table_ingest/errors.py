"""
Exception taxonomy for the ingestion pipeline.
"""
from typing import Optional


class IngestError(Exception):
    """Base class for all ingestion errors."""


class ConfigError(IngestError):
    """Invalid or incomplete configuration."""


class InputPathError(IngestError):
    """Input folder is missing or is not a directory."""


class RecordParseError(IngestError):
    """A single input line could not be converted into a record."""

    def __init__(self, reason: str, line_number: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.line_number = line_number


class StoreError(IngestError):
    """Any failure reported by the table store."""


class ConflictError(StoreError):
    """A row with the same partition and row key already exists."""


class RateLimitedError(StoreError):
    """The store rejected the call because a throughput quota was exceeded."""


class RetryExhaustedError(StoreError):
    """A rate-limited batch was still rejected after the configured retries."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts
