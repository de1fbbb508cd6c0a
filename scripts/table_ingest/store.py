"""
Table store client interface used by the executor and orchestrator.
"""
from abc import ABC, abstractmethod

from .chunker import BatchUnit


class TableStore(ABC):
    """
    Client for a partitioned key-value table store.

    execute_batch returns normally when the whole batch was committed and
    raises ConflictError, RateLimitedError or StoreError otherwise.
    Implementations must be safe to call from several threads.
    """

    @abstractmethod
    def ensure_table_exists(self, table_name: str) -> None:
        """Create the table unless it already exists."""

    @abstractmethod
    def execute_batch(self, table_name: str, batch: BatchUnit) -> None:
        """Insert every operation of batch atomically."""

    @abstractmethod
    def test_connection(self) -> bool:
        """Check that the store is reachable."""

    @abstractmethod
    def count_rows(self, table_name: str) -> int:
        """Number of rows currently stored in the table."""

    def close(self) -> None:
        """Release connections held by the client."""
