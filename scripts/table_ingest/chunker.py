"""
Splits partition groups into bounded atomic batch units.
Groups can be chunked in parallel on a thread pool.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from threading import Lock
from typing import Iterable, List, Optional

from .grouper import PartitionGroup
from .logger import StructuredLogger, get_logger
from .metrics import MetricsCollector, OPERATIONS_SKIPPED
from .models import FlightRecord


OP_INSERT = "insert"


@dataclass(frozen=True)
class InsertOperation:
    """An insert of one record, as submitted inside a batch."""
    record: FlightRecord
    kind: str = OP_INSERT


@dataclass
class BatchUnit:
    """
    Insert operations for one partition, executed as one store transaction.
    """
    partition_key: str
    max_size: int
    operations: List[InsertOperation] = field(default_factory=list)

    def insert(self, record: FlightRecord):
        """
        Add an insert operation for record.

        Raises:
            ValueError: if the record cannot be part of this batch
        """
        if len(self.operations) >= self.max_size:
            raise ValueError(f"batch already holds {self.max_size} operations")
        if not record.row_key:
            raise ValueError("record has no row key")
        if record.partition_key != self.partition_key:
            raise ValueError(
                f"partition key '{record.partition_key}' does not match "
                f"batch partition '{self.partition_key}'"
            )
        self.operations.append(InsertOperation(record))

    @property
    def records(self) -> List[FlightRecord]:
        return [op.record for op in self.operations]

    def __len__(self) -> int:
        return len(self.operations)


@dataclass
class ChunkResult:
    """Batch units produced plus the count of records that were skipped."""
    batches: List[BatchUnit] = field(default_factory=list)
    skipped: int = 0


def chunk_group(
    group: PartitionGroup,
    batch_size: int,
    logger: Optional[StructuredLogger] = None,
) -> ChunkResult:
    """
    Chunk one partition group into batches of at most batch_size.

    Produces ceil(len(group) / batch_size) batches in record order. A record
    whose insert cannot be built is skipped without failing its batch; a
    batch left empty by skips is dropped.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    logger = logger or get_logger()
    result = ChunkResult()

    records = group.records
    for start in range(0, len(records), batch_size):
        batch = BatchUnit(partition_key=group.partition_key, max_size=batch_size)
        for record in records[start:start + batch_size]:
            try:
                batch.insert(record)
            except ValueError as e:
                logger.debug(
                    "Skipped insert operation",
                    partition=group.partition_key,
                    row_key=record.row_key,
                    reason=str(e),
                )
                result.skipped += 1
        if len(batch):
            result.batches.append(batch)

    return result


class BatchChunker:
    """
    Turns partition groups into batch units.

    With more than one worker, groups are chunked concurrently. Each
    group's batches are appended to the shared list as one contiguous,
    ordered run; the order between groups is whatever order workers finish in.
    """

    def __init__(
        self,
        batch_size: int,
        max_workers: int = 1,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.metrics = metrics or MetricsCollector()
        self.logger = logger or get_logger()

    def chunk(self, groups: Iterable[PartitionGroup]) -> ChunkResult:
        groups = list(groups)
        combined = ChunkResult()
        lock = Lock()

        def _process(group: PartitionGroup):
            partial = chunk_group(group, self.batch_size, self.logger)
            with lock:
                combined.batches.extend(partial.batches)
                combined.skipped += partial.skipped
            return len(partial.batches)

        if self.max_workers <= 1 or len(groups) <= 1:
            for group in groups:
                _process(group)
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {executor.submit(_process, group): group for group in groups}
                for future in as_completed(futures):
                    # re-raise worker exceptions
                    future.result()

        if combined.skipped:
            self.logger.warning("Skipped insert operations", count=combined.skipped)
            self.metrics.record_count(OPERATIONS_SKIPPED, combined.skipped)

        self.logger.info(
            "Prepared batches",
            groups=len(groups),
            batches=len(combined.batches),
        )
        return combined
