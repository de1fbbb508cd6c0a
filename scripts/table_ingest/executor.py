"""
Submits batch units to the table store.

Per batch attempt:
    success      -> throughput line logged, next batch
    conflict     -> treated as done (rows already present), next batch
    rate limited -> sleep the configured backoff, retry; once the retries
                    are used up the batch fails with RetryExhaustedError
    other error  -> fatal, unless continue_on_error records it and moves on
"""
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from threading import Event, Lock
from typing import Callable, Dict, List, Optional, Sequence

from .chunker import BatchUnit
from .config import ERR_BATCH_FAILED, IngestConfig
from .errors import ConflictError, RateLimitedError, RetryExhaustedError, StoreError
from .logger import StructuredLogger, get_logger
from .metrics import (
    BATCH_TIMER,
    BATCHES_CONFLICTED,
    BATCHES_EXECUTED,
    BATCHES_FAILED,
    RATE_LIMIT_RETRIES,
    RECORDS_SUBMITTED,
    MetricsCollector,
    Stopwatch,
    format_batch_line,
)
from .store import TableStore


class BatchOutcome(Enum):
    INSERTED = "inserted"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass(frozen=True)
class BatchFailure:
    """A batch that failed while continue_on_error was set."""
    partition_key: str
    size: int
    error: str


@dataclass
class ExecutionReport:
    """Outcome counts for one execute() call."""
    batches_inserted: int = 0
    batches_conflicted: int = 0
    records_submitted: int = 0
    retries: int = 0
    failures: List[BatchFailure] = field(default_factory=list)

    @property
    def batches_completed(self) -> int:
        return self.batches_inserted + self.batches_conflicted


class BatchExecutor:
    """
    Runs batch units against one table.

    Batches execute one at a time in the given order. With
    config.parallel_groups, each partition's batches run in order on
    one worker while different partitions run concurrently.
    """

    def __init__(
        self,
        store: TableStore,
        config: IngestConfig,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[StructuredLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.config = config
        self.metrics = metrics or MetricsCollector()
        self.logger = logger or get_logger()
        self.sleep = sleep

        self._lock = Lock()
        self._records_submitted = 0

    @property
    def records_submitted(self) -> int:
        """Running total across every execute() call on this executor."""
        with self._lock:
            return self._records_submitted

    def execute(
        self,
        table_name: str,
        batches: Sequence[BatchUnit],
        ensure_table: bool = True,
    ) -> ExecutionReport:
        """
        Ensure the table exists, then execute every batch.

        Callers that already ensured the table pass ensure_table=False.

        Raises:
            StoreError: on a fatal store failure (run is aborted)
        """
        if ensure_table:
            self.store.ensure_table_exists(table_name)

        report = ExecutionReport()
        if not batches:
            return report

        if self.config.parallel_groups and self.config.thread_count > 1:
            self._execute_by_partition(table_name, batches, report)
        else:
            for batch in batches:
                self._run(table_name, batch, report)

        return report

    def _execute_by_partition(
        self,
        table_name: str,
        batches: Sequence[BatchUnit],
        report: ExecutionReport,
    ):
        by_partition: Dict[str, List[BatchUnit]] = {}
        for batch in batches:
            by_partition.setdefault(batch.partition_key, []).append(batch)

        stop = Event()

        def _worker(partition_batches: List[BatchUnit]):
            for batch in partition_batches:
                if stop.is_set():
                    return
                self._run(table_name, batch, report)

        self.logger.info(
            "Executing partitions in parallel",
            workers=self.config.thread_count,
            partitions=len(by_partition),
        )

        first_error: Optional[BaseException] = None
        with ThreadPoolExecutor(max_workers=self.config.thread_count) as executor:
            futures = [executor.submit(_worker, items) for items in by_partition.values()]
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                error = future.exception()
                if error is not None and first_error is None:
                    first_error = error
                    stop.set()
                    for pending in futures:
                        pending.cancel()

        if first_error is not None:
            raise first_error

    def _run(self, table_name: str, batch: BatchUnit, report: ExecutionReport) -> BatchOutcome:
        """Execute one batch, applying the continue_on_error policy."""
        try:
            return self.execute_batch(table_name, batch, report)
        except StoreError as e:
            self.metrics.record_count(BATCHES_FAILED)
            self.logger.error(
                ERR_BATCH_FAILED,
                partition=batch.partition_key,
                size=len(batch),
                error=str(e),
            )
            if not self.config.continue_on_error:
                raise
            with self._lock:
                report.failures.append(
                    BatchFailure(batch.partition_key, len(batch), str(e))
                )
            return BatchOutcome.FAILED

    def execute_batch(
        self,
        table_name: str,
        batch: BatchUnit,
        report: Optional[ExecutionReport] = None,
    ) -> BatchOutcome:
        """
        Execute a single batch with conflict and rate-limit handling.

        Returns:
            INSERTED or CONFLICT

        Raises:
            RetryExhaustedError: still rate limited after the configured retries
            StoreError: any other store failure
        """
        report = report if report is not None else ExecutionReport()
        size = len(batch)
        retries_allowed = self.config.rate_limit_retries
        attempt = 0

        with self._lock:
            self._records_submitted += size
            submitted = self._records_submitted
        self.logger.debug("Batches counter", records_submitted=submitted)

        while True:
            watch = Stopwatch().start()
            try:
                self.store.execute_batch(table_name, batch)
            except ConflictError as e:
                watch.stop()
                self.logger.debug(
                    "Rows already exist, batch skipped",
                    partition=batch.partition_key,
                    size=size,
                    error=str(e),
                )
                self.metrics.record_count(BATCHES_CONFLICTED)
                self.metrics.record_count(RECORDS_SUBMITTED, size)
                with self._lock:
                    report.batches_conflicted += 1
                    report.records_submitted += size
                return BatchOutcome.CONFLICT
            except RateLimitedError as e:
                watch.stop()
                if attempt >= retries_allowed:
                    raise RetryExhaustedError(
                        f"Batch for partition '{batch.partition_key}' still rate "
                        f"limited after {attempt} retries: {e}",
                        attempts=attempt + 1,
                    ) from e
                attempt += 1
                self.logger.warning(
                    f"Rate limited, retrying in {self.config.rate_limit_backoff_seconds:.2f}s",
                    partition=batch.partition_key,
                    attempt=attempt,
                )
                self.metrics.record_count(RATE_LIMIT_RETRIES)
                with self._lock:
                    report.retries += 1
                self.sleep(self.config.rate_limit_backoff_seconds)
                continue

            watch.stop()
            self.metrics.record_duration(BATCH_TIMER, watch.elapsed)
            self.metrics.record_count(BATCHES_EXECUTED)
            self.metrics.record_count(RECORDS_SUBMITTED, size)
            self.logger.metric(format_batch_line(watch.elapsed_ms, size))
            with self._lock:
                report.batches_inserted += 1
                report.records_submitted += size
            return BatchOutcome.INSERTED
