"""
Drives parse -> group -> chunk -> execute over every file in a folder.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from .chunker import BatchChunker
from .config import (
    ERR_FOLDER_NOT_FOUND,
    ERR_FOLDER_REQUIRED,
    MSG_ENSURING_TABLE,
    MSG_RETRIEVING_FILES,
    MSG_RUN_COMPLETE,
    IngestConfig,
)
from .errors import InputPathError
from .executor import BatchExecutor, BatchFailure
from .grouper import group_by_partition
from .logger import StructuredLogger, get_logger
from .metrics import MetricsCollector
from .models import FLIGHT_SCHEMA, RecordSchema
from .parser import RecordParser
from .store import TableStore


@dataclass
class FileSummary:
    """Counts for one ingested file."""
    path: Path
    records: int = 0
    parse_failures: int = 0
    groups: int = 0
    batches: int = 0
    skipped_operations: int = 0
    batches_inserted: int = 0
    batches_conflicted: int = 0
    rate_limit_retries: int = 0
    failures: List[BatchFailure] = field(default_factory=list)


@dataclass
class RunSummary:
    """Totals for one ingestion run."""
    files: List[FileSummary] = field(default_factory=list)
    records_submitted: int = 0

    @property
    def records(self) -> int:
        return sum(f.records for f in self.files)

    @property
    def parse_failures(self) -> int:
        return sum(f.parse_failures for f in self.files)

    @property
    def batches(self) -> int:
        return sum(f.batches for f in self.files)

    @property
    def failed_batches(self) -> int:
        return sum(len(f.failures) for f in self.files)

    @property
    def succeeded(self) -> bool:
        return self.failed_batches == 0


def list_input_files(folder: Path) -> List[Path]:
    """
    All regular files directly inside folder, sorted by name.

    Raises:
        InputPathError: if folder is missing or not a directory
    """
    if not folder.exists():
        raise InputPathError(f"{ERR_FOLDER_NOT_FOUND}: {folder}")
    if not folder.is_dir():
        raise InputPathError(f"Not a directory: {folder}")
    return sorted(p for p in folder.iterdir() if p.is_file())


class IngestionOrchestrator:
    """
    Runs the ingestion pipeline for a folder of same-schema files.

    The target table is ensured once and reused for every file. A fatal
    store error on any file aborts the run.
    """

    def __init__(
        self,
        config: IngestConfig,
        store: TableStore,
        schema: RecordSchema = FLIGHT_SCHEMA,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[StructuredLogger] = None,
        executor: Optional[BatchExecutor] = None,
    ):
        self.config = config
        self.store = store
        self.metrics = metrics or MetricsCollector()
        self.logger = logger or get_logger()

        self.parser = RecordParser(config, schema, self.metrics, self.logger)
        self.chunker = BatchChunker(
            config.batch_size,
            max_workers=config.thread_count,
            metrics=self.metrics,
            logger=self.logger,
        )
        self.executor = executor or BatchExecutor(
            store, config, metrics=self.metrics, logger=self.logger
        )
        self._table_ready = False

    def _ensure_table(self):
        if not self._table_ready:
            self.logger.info(MSG_ENSURING_TABLE, table=self.config.table_name)
            self.store.ensure_table_exists(self.config.table_name)
            self._table_ready = True

    def ingest_file(self, path: Path) -> FileSummary:
        """Parse, group, chunk and execute one file."""
        self.logger.info("Uploading from file", file=str(path))
        summary = FileSummary(path=path)

        parsed = self.parser.parse_file(path)
        summary.records = len(parsed.records)
        summary.parse_failures = parsed.failed_count

        groups = group_by_partition(parsed.records)
        summary.groups = len(groups)

        chunked = self.chunker.chunk(groups)
        summary.batches = len(chunked.batches)
        summary.skipped_operations = chunked.skipped

        report = self.executor.execute(
            self.config.table_name, chunked.batches, ensure_table=False
        )
        summary.batches_inserted = report.batches_inserted
        summary.batches_conflicted = report.batches_conflicted
        summary.rate_limit_retries = report.retries
        summary.failures = report.failures

        self.logger.success(
            "File ingested",
            file=path.name,
            records=summary.records,
            failed_lines=summary.parse_failures,
            batches=summary.batches,
            conflicts=summary.batches_conflicted,
        )
        return summary

    def run(self, folder: Optional[Path], show_progress: bool = False) -> RunSummary:
        """
        Ingest every file in folder.

        Raises:
            InputPathError: if folder is missing or not a directory
            StoreError: on a fatal store failure
        """
        if folder is None:
            raise InputPathError(ERR_FOLDER_REQUIRED)

        self.logger.info(MSG_RETRIEVING_FILES, folder=str(folder))
        files = list_input_files(Path(folder))
        self.logger.info("Found input files", count=len(files))

        self._ensure_table()

        summary = RunSummary()
        for path in tqdm(files, desc="Files", disable=not show_progress):
            summary.files.append(self.ingest_file(path))

        summary.records_submitted = self.executor.records_submitted
        self.logger.success(
            MSG_RUN_COMPLETE,
            files=len(summary.files),
            records=summary.records,
            failed_lines=summary.parse_failures,
            batches=summary.batches,
            failed_batches=summary.failed_batches,
        )
        return summary
