"""
Delimited file reader producing typed flight records.
Bad lines are dropped and reported; they never abort the file.
"""
import csv
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Union

from .config import MSG_RETRIEVING_ENTITIES, IngestConfig
from .errors import RecordParseError
from .logger import StructuredLogger, get_logger
from .metrics import MetricsCollector, RECORDS_FAILED, RECORDS_PARSED
from .models import FLIGHT_SCHEMA, FlightRecord, RecordSchema


@dataclass(frozen=True)
class ParseFailure:
    """A dropped input line."""
    line_number: int
    reason: str


ParseOutcome = Union[FlightRecord, ParseFailure]


@dataclass
class FileParseResult:
    """Records parsed from one file plus the lines that were dropped."""
    path: Path
    records: List[FlightRecord] = field(default_factory=list)
    failures: List[ParseFailure] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


def new_row_key() -> str:
    """Random 128-bit identifier."""
    return str(uuid.uuid4())


def _has_undecodable_bytes(values: List[str]) -> bool:
    try:
        "".join(values).encode("utf-8")
    except UnicodeEncodeError:
        return True
    return False


class RecordParser:
    """
    Reads one delimited file into FlightRecords.

    The first line is a header when the config says so. Only the first
    schema-width columns of each line are used; surrounding quote
    characters are stripped from every field.
    """

    def __init__(
        self,
        config: IngestConfig,
        schema: RecordSchema = FLIGHT_SCHEMA,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[StructuredLogger] = None,
        row_key_factory: Callable[[], str] = new_row_key,
    ):
        self.config = config
        self.schema = schema
        self.metrics = metrics or MetricsCollector()
        self.logger = logger or get_logger()
        self.row_key_factory = row_key_factory

    def iter_outcomes(self, path: Path) -> Iterator[ParseOutcome]:
        """
        Lazily parse a file, one outcome per data line.

        Re-iterating re-reads the file from the start. Stops early once
        max_records_per_file records have been produced.
        """
        cap = self.config.max_records_per_file
        produced = 0

        # Undecodable bytes survive as lone surrogates and fail only their line
        with open(path, "r", encoding="utf-8-sig", errors="surrogateescape", newline="") as f:
            reader = csv.reader(
                f,
                delimiter=self.config.delimiter,
                quotechar=self.config.quote_char,
            )

            if self.config.has_header:
                try:
                    next(reader)
                except StopIteration:
                    return
                except csv.Error as e:
                    self.logger.warning("Malformed header line", file=path.name, error=str(e))

            while True:
                if cap is not None and produced >= cap:
                    self.logger.info("Record cap reached", file=path.name, cap=cap)
                    return

                try:
                    values = next(reader)
                except StopIteration:
                    return
                except csv.Error as e:
                    yield ParseFailure(reader.line_num, f"malformed line: {e}")
                    continue

                line_number = reader.line_num
                if not values:
                    continue

                if _has_undecodable_bytes(values):
                    yield ParseFailure(line_number, "invalid encoding")
                    continue

                self.logger.debug(f"Processing line {line_number}")
                outcome = self._parse_values(values, line_number)
                if isinstance(outcome, FlightRecord):
                    produced += 1
                yield outcome

    def _parse_values(self, values: List[str], line_number: int) -> ParseOutcome:
        quote = self.config.quote_char
        cleaned = [v.strip().strip(quote) for v in values[: self.schema.width]]
        try:
            return self.schema.build(cleaned, self.row_key_factory())
        except RecordParseError as e:
            return ParseFailure(line_number, e.reason)

    def parse_file(self, path: Path) -> FileParseResult:
        """
        Parse a whole file into memory.

        Args:
            path: File to read

        Returns:
            FileParseResult with the records and the dropped lines
        """
        self.logger.info(MSG_RETRIEVING_ENTITIES, file=path.name)
        result = FileParseResult(path=path)

        for outcome in self.iter_outcomes(path):
            if isinstance(outcome, ParseFailure):
                self.logger.warning(
                    f"Failed to parse line {outcome.line_number}",
                    file=path.name,
                    reason=outcome.reason,
                )
                result.failures.append(outcome)
            else:
                result.records.append(outcome)

        self.metrics.record_count(RECORDS_PARSED, len(result.records))
        self.metrics.record_count(RECORDS_FAILED, result.failed_count)

        self.logger.info(
            "Parsed file",
            file=path.name,
            records=len(result.records),
            failed=result.failed_count,
        )
        return result
