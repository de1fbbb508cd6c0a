"""Test helpers: fake table store and CSV writers."""
from pathlib import Path
from threading import Lock
from typing import Iterable, List, Optional, Sequence

from table_ingest.chunker import BatchUnit
from table_ingest.errors import ConflictError
from table_ingest.models import FlightRecord
from table_ingest.store import TableStore


HEADER = [
    "Year", "Quarter", "Month", "DayofMonth", "DayOfWeek", "FlightDate",
    "UniqueCarrier", "AirlineID", "Carrier", "TailNum", "FlightNum",
    "OriginAirportID", "OriginAirportSeqID", "OriginCityMarketID", "Origin",
    "OriginCityName", "OriginState", "OriginStateFips", "OriginStateName",
    "OriginWac",
]


def make_row(origin: str = "JFK", **overrides) -> List[str]:
    """A valid 20-column flight row; overrides replace columns by header name."""
    values = {
        "Year": "2017",
        "Quarter": "1",
        "Month": "1",
        "DayofMonth": "15",
        "DayOfWeek": "7",
        "FlightDate": "2017-01-15",
        "UniqueCarrier": "AA",
        "AirlineID": "19805",
        "Carrier": "AA",
        "TailNum": "N787AA",
        "FlightNum": "1",
        "OriginAirportID": "12478",
        "OriginAirportSeqID": "1247803",
        "OriginCityMarketID": "31703",
        "Origin": origin,
        "OriginCityName": "New York, NY",
        "OriginState": "NY",
        "OriginStateFips": "36",
        "OriginStateName": "New York",
        "OriginWac": "22",
    }
    values.update(overrides)
    return [values[name] for name in HEADER]


def format_line(values: Sequence[str]) -> str:
    return ",".join(f'"{v}"' for v in values)


def write_csv(path: Path, rows: Iterable[Sequence[str]], header: bool = True) -> Path:
    lines = []
    if header:
        lines.append(format_line(HEADER))
    lines.extend(format_line(row) for row in rows)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


class FakeTableStore(TableStore):
    """
    In-memory table store.

    Rows are keyed by (partition_key, row_key); reinserting a key raises
    ConflictError and rolls the whole batch back. `script` holds errors to
    raise on successive execute_batch calls (None means "behave normally").
    """

    def __init__(self, script: Optional[List[Optional[Exception]]] = None):
        self.script = list(script or [])
        self.tables = {}
        self.ensure_calls: List[str] = []
        self.batches: List[BatchUnit] = []
        self.closed = False
        self._lock = Lock()

    def ensure_table_exists(self, table_name: str) -> None:
        with self._lock:
            self.ensure_calls.append(table_name)
            self.tables.setdefault(table_name, {})

    def execute_batch(self, table_name: str, batch: BatchUnit) -> None:
        with self._lock:
            self.batches.append(batch)
            if self.script:
                error = self.script.pop(0)
                if error is not None:
                    raise error

            table = self.tables[table_name]
            keys = [(r.partition_key, r.row_key) for r in batch.records]
            if any(key in table for key in keys) or len(set(keys)) != len(keys):
                raise ConflictError("entity already exists")
            for record in batch.records:
                table[(record.partition_key, record.row_key)] = record

    def test_connection(self) -> bool:
        return True

    def count_rows(self, table_name: str) -> int:
        return len(self.tables.get(table_name, {}))

    def rows(self, table_name: str = "flights") -> List[FlightRecord]:
        return list(self.tables.get(table_name, {}).values())

    def close(self) -> None:
        self.closed = True

