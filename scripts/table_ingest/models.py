"""
Typed flight records and the column schema used to build them.
"""
from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import Any, Callable, List, Sequence, Tuple

from .errors import RecordParseError


DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d")


def to_int(value: str) -> int:
    """Convert a numeric column; empty values are errors."""
    value = value.strip()
    if not value:
        raise ValueError("empty value in numeric field")
    return int(value)


def to_str(value: str) -> str:
    return value.strip()


def to_date(value: str) -> date:
    """Convert a date column, trying the formats flight exports use."""
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unparseable date '{value}'")


@dataclass(frozen=True)
class FieldSpec:
    """One source column: the record attribute it fills and its converter."""
    name: str
    converter: Callable[[str], Any]
    sql_type: str


@dataclass(frozen=True)
class FlightRecord:
    """
    One flight row, immutable once parsed.

    partition_key comes from the Origin column; row_key is a random
    identifier generated per record.
    """
    partition_key: str
    row_key: str
    year: int
    quarter: int
    month: int
    day_of_month: int
    day_of_week: int
    flight_date: date
    unique_carrier: str
    airline_id: str
    carrier: str
    tail_num: str
    flight_num: str
    origin_airport_id: int
    origin_airport_seq_id: int
    origin_city_market_id: int
    origin: str
    origin_city_name: str
    origin_state: str
    origin_state_fips: str
    origin_state_name: str
    origin_wac: str

    def to_row(self) -> Tuple:
        """Column values in table order (keys first)."""
        return tuple(getattr(self, f.name) for f in fields(self))


# Reference schema, in source column order. Column 14 (Origin) is the
# airport code used as partition key.
FLIGHT_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("year", to_int, "INTEGER"),
    FieldSpec("quarter", to_int, "INTEGER"),
    FieldSpec("month", to_int, "INTEGER"),
    FieldSpec("day_of_month", to_int, "INTEGER"),
    FieldSpec("day_of_week", to_int, "INTEGER"),
    FieldSpec("flight_date", to_date, "DATE"),
    FieldSpec("unique_carrier", to_str, "TEXT"),
    FieldSpec("airline_id", to_str, "TEXT"),
    FieldSpec("carrier", to_str, "TEXT"),
    FieldSpec("tail_num", to_str, "TEXT"),
    FieldSpec("flight_num", to_str, "TEXT"),
    FieldSpec("origin_airport_id", to_int, "INTEGER"),
    FieldSpec("origin_airport_seq_id", to_int, "INTEGER"),
    FieldSpec("origin_city_market_id", to_int, "INTEGER"),
    FieldSpec("origin", to_str, "TEXT"),
    FieldSpec("origin_city_name", to_str, "TEXT"),
    FieldSpec("origin_state", to_str, "TEXT"),
    FieldSpec("origin_state_fips", to_str, "TEXT"),
    FieldSpec("origin_state_name", to_str, "TEXT"),
    FieldSpec("origin_wac", to_str, "TEXT"),
)

PARTITION_KEY_INDEX = 14


@dataclass(frozen=True)
class RecordSchema:
    """Ordered field extractors plus the partition-key column index."""
    fields: Tuple[FieldSpec, ...]
    partition_key_index: int

    @property
    def width(self) -> int:
        return len(self.fields)

    def column_names(self) -> List[str]:
        """Table column names, keys first."""
        return ["partition_key", "row_key"] + [spec.name for spec in self.fields]

    def build(self, values: Sequence[str], row_key: str) -> FlightRecord:
        """
        Convert raw column values into a record.

        Raises:
            RecordParseError: on a short row, empty partition key, or conversion failure
        """
        if len(values) < self.width:
            raise RecordParseError(
                f"expected {self.width} columns, got {len(values)}"
            )

        partition_key = values[self.partition_key_index].strip()
        if not partition_key:
            raise RecordParseError("empty partition key")

        converted = {}
        for spec, raw in zip(self.fields, values):
            try:
                converted[spec.name] = spec.converter(raw)
            except ValueError as e:
                raise RecordParseError(f"{spec.name}: {e}") from e

        return FlightRecord(partition_key=partition_key, row_key=row_key, **converted)


FLIGHT_SCHEMA = RecordSchema(fields=FLIGHT_FIELDS, partition_key_index=PARTITION_KEY_INDEX)
