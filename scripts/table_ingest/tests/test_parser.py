"""Unit tests for the record parser."""
import csv
from dataclasses import replace
from datetime import date
from itertools import count

from helpers import format_line, make_row, write_csv
from table_ingest.metrics import MetricsCollector, RECORDS_FAILED, RECORDS_PARSED
from table_ingest.models import FlightRecord
from table_ingest.parser import ParseFailure, RecordParser


def test_parse_file_skips_header_and_converts_types(tmp_path, config, quiet_logger):
    path = write_csv(tmp_path / "flights.csv", [make_row("JFK"), make_row("LAX")])

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    assert [r.partition_key for r in result.records] == ["JFK", "LAX"]
    first = result.records[0]
    assert first.year == 2017
    assert first.origin_airport_id == 12478
    assert first.flight_date == date(2017, 1, 15)
    assert first.origin_city_name == "New York, NY"
    assert first.airline_id == "19805"
    assert result.failures == []


def test_non_numeric_field_drops_only_that_line(tmp_path, config, quiet_logger):
    rows = [make_row("JFK"), make_row("JFK", Year="20x7"), make_row("JFK")]
    path = write_csv(tmp_path / "flights.csv", rows)

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    assert len(result.records) == 2
    assert result.failed_count == 1
    assert result.failures[0].line_number == 3
    assert "year" in result.failures[0].reason


def test_record_count_is_lines_minus_header_minus_failures(tmp_path, config, quiet_logger):
    rows = [make_row("JFK") for _ in range(7)]
    rows[2] = make_row("JFK", FlightDate="not-a-date")
    rows[5] = make_row("JFK", OriginAirportID="")
    path = write_csv(tmp_path / "flights.csv", rows)

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    assert len(result.records) == len(rows) - result.failed_count
    assert result.failed_count == 2


def test_short_line_is_a_record_failure(tmp_path, config, quiet_logger):
    path = tmp_path / "flights.csv"
    write_csv(path, [make_row("JFK")])
    with open(path, "a", encoding="utf-8") as f:
        f.write('"2017","1","1"\n')

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    assert len(result.records) == 1
    assert result.failures == [ParseFailure(3, "expected 20 columns, got 3")]


def test_empty_partition_key_is_rejected(tmp_path, config, quiet_logger):
    path = write_csv(tmp_path / "flights.csv", [make_row(""), make_row("ORD")])

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    assert [r.partition_key for r in result.records] == ["ORD"]
    assert result.failures[0].reason == "empty partition key"


def test_extra_trailing_columns_are_ignored(tmp_path, config, quiet_logger):
    path = write_csv(tmp_path / "flights.csv", [make_row("SEA") + ["extra", "more"]])

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    assert len(result.records) == 1
    assert result.records[0].origin_wac == "22"


def test_unquoted_fields_are_accepted(tmp_path, config, quiet_logger):
    path = tmp_path / "flights.csv"
    row = make_row("BOS", OriginCityName="Boston")
    path.write_text("header\n" + ",".join(row) + "\n", encoding="utf-8")

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    assert result.records[0].partition_key == "BOS"
    assert result.records[0].origin_city_name == "Boston"


def test_row_keys_are_unique(tmp_path, config, quiet_logger):
    path = write_csv(tmp_path / "flights.csv", [make_row("JFK") for _ in range(50)])

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    keys = {r.row_key for r in result.records}
    assert len(keys) == 50
    assert all(len(k) == 36 for k in keys)


def test_row_key_factory_is_used(tmp_path, config, quiet_logger):
    path = write_csv(tmp_path / "flights.csv", [make_row("JFK"), make_row("JFK")])
    ids = count(1)

    parser = RecordParser(config, logger=quiet_logger, row_key_factory=lambda: f"id-{next(ids)}")
    result = parser.parse_file(path)

    assert [r.row_key for r in result.records] == ["id-1", "id-2"]


def test_record_cap_limits_records_per_file(tmp_path, config, quiet_logger):
    path = write_csv(tmp_path / "flights.csv", [make_row("JFK") for _ in range(10)])
    capped = replace(config, max_records_per_file=4)

    result = RecordParser(capped, logger=quiet_logger).parse_file(path)

    assert len(result.records) == 4


def test_iter_outcomes_rereads_from_start(tmp_path, config, quiet_logger):
    path = write_csv(tmp_path / "flights.csv", [make_row("JFK"), make_row("JFK", Month="x")])
    parser = RecordParser(config, logger=quiet_logger)

    first = list(parser.iter_outcomes(path))
    second = list(parser.iter_outcomes(path))

    assert [type(o) for o in first] == [FlightRecord, ParseFailure]
    assert [type(o) for o in second] == [FlightRecord, ParseFailure]


def test_blank_lines_are_ignored(tmp_path, config, quiet_logger):
    path = tmp_path / "flights.csv"
    path.write_text(
        "header\n\n" + ",".join(make_row("JFK", OriginCityName="NYC")) + "\n\n",
        encoding="utf-8",
    )

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    assert len(result.records) == 1
    assert result.failures == []


def test_header_only_file_has_no_records(tmp_path, config, quiet_logger):
    path = write_csv(tmp_path / "flights.csv", [])

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    assert result.records == []
    assert result.failures == []


def test_parse_counts_are_recorded(tmp_path, config, quiet_logger):
    path = write_csv(tmp_path / "flights.csv", [make_row("JFK"), make_row("JFK", Quarter="q")])
    metrics = MetricsCollector()

    RecordParser(config, metrics=metrics, logger=quiet_logger).parse_file(path)

    assert metrics.get_count(RECORDS_PARSED) == 1
    assert metrics.get_count(RECORDS_FAILED) == 1


def test_failed_lines_are_logged_as_warnings(tmp_path, config, quiet_logger):
    path = write_csv(tmp_path / "flights.csv", [make_row("JFK", DayOfWeek="")])

    RecordParser(config, logger=quiet_logger).parse_file(path)

    assert "Failed to parse line 2" in quiet_logger._err.getvalue()


def test_undecodable_line_is_dropped_and_counted(tmp_path, config, quiet_logger):
    path = tmp_path / "flights.csv"
    write_csv(path, [make_row("JFK")])
    latin1 = format_line(make_row("GRU", OriginCityName="São Paulo")).encode("latin-1")
    with open(path, "ab") as f:
        f.write(latin1 + b"\n")
        f.write(format_line(make_row("LAX")).encode("utf-8") + b"\n")

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    assert [r.partition_key for r in result.records] == ["JFK", "LAX"]
    assert result.failures == [ParseFailure(3, "invalid encoding")]


def test_non_ascii_utf8_values_are_kept(tmp_path, config, quiet_logger):
    path = write_csv(tmp_path / "flights.csv", [make_row("GRU", OriginCityName="São Paulo")])

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    assert result.records[0].origin_city_name == "São Paulo"
    assert result.failures == []


def test_malformed_header_is_not_counted_as_failed_line(tmp_path, config, quiet_logger):
    path = tmp_path / "flights.csv"
    rows = [make_row("JFK"), make_row("LAX")]
    oversized = "x" * (csv.field_size_limit() + 1)
    path.write_text(
        f"Year,{oversized}\n" + "\n".join(format_line(r) for r in rows) + "\n",
        encoding="utf-8",
    )

    result = RecordParser(config, logger=quiet_logger).parse_file(path)

    assert len(result.records) == 2
    assert result.failures == []
    assert "Malformed header line" in quiet_logger._err.getvalue()
