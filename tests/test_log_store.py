"""Tests for the CSV run log."""

from unittest.mock import patch

import pytest

from speedlog.errors import CannotCreateDirectoryError, CannotReadFileError, CannotWriteHeaderError
from speedlog.log_store import HEADER_LINE, LogStore, escape_field, iter_rows, to_csv_line
from speedlog.measurements.models import LogRecord


def make_record(**overrides) -> LogRecord:
    fields = dict(
        timestamp="2024-05-01T12:30:15.123+02:00",
        download_mbps=123.45,
        upload_mbps=45.6789,
        ping_ms=18.25,
        jitter_ms=2.0,
        network_type="wifi",
        location_start_lat="52.520",
        location_start_lon="13.410",
        location_end_lat="52.521",
        location_end_lon="13.411",
        location_status="ok",
        test_size_mb=5,
        server_base_url="http://speed.example.test/speedtest",
        error_message="",
    )
    fields.update(overrides)
    return LogRecord(**fields)


class TestEscapeField:
    def test_plain_value_passes_through(self):
        assert escape_field("wifi") == "wifi"

    def test_comma_and_quote_are_quoted(self):
        assert escape_field('a,b"c') == '"a,b""c"'

    def test_newline_is_quoted(self):
        assert escape_field("line1\nline2") == '"line1\nline2"'


class TestLineCodec:
    def test_numeric_fields_use_three_decimals(self):
        line = to_csv_line(make_record())
        assert line.split(",")[1:5] == ["123.450", "45.679", "18.250", "2.000"]

    def test_line_has_fourteen_fields_in_header_order(self):
        line = to_csv_line(make_record(location_end_lat="", location_end_lon=""))
        assert line == (
            "2024-05-01T12:30:15.123+02:00,123.450,45.679,18.250,2.000,wifi,"
            "52.520,13.410,,,ok,5,http://speed.example.test/speedtest,"
        )

    def test_quoted_field_splits_back(self):
        rows = list(iter_rows('a,"b,""c""",d\n'))
        assert rows == [["a", 'b,"c"', "d"]]

    def test_blank_lines_are_ignored(self):
        assert list(iter_rows("a,b\n\n\nc,d")) == [["a", "b"], ["c", "d"]]


class TestLogStore:
    def test_ensure_exists_writes_header(self, log_store):
        log_store.ensure_exists()
        assert log_store.path.read_text(encoding="utf-8") == HEADER_LINE + "\n"

    def test_ensure_exists_keeps_existing_file(self, log_store):
        log_store.append(make_record())
        log_store.ensure_exists()
        assert len(log_store.read_all()) == 1

    def test_header_only_file_has_no_records(self, log_store):
        log_store.ensure_exists()
        assert log_store.read_all() == []

    def test_append_then_read_back(self, log_store):
        log_store.append(make_record())
        log_store.append(make_record(error_message="HTTP error: 500", upload_mbps=0.0))

        records = log_store.read_all()

        assert len(records) == 2
        assert records[0].download_mbps == pytest.approx(123.45)
        assert records[0].upload_mbps == pytest.approx(45.679)
        assert records[0].location_end_lon == "13.411"
        assert records[1].error_message == "HTTP error: 500"
        assert records[1].test_size_mb == 5

    def test_escaped_field_round_trips(self, log_store):
        log_store.append(make_record(server_base_url='a,b"c'))

        assert log_store.read_all()[0].server_base_url == 'a,b"c'

    def test_multiline_error_round_trips(self, log_store):
        message = "HTTP error: 500\nLog save failed: disk full"
        log_store.append(make_record(error_message=message))
        log_store.append(make_record())

        records = log_store.read_all()

        assert [record.error_message for record in records] == [message, ""]

    def test_malformed_line_is_skipped(self, log_store):
        log_store.append(make_record())
        with log_store.path.open("a", encoding="utf-8") as handle:
            handle.write("2024-05-01T00:00:00.000Z,1.0,2.0\n")
        log_store.append(make_record(network_type="cellular"))

        records = log_store.read_all()

        assert [record.network_type for record in records] == ["wifi", "cellular"]

    def test_unparsable_numbers_default_to_zero(self, log_store):
        log_store.ensure_exists()
        with log_store.path.open("a", encoding="utf-8") as handle:
            handle.write("t,fast,1.5,abc,,wifi,,,,,unavailable,five,http://x,\n")

        record = log_store.read_all()[0]

        assert record.download_mbps == 0
        assert record.upload_mbps == 1.5
        assert record.ping_ms == 0
        assert record.jitter_ms == 0
        assert record.test_size_mb == 0

    def test_read_recent_is_newest_first(self, log_store):
        for size in (5, 50, 5):
            log_store.append(make_record(test_size_mb=size, error_message=str(size)))
        log_store.append(make_record(error_message="last"))

        recent = log_store.read_recent(limit=2)

        assert [record.error_message for record in recent] == ["last", "5"]

    def test_cannot_create_directory(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        store = LogStore(blocker / "nested" / "log.csv")

        with pytest.raises(CannotCreateDirectoryError):
            store.ensure_exists()


def test_header_write_failure(log_store):
    with patch("pathlib.Path.write_text", side_effect=OSError("disk full")):
        with pytest.raises(CannotWriteHeaderError):
            log_store.ensure_exists()
    assert not log_store.path.exists()


def test_undecodable_file_cannot_be_read(log_store):
    log_store.path.parent.mkdir(parents=True)
    log_store.path.write_bytes(HEADER_LINE.encode("utf-8") + b"\n\xff\xfe,\xfa\n")

    with pytest.raises(CannotReadFileError):
        log_store.read_all()


def test_read_recent_zero_limit_is_empty(log_store):
    log_store.append(make_record())

    assert log_store.read_recent(limit=0) == []
    assert len(log_store.read_recent()) == 1
