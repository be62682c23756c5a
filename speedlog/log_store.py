"""Append-only CSV log of measurement runs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, List, Optional

from .errors import (
    CannotAppendRecordError,
    CannotCreateDirectoryError,
    CannotReadFileError,
    CannotWriteHeaderError,
)
from .measurements.models import LogRecord

LOGGER = logging.getLogger(__name__)

HEADER = [
    "timestamp",
    "download_mbps",
    "upload_mbps",
    "ping_ms",
    "jitter_ms",
    "network_type",
    "location_start_lat",
    "location_start_lon",
    "location_end_lat",
    "location_end_lon",
    "location_status",
    "test_size_mb",
    "server_base_url",
    "error_message",
]
FIELD_COUNT = len(HEADER)
HEADER_LINE = ",".join(HEADER)


def escape_field(value: str) -> str:
    if "," in value or '"' in value or "\n" in value:
        return '"' + value.replace('"', '""') + '"'
    return value


def to_csv_line(record: LogRecord) -> str:
    return ",".join(
        [
            escape_field(record.timestamp),
            f"{record.download_mbps:.3f}",
            f"{record.upload_mbps:.3f}",
            f"{record.ping_ms:.3f}",
            f"{record.jitter_ms:.3f}",
            escape_field(record.network_type),
            escape_field(record.location_start_lat),
            escape_field(record.location_start_lon),
            escape_field(record.location_end_lat),
            escape_field(record.location_end_lon),
            escape_field(record.location_status),
            str(int(record.test_size_mb)),
            escape_field(record.server_base_url),
            escape_field(record.error_message),
        ]
    )


def iter_rows(content: str) -> Iterator[List[str]]:
    """
    Split text written by ``to_csv_line`` back into rows of fields.

    A quote toggles quoted mode, where commas and newlines are literal and a
    doubled quote yields one quote character. Blank lines are ignored.
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    line_has_content = False
    index = 0
    length = len(content)

    while index < length:
        char = content[index]
        if char == '"':
            if in_quotes and index + 1 < length and content[index + 1] == '"':
                current.append('"')
                index += 1
            else:
                in_quotes = not in_quotes
            line_has_content = True
        elif char == "," and not in_quotes:
            fields.append("".join(current))
            current = []
            line_has_content = True
        elif char == "\n" and not in_quotes:
            if line_has_content:
                fields.append("".join(current))
                yield fields
            fields, current, line_has_content = [], [], False
        else:
            current.append(char)
            line_has_content = True
        index += 1

    if line_has_content:
        fields.append("".join(current))
        yield fields


def _to_float(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        return 0.0


def _to_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        return 0


def record_from_fields(parts: List[str]) -> LogRecord:
    return LogRecord(
        timestamp=parts[0],
        download_mbps=_to_float(parts[1]),
        upload_mbps=_to_float(parts[2]),
        ping_ms=_to_float(parts[3]),
        jitter_ms=_to_float(parts[4]),
        network_type=parts[5],
        location_start_lat=parts[6],
        location_start_lon=parts[7],
        location_end_lat=parts[8],
        location_end_lon=parts[9],
        location_status=parts[10],
        test_size_mb=_to_int(parts[11]),
        server_base_url=parts[12],
        error_message=parts[13],
    )


class LogStore:
    """Sole reader and writer of the run log file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def ensure_exists(self) -> None:
        if self.path.exists():
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CannotCreateDirectoryError(self.path.parent) from exc
        try:
            self.path.write_text(HEADER_LINE + "\n", encoding="utf-8")
        except OSError as exc:
            raise CannotWriteHeaderError(self.path) from exc
        LOGGER.info("Created run log at %s", self.path)

    def append(self, record: LogRecord) -> None:
        self.ensure_exists()
        line = to_csv_line(record) + "\n"
        try:
            with self.path.open("a", encoding="utf-8", newline="") as handle:
                handle.write(line)
        except OSError as exc:
            raise CannotAppendRecordError(self.path) from exc
        LOGGER.debug("Appended run record %s to %s", record.id, self.path)

    def read_all(self) -> List[LogRecord]:
        self.ensure_exists()
        try:
            content = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise CannotReadFileError(self.path) from exc

        records: List[LogRecord] = []
        rows = iter_rows(content)
        next(rows, None)  # header
        for parts in rows:
            if len(parts) < FIELD_COUNT:
                LOGGER.debug("Skipping malformed log line with %d fields", len(parts))
                continue
            records.append(record_from_fields(parts))
        return records

    def read_recent(self, limit: Optional[int] = None) -> List[LogRecord]:
        records = list(reversed(self.read_all()))
        if limit is not None:
            records = records[:limit]
        return records
