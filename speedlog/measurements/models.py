"""Shared dataclasses and enums for measurement runs."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional, Tuple

DECIMAL_MEGABYTE = 1_000_000


class TestSize(IntEnum):
    """Payload size in decimal megabytes."""

    __test__ = False  # keep pytest from collecting this as a test class

    MB5 = 5
    MB50 = 50

    @property
    def byte_count(self) -> int:
        return int(self) * DECIMAL_MEGABYTE

    @property
    def display_title(self) -> str:
        return f"{int(self)} MB"


class NetworkType(str, Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return {
            NetworkType.WIFI: "Wi-Fi",
            NetworkType.CELLULAR: "Cellular",
            NetworkType.UNKNOWN: "Unknown",
        }[self]


class LocationStatus(str, Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


def reconcile_location_status(
    start: Optional[Coordinate],
    end: Optional[Coordinate],
    end_attempted: bool,
) -> LocationStatus:
    """A run is located only if it started located and the end fix did not fail."""
    if start is None:
        return LocationStatus.UNAVAILABLE
    if end_attempted and end is None:
        return LocationStatus.UNAVAILABLE
    return LocationStatus.OK


def format_coordinate(coordinate: Optional[Coordinate], decimals: int = 3) -> Tuple[str, str]:
    if coordinate is None:
        return "", ""
    return (
        f"{round(coordinate.latitude, decimals):.{decimals}f}",
        f"{round(coordinate.longitude, decimals):.{decimals}f}",
    )


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 with milliseconds and the UTC offset of ``moment``."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.isoformat(timespec="milliseconds")


class MeasurementSample:
    """Metrics gathered during one run; each one is written at most once."""

    _FIELDS = ("ping_ms", "jitter_ms", "download_mbps", "upload_mbps")

    def __init__(self) -> None:
        self.ping_ms: Optional[float] = None
        self.jitter_ms: Optional[float] = None
        self.download_mbps: Optional[float] = None
        self.upload_mbps: Optional[float] = None

    def _set_once(self, name: str, value: float) -> None:
        if getattr(self, name) is not None:
            raise RuntimeError(f"{name} already recorded for this run")
        setattr(self, name, float(value))

    def record_ping(self, ping_ms: float, jitter_ms: float) -> None:
        self._set_once("ping_ms", ping_ms)
        self._set_once("jitter_ms", jitter_ms)

    def record_download(self, mbps: float) -> None:
        self._set_once("download_mbps", mbps)

    def record_upload(self, mbps: float) -> None:
        self._set_once("upload_mbps", mbps)

    def value_or_zero(self, name: str) -> float:
        value = getattr(self, name)
        return 0.0 if value is None else value


@dataclass(frozen=True)
class LogRecord:
    timestamp: str
    download_mbps: float
    upload_mbps: float
    ping_ms: float
    jitter_ms: float
    network_type: str
    location_start_lat: str
    location_start_lon: str
    location_end_lat: str
    location_end_lon: str
    location_status: str
    test_size_mb: int
    server_base_url: str
    error_message: str
    id: uuid.UUID = field(default_factory=uuid.uuid4, compare=False, repr=False)

    @property
    def succeeded(self) -> bool:
        return not self.error_message

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "timestamp": self.timestamp,
            "download_mbps": self.download_mbps,
            "upload_mbps": self.upload_mbps,
            "ping_ms": self.ping_ms,
            "jitter_ms": self.jitter_ms,
            "network_type": self.network_type,
            "location_start_lat": self.location_start_lat,
            "location_start_lon": self.location_start_lon,
            "location_end_lat": self.location_end_lat,
            "location_end_lon": self.location_end_lon,
            "location_status": self.location_status,
            "test_size_mb": self.test_size_mb,
            "server_base_url": self.server_base_url,
            "error_message": self.error_message,
        }
