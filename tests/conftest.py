"""Shared fixtures: scripted HTTP session, ticking clock, providers and log store."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Union
from urllib.parse import urlparse

import pytest

from speedlog.log_store import LogStore
from speedlog.measurements.engine import MeasurementEngine
from speedlog.measurements.models import Coordinate, NetworkType
from speedlog.measurements.orchestrator import RunOrchestrator
from speedlog.providers import StaticLocationProvider, StaticNetworkTypeProvider

SERVER_URL = "http://speed.example.test/speedtest"
DOWNLOAD_BYTES = 1_000_000


class FakeResponse:
    """Minimal stand-in for ``requests.Response`` used with ``stream=True``."""

    def __init__(self, status_code: int = 200, body: bytes = b""):
        self.status_code = status_code
        self._body = body
        self.closed = False

    @property
    def content(self) -> bytes:
        return self._body

    def iter_content(self, chunk_size: int = 1):
        for offset in range(0, len(self._body), chunk_size):
            yield self._body[offset:offset + chunk_size]

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


Handler = Union[FakeResponse, Callable[..., FakeResponse]]


class FakeSession:
    """Routes requests by the last path segment (ping, download, upload)."""

    def __init__(self, routes: Optional[Dict[str, Handler]] = None):
        self.routes: Dict[str, Handler] = {
            "ping": FakeResponse(200),
            "download": FakeResponse(200, b"\x00" * DOWNLOAD_BYTES),
            "upload": FakeResponse(200, b'{"ok": true}'),
        }
        self.routes.update(routes or {})
        self.calls: List[dict] = []
        self.closed = False

    def request(self, method, url, timeout=None, stream=False, **kwargs):
        endpoint = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
        self.calls.append({"method": method, "url": url, "endpoint": endpoint, "timeout": timeout, **kwargs})
        handler = self.routes[endpoint]
        if callable(handler):
            return handler(method=method, url=url, **kwargs)
        return handler

    def close(self) -> None:
        self.closed = True

    def calls_to(self, endpoint: str) -> List[dict]:
        return [call for call in self.calls if call["endpoint"] == endpoint]


class TickingClock:
    """Monotonic fake clock advancing by ``step`` seconds on every reading."""

    def __init__(self, step: float = 0.05):
        self.step = step
        self.now = 0.0

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def make_engine():
    def factory(session: Optional[FakeSession] = None, **kwargs) -> MeasurementEngine:
        options = {
            "ping_samples": 3,
            "clock": TickingClock(),
            "ping_interval": 0,
            "random_bytes": lambda count: b"\x5a" * count,
        }
        options.update(kwargs)
        return MeasurementEngine(SERVER_URL, session=session or FakeSession(), **options)

    return factory


@pytest.fixture
def log_store(tmp_path) -> LogStore:
    return LogStore(tmp_path / "data" / "speedtest_logs.csv")


@pytest.fixture
def berlin() -> Coordinate:
    return Coordinate(52.52, 13.41)


@pytest.fixture
def make_orchestrator(make_engine, log_store, berlin):
    def factory(
        session: Optional[FakeSession] = None,
        location_provider=None,
        network_type: NetworkType = NetworkType.WIFI,
        store=None,
        **kwargs,
    ) -> RunOrchestrator:
        engine = make_engine(session=session)
        return RunOrchestrator(
            engine=engine,
            log_store=store or log_store,
            network_provider=StaticNetworkTypeProvider(network_type),
            location_provider=location_provider or StaticLocationProvider(berlin),
            server_base_url=SERVER_URL,
            location_timeout=kwargs.pop("location_timeout", 1.0),
            **kwargs,
        )

    return factory
