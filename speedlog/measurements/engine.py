"""HTTP measurement phases: ping/jitter, download and upload throughput."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse

import requests

from .. import stats
from ..errors import (
    BadResponseError,
    HTTPStatusError,
    InvalidEndpointError,
    MeasurementCancelled,
    UploadRejectedError,
)
from .models import TestSize

LOGGER = logging.getLogger(__name__)

DEFAULT_PING_SAMPLES = 15


def throughput_mbps(byte_count: int, seconds: float) -> float:
    """Megabits per second, with the interval floored to avoid division by zero."""
    elapsed = max(seconds, MeasurementEngine.MIN_ELAPSED_SECONDS)
    return (byte_count * 8.0) / elapsed / 1_000_000.0


class MeasurementEngine:
    """
    Runs one network phase at a time against a speed test server.

    Every phase times the complete HTTP call (connect, headers and body) as a
    single wall-clock interval. Cancellation is cooperative: ``cancel`` raises a
    flag that is checked between steps and closes the transport session.
    """

    PING_TIMEOUT = 10
    DOWNLOAD_TIMEOUT = 60
    UPLOAD_TIMEOUT = 90
    PING_INTERVAL_SECONDS = 0.12
    CHUNK_SIZE = 65536
    MIN_ELAPSED_SECONDS = 0.0001

    def __init__(
        self,
        base_url: str,
        ping_samples: int = DEFAULT_PING_SAMPLES,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.perf_counter,
        ping_interval: float = PING_INTERVAL_SECONDS,
        random_bytes: Callable[[int], bytes] = os.urandom,
    ):
        self.base_url = base_url
        self.ping_samples = ping_samples
        self.session = session or requests.Session()
        self._clock = clock
        self._ping_interval = ping_interval
        self._random_bytes = random_bytes
        self._cancelled = threading.Event()

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------
    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()
        try:
            self.session.close()
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.debug("Closing HTTP session after cancel failed: %s", exc)

    def reset(self) -> None:
        self._cancelled.clear()

    def raise_if_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise MeasurementCancelled()

    # ------------------------------------------------------------------
    # Public phases
    # ------------------------------------------------------------------
    def run_full_test(self, size: TestSize) -> Tuple[float, float, float, float]:
        self.raise_if_cancelled()
        ping_ms, jitter_ms = self.measure_ping_and_jitter()
        self.raise_if_cancelled()
        download = self.measure_download_mbps(size)
        self.raise_if_cancelled()
        upload = self.measure_upload_mbps(size)
        return ping_ms, jitter_ms, download, upload

    def measure_ping_and_jitter(self, sample_count: Optional[int] = None) -> Tuple[float, float]:
        count = self.ping_samples if sample_count is None else sample_count
        if count <= 0:
            return 0.0, 0.0

        url = self._endpoint("ping")
        times: List[float] = []
        for index in range(count):
            self.raise_if_cancelled()
            times.append(self._single_ping_ms(url))
            LOGGER.debug("Ping sample %d/%d: %.2f ms", index + 1, count, times[-1])
            # Event.wait doubles as an interruptible sleep.
            if self._ping_interval and self._cancelled.wait(self._ping_interval):
                raise MeasurementCancelled()

        ping_ms, jitter_ms = stats.ping_and_jitter(times)
        LOGGER.info("Ping %.2f ms, jitter %.2f ms over %d samples", ping_ms, jitter_ms, count)
        return ping_ms, jitter_ms

    def measure_download_mbps(self, size: TestSize) -> float:
        url = self._endpoint("download")
        start = self._clock()
        response = self._send("GET", url, self.DOWNLOAD_TIMEOUT, params={"size": str(int(size))})
        received = 0
        with response:
            try:
                for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                    self.raise_if_cancelled()
                    received += len(chunk)
            except requests.RequestException as exc:
                raise self._transport_error(exc) from exc
        end = self._clock()

        mbps = throughput_mbps(received, end - start)
        LOGGER.info("Download %s: %d bytes in %.3fs -> %.2f Mbps", size.display_title, received, end - start, mbps)
        return mbps

    def measure_upload_mbps(self, size: TestSize) -> float:
        url = self._endpoint("upload")
        payload = self._random_bytes(size.byte_count)

        start = self._clock()
        response = self._send(
            "POST",
            url,
            self.UPLOAD_TIMEOUT,
            data=payload,
            headers={"Content-Type": "application/octet-stream"},
        )
        with response:
            try:
                body = response.content
            except requests.RequestException as exc:
                raise self._transport_error(exc) from exc
        end = self._clock()

        if not self._is_upload_ok(body):
            raise UploadRejectedError()

        mbps = throughput_mbps(len(payload), end - start)
        LOGGER.info("Upload %s: %d bytes in %.3fs -> %.2f Mbps", size.display_title, len(payload), end - start, mbps)
        return mbps

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _endpoint(self, name: str) -> str:
        parsed = urlparse(self.base_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidEndpointError(self.base_url)
        return f"{self.base_url.rstrip('/')}/{name}"

    def _single_ping_ms(self, url: str) -> float:
        start = self._clock()
        response = self._send("GET", url, self.PING_TIMEOUT)
        end = self._clock()
        # Drain the body so the keep-alive connection returns to the pool.
        with response:
            try:
                response.content
            except requests.RequestException as exc:
                raise self._transport_error(exc) from exc
        return (end - start) * 1000.0

    def _send(self, method: str, url: str, timeout: float, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=timeout, stream=True, **kwargs)
        except (requests.exceptions.MissingSchema, requests.exceptions.InvalidSchema, requests.exceptions.InvalidURL) as exc:
            raise InvalidEndpointError(url) from exc
        except requests.RequestException as exc:
            raise self._transport_error(exc) from exc

        if not 200 <= response.status_code < 300:
            response.close()
            raise HTTPStatusError(response.status_code)
        return response

    def _transport_error(self, exc: Exception) -> Exception:
        if self.cancelled:
            return MeasurementCancelled()
        LOGGER.warning("Transport error: %s", exc)
        return BadResponseError(str(exc))

    @staticmethod
    def _is_upload_ok(body: bytes) -> bool:
        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return False
        return isinstance(data, dict) and data.get("ok") is True
