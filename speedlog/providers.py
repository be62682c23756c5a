"""Network-type and location providers consumed by the run orchestrator."""

from __future__ import annotations

import logging
import subprocess
import threading
from pathlib import Path
from typing import Optional, Protocol

from .measurements.models import Coordinate, NetworkType

LOGGER = logging.getLogger(__name__)

CELLULAR_PREFIXES = ("wwan", "rmnet", "ppp", "usb", "ccmni")


class NetworkTypeProvider(Protocol):
    def current_type(self) -> NetworkType:
        ...


class LocationProvider(Protocol):
    def current_coordinate(self) -> Optional[Coordinate]:
        ...


class StaticNetworkTypeProvider:
    def __init__(self, network_type: NetworkType = NetworkType.UNKNOWN):
        self.network_type = network_type

    def current_type(self) -> NetworkType:
        return self.network_type


class StaticLocationProvider:
    """Returns a fixed coordinate, or ``None`` when the host has no known position."""

    def __init__(self, coordinate: Optional[Coordinate] = None):
        self.coordinate = coordinate

    def current_coordinate(self) -> Optional[Coordinate]:
        return self.coordinate


def _default_route_interface() -> Optional[str]:
    """Return the interface carrying the default route (Linux ``ip route``)."""
    try:
        result = subprocess.run(["ip", "route"], capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.TimeoutExpired) as exc:
        LOGGER.debug("Failed to read routing table: %s", exc)
        return None

    for line in result.stdout.split("\n"):
        if not line.startswith("default"):
            continue
        parts = line.split()
        if "dev" in parts:
            position = parts.index("dev")
            if position + 1 < len(parts):
                return parts[position + 1]
    return None


def classify_interface(interface: Optional[str], sys_class_net: Path = Path("/sys/class/net")) -> NetworkType:
    if not interface:
        return NetworkType.UNKNOWN
    if (sys_class_net / interface / "wireless").exists() or interface.startswith("wl"):
        return NetworkType.WIFI
    if interface.startswith(CELLULAR_PREFIXES):
        return NetworkType.CELLULAR
    return NetworkType.UNKNOWN


class SystemNetworkTypeProvider:
    """
    Classifies the default-route interface of this host.

    The value is refreshed on a background thread so ``current_type`` never
    blocks on a subprocess.
    """

    def __init__(self, refresh_seconds: float = 30.0):
        self.refresh_seconds = refresh_seconds
        self._current = NetworkType.UNKNOWN
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def refresh(self) -> NetworkType:
        detected = classify_interface(_default_route_interface())
        with self._lock:
            if detected != self._current:
                LOGGER.info("Network type changed: %s -> %s", self._current.value, detected.value)
            self._current = detected
        return detected

    def current_type(self) -> NetworkType:
        with self._lock:
            return self._current

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.refresh()
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.error("Network type refresh failed: %s", exc)
            self._stop.wait(self.refresh_seconds)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="network-type", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
        self._thread = None
