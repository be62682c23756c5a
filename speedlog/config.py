"""Configuration loading helpers for the speed test logger."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import yaml

from .measurements.models import Coordinate, NetworkType, TestSize


@dataclass
class PathsConfig:
    data_dir: Path
    logs_dir: Path


@dataclass
class ServerConfig:
    base_url: str = "http://95.142.45.145/speedtest"
    ping_samples: int = 15


@dataclass
class StorageConfig:
    file_name: str = "speedtest_logs.csv"


@dataclass
class NetworkConfig:
    type: str = "auto"
    refresh_seconds: float = 30.0


@dataclass
class LocationConfig:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timeout_seconds: float = 5.0

    @property
    def coordinate(self) -> Optional[Coordinate]:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinate(float(self.latitude), float(self.longitude))


@dataclass
class SchedulerConfig:
    enabled: bool = False
    interval_minutes: int = 30
    test_size: int = 5


@dataclass
class WebConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    secret_key: str = "change-me"
    reverse_proxy_headers: bool = False


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class AppConfig:
    root_dir: Path
    paths: PathsConfig
    server: ServerConfig
    storage: StorageConfig
    network: NetworkConfig
    location: LocationConfig
    scheduler: SchedulerConfig
    web: WebConfig
    logging: LoggingConfig

    @property
    def log_file(self) -> Path:
        return self.paths.data_dir / self.storage.file_name


def _as_path(base: Path, maybe_path: Optional[str]) -> Path:
    if not maybe_path:
        raise ValueError("Path configuration entries cannot be empty")
    path = (base / maybe_path).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def _validate(config: AppConfig) -> None:
    if config.server.ping_samples < 0:
        raise ValueError("server.ping_samples cannot be negative")
    allowed_types = {"auto"} | {member.value for member in NetworkType}
    if config.network.type not in allowed_types:
        raise ValueError(f"network.type must be one of {sorted(allowed_types)}")
    if config.scheduler.test_size not in {int(size) for size in TestSize}:
        raise ValueError(f"scheduler.test_size must be one of {[int(size) for size in TestSize]}")
    if config.scheduler.interval_minutes <= 0:
        raise ValueError("scheduler.interval_minutes must be positive")
    if (config.location.latitude is None) != (config.location.longitude is None):
        raise ValueError("location.latitude and location.longitude must be set together")


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load application configuration from YAML file."""

    root_dir = Path(path).resolve().parent if path else Path.cwd()
    source_path = Path(path) if path else root_dir / "config.yaml"
    if not source_path.exists():
        raise FileNotFoundError(f"Missing configuration file at {source_path}")

    with source_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    paths_data = data.get("paths", {})
    paths = PathsConfig(
        data_dir=_as_path(root_dir, paths_data.get("data_dir", "data")),
        logs_dir=_as_path(root_dir, paths_data.get("logs_dir", "logs")),
    )

    config = AppConfig(
        root_dir=root_dir,
        paths=paths,
        server=ServerConfig(**data.get("server", {})),
        storage=StorageConfig(**data.get("storage", {})),
        network=NetworkConfig(**data.get("network", {})),
        location=LocationConfig(**data.get("location", {})),
        scheduler=SchedulerConfig(**data.get("scheduler", {})),
        web=WebConfig(**data.get("web", {})),
        logging=LoggingConfig(**data.get("logging", {})),
    )
    _validate(config)

    return config
