"""Application bootstrap helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .config import AppConfig, NetworkConfig, load_config
from .log_store import LogStore
from .logging_setup import configure_logging
from .measurements.engine import MeasurementEngine
from .measurements.models import NetworkType
from .measurements.orchestrator import RunOrchestrator
from .providers import StaticLocationProvider, StaticNetworkTypeProvider, SystemNetworkTypeProvider
from .scheduler import SchedulerService
from .web.app import create_web_app


def build_network_provider(network: NetworkConfig):
    if network.type == "auto":
        return SystemNetworkTypeProvider(refresh_seconds=network.refresh_seconds)
    return StaticNetworkTypeProvider(NetworkType(network.type))


class ApplicationContext:
    """Holds shared service instances."""

    def __init__(self, config: AppConfig):
        self.config = config
        configure_logging(config)
        self.log_store = LogStore(config.log_file)
        self.log_store.ensure_exists()
        self.engine = MeasurementEngine(config.server.base_url, ping_samples=config.server.ping_samples)
        self.network_provider = build_network_provider(config.network)
        self.location_provider = StaticLocationProvider(config.location.coordinate)
        self.orchestrator = RunOrchestrator(
            engine=self.engine,
            log_store=self.log_store,
            network_provider=self.network_provider,
            location_provider=self.location_provider,
            server_base_url=config.server.base_url,
            location_timeout=config.location.timeout_seconds,
        )
        self.scheduler = SchedulerService(config, self.orchestrator)
        self.web_app = create_web_app(
            config=config,
            orchestrator=self.orchestrator,
            log_store=self.log_store,
            scheduler=self.scheduler,
        )

    def start(self) -> None:
        if isinstance(self.network_provider, SystemNetworkTypeProvider):
            self.network_provider.start()
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.shutdown()
        self.orchestrator.shutdown()
        if isinstance(self.network_provider, SystemNetworkTypeProvider):
            self.network_provider.stop()


def bootstrap(config_path: Optional[str] = None) -> ApplicationContext:
    """Load configuration and wire dependencies."""

    config_file = Path(config_path).resolve() if config_path else None
    config = load_config(str(config_file)) if config_file else load_config()
    return ApplicationContext(config)
