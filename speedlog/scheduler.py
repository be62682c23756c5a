"""Background scheduler for unattended speed test runs."""

from __future__ import annotations

import logging
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import AppConfig
from .measurements.models import TestSize
from .measurements.orchestrator import RunOrchestrator

LOGGER = logging.getLogger(__name__)


class SchedulerService:
    def __init__(self, config: AppConfig, orchestrator: RunOrchestrator) -> None:
        self.config = config
        self.orchestrator = orchestrator
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self.started = False

    @property
    def test_size(self) -> TestSize:
        return TestSize(self.config.scheduler.test_size)

    def start(self) -> None:
        if self.started:
            LOGGER.warning("Scheduler already started, ignoring duplicate start request")
            return

        if not self.config.scheduler.enabled:
            LOGGER.info("Scheduler is disabled in configuration; runs must be started manually")
            return

        try:
            interval = self.config.scheduler.interval_minutes
            trigger = IntervalTrigger(minutes=interval)
            self.scheduler.add_job(self.run_cycle, trigger=trigger, id="scheduled-speedtest", max_instances=1)
            self.scheduler.start()
            self.started = True
            LOGGER.info("Scheduler started with interval %s minutes (%s)", interval, self.test_size.display_title)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("Failed to start scheduler: %s", exc, exc_info=True)
            LOGGER.error("  Scheduled runs will not happen automatically")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False

    def status(self) -> dict:
        job = self.scheduler.get_job("scheduled-speedtest") if self.started else None
        next_run = getattr(job, "next_run_time", None) if job else None
        return {
            "enabled": self.config.scheduler.enabled,
            "started": self.started,
            "interval_minutes": self.config.scheduler.interval_minutes,
            "test_size_mb": int(self.test_size),
            "next_run": next_run.isoformat() if next_run else None,
        }

    def run_cycle(self) -> None:
        """Run one scheduled measurement unless a run is already in flight."""
        LOGGER.info("Starting scheduled speed test at %s", datetime.utcnow().isoformat())
        try:
            snapshot = self.orchestrator.run(self.test_size)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.exception("Scheduled speed test failed: %s", exc)
            return
        if snapshot is None:
            LOGGER.info("Skipping scheduled speed test - a run is already in progress")
            return
        LOGGER.info("Scheduled speed test finished in phase %s", snapshot.phase.value)
