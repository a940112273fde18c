"""StrategyScheduler — owns loaded strategies and their cron jobs.

Each registered strategy gets one cancellable APScheduler job keyed by its
name.  All jobs run as coroutines on the application's event loop, so
runs of different strategies interleave only at I/O.  Runs of the same
strategy never overlap: an invocation arriving while one is in flight is
rejected rather than queued.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ethquake.models.loaded_strategy import LoadedStrategy
from ethquake.strategy.models import PipelineResult

logger = logging.getLogger("ethquake.scheduler")

HEARTBEAT_JOB_ID = "__heartbeat__"


class RunStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    NOT_FOUND = "not_found"
    ALREADY_RUNNING = "already_running"


@dataclass(frozen=True)
class RunOutcome:
    """What happened when a run was requested."""

    status: RunStatus
    result: Optional[PipelineResult] = None
    error: Optional[str] = None


class StrategyScheduler:
    """Registry of loaded strategies plus their recurring jobs.

    Args:
        timezone: Timezone used to evaluate cron expressions.
        heartbeat_seconds: Interval of the liveness log line (0 disables it).
        scheduler: Optional pre-built ``AsyncIOScheduler`` (tests).
    """

    def __init__(
        self,
        timezone: str = "UTC",
        heartbeat_seconds: int = 300,
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> None:
        self._timezone = timezone
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone)
        self._strategies: dict[str, LoadedStrategy] = {}
        self._jobs: dict[str, Job] = {}
        if heartbeat_seconds > 0:
            self._scheduler.add_job(
                _heartbeat,
                trigger=IntervalTrigger(seconds=heartbeat_seconds),
                id=HEARTBEAT_JOB_ID,
                name="Heartbeat",
                replace_existing=True,
            )

    # ── Public API ───────────────────────────────────────────────────────

    @property
    def strategies(self) -> dict[str, LoadedStrategy]:
        """Map of strategy name → ``LoadedStrategy``."""
        return dict(self._strategies)

    @property
    def scheduled_names(self) -> list[str]:
        """Names of strategies with a live recurring job."""
        return list(self._jobs.keys())

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def get(self, name: str) -> Optional[LoadedStrategy]:
        return self._strategies.get(name)

    def next_run_time(self, name: str) -> Optional[datetime]:
        """Next fire time of *name*'s job, once the scheduler has started."""
        if name not in self._jobs:
            return None
        job = self._scheduler.get_job(name)
        # Pending jobs have no next_run_time attribute until start()
        return getattr(job, "next_run_time", None) if job else None

    async def register(self, loaded: LoadedStrategy) -> bool:
        """Warm up *loaded* once and, if that succeeds, schedule it.

        A warm-up that raises or reports failure leaves the strategy
        unregistered and without a job.  Returns ``True`` on success.
        """
        name = loaded.name
        if name in self._strategies:
            logger.warning("Strategy %s is already registered; skipping", name)
            return False

        logger.info("Initializing strategy %s...", name)
        outcome = await self._execute(loaded)
        if outcome.status is not RunStatus.OK:
            logger.error(
                "Warm-up run for strategy %s failed (%s): %s — not scheduling",
                name, outcome.status.value, outcome.error,
            )
            return False

        self._strategies[name] = loaded
        self._jobs[name] = self._scheduler.add_job(
            self._on_tick,
            trigger=CronTrigger.from_crontab(loaded.config.cron_schedule, timezone=self._timezone),
            args=[name],
            id=name,
            name=f"Pipeline {name}",
            replace_existing=True,
            misfire_grace_time=60,
            coalesce=True,
        )
        logger.info(
            "Scheduled strategy %s with schedule: %s", name, loaded.config.cron_schedule,
        )
        return True

    def unschedule(self, name: str) -> bool:
        """Cancel *name*'s recurring job; the strategy stays registered."""
        job = self._jobs.pop(name, None)
        if job is None:
            return False
        job.remove()
        logger.info("Cancelled recurring job for strategy %s", name)
        return True

    async def trigger(self, name: str) -> RunOutcome:
        """Run *name* immediately, regardless of its cron phase."""
        loaded = self._strategies.get(name)
        if loaded is None:
            return RunOutcome(RunStatus.NOT_FOUND, error="Strategy not found or not enabled")
        logger.info("Manual run requested for %s", name)
        return await self._execute(loaded)

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Scheduler started with %d strategy job(s)", len(self._jobs))

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    # ── Internals ────────────────────────────────────────────────────────

    async def _on_tick(self, name: str) -> None:
        """Cron callback; nothing raised here may escape into the scheduler."""
        started = datetime.now(timezone.utc).isoformat()
        loaded = self._strategies.get(name)
        if loaded is None:
            logger.warning("Tick for unknown strategy %s at %s", name, started)
            return

        logger.info("Running pipeline for %s at %s", name, started)
        outcome = await self._execute(loaded)
        if outcome.status is RunStatus.OK:
            logger.info("Successfully completed pipeline for %s", name)
        elif outcome.status is RunStatus.ALREADY_RUNNING:
            logger.warning("Skipped tick for %s at %s: already running", name, started)
        else:
            logger.error("Error running pipeline for %s at %s: %s", name, started, outcome.error)

    async def _execute(self, loaded: LoadedStrategy) -> RunOutcome:
        """Run *loaded* under its in-flight guard and classify the result."""
        if loaded.in_flight:
            return RunOutcome(
                RunStatus.ALREADY_RUNNING,
                error=f"Strategy {loaded.name} is already running",
            )

        loaded.in_flight = True
        try:
            result = await loaded.run()
        except Exception as exc:
            logger.exception("Pipeline for %s raised", loaded.name)
            result = PipelineResult.failed(exc, error_type="ExecutionError")
            loaded.record(result)
            return RunOutcome(RunStatus.FAILED, result=result, error=result.error)
        finally:
            loaded.in_flight = False

        if result.success:
            return RunOutcome(RunStatus.OK, result=result)
        return RunOutcome(RunStatus.FAILED, result=result, error=result.error)


def _heartbeat() -> None:
    logger.info("Server heartbeat check")
