"""Status reporter — read-only view of the scheduler for the HTTP surface."""

from datetime import datetime, timezone
from typing import Optional

from ethquake.scheduler import StrategyScheduler


class StatusReporter:
    """Aggregates the current strategy set and last-run state.

    Args:
        scheduler: The orchestrator whose strategies are reported.
    """

    def __init__(self, scheduler: StrategyScheduler) -> None:
        self._scheduler = scheduler

    def status(self) -> dict:
        strategies = [
            {
                "name": name,
                "enabled": loaded.config.enabled,
                "schedule": loaded.config.cron_schedule,
            }
            for name, loaded in self._scheduler.strategies.items()
        ]
        return {
            "status": "operational",
            "strategies": strategies,
            "lastUpdate": datetime.now(timezone.utc).isoformat(),
        }

    def strategy_status(self, name: str) -> Optional[dict]:
        """Runtime details for one strategy, or ``None`` if unknown."""
        loaded = self._scheduler.get(name)
        if loaded is None:
            return None
        next_run = self._scheduler.next_run_time(name)
        return {
            "name": name,
            "enabled": loaded.config.enabled,
            "schedule": loaded.config.cron_schedule,
            "symbol": loaded.config.trading.symbol,
            "scheduled": name in self._scheduler.scheduled_names,
            "inFlight": loaded.in_flight,
            "runCount": loaded.run_count,
            "lastRunAt": loaded.last_run_at.isoformat() if loaded.last_run_at else None,
            "lastResult": loaded.last_result.to_dict() if loaded.last_result else None,
            "lastError": loaded.last_error,
            "nextRunAt": next_run.isoformat() if next_run else None,
        }
