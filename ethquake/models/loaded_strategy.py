"""Loaded strategy — one validated descriptor bound to its pipeline.

Created once by the loader; its runtime status is mutated on every run
and it lives until process shutdown.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from ethquake.strategy.base import StrategyProtocol
from ethquake.strategy.models import PipelineResult, StrategyConfig

PipelineFn = Callable[["LoadedStrategy"], Awaitable[PipelineResult]]


@dataclass(eq=False)
class LoadedStrategy:
    """A registered strategy plus its mutable run status."""

    config: StrategyConfig
    pipeline: PipelineFn
    strategy: Optional[StrategyProtocol] = None
    last_run_at: Optional[datetime] = None
    last_result: Optional[PipelineResult] = None
    last_error: Optional[str] = None
    in_flight: bool = False
    run_count: int = 0

    @property
    def name(self) -> str:
        return self.config.name

    async def run(self) -> PipelineResult:
        """Execute one pipeline cycle for this strategy."""
        return await self.pipeline(self)

    def record(self, result: PipelineResult) -> None:
        """Store the outcome of a finished run."""
        self.last_run_at = datetime.now(timezone.utc)
        self.last_result = result
        self.last_error = None if result.success else result.error
        self.run_count += 1
