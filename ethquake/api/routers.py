"""Operator API routers — /status and /run-pipeline endpoints.

No business logic, no DB access. Delegates to the scheduler and status
reporter attached to ``app.state`` by ``create_app``.
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from ethquake.scheduler import RunStatus, StrategyScheduler
from ethquake.status import StatusReporter

logger = logging.getLogger("ethquake.api")

_basic = HTTPBasic(auto_error=False)

_STATUS_CODES = {
    RunStatus.NOT_FOUND: 404,
    RunStatus.ALREADY_RUNNING: 409,
    RunStatus.FAILED: 500,
}


# ── Dependencies ─────────────────────────────────────────────────────────


def get_scheduler(request: Request) -> StrategyScheduler:
    return request.app.state.scheduler


def get_reporter(request: Request) -> StatusReporter:
    return request.app.state.reporter


def require_auth(
    request: Request,
    credentials: Optional[HTTPBasicCredentials] = Depends(_basic),
) -> None:
    """Enforce HTTP Basic auth when credentials are configured."""
    expected = getattr(request.app.state, "basic_auth", None)
    if expected is None:
        return
    user, password = expected
    if credentials is None or not (
        secrets.compare_digest(credentials.username.encode(), user.encode())
        and secrets.compare_digest(credentials.password.encode(), password.encode())
    ):
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )


router = APIRouter(dependencies=[Depends(require_auth)])


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status(reporter: StatusReporter = Depends(get_reporter)):
    """Return the loaded strategies and their schedules."""
    return reporter.status()


@router.get("/status/{strategy_name}")
async def get_strategy_status(
    strategy_name: str,
    reporter: StatusReporter = Depends(get_reporter),
):
    """Return runtime details for a single strategy."""
    status = reporter.strategy_status(strategy_name)
    if status is None:
        return JSONResponse(status_code=404, content={"error": f"Unknown strategy: {strategy_name}"})
    return status


@router.post("/run-pipeline/{strategy_name}")
async def run_pipeline(
    strategy_name: str,
    scheduler: StrategyScheduler = Depends(get_scheduler),
):
    """Run a strategy's pipeline now, outside its cron schedule."""
    outcome = await scheduler.trigger(strategy_name)
    if outcome.status is RunStatus.OK:
        return outcome.result.to_dict()

    logger.warning("Manual run of %s: %s (%s)", strategy_name, outcome.status.value, outcome.error)
    content = {"error": outcome.error}
    if outcome.result is not None and outcome.result.error_type:
        content["errorType"] = outcome.result.error_type
    return JSONResponse(status_code=_STATUS_CODES[outcome.status], content=content)
