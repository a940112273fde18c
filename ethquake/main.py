"""Ethquake — application entry point.

Builds the FastAPI operator server around a ``StrategyScheduler`` and
provides the CLI that loads strategies and runs everything on one event
loop.
"""

import logging
from typing import Optional

from fastapi import FastAPI

from ethquake.api.routers import router
from ethquake.scheduler import StrategyScheduler
from ethquake.status import StatusReporter

logger = logging.getLogger("ethquake")


def create_app(
    scheduler: StrategyScheduler,
    basic_auth: Optional[tuple[str, str]] = None,
) -> FastAPI:
    """Return an app bound to *scheduler*.

    Args:
        scheduler: The orchestrator the endpoints read from and trigger.
        basic_auth: ``(user, password)`` to require HTTP Basic auth.
    """
    app = FastAPI(title="Ethquake Strategy Server", version="0.1.0")
    app.state.scheduler = scheduler
    app.state.reporter = StatusReporter(scheduler)
    app.state.basic_auth = basic_auth
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments, load strategies, and serve."""
    import argparse
    import asyncio

    from ethquake.config import load_config

    parser = argparse.ArgumentParser(description="Ethquake strategy server")
    parser.add_argument("--strategies-dir", help="Directory of strategy folders")
    parser.add_argument("--port", type=int, help="HTTP port (default: PORT or 8080)")
    parser.add_argument(
        "--no-server",
        action="store_true",
        help="Run the scheduler without the HTTP server",
    )
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    asyncio.run(
        _serve(
            config,
            strategies_dir=args.strategies_dir or config.strategies_dir,
            port=args.port or config.port,
            with_server=not args.no_server,
        )
    )


async def _serve(config, strategies_dir: str, port: int, with_server: bool = True) -> None:
    """Load strategies, start the scheduler, and serve until stopped."""
    import asyncio
    import pathlib
    import signal

    import uvicorn

    from ethquake.alerts.telegram import TelegramNotifier
    from ethquake.broker.paper import PaperExecutor
    from ethquake.loader import load_strategies
    from ethquake.market.feed import EmaFeed
    from ethquake.market.kraken_client import KrakenMarketData
    from ethquake.pipeline import PipelineRunner
    from ethquake.repos.activity_repo import ActivityRepo
    from ethquake.repos.db import close_all, init_db
    from ethquake.repos.state_repo import StateRepo

    init_db(config.db_path)
    runner = PipelineRunner(
        feed=EmaFeed(KrakenMarketData(config)),
        executor=PaperExecutor(),
        state_repo=StateRepo(config.db_path),
        activity_repo=ActivityRepo(config.db_path),
        notifier=TelegramNotifier(config.telegram_bot_api_key),
    )
    scheduler = StrategyScheduler(
        timezone=config.scheduler_timezone,
        heartbeat_seconds=config.heartbeat_seconds,
    )

    await load_strategies(pathlib.Path(strategies_dir), scheduler, runner)
    scheduler.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    try:
        if with_server:
            if not config.auth_enabled:
                logger.warning("BASIC_AUTH_USER/BASIC_AUTH_PASSWORD not set — API is unauthenticated")
            auth = (
                (config.basic_auth_user, config.basic_auth_password)
                if config.auth_enabled else None
            )
            app = create_app(scheduler, basic_auth=auth)
            server = uvicorn.Server(
                uvicorn.Config(app, host=config.host, port=port, log_level="info")
            )
            logger.info("Ethquake server running on port %d.", port)
            serve_task = asyncio.create_task(server.serve())
            await asyncio.wait(
                [serve_task, asyncio.create_task(stop.wait())],
                return_when=asyncio.FIRST_COMPLETED,
            )
            server.should_exit = True
            await serve_task
        else:
            logger.info("Running scheduler only (no HTTP server).")
            await stop.wait()
    finally:
        scheduler.shutdown()
        close_all()
        logger.info("Ethquake stopped.")


if __name__ == "__main__":
    _run_cli()
