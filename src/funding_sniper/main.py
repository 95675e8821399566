"""Entry point for the funding sniper bot.

Wires all components together, optionally embeds the FastAPI status API,
and starts the orchestrator. When the status API is enabled (default), the
bot and the API share a single asyncio event loop via uvicorn's programmatic
API and FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown. Shutdown never closes an open
position: it stays on the exchange under its stop order and a warning is
logged for the operator.

Component wiring order (in _build_components):
1. ExchangeClient (BinanceFuturesClient, wrapped by PaperExchangeClient in paper mode)
2. TradingSession (position slot, order lock, trade history, alerts)
3. CandidateRanker
4. ProfitEvaluator
5. PositionManager
6. EntryScheduler
7. Reconciler
8. Orchestrator
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from funding_sniper.config import AppSettings
from funding_sniper.exchange.binance_client import BinanceFuturesClient
from funding_sniper.exchange.client import ExchangeClient
from funding_sniper.exchange.paper_client import PaperExchangeClient
from funding_sniper.logging import get_logger, setup_logging
from funding_sniper.market_data.ranker import CandidateRanker
from funding_sniper.orchestrator import Orchestrator
from funding_sniper.position.entry_scheduler import EntryScheduler
from funding_sniper.position.manager import PositionManager
from funding_sniper.position.profit_check import ProfitEvaluator
from funding_sniper.position.reconciler import Reconciler
from funding_sniper.session import TradingSession


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all bot components from settings.

    Note: Does NOT call exchange_client.connect() -- that happens in the
    lifespan (status API mode) or run() (headless mode).

    Args:
        settings: Application-wide settings.

    Returns:
        Dict mapping component names to instances.
    """
    logger = get_logger("funding_sniper.main")
    strategy = settings.strategy

    live_client = BinanceFuturesClient(settings.exchange)
    exchange_client: ExchangeClient
    if strategy.mode == "paper":
        exchange_client = PaperExchangeClient(live_client, settings.paper, settings.fees)
    else:
        api_key = settings.exchange.api_key.get_secret_value()
        if not api_key:
            logger.warning(
                "no_api_keys_configured",
                mode="live",
                note="Private endpoints (orders, positions, fills) will fail.",
            )
        exchange_client = live_client

    session = TradingSession()
    ranker = CandidateRanker(strategy, settings.fees)
    evaluator = ProfitEvaluator(session, exchange_client, settings.fees)
    position_manager = PositionManager(
        session=session,
        client=exchange_client,
        evaluator=evaluator,
        strategy=strategy,
        fees=settings.fees,
    )
    scheduler = EntryScheduler(session, position_manager, strategy)
    reconciler = Reconciler(session, exchange_client, strategy)

    orchestrator = Orchestrator(
        settings=settings,
        client=exchange_client,
        session=session,
        ranker=ranker,
        scheduler=scheduler,
        reconciler=reconciler,
    )

    return {
        "exchange_client": exchange_client,
        "session": session,
        "ranker": ranker,
        "evaluator": evaluator,
        "position_manager": position_manager,
        "scheduler": scheduler,
        "reconciler": reconciler,
        "orchestrator": orchestrator,
    }


def _setup_signal_handlers(orchestrator: Orchestrator) -> None:
    """Register SIGINT/SIGTERM handlers for graceful shutdown.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("funding_sniper.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        asyncio.create_task(orchestrator.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage bot component lifecycle within the FastAPI application.

    On startup: stores components on app.state, connects to the exchange and
    starts the orchestrator as a background task.

    On shutdown: stops the orchestrator, cancels the bot task and closes the
    exchange connection.
    """
    logger = get_logger("funding_sniper.main")
    settings = app.state.settings
    components = app.state.components

    app.state.orchestrator = components["orchestrator"]
    app.state.session = components["session"]

    _setup_signal_handlers(components["orchestrator"])

    await components["exchange_client"].connect()

    bot_task = asyncio.create_task(components["orchestrator"].start())

    logger.info("lifespan_started", mode=settings.strategy.mode)

    yield

    await components["orchestrator"].stop()

    bot_task.cancel()
    try:
        await bot_task
    except asyncio.CancelledError:
        pass

    await components["exchange_client"].close()

    logger.info("funding_sniper_stopped")


async def run() -> None:
    """Run the funding sniper bot.

    When the status API is enabled (DASHBOARD_ENABLED=true, the default) the
    bot runs inside uvicorn's event loop via the lifespan. Otherwise the
    orchestrator runs directly and this function manages signals and the
    exchange connection.
    """
    settings = AppSettings()

    setup_logging(settings.log_level, mode=settings.strategy.mode)
    logger = get_logger("funding_sniper.main")

    components = _build_components(settings)

    if settings.dashboard.enabled:
        from funding_sniper.dashboard.app import create_dashboard_app

        app = create_dashboard_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info(
            "starting_with_status_api",
            host=settings.dashboard.host,
            port=settings.dashboard.port,
            mode=settings.strategy.mode,
        )

        config = uvicorn.Config(
            app,
            host=settings.dashboard.host,
            port=settings.dashboard.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        _setup_signal_handlers(components["orchestrator"])

        logger.info(
            "starting_without_status_api",
            mode=settings.strategy.mode,
            investment_usd=str(settings.strategy.investment_usd),
            leverage=settings.strategy.leverage,
            threshold=str(settings.strategy.funding_rate_threshold),
        )

        try:
            await components["exchange_client"].connect()
            await components["orchestrator"].start()
        finally:
            await components["exchange_client"].close()
            logger.info("funding_sniper_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
