"""Entry point for the Hyperliquid funding strategy service.

Wires all components together and runs the exit watcher, optionally
alongside the HTTP API. When the API is enabled (default), the watcher
and API share one asyncio event loop via uvicorn's programmatic API and
FastAPI's lifespan context manager.

Component wiring order (in _build_components):
1. HyperliquidClient (ccxt async)
2. MarketSignalSource (info endpoint)
3. OrderGateway (PaperOrderGateway or LiveOrderGateway based on mode)
4. StrategyDatabase, StrategyStateStore, TradeLog (aiosqlite)
5. StrategyEngine (exit evaluation, automatic entry)
6. ManualEntryFlow (user-triggered opens)
7. Watcher (scheduled exits)
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from hlfunding.config import AppSettings
from hlfunding.data.database import StrategyDatabase
from hlfunding.data.state_store import StrategyStateStore
from hlfunding.data.trade_log import TradeLog
from hlfunding.exchange.hyperliquid_client import HyperliquidClient
from hlfunding.logging import get_logger, setup_logging
from hlfunding.market_data.signal_source import MarketSignalSource
from hlfunding.strategy.engine import StrategyEngine
from hlfunding.strategy.manual_entry import ManualEntryFlow
from hlfunding.watcher import Watcher


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all components from settings.

    Does NOT connect the exchange client or the database; that happens in
    the lifespan (API mode) or run() (headless mode).
    """
    logger = get_logger("hlfunding.main")

    exchange_client = HyperliquidClient(settings.exchange)
    signal_source = MarketSignalSource(exchange_client)

    if settings.trading.mode == "paper":
        from hlfunding.execution.paper_gateway import PaperOrderGateway

        gateway = PaperOrderGateway()
    else:
        from hlfunding.execution.live_gateway import LiveOrderGateway

        if not settings.exchange.private_key.get_secret_value():
            logger.warning(
                "no_private_key_configured",
                mode="live",
                note="Market data will work. Order submission will be rejected.",
            )
        gateway = LiveOrderGateway(
            exchange_client, timeout_seconds=settings.trading.order_timeout_seconds
        )

    database = StrategyDatabase(settings.store.db_path)
    state_store = StrategyStateStore(database)
    trade_log = TradeLog(database, max_records=settings.store.trade_log_limit)

    engine = StrategyEngine(gateway, settings.strategy)
    manual_entry = ManualEntryFlow(
        signal_source=signal_source,
        gateway=gateway,
        state_store=state_store,
        trade_log=trade_log,
        settings=settings.manual,
    )
    watcher = Watcher(signal_source, engine, state_store, settings.watcher)

    return {
        "exchange_client": exchange_client,
        "signal_source": signal_source,
        "gateway": gateway,
        "database": database,
        "state_store": state_store,
        "trade_log": trade_log,
        "engine": engine,
        "manual_entry": manual_entry,
        "watcher": watcher,
    }


async def _start_components(components: dict[str, Any], settings: AppSettings) -> None:
    await components["database"].connect()
    await components["exchange_client"].connect()
    if settings.watcher.enabled:
        components["watcher"].start()


async def _stop_components(components: dict[str, Any]) -> None:
    await components["watcher"].stop()
    await components["exchange_client"].close()
    await components["database"].close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Attach components to app.state, connect on startup, clean up on shutdown."""
    logger = get_logger("hlfunding.main")
    settings = app.state.settings
    components = app.state.components

    app.state.signal_source = components["signal_source"]
    app.state.state_store = components["state_store"]
    app.state.trade_log = components["trade_log"]
    app.state.manual_entry = components["manual_entry"]
    app.state.watcher = components["watcher"]

    await _start_components(components, settings)
    logger.info("lifespan_started", mode=settings.trading.mode)

    yield

    await _stop_components(components)
    logger.info("funding_strategy_stopped")


async def run() -> None:
    """Run the service, with or without the HTTP API (API_ENABLED)."""
    settings = AppSettings()

    setup_logging(settings.log_level)
    logger = get_logger("hlfunding.main")

    components = _build_components(settings)

    if settings.api.enabled:
        from hlfunding.api.app import create_app

        app = create_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info(
            "starting_with_api",
            host=settings.api.host,
            port=settings.api.port,
            mode=settings.trading.mode,
        )

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",
        )
        server = uvicorn.Server(config)
        await server.serve()
        return

    logger.info(
        "starting_without_api",
        mode=settings.trading.mode,
        instruments=len(settings.watcher.instruments),
        interval_seconds=settings.watcher.interval_seconds,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await _start_components(components, settings)
        await stop_event.wait()
        logger.info("graceful_shutdown_signal")
    finally:
        await _stop_components(components)
        logger.info("funding_strategy_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
