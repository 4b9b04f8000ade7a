"""Scheduled exit watcher.

Each tick walks the watch-list sequentially (to bound burst load on the
info endpoint): build context -> load state -> exit evaluation -> persist
if changed -> per-instrument WatchResult. A failure on one instrument is
reported as that instrument's ERROR result and never stops the batch.

The watcher only ever closes positions. Opening is a manual action.
"""

from __future__ import annotations

import asyncio

import structlog

from hlfunding.config import WatcherSettings
from hlfunding.data.state_store import StrategyStateStore
from hlfunding.exceptions import StrategyError
from hlfunding.logging import get_logger
from hlfunding.market_data.signal_source import MarketSignalSource
from hlfunding.models import WatchAction, WatchResult, normalize_instrument
from hlfunding.strategy.engine import StrategyEngine

logger = get_logger(__name__)


class Watcher:
    """Periodically re-evaluates open positions and closes them when due.

    Args:
        signal_source: Funding signal and mark price provider.
        engine: Strategy engine used for exit evaluation and close orders.
        state_store: Persisted strategy states.
        settings: Watch-list and tick interval.
    """

    def __init__(
        self,
        signal_source: MarketSignalSource,
        engine: StrategyEngine,
        state_store: StrategyStateStore,
        settings: WatcherSettings,
    ) -> None:
        self._signal_source = signal_source
        self._engine = engine
        self._state_store = state_store
        self._settings = settings
        self._running = False
        self._task: asyncio.Task | None = None
        self._cycle_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    async def _watch_one(self, instrument: str) -> WatchResult:
        ctx = await self._signal_source.build_context(instrument)
        current = await self._state_store.load(instrument)
        updated = await self._engine.maybe_close(current, ctx)

        if updated is not current and updated is not None:
            updated = await self._state_store.save(updated)

        closed = current is not None and current.is_open and updated is not None and not updated.is_open
        return WatchResult(
            instrument=instrument,
            action=WatchAction.CLOSED if closed else WatchAction.IDLE,
            funding_rate=ctx.funding_rate,
            state=updated,
        )

    async def run_tick(self, instruments: list[str] | None = None) -> list[WatchResult]:
        """Evaluate every instrument once and return one result per instrument.

        Args:
            instruments: Override for the configured watch-list.
        """
        targets = [
            normalize_instrument(i)
            for i in (instruments if instruments else self._settings.instruments)
            if i and i.strip()
        ]

        results: list[WatchResult] = []
        async with self._cycle_lock:
            for instrument in targets:
                with structlog.contextvars.bound_contextvars(instrument=instrument):
                    try:
                        results.append(await self._watch_one(instrument))
                    except StrategyError as e:
                        logger.error("watch_instrument_failed", error=e.message, kind=e.kind.value)
                        results.append(
                            WatchResult(
                                instrument=instrument,
                                action=WatchAction.ERROR,
                                error=e.to_dict(),
                            )
                        )
                    except Exception as e:
                        logger.error("watch_instrument_unexpected_error", error=str(e), exc_info=True)
                        results.append(
                            WatchResult(
                                instrument=instrument,
                                action=WatchAction.ERROR,
                                error={"kind": "unexpected", "message": str(e), "context": {}},
                            )
                        )

        logger.info(
            "watch_tick_completed",
            instruments=len(results),
            closed=sum(1 for r in results if r.action == WatchAction.CLOSED),
            errors=sum(1 for r in results if r.action == WatchAction.ERROR),
        )
        return results

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_tick()
                await asyncio.sleep(self._settings.interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("watch_loop_error", error=str(e), exc_info=True)
                await asyncio.sleep(10)

    def start(self) -> None:
        """Start the background tick loop (idempotent)."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "watcher_started",
            interval_seconds=self._settings.interval_seconds,
            instruments=len(self._settings.instruments),
        )

    async def stop(self) -> None:
        """Stop the loop, waiting for an in-flight tick to be cancelled."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("watcher_stopped")
