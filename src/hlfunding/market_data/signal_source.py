"""Funding signals from the Hyperliquid info endpoint.

Reads ``metaAndAssetCtxs`` (universe with szDecimals + per-asset contexts
with funding, premium and impact prices) and ``allMids``. Unknown
instruments and malformed values fail loudly with SignalUnavailableError;
a missing price is never reported as zero to the engine.

HYPERLIQUID CONVENTION: Positive funding rate means longs pay shorts.
"""

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any

import ccxt

from hlfunding.exceptions import InvalidParameterError, SignalUnavailableError
from hlfunding.exchange.client import ExchangeClient
from hlfunding.logging import get_logger
from hlfunding.models import (
    FundingContext,
    FundingDirection,
    FundingSignal,
    MarketSnapshot,
    normalize_instrument,
    now_ms,
)
from hlfunding.position.quantization import clamp_precision

logger = get_logger(__name__)

# Used when the venue omits szDecimals for an asset
_DEFAULT_SIZE_PRECISION = 4


def _to_decimal(value: Any) -> Decimal | None:
    """Parse an API value to a finite Decimal, or None."""
    if value is None:
        return None
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def direction_for_rate(funding_rate: Decimal) -> FundingDirection:
    """CollectShort iff the rate is strictly positive."""
    return FundingDirection.COLLECT_SHORT if funding_rate > 0 else FundingDirection.COLLECT_LONG


def _require_instrument(instrument: str) -> str:
    normalized = normalize_instrument(instrument or "")
    if not normalized:
        raise InvalidParameterError("instrument is required")
    return normalized


class MarketSignalSource:
    """Fetches funding signals, market snapshots and mid prices.

    Args:
        exchange: Exchange client exposing the raw info endpoint.
    """

    def __init__(self, exchange: ExchangeClient) -> None:
        self._exchange = exchange

    async def _post(self, body: dict[str, Any]) -> Any:
        try:
            return await self._exchange.post_info(body)
        except ccxt.BaseError as exc:
            raise SignalUnavailableError(
                f"Hyperliquid info {body['type']} failed: {exc}",
                request=body["type"],
            ) from exc

    async def _fetch_meta_and_contexts(self) -> tuple[list[dict], list[dict]]:
        data = await self._post({"type": "metaAndAssetCtxs"})
        if not isinstance(data, list) or len(data) < 2:
            raise SignalUnavailableError("Unexpected metaAndAssetCtxs response")
        universe = (data[0] or {}).get("universe") or []
        contexts = data[1] or []
        return universe, contexts

    async def _fetch_mids(self) -> dict[str, Any]:
        mids = await self._post({"type": "allMids"})
        if not isinstance(mids, dict):
            raise SignalUnavailableError("Unexpected allMids response")
        return mids

    @staticmethod
    def _asset_index(universe: list[dict], instrument: str) -> int | None:
        for index, entry in enumerate(universe):
            if str((entry or {}).get("name", "")).upper() == instrument:
                return index
        return None

    def _parse_signal(
        self, instrument: str, universe: list[dict], contexts: list[dict]
    ) -> FundingSignal:
        index = self._asset_index(universe, instrument)
        if index is None or index >= len(contexts) or not contexts[index]:
            raise SignalUnavailableError(
                f"Instrument {instrument} not found in metaAndAssetCtxs",
                instrument=instrument,
            )

        ctx = contexts[index]
        funding_rate = _to_decimal(ctx.get("funding"))
        if funding_rate is None:
            raise SignalUnavailableError(
                f"Invalid funding rate for {instrument}",
                instrument=instrument,
                raw=ctx.get("funding"),
            )

        premium = _to_decimal(ctx.get("premium")) or Decimal("0")

        raw_decimals = universe[index].get("szDecimals")
        size_precision = (
            clamp_precision(raw_decimals)
            if isinstance(raw_decimals, int)
            else _DEFAULT_SIZE_PRECISION
        )

        impact_pxs = ctx.get("impactPxs") or []
        impact_bid = _to_decimal(impact_pxs[0]) if len(impact_pxs) > 0 else None
        impact_ask = _to_decimal(impact_pxs[1]) if len(impact_pxs) > 1 else None

        return FundingSignal(
            instrument=instrument,
            funding_rate=funding_rate,
            premium=premium,
            direction=direction_for_rate(funding_rate),
            size_precision=size_precision,
            impact_bid=impact_bid,
            impact_ask=impact_ask,
        )

    @staticmethod
    def _parse_mid(instrument: str, mids: dict[str, Any]) -> Decimal:
        mid = _to_decimal(mids.get(instrument))
        if mid is None or mid <= 0:
            raise SignalUnavailableError(
                f"Mid price not found for {instrument}",
                instrument=instrument,
            )
        return mid

    async def get_funding_signal(self, instrument: str) -> FundingSignal:
        """Return the current funding signal for one instrument."""
        normalized = _require_instrument(instrument)
        universe, contexts = await self._fetch_meta_and_contexts()
        signal = self._parse_signal(normalized, universe, contexts)
        logger.debug(
            "funding_signal_fetched",
            instrument=normalized,
            funding_rate=str(signal.funding_rate),
            direction=signal.direction.value,
        )
        return signal

    async def get_mid(self, instrument: str) -> Decimal:
        """Return the current mid price for one instrument."""
        normalized = _require_instrument(instrument)
        mids = await self._fetch_mids()
        return self._parse_mid(normalized, mids)

    async def get_markets_snapshot(self, instruments: list[str]) -> list[MarketSnapshot]:
        """Return mark price and funding for many instruments in two requests.

        Input is deduplicated and uppercased. An unknown instrument, an
        unparseable funding rate or a missing mid raises
        SignalUnavailableError for the whole snapshot.
        """
        targets = list(
            dict.fromkeys(
                normalize_instrument(i) for i in instruments or [] if i and i.strip()
            )
        )
        if not targets:
            return []

        (universe, contexts), mids = await asyncio.gather(
            self._fetch_meta_and_contexts(), self._fetch_mids()
        )

        snapshots: list[MarketSnapshot] = []
        for instrument in targets:
            signal = self._parse_signal(instrument, universe, contexts)
            snapshots.append(
                MarketSnapshot(
                    instrument=instrument,
                    mark_price=self._parse_mid(instrument, mids),
                    funding_rate=signal.funding_rate,
                    premium=signal.premium,
                    direction=signal.direction,
                )
            )
        return snapshots

    async def build_context(self, instrument: str) -> FundingContext:
        """Fetch signal and mark price concurrently for one evaluation."""
        normalized = _require_instrument(instrument)
        (universe, contexts), mids = await asyncio.gather(
            self._fetch_meta_and_contexts(), self._fetch_mids()
        )
        return FundingContext(
            signal=self._parse_signal(normalized, universe, contexts),
            mark_price=self._parse_mid(normalized, mids),
            now_ms=now_ms(),
        )
