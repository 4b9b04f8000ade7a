"""JSON API: watcher tick, strategy states, manual open, trade log, markets.

Handlers validate arguments and delegate; no strategy logic lives here.
Components are read from ``request.app.state`` (wired by main.py).
"""

from __future__ import annotations

import secrets
from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError, field_validator

from hlfunding.exceptions import ErrorKind, InvalidParameterError, StrategyError
from hlfunding.models import (
    StrategyMode,
    StrategySource,
    StrategyState,
    normalize_instrument,
    now_ms,
)
from hlfunding.strategy.manual_entry import MAX_OWNER_REF_LENGTH, ManualEntryRequest

log = structlog.get_logger(__name__)

router = APIRouter()

_STATUS_BY_KIND = {
    ErrorKind.INVALID_PARAMETER: 400,
    ErrorKind.INVALID_PRICE: 400,
    ErrorKind.INVALID_QUANTITY: 400,
    ErrorKind.INSUFFICIENT_FUNDING_SIGNAL: 400,
    ErrorKind.VENUE_REJECTED: 502,
    ErrorKind.SIGNAL_UNAVAILABLE: 502,
    ErrorKind.PERSISTENCE_FAILURE: 500,
}


def error_response(error: StrategyError) -> JSONResponse:
    """Map a structured strategy error to an HTTP error body."""
    return JSONResponse(
        status_code=_STATUS_BY_KIND.get(error.kind, 500),
        content={"ok": False, "error": error.to_dict()},
    )


def _parameter_error(message: str) -> JSONResponse:
    return error_response(InvalidParameterError(message))


class TickPayload(BaseModel):
    instruments: list[str] | None = None


class ManualOpenPayload(BaseModel):
    instrument: str
    notional_usd: Decimal
    hedge_factor: Decimal = Decimal("1")
    min_funding_rate: Decimal | None = None
    owner_ref: str | None = None


class StrategyStatePayload(BaseModel):
    """A manually constructed state for the upsert endpoint."""

    instrument: str = Field(min_length=1)
    mode: StrategyMode
    capital_usd: Decimal = Field(gt=0)
    perp_size: Decimal = Field(gt=0)
    spot_size: Decimal = Field(default=Decimal("0"), ge=0)
    entry_mark_price: Decimal = Field(gt=0)
    entry_time_ms: int | None = None
    exit_pnl_percent_target: Decimal
    min_funding_rate: Decimal
    is_open: bool = True
    source: StrategySource = StrategySource.MANUAL
    estimated_funding_pnl_usd: Decimal | None = None
    owner_ref: str | None = None

    @field_validator("mode")
    @classmethod
    def _mode_not_idle(cls, value: StrategyMode) -> StrategyMode:
        if value == StrategyMode.IDLE:
            raise ValueError("mode must not be IDLE")
        return value

    @field_validator("owner_ref")
    @classmethod
    def _trim_owner_ref(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        # Over-long references are dropped rather than rejected
        return value if value and len(value) <= MAX_OWNER_REF_LENGTH else None

    def to_state(self) -> StrategyState:
        return StrategyState(
            instrument=normalize_instrument(self.instrument),
            mode=self.mode,
            capital_usd=self.capital_usd,
            perp_size=self.perp_size,
            spot_size=self.spot_size,
            entry_mark_price=self.entry_mark_price,
            entry_time_ms=self.entry_time_ms if self.entry_time_ms is not None else now_ms(),
            exit_pnl_percent_target=self.exit_pnl_percent_target,
            min_funding_rate=self.min_funding_rate,
            is_open=self.is_open,
            source=self.source,
            estimated_funding_pnl_usd=self.estimated_funding_pnl_usd,
            owner_ref=self.owner_ref,
        )


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
        for err in exc.errors()
    )


async def _json_body(request: Request) -> Any:
    body = await request.body()
    if not body.strip():
        return None
    return await request.json()


@router.post("/strategy/tick")
async def run_watch_tick(request: Request) -> JSONResponse:
    """Run one watcher tick, optionally on a caller-supplied instrument list."""
    try:
        payload = TickPayload.model_validate(await _json_body(request) or {})
    except (ValidationError, ValueError) as e:
        return _parameter_error(f"Invalid tick payload: {e}")

    watcher = request.app.state.watcher
    results = await watcher.run_tick(payload.instruments)
    log.info("watch_tick_requested", instruments=len(results))
    return JSONResponse(content={"ok": True, "results": [r.to_dict() for r in results]})


@router.get("/strategy/states")
async def list_states(request: Request) -> JSONResponse:
    state_store = request.app.state.state_store
    try:
        states = await state_store.list_all()
    except StrategyError as e:
        return error_response(e)
    return JSONResponse(
        content={"ok": True, "states": {k: s.to_dict() for k, s in states.items()}}
    )


@router.post("/strategy/states")
async def upsert_state(request: Request) -> JSONResponse:
    """Overwrite the state for one instrument with a manually built one.

    Accepts either the state itself or ``{"state": {...}}``.
    """
    try:
        body = await _json_body(request)
    except ValueError:
        return _parameter_error("Request body must be JSON")
    if isinstance(body, dict) and isinstance(body.get("state"), dict):
        body = body["state"]
    if not isinstance(body, dict):
        return _parameter_error("Request body must be a strategy state object")

    try:
        payload = StrategyStatePayload.model_validate(body)
    except ValidationError as e:
        return _parameter_error(_validation_message(e))

    state_store = request.app.state.state_store
    try:
        saved = await state_store.save(payload.to_state())
    except StrategyError as e:
        return error_response(e)

    log.info("strategy_state_upserted", instrument=saved.instrument, mode=saved.mode.value)
    return JSONResponse(content={"ok": True, "state": saved.to_dict()})


@router.post("/strategy/open")
async def open_manual(
    request: Request,
    x_access_token: str | None = Header(default=None),
) -> JSONResponse:
    """Manual entry at impact prices. Requires X-Access-Token when configured."""
    expected = request.app.state.settings.manual.access_token.get_secret_value()
    if expected and not secrets.compare_digest(x_access_token or "", expected):
        log.warning("manual_open_forbidden")
        return JSONResponse(
            status_code=403,
            content={
                "ok": False,
                "error": {"kind": "forbidden", "message": "Invalid access token", "context": {}},
            },
        )

    try:
        payload = ManualOpenPayload.model_validate(await _json_body(request) or {})
    except ValidationError as e:
        return _parameter_error(_validation_message(e))
    except ValueError:
        return _parameter_error("Request body must be JSON")

    manual_entry = request.app.state.manual_entry
    try:
        result = await manual_entry.open(
            ManualEntryRequest(
                instrument=payload.instrument,
                notional_usd=payload.notional_usd,
                hedge_factor=payload.hedge_factor,
                min_funding_rate=payload.min_funding_rate,
                owner_ref=payload.owner_ref,
            )
        )
    except StrategyError as e:
        log.warning("manual_open_failed", kind=e.kind.value, error=e.message)
        return error_response(e)

    return JSONResponse(content={"ok": True, "result": result.to_dict()})


@router.get("/trades")
async def list_trades(
    request: Request,
    limit: int | None = Query(default=None, ge=1, le=500),
) -> JSONResponse:
    """Trade log, most recent first."""
    trade_log = request.app.state.trade_log
    try:
        records = await trade_log.list(limit)
    except StrategyError as e:
        return error_response(e)
    return JSONResponse(content={"ok": True, "trades": [r.to_dict() for r in records]})


@router.get("/markets")
async def get_markets(request: Request, instruments: str | None = None) -> JSONResponse:
    """Mark price and funding for a comma-separated list (default: watcher instruments)."""
    targets = (
        [i for i in instruments.split(",") if i.strip()]
        if instruments
        else list(request.app.state.settings.watcher.instruments)
    )
    signal_source = request.app.state.signal_source
    try:
        snapshots = await signal_source.get_markets_snapshot(targets)
    except StrategyError as e:
        return error_response(e)

    return JSONResponse(
        content={
            "ok": True,
            "markets": [
                {
                    "instrument": s.instrument,
                    "mark_price": str(s.mark_price),
                    "funding_rate": str(s.funding_rate),
                    "premium": str(s.premium),
                    "direction": s.direction.value,
                }
                for s in snapshots
            ],
        }
    )
