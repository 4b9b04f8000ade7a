"""FastAPI application factory for the strategy HTTP API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from hlfunding.api import routes
from hlfunding.exceptions import InvalidParameterError, StrategyError


async def _strategy_error_handler(request: Request, exc: StrategyError) -> JSONResponse:
    return routes.error_response(exc)


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    message = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return routes.error_response(InvalidParameterError(message))


def create_app(lifespan: Any = None) -> FastAPI:
    """Create the API application.

    Args:
        lifespan: Optional async context manager for startup/shutdown.
                  main.py injects one that wires components onto app.state.

    Returns:
        FastAPI application with the JSON routes mounted under /api.
    """
    app = FastAPI(
        title="Hyperliquid Funding Strategy",
        lifespan=lifespan,
    )

    app.add_exception_handler(StrategyError, _strategy_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    app.include_router(routes.router, prefix="/api")

    return app
