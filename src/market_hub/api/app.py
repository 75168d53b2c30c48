"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Sequence

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from market_hub.api.routes import router
from market_hub.api.schemas import envelope
from market_hub.core.config import HubConfig, load_config
from market_hub.core.exceptions import ClientRequestError, ConfigError, MarketHubError
from market_hub.core.models import ErrorInfo, ProviderErrorKind
from market_hub.providers.base import ProviderAdapter
from market_hub.services import build_services


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    config = app.state._pending_config or load_config()
    services = build_services(config, adapters=app.state._pending_adapters)
    await services.start()
    app.state.services = services

    yield

    await services.close()


def _error_response(
    status: int, kind: ProviderErrorKind, message: str, headers: dict | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        headers=headers,
        content=envelope(errors=[ErrorInfo(kind=kind, message=message)], success=False),
    )


def create_app(
    config: HubConfig | None = None,
    adapters: Sequence[ProviderAdapter] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Routes are served both at the root and under ``/api``.
    """
    import market_hub

    app = FastAPI(
        title="market-hub API",
        description="Read-only market data, news and scanner aggregation",
        version=market_hub.__version__,
        lifespan=lifespan,
    )

    # Stash config (and test adapters) so lifespan can retrieve them
    app.state._pending_config = config
    app.state._pending_adapters = adapters

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins if config else ["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.include_router(router, prefix="/api")

    # Exception handlers
    @app.exception_handler(MarketHubError)
    async def hub_exception_handler(request: Request, exc: MarketHubError):
        status_map = {
            ClientRequestError: 400,
            ConfigError: 500,
        }
        status = status_map.get(type(exc), 500)
        kind = ProviderErrorKind.CLIENT if status == 400 else ProviderErrorKind.SERVER
        return _error_response(status, kind, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'request'}: {err['msg']}"
            for err in exc.errors()
        )
        return _error_response(400, ProviderErrorKind.CLIENT, problems)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        kind = ProviderErrorKind.CLIENT if exc.status_code < 500 else ProviderErrorKind.SERVER
        headers = getattr(exc, "headers", None)
        return _error_response(exc.status_code, kind, str(exc.detail), headers)

    return app
