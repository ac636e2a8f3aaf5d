"""
NFT Marketplace - FastAPI Application

HTTP surface over the marketplace ledger and its token registries.

Ledger failures are mapped to status codes by category:
validation 400, authorization 403, state 409, collaborator 502.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nftmarket import __version__
from nftmarket.api.routes import marketplace, tokens
from nftmarket.config import Settings, get_settings
from nftmarket.ledger import MarketplaceError, MarketplaceLedger, build_ledger
from nftmarket.monitoring import LoggingContextMiddleware, configure_logging, get_logger
from nftmarket.registry import (
    InvalidRecipientError,
    TokenNotFoundError,
    TokenRegistryError,
    TransferNotAuthorizedError,
)

logger = get_logger(__name__)

STATUS_BY_CATEGORY: dict[str, int] = {
    "validation": 400,
    "authorization": 403,
    "state": 409,
    "collaborator": 502,
}


def _registry_status(exc: TokenRegistryError) -> int:
    if isinstance(exc, TokenNotFoundError):
        return 404
    if isinstance(exc, TransferNotAuthorizedError):
        return 403
    if isinstance(exc, InvalidRecipientError):
        return 400
    return 502


def create_app(
    ledger: MarketplaceLedger | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        ledger: Ledger to serve; built from settings at startup when omitted
        settings: Application settings (defaults to the environment)

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    configure_logging(level=settings.log_level, json_output=settings.json_logs)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned = app.state.ledger is None
        if owned:
            app.state.ledger = await build_ledger(settings)
        logger.info("marketplace_api_started", ledger=app.state.ledger.address, env=settings.app_env)
        try:
            yield
        finally:
            if owned:
                for contract in app.state.ledger.token_contracts:
                    await app.state.ledger.token_registry(contract).close()
            logger.info("marketplace_api_stopped")

    production = settings.app_env == "production"
    app = FastAPI(
        title="NFT Marketplace",
        description="Escrow marketplace ledger for ERC-721 tokens",
        version=__version__,
        docs_url=None if production else "/docs",
        redoc_url=None if production else "/redoc",
        lifespan=lifespan,
    )
    app.state.ledger = ledger
    app.state.settings = settings

    app.add_middleware(LoggingContextMiddleware)

    app.include_router(marketplace.router)
    app.include_router(tokens.router)

    # ==================== Exception handlers ====================

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
        status_code = STATUS_BY_CATEGORY.get(exc.category, 400)
        logger.warning(
            "marketplace_request_rejected",
            error_type=type(exc).__name__,
            category=exc.category,
            error=str(exc),
        )
        return JSONResponse(
            status_code=status_code,
            content={
                "error": str(exc),
                "error_type": type(exc).__name__,
                "category": exc.category,
                "status_code": status_code,
                "path": str(request.url.path),
            },
        )

    @app.exception_handler(TokenRegistryError)
    async def token_registry_error_handler(request: Request, exc: TokenRegistryError) -> JSONResponse:
        status_code = _registry_status(exc)
        logger.warning("token_registry_request_failed", error_type=type(exc).__name__, error=str(exc))
        return JSONResponse(
            status_code=status_code,
            content={
                "error": str(exc),
                "error_type": type(exc).__name__,
                "status_code": status_code,
                "path": str(request.url.path),
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.detail,
                "status_code": exc.status_code,
                "path": str(request.url.path),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Submitted values are left out of the response
        errors = [
            {
                "loc": error.get("loc", []),
                "type": error.get("type", "unknown"),
                "msg": error.get("msg", "Validation failed"),
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content={
                "error": "Validation error",
                "details": errors,
                "path": str(request.url.path),
            },
        )

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "healthy" if app.state.ledger is not None else "starting"}

    return app


def run_server(host: str | None = None, port: int | None = None, reload: bool = False) -> None:
    """
    Run the marketplace server.

    For development use:
        python -m nftmarket
    """
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "nftmarket.api.app:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )
