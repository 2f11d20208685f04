"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from marketing_backend.core.auth import SessionCookieMiddleware
from marketing_backend.core.database import Base, check_connection
from marketing_backend.core.dependencies import (
    get_app_settings,
    get_engine,
    get_session_store,
    get_settings,
    get_shop_repository,
)
from marketing_backend.core.errors import MarketingError
from marketing_backend.core.repository import ShopRepository
from marketing_backend.core.session import SessionStore
from marketing_backend.core.settings import AppSettings, ShopifySettings
from marketing_backend.plugins.billing import BillingController, create_billing_router
from marketing_backend.plugins.shopify import ShopifyOAuthConnector, create_shopify_router
from marketing_backend.plugins.shopify_client import ShopifyClient
from marketing_backend.plugins.webhooks import create_webhook_router

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("api")


# Request tracing middleware
class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Request tracing middleware."""

    async def dispatch(self, request: Request, call_next: Callable) -> Any:
        # Query strings may carry OAuth codes, so only the path is logged
        logger.info("Request: %s %s", request.method, request.url.path)

        response = await call_next(request)

        logger.info("Response status: %s", response.status_code)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan for the FastAPI application."""
    if app.state.init_database:
        logger.info("Initializing database...")
        engine = get_engine()
        Base.metadata.create_all(bind=engine)
        check_connection(engine)
        logger.info("Database initialized successfully!")
    yield


def create_app(
    settings: Optional[ShopifySettings] = None,
    app_settings: Optional[AppSettings] = None,
    shops: Optional[ShopRepository] = None,
    session_store: Optional[SessionStore] = None,
    client: Optional[ShopifyClient] = None,
) -> FastAPI:
    """
    Assemble the application.

    Anything not passed in is resolved from the process-wide providers, which
    read their configuration from the environment.
    """
    if settings is None:
        settings = get_settings()
    if app_settings is None:
        app_settings = get_app_settings()
    if session_store is None:
        session_store = get_session_store()
    if client is None:
        client = ShopifyClient(settings)

    app = FastAPI(
        title="Marketing API",
        description="Shopify connection and billing for the marketing suite",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.init_database = shops is None
    if shops is None:
        shops = get_shop_repository()
    app.state.session_store = session_store

    # Add request tracing middleware
    app.add_middleware(RequestTracingMiddleware)

    app.add_middleware(
        SessionCookieMiddleware,
        store=session_store,
        settings=app_settings,
        secure=settings.is_production,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(MarketingError)
    async def marketing_error_handler(request: Request, exc: MarketingError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    connector = ShopifyOAuthConnector(settings, client, shops)
    billing = BillingController(settings, client, shops)

    app.include_router(create_shopify_router(connector, client, settings), prefix="/api/shopify")
    app.include_router(create_billing_router(billing), prefix="/api/billing")
    app.include_router(create_webhook_router(settings), prefix="/api/webhooks")

    @app.get("/")
    async def root() -> dict:
        """Root endpoint."""
        return {"message": "Welcome to the Marketing API"}

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    return app


app = create_app()
