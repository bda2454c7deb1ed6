"""
Agent Chat Service - Main Application Entry Point
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from agentchat import __version__
from agentchat.api import (
    agents_router,
    chat_router,
    history_router,
    payments_router,
    training_router,
)
from agentchat.api.envelopes import error
from agentchat.config import Settings, get_settings
from agentchat.container import ServiceContainer
from agentchat.db import init_db
from agentchat.errors import (
    AgentChatError, ConfigurationError, NotFoundError, PaymentGatewayError, ValidationError,
)
from agentchat.logging_setup import configure_logging, generate_request_id, request_id_var

logger = logging.getLogger(__name__)


def _register_exception_handlers(app: FastAPI):
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return error(exc.message, 400)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "body"
        return error(f"Invalid {field}: {first.get('msg', 'invalid value')}", 400)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return error(str(exc), 404)

    @app.exception_handler(PaymentGatewayError)
    async def payment_gateway_handler(request: Request, exc: PaymentGatewayError):
        logger.error(f"❌ Payment gateway error: {exc.message}")
        return error(exc.message, 502)

    @app.exception_handler(ConfigurationError)
    async def configuration_handler(request: Request, exc: ConfigurationError):
        logger.error(f"❌ Configuration error: {exc}")
        return error(str(exc), 503)

    @app.exception_handler(AgentChatError)
    async def agentchat_error_handler(request: Request, exc: AgentChatError):
        logger.error(f"❌ Unhandled service error: {exc}", exc_info=True)
        return error("Internal server error", 500)


def create_app(settings: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application.

    A prebuilt ``container`` is used as-is (tests pass one wired to an
    in-memory database); otherwise one is built from settings at startup.
    """
    settings = settings or (container.settings if container else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler - runs on startup and shutdown"""
        configure_logging(settings.log_level, settings.log_json)
        logger.info(f"🤖 {settings.app_name} starting up...")

        owned = container is None
        app.state.container = container or ServiceContainer.build(settings)
        await init_db(app.state.container.engine)
        logger.info("✅ Database initialized")

        yield

        if owned:
            await app.state.container.close()
        logger.info(f"🤖 {settings.app_name} shutdown complete.")

    app = FastAPI(
        title=settings.app_name,
        description="Chat backend for AI agents with paid-agent access, knowledge context and live data tools",
        version=__version__,
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response

    _register_exception_handlers(app)

    # Include routers
    app.include_router(agents_router, prefix=settings.api_prefix)
    app.include_router(payments_router, prefix=settings.api_prefix)
    app.include_router(chat_router, prefix=settings.api_prefix)
    app.include_router(history_router, prefix=settings.api_prefix)
    app.include_router(training_router, prefix=settings.api_prefix)

    @app.get("/status")
    async def status(request: Request):
        """Service banner with a database check."""
        db_status = "connected"
        try:
            async with request.app.state.container.session_maker() as db:
                await db.execute(text("SELECT 1"))
        except Exception as e:
            db_status = f"error: {e}"

        return {
            "name": settings.app_name,
            "status": "healthy" if db_status == "connected" else "degraded",
            "version": __version__,
            "database": db_status,
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "features": ["chat", "paid_agents", "knowledge", "live_tools", "history"],
        }

    return app


app = create_app()
