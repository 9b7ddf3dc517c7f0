"""
GlobeTrotter collaboration backend.

Wires the v1 API, the chat WebSocket, the process-wide chat room registry
and the global error handlers into one FastAPI application.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from globetrotter.app.core.config import settings
from globetrotter.app.api.v1.router import router as api_v1_router
from globetrotter.app.db.session import create_tables, get_db
from globetrotter.app.core.observability import ObservabilityMiddleware, configure_logging
from globetrotter.app.core.redis_client import close_redis, ping_redis
from globetrotter.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from globetrotter.app.services.chat_registry import ChatRoomRegistry

# Register every model with Base before create_tables runs
from globetrotter.app.models.user import User
from globetrotter.app.models.audit_log import AuditLog
from globetrotter.app.models.trip import Trip
from globetrotter.app.models.trip_member import TripMember
from globetrotter.app.models.trip_invite import TripInvite
from globetrotter.app.models.chat_message import ChatMessage

logger = logging.getLogger("globetrotter.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    logger.info("%s %s started", settings.app_name, settings.api_version)
    yield
    logger.info("Shutting down with %s chat connection(s) open", app.state.chat_registry.connection_count)
    await close_redis()


configure_logging()

app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Trip sharing, membership, invites and trip chat for GlobeTrotter",
    lifespan=lifespan,
)

# One live chat registry per process; clients reconnect after a restart
app.state.chat_registry = ChatRoomRegistry()

app.add_middleware(ObservabilityMiddleware)

app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/health", tags=["Health"])
async def health_check(db: AsyncSession = Depends(get_db)):
    """Liveness plus the state of the database, Redis and the chat registry."""
    try:
        await db.execute(text("SELECT 1"))
        database = "up"
    except SQLAlchemyError as e:
        logger.warning("Health check could not reach the database: %s", e)
        database = "down"

    return {
        "status": "healthy" if database == "up" else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "database": database,
        "redis": "up" if await ping_redis() else "down",
        "chat_connections": app.state.chat_registry.connection_count,
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to GlobeTrotter Backend API",
        "docs": "/docs",
        "health": "/health",
    }
