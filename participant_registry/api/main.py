"""FastAPI application entry point for the participant registry."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from participant_registry import __version__
from participant_registry.api.middleware.logging_middleware import LoggingMiddleware
from participant_registry.api.routes.health import router as health_router
from participant_registry.api.routes.participants import router as participants_router
from participant_registry.api.routes.statistics import router as statistics_router
from participant_registry.api.startup import prepare_document_store, shutdown
from participant_registry.infrastructure.observability import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run startup hooks, serve, then release resources."""
    configure_logging()
    await prepare_document_store()
    yield
    await shutdown()


app = FastAPI(
    title="Participant Registry API",
    description="Lifecycle management for participant records",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(LoggingMiddleware)

app.include_router(health_router)
app.include_router(participants_router)
app.include_router(statistics_router)
