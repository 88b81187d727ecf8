"""
BoxOffice - domain action processing service

FastAPI application entry point. The lifespan runs the domain action
monitor alongside the API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from boxoffice.app.api import health
from boxoffice.app.core.config import get_settings
from boxoffice.app.core.database import async_session_maker
from boxoffice.app.core.logging import setup_logging, get_logger

settings = get_settings()

# Initialize logging
setup_logging(level=settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"🚀 Starting {settings.app_name} v{settings.app_version}")

    monitor = None
    if settings.domain_action_monitor_enabled:
        from boxoffice.app.workers.domain_action_monitor import DomainActionMonitor
        monitor = DomainActionMonitor(settings=settings, session_factory=async_session_maker)
        await monitor.start()
        logger.info(
            f"Domain action monitor started "
            f"(batch_limit={settings.dispatch_batch_limit}, "
            f"poll_interval={settings.domain_action_poll_interval_seconds}s)"
        )
    app.state.domain_action_monitor = monitor

    yield
    # Shutdown
    logger.info(f"👋 Shutting down {settings.app_name}")

    if monitor is not None:
        # Loop failures surface here so the process exits non-cleanly
        await monitor.stop()


app = FastAPI(
    title=settings.app_name,
    description="Durable domain action processing for the ticketing backend",
    version=settings.app_version,
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router, tags=["Health"])
