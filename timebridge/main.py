"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from timebridge import __version__
from timebridge.api import jobs, users
from timebridge.config import settings
from timebridge.models.base import init_db
from timebridge.scheduler import scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting TimeBridge")
    init_db()
    scheduler.start()
    yield
    # Shutdown
    logger.info("Stopping TimeBridge")
    scheduler.stop()


app = FastAPI(
    title="TimeBridge",
    description="Synchronize projects, issues and time entries between time tracking services",
    version=__version__,
    lifespan=lifespan,
)

# Include API routers
app.include_router(users.router)
app.include_router(jobs.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "TimeBridge"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "timebridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
