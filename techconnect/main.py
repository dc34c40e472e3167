from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import logging

from techconnect.core.config import settings
from techconnect.core.errors import register_exception_handlers
from techconnect.core.logging import configure_logging
from techconnect.db.session import Base, engine
from techconnect.api import (
    admin_jobs, auth, bids, companies, messages, notifications, payments, projects, translate, users,
)
from techconnect.services.scheduler_service import scheduler_service
from techconnect.services.translation_service import get_catalog
from techconnect.utils.cache import redis_health_check

configure_logging()
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address, default_limits=["100/minute"])


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    """
    logger.info("Starting TechConnect API...")
    get_catalog()
    if settings.SCHEDULER_ENABLED:
        scheduler_service.start()
    else:
        logger.info("Scheduler disabled by configuration")

    yield

    logger.info("Shutting down TechConnect API...")
    scheduler_service.stop()


app = FastAPI(
    title="TechConnect API",
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)

# Include routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(companies.router)
app.include_router(projects.router)
app.include_router(bids.router)
app.include_router(notifications.router)
app.include_router(messages.router)
app.include_router(payments.router)
app.include_router(translate.router)
app.include_router(admin_jobs.router)


@app.get("/")
@limiter.limit("60/minute")
def root(request: Request):
    return {"message": "Welcome to TechConnect API"}


@app.get("/health")
@limiter.limit("200/minute")  # Allow more for monitoring
def health_check(request: Request):
    """Health check with database, cache and scheduler status."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        database = "unavailable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "cache": "ok" if redis_health_check() else "unavailable",
        "scheduler": {
            "running": scheduler_service.scheduler.running,
            "jobs": scheduler_service.get_job_status()
        }
    }
