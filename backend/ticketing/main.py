"""
Event Ticketing API - Main Application Entry Point

Registration and payment lifecycle for an event-ticketing marketplace:
- Seat and points reservation with single-statement conditional writes
- Compensating release on cancel / reject / expiry, exactly once
- Background sweeps for deadlines, event status and promotions
- Structured logging with request correlation, Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ticketing.core.config import get_settings
from ticketing.core.logging import setup_logging, get_logger
from ticketing.core.metrics import metrics_endpoint
from ticketing.api.deps import get_transaction_service
from ticketing.api.errors import register_error_handlers
from ticketing.api.router import api_router
from ticketing.api.middleware import RequestLoggingMiddleware
from ticketing.infrastructure.redis_client import get_redis, close_redis
from ticketing.scheduler import Scheduler, build_tasks
from ticketing.services.strategy_factory import close_backends

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        storage=settings.STORAGE_BACKEND,
    )

    service = get_transaction_service()

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        redis_client = await get_redis()
        if redis_client is None:
            logger.warning("redis_unavailable", message="Sweep locks are process-local")
        scheduler = Scheduler(
            build_tasks(service, settings),
            redis_client=redis_client,
            lock_ttl=settings.SWEEP_LOCK_TTL_SECONDS,
        )
        scheduler.start()
    else:
        logger.info("scheduler_disabled")

    app.state.scheduler = scheduler

    yield

    # Cleanup
    if scheduler is not None:
        await scheduler.stop()
    await close_redis()
    await close_backends()
    get_transaction_service.cache_clear()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Event registration API with concurrency-safe seat and points reservation",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

register_error_handlers(app)

# Routes
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    scheduler = getattr(app.state, "scheduler", None)
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "storage": settings.STORAGE_BACKEND,
        "scheduler": "running" if scheduler is not None and scheduler.running else "stopped",
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
