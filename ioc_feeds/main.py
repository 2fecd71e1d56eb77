import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from .api.blacklist import router as blacklist_router
from .api.health import router as health_router
from .api.indicators import router as indicators_router
from .api.prometheus import router as prometheus_router
from .api.sources import router as sources_router
from .api.whitelist import router as whitelist_router
from .config import API_PREFIX, API_VERSION, SCHEDULER_ENABLED
from .db_init import init_schema_and_seed
from .logging_config import setup_logging
from .scheduler import FeedScheduler

# Configure logging at import time
setup_logging()

logger = logging.getLogger("ioc_feeds")


@asynccontextmanager
async def lifespan(application: FastAPI):
    logger.info("IOC feed service starting up", extra={"component": "api", "version": API_VERSION})

    # Tables, default settings, output directories (idempotent)
    init_schema_and_seed()

    scheduler = FeedScheduler()
    application.state.scheduler = scheduler
    if SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("Scheduler disabled, feeds are only fetched on demand", extra={"component": "api"})

    try:
        yield
    finally:
        await scheduler.stop()
        logger.info("IOC feed service shutting down", extra={"component": "api"})


app = FastAPI(title="IOC Feed Aggregator", version=API_VERSION, lifespan=lifespan)
app.state.feed_transport = None


class ApiVersionHeaderMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-API-Version"] = "v1"
        return response


app.add_middleware(ApiVersionHeaderMiddleware)

app.include_router(health_router, prefix=API_PREFIX)
app.include_router(indicators_router, prefix=API_PREFIX)
app.include_router(whitelist_router, prefix=API_PREFIX)
app.include_router(sources_router, prefix=API_PREFIX)
app.include_router(blacklist_router, prefix=API_PREFIX)
app.include_router(prometheus_router, prefix=API_PREFIX)
