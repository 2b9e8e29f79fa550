from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy import text
from starlette.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware
from app.api import dispense, quota, reports, stations, transactions, vehicles
from app.api.deps import get_container
from app.core.config import settings
from app.core.errors import FuelQuotaError, StorageUnavailable
from app.core.redis import init_redis, close_redis, get_redis
from app.core.metrics import registry, request_count, request_duration, db_connected, redis_connected, get_metrics_text
from app.db.session import AsyncSessionLocal
import time
import logging

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            request_count.labels(
                method=request.method,
                endpoint=request.url.path,
                status=response.status_code
            ).inc()

            request_duration.labels(
                method=request.method,
                endpoint=request.url.path
            ).observe(duration)

            return response
        except Exception:
            duration = time.time() - start_time
            request_count.labels(
                method=request.method,
                endpoint=request.url.path,
                status=500
            ).inc()
            request_duration.labels(
                method=request.method,
                endpoint=request.url.path
            ).observe(duration)
            raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting...")
    container = get_container()

    logger.info("Initializing Redis connection...")
    try:
        await init_redis()
        redis_connected.set(1)
        logger.info("Redis connected")
    except Exception as e:
        logger.error(f"Redis connection failed, quota reads run uncached: {e}")
        redis_connected.set(0)
    container.cache.redis = get_redis()

    try:
        async with AsyncSessionLocal() as db:
            consistent = await container.analytics.load_all(db)
        db_connected.set(1)
        logger.info(f"Database connected, analytics loaded {len(container.analytics)} transaction(s) (consistent={consistent})")
    except StorageUnavailable as e:
        logger.error(f"Database connection failed: {e.details}")
        db_connected.set(0)

    yield

    logger.info("Application shutting down...")
    await close_redis()
    container.cache.redis = None
    redis_connected.set(0)
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    lifespan=lifespan
)

app.add_middleware(MetricsMiddleware)

app.include_router(quota.router)
app.include_router(dispense.router)
app.include_router(transactions.router)
app.include_router(reports.router)
app.include_router(vehicles.router)
app.include_router(stations.router)


@app.exception_handler(FuelQuotaError)
async def fuel_quota_error_handler(request: Request, exc: FuelQuotaError):
    if exc.retryable:
        logger.warning(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/metrics", tags=["monitoring"])
async def metrics():
    return Response(
        content=get_metrics_text(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )


@app.get("/health", tags=["monitoring"])
async def health_check():
    redis = get_redis()
    redis_healthy = redis is not None

    return {
        "status": "healthy",
        "service": settings.API_TITLE,
        "version": settings.API_VERSION,
        "dependencies": {
            "redis": "connected" if redis_healthy else "disconnected",
            "database": "connected" if registry.get_sample_value("db_connected") else "disconnected"
        }
    }


@app.get("/readiness", tags=["monitoring"])
async def readiness_check():
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        db_connected.set(0)
        return JSONResponse(status_code=503, content={"ready": False, "reason": "Database not available"})

    db_connected.set(1)
    return {
        "ready": True,
        "service": settings.API_TITLE
    }


@app.get("/", tags=["root"])
async def root():
    return {
        "message": settings.API_TITLE,
        "version": settings.API_VERSION,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics"
    }
