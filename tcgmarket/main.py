"""
FastAPI application entry point for the TCG Marketplace service.
"""
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from tcgmarket.api.v1.routes import collection as collection_router
from tcgmarket.api.v1.routes import handovers as handovers_router
from tcgmarket.api.v1.routes import listings as listings_router
from tcgmarket.api.v1.routes import purchases as purchases_router
from tcgmarket.api.v1.routes import reports as reports_router
from tcgmarket.api.v1.routes import trades as trades_router
from tcgmarket.core.config import get_settings
from tcgmarket.core.database import close_engine
from tcgmarket.core.exception_handlers import EXCEPTION_HANDLERS
from tcgmarket.core.health import get_health_status
from tcgmarket.core.logging import LogContext, get_logger, setup_logging
from tcgmarket.core.prometheus_metrics import (
    get_metrics_response,
    http_request_duration_seconds,
    http_requests_total,
)
from tcgmarket.core.redis_client import close_redis

# Setup logging first
setup_logging()

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    logger.info("Starting TCG Marketplace")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.DEBUG}")

    yield

    logger.info("Shutting down TCG Marketplace")
    await close_redis()
    await close_engine()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.APP_VERSION,
    description="Trading card marketplace: listings, trade offers, handovers and reports",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

allowed_origins = [origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",") if origin.strip()]
if "*" in allowed_origins and settings.ENVIRONMENT == "production":
    logger.warning("CORS allow_origins is set to '*' in production! This is a security risk.")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


for exception_type, handler in EXCEPTION_HANDLERS.items():
    app.add_exception_handler(exception_type, handler)


@app.middleware("http")
async def trace_requests(request: Request, call_next):
    """Bind a trace id to the request's logs, echo it back and record metrics."""
    trace_id = (
        request.headers.get("X-Trace-Id")
        or request.headers.get("X-Request-Id")
        or str(uuid.uuid4())
    )
    request.state.trace_id = trace_id

    start = time.perf_counter()
    with LogContext(trace_id=trace_id):
        response = await call_next(request)
    elapsed = time.perf_counter() - start

    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    http_requests_total.labels(
        method=request.method, endpoint=endpoint, status_code=str(response.status_code)
    ).inc()
    http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(elapsed)

    response.headers["X-Trace-Id"] = trace_id
    return response


@app.get("/health/live")
async def health_live():
    """Liveness probe."""
    return {"status": "alive"}


@app.get("/health/ready")
async def health_ready():
    """
    Readiness probe.

    Returns 200 if the database (and Redis, when configured) is reachable,
    503 otherwise.
    """
    health_status = await get_health_status()

    if health_status["status"] == "healthy":
        return health_status
    return JSONResponse(status_code=503, content=health_status)


@app.get("/health")
async def health():
    """Detailed health check endpoint."""
    return await get_health_status()


@app.get("/metrics")
async def metrics():
    """Prometheus metrics in text format."""
    metrics_text, content_type = get_metrics_response()
    return Response(content=metrics_text, media_type=content_type)


app.include_router(listings_router.router, prefix=settings.API_V1_STR)
app.include_router(purchases_router.router, prefix=settings.API_V1_STR)
app.include_router(trades_router.router, prefix=settings.API_V1_STR)
app.include_router(handovers_router.router, prefix=settings.API_V1_STR)
app.include_router(reports_router.router, prefix=settings.API_V1_STR)
app.include_router(reports_router.admin_router, prefix=settings.API_V1_STR)
app.include_router(collection_router.router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tcgmarket.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
