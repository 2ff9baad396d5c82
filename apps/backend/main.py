"""
Ganttium - API Service
======================
FastAPI application for the Ganttium project management backend.
"""

from contextlib import asynccontextmanager
from pathlib import Path
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

from circuit_breaker import CircuitBreakerOpenError
from config import APP_VERSION, get_settings
from database import check_database, create_tables, dispose_engine, get_session_factory, init_engine
from exceptions import GanttiumBaseException, RateLimitExceededError, RedisConnectionError
from logging_config import configure_logging, get_logger
import metrics as app_metrics
from rate_limiter import RateLimitMiddleware
from routers import (
    auth_router,
    chat_router,
    chat_ws_router,
    documents_router,
    exchange_rates_router,
    notifications_router,
    organizations_router,
    pricing_router,
    projects_router,
    resources_router,
    system_router,
    tracking_router,
)
from schemas import HealthResponse
from security import SecurityHeadersMiddleware
from services.chat_hub import ChatHub
from services.exchange_rates import ExchangeRateService
from services.pubsub import RedisPubSub
from services.scheduler import ExchangeRateScheduler
from services.sms import TwilioSmsClient

logger = get_logger(__name__)

GENERIC_ERROR_MESSAGE = "An internal error occurred. Please try again later."


# =============================================================================
# Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database, Redis and outbound clients; close them on shutdown."""
    settings = get_settings()
    configure_logging(environment=settings.environment, log_level=settings.log_level)
    logger.info("Starting backend", environment=settings.environment, version=APP_VERSION)

    Path("data").mkdir(parents=True, exist_ok=True)
    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)

    init_engine(settings.effective_database_url)
    await create_tables()
    logger.info("Database tables initialized")

    pubsub = None
    if settings.redis_enabled:
        pubsub = RedisPubSub(settings.redis_url)
        try:
            await pubsub.connect()
        except RedisConnectionError as e:
            # Chat falls back to in-process delivery
            logger.warning("Redis unavailable, chat limited to this instance", error=e.message)

    app.state.chat_hub = ChatHub(pubsub)
    app.state.sms_client = TwilioSmsClient(settings)
    app.state.exchange_service = ExchangeRateService(settings)
    app.state.exchange_scheduler = None

    if settings.exchange_sync_enabled:
        scheduler = ExchangeRateScheduler(app.state.exchange_service, get_session_factory(), settings)
        scheduler.start()
        app.state.exchange_scheduler = scheduler

    try:
        yield
    finally:
        logger.info("Shutting down backend")
        if app.state.exchange_scheduler is not None:
            await app.state.exchange_scheduler.stop()
        await app.state.sms_client.close()
        if pubsub is not None:
            await pubsub.close()
        await dispose_engine()


app = FastAPI(
    title="Ganttium",
    description="Multi-tenant project management backend for EPC projects",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# =============================================================================
# Middleware
# =============================================================================

class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject request ID into all logs for request tracing."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record request metrics for observability."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Route template keeps label cardinality bounded
        route = request.scope.get("route")
        endpoint = getattr(route, "path", "unmatched")

        app_metrics.http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
        ).inc()
        app_metrics.http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


_settings = get_settings()

if _settings.api_rate_limit_per_minute > 0:
    app.add_middleware(RateLimitMiddleware, requests_per_minute=_settings.api_rate_limit_per_minute)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIDMiddleware)


# =============================================================================
# Routers
# =============================================================================

app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
app.include_router(organizations_router, prefix="/api/organizations", tags=["organizations"])
app.include_router(projects_router, prefix="/api/projects", tags=["projects"])
app.include_router(tracking_router, prefix="/api/projects", tags=["tracking"])
app.include_router(resources_router, prefix="/api/projects", tags=["resources"])
app.include_router(documents_router, prefix="/api/projects", tags=["documents"])
app.include_router(chat_router, prefix="/api", tags=["chat"])
app.include_router(chat_ws_router, tags=["chat"])
app.include_router(exchange_rates_router, prefix="/api/exchange-rates", tags=["exchange-rates"])
app.include_router(notifications_router, prefix="/api/notifications", tags=["notifications"])
app.include_router(pricing_router, prefix="/api/pricing", tags=["pricing"])
app.include_router(system_router, prefix="/api/system", tags=["system"])


# =============================================================================
# Exception Handlers
# =============================================================================

def _error_response(request: Request, status_code: int, error: dict, headers=None) -> JSONResponse:
    error["request_id"] = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "path": str(request.url.path)},
        headers=headers,
    )


@app.exception_handler(GanttiumBaseException)
async def ganttium_exception_handler(request: Request, exc: GanttiumBaseException):
    """Translate domain exceptions using the status code they carry."""
    status_code = exc.status_code
    if status_code >= 500:
        logger.error(
            "Request failed",
            error_type=exc.__class__.__name__,
            error=exc.message,
            context=exc.context,
            original_error=str(exc.original_error) if exc.original_error else None,
        )
    else:
        logger.info("Request rejected", error_type=exc.__class__.__name__, status=status_code, error=exc.message)

    if status_code >= 500 and get_settings().is_production:
        error = {"error_type": "InternalServerError", "message": GENERIC_ERROR_MESSAGE}
    else:
        error = exc.to_dict()

    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(int(exc.retry_after) + 1)}

    return _error_response(request, status_code, error, headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _error_response(
        request,
        exc.status_code,
        {"error_type": "HTTPException", "message": message},
        getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return _error_response(
        request,
        422,
        {"error_type": "RequestValidationError", "message": "Invalid request", "context": {"errors": errors}},
    )


@app.exception_handler(CircuitBreakerOpenError)
async def circuit_breaker_handler(request: Request, exc: CircuitBreakerOpenError):
    """A cut-off provider answers 503 with a Retry-After hint."""
    logger.warning("Provider circuit open", provider=exc.provider, retry_after=exc.retry_after)
    return _error_response(
        request,
        503,
        {
            "error_type": "ServiceUnavailable",
            "message": str(exc),
            "context": {"provider": exc.provider},
        },
        headers={"Retry-After": str(int(exc.retry_after) + 1)},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unexpected exceptions."""
    logger.exception("Unexpected error", error=str(exc))

    if get_settings().is_production:
        error = {"error_type": "InternalServerError", "message": GENERIC_ERROR_MESSAGE}
    else:
        error = {"error_type": exc.__class__.__name__, "message": str(exc)}
    return _error_response(request, 500, error)


# =============================================================================
# Service Endpoints
# =============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint for container orchestration.

    Returns 503 when the database is unreachable. Redis is optional and
    only reported as degraded.
    """
    services = {}

    database_ok = await check_database()
    services["database"] = "healthy" if database_ok else "unhealthy"
    app_metrics.database_is_healthy.set(1 if database_ok else 0)

    hub = getattr(request.app.state, "chat_hub", None)
    if not get_settings().redis_enabled:
        services["redis"] = "disabled"
    elif hub is not None and hub.uses_redis:
        services["redis"] = "healthy"
        app_metrics.redis_is_healthy.set(1)
    else:
        services["redis"] = "degraded"
        app_metrics.redis_is_healthy.set(0)

    body = HealthResponse(
        status="healthy" if database_ok else "unhealthy",
        version=APP_VERSION,
        services=services,
    )
    return JSONResponse(status_code=200 if database_ok else 503, content=body.model_dump())


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Ganttium",
        "status": "operational",
        "docs": "/docs",
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
