"""FastAPI application entry point."""

import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, RedirectResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from tabsettle import __version__
from tabsettle.api.routes import api_router
from tabsettle.core.config import Settings, get_settings
from tabsettle.core.errors import TabSettleError
from tabsettle.core.metrics import MetricsMiddleware, metrics
from tabsettle.core.rate_limit import limiter
from tabsettle.core.rbac import RequireManager
from tabsettle.core.responses import error_response
from tabsettle.db.base import Base
from tabsettle.db.session import Store
import tabsettle.models  # noqa: F401  (registers every table on Base.metadata)

logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")


class JSONFormatter(logging.Formatter):
    def format(self, record):
        return json.dumps({
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        })


def configure_logging(settings: Settings) -> None:
    """JSON lines in production, human-readable output in dev."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    root_logger.handlers.clear()

    if settings.debug:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)


class HTTPSRedirectMiddleware(BaseHTTPMiddleware):
    """Redirect HTTP to HTTPS in production (behind reverse proxy)."""

    async def dispatch(self, request: Request, call_next):
        if request.headers.get("x-forwarded-proto") == "http":
            url = request.url.replace(scheme="https")
            return RedirectResponse(url=str(url), status_code=301)
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'self'; frame-ancestors 'none'"
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next):
        # Skip logging for health checks
        if request.url.path in ["/health", "/health/ready", "/"]:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
            process_time = time.time() - start_time

            log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
            request_logger.log(
                log_level,
                f"{request.method} {request.url.path} - "
                f"Status: {response.status_code} - Time: {process_time:.3f}s - Client: {client_ip}"
            )
            return response
        except Exception as e:
            process_time = time.time() - start_time
            request_logger.error(
                f"Error: {request.method} {request.url.path} - "
                f"Exception: {str(e)} - Time: {process_time:.3f}s - Client: {client_ip}"
            )
            raise


async def tabsettle_error_handler(request: Request, exc: TabSettleError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return error_response(exc)


def create_app(settings: Optional[Settings] = None, store: Optional[Store] = None) -> FastAPI:
    """Build the application around ``store``.

    The store is created from ``settings`` when not given, and disposed on
    shutdown only in that case.
    """
    settings = settings or get_settings()
    configure_logging(settings)
    owns_store = store is None
    store = store or Store.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting settlement service v{__version__}")

        # SQLite is used for local dev and tests; PostgreSQL uses Alembic migrations
        if store.engine.dialect.name == "sqlite":
            Base.metadata.create_all(bind=store.engine)
            logger.info("Database tables created (SQLite mode)")

        yield

        if owns_store:
            store.dispose()
        logger.info("Shutting down settlement service")

    app = FastAPI(
        title="Order & Invoice Settlement",
        description="Open table orders, buffet tickets, settlement into invoices and commission payroll",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.store = store

    # Rate limiting setup
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(TabSettleError, tabsettle_error_handler)

    app.add_middleware(MetricsMiddleware)
    if not settings.debug:
        app.add_middleware(HTTPSRedirectMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    # CORS middleware - added last so it runs first (Starlette LIFO order)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=600,
    )

    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get("/health")
    def health_check():
        """Basic liveness check endpoint."""
        return {"status": "healthy", "version": __version__}

    @app.get("/health/ready")
    def readiness_check(request: Request):
        """Readiness probe with database connectivity check."""
        checks = {"database": "unknown"}
        try:
            with request.app.state.store.session() as db:
                db.execute(text("SELECT 1"))
            checks["database"] = "healthy"
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            checks["database"] = "unhealthy"

        return {
            "status": "ready" if checks["database"] == "healthy" else "degraded",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
        }

    @app.get("/metrics")
    @limiter.limit("30/minute")
    def prometheus_metrics(request: Request, current_user: RequireManager):
        """Prometheus-compatible metrics endpoint."""
        return PlainTextResponse(metrics.get_prometheus_metrics(), media_type="text/plain")

    return app


app = create_app()
