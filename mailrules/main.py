"""mailrules FastAPI application factory."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text

from mailrules.config import Settings, get_settings
from mailrules.dependencies import get_session_factory, init_db, shutdown_db
from mailrules.middleware.error_handler import ErrorHandlerMiddleware
from mailrules.middleware.logging import LoggingMiddleware, setup_logging
from mailrules.routers import rules
from mailrules.services.rule_application import RuleApplicationRunner

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    settings = get_settings()
    setup_logging(debug=settings.debug)
    logger.info("Starting mailrules API (env=%s)", settings.app_env)

    session_factory = init_db(settings)
    runner = RuleApplicationRunner(session_factory, settings)
    app.state.rule_runner = runner

    if settings.resume_rule_applications_on_startup:
        try:
            resumed = await runner.resume_interrupted()
            if resumed:
                logger.info("Resumed %d interrupted rule application(s)", resumed)
        except Exception:
            logger.exception("Could not resume interrupted rule applications")

    yield

    # Running jobs are left as-is; their cursor lets the next start pick them up
    logger.info("mailrules API shutting down (%d job(s) in flight)", runner.active_jobs)
    app.state.rule_runner = None
    await shutdown_db()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="mailrules",
        description="Rule-based mail classification with retroactive application",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.app_env != "production" else None,
        redoc_url="/redoc" if settings.app_env != "production" else None,
    )

    # Middleware: the last one added is outermost, so LoggingMiddleware sets
    # the request id before ErrorHandlerMiddleware can read it
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(LoggingMiddleware)
    origins = settings.cors_origins
    allow_all = origins == ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins if not allow_all else [],
        allow_origin_regex=r".*" if allow_all else None,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
        max_age=600,
    )

    app.include_router(rules.router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        return {"status": "running", "service": "mailrules", "version": "1.0.0"}

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "mailrules"}

    @app.get("/health/ready")
    async def health_ready():
        """Deep health check: verifies database connectivity."""
        checks: dict = {}
        try:
            factory = get_session_factory(settings)
            async with factory() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {type(e).__name__}"

        all_ok = all(v == "ok" for v in checks.values())
        return JSONResponse(
            status_code=200 if all_ok else 503,
            content={"status": "ready" if all_ok else "degraded", "checks": checks},
        )

    instrumentator = Instrumentator(
        excluded_handlers=["/health", "/health/ready", "/docs", "/redoc", "/openapi.json", "/metrics"],
    )
    instrumentator.instrument(app)

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint with multiprocess support."""
        from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest, multiprocess

        multiproc_dir = os.environ.get("PROMETHEUS_MULTIPROC_DIR")
        if multiproc_dir:
            registry = CollectorRegistry()
            multiprocess.MultiProcessCollector(registry)
            data = generate_latest(registry)
        else:
            data = generate_latest()

        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


# Default app instance for uvicorn
app = create_app()
