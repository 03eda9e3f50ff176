import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from visibility_report.api.v1.router import api_v1_router
from visibility_report.core.config import settings, validate_settings_for_production
from visibility_report.core.exceptions import InvalidTransitionError, PipelineError
from visibility_report.core.logging import setup_logging
from visibility_report.core.metrics import PrometheusMiddleware, metrics_response
from visibility_report.core.middleware import RequestLoggingMiddleware
from visibility_report.core.sentry import init_sentry
from visibility_report.db.postgres import engine

# Configure logging before anything else
setup_logging()
init_sentry()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if settings.app_env != "test":
        validate_settings_for_production()
    logger.info("Starting visibility report service...")

    yield

    # Shutdown
    await engine.dispose()
    logger.info("Visibility report service shut down")


app = FastAPI(
    title="Brand Visibility Report",
    description="Batch pipeline that measures how AI assistants talk about a brand",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


@app.exception_handler(InvalidTransitionError)
async def _invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(PipelineError)
async def _pipeline_error_handler(request: Request, exc: PipelineError):
    logger.warning("Pipeline error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# Log unhandled exceptions with their traceback
@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": f"{type(exc).__name__}: {exc}"})


# Request logging + metrics middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(PrometheusMiddleware)

# CORS: parse allowed_origins from settings (comma-separated)
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(api_v1_router)


@app.get("/api/v1/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
