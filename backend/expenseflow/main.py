"""ExpenseFlow Approval Engine - FastAPI application"""

from contextlib import asynccontextmanager
from typing import Callable
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config.settings import settings
from .api.routes import api_router
from .api.middleware import CorrelationIdMiddleware, register_error_handlers
from .api.middleware.correlation import CORRELATION_HEADER
from .repositories.mongo_client import create_indexes, close_connection, health_check
from .scheduler.approval_scheduler import start_scheduler, stop_scheduler
from .utils.logger import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)

APP_VERSION = "1.0.0"


def _run_startup_step(name: str, step: Callable[[], None]) -> None:
    """A failed step is logged; the API still starts and /health reports degraded"""
    try:
        step()
    except Exception as e:
        logger.error(f"Startup step failed: {name}: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting ExpenseFlow approval engine", extra={"details": {"version": APP_VERSION}})
    _run_startup_step("create_indexes", create_indexes)
    _run_startup_step("start_scheduler", start_scheduler)

    yield

    stop_scheduler()
    close_connection()
    logger.info("ExpenseFlow approval engine stopped")


def create_app() -> FastAPI:
    """Build the FastAPI application; API docs are served only in debug mode"""
    application = FastAPI(
        title="ExpenseFlow Approval Engine",
        description="Multi-level expense approval workflows with conditional auto-approval and escalation",
        version=APP_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
        openapi_url="/api/openapi.json" if settings.debug else None,
    )

    _configure_middleware(application)
    register_error_handlers(application)
    _configure_routes(application)

    return application


def _configure_middleware(app: FastAPI) -> None:
    # allow_credentials must be False when allowing all origins
    allow_all = settings.cors_origins.strip() == "*"

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_origins_list,
        allow_credentials=not allow_all,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[CORRELATION_HEADER],
    )
    app.add_middleware(CorrelationIdMiddleware)


def _configure_routes(app: FastAPI) -> None:
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health", tags=["Health"])
    async def health():
        """Application health including database connectivity"""
        mongo_health = health_check()
        return {
            "status": "healthy" if mongo_health.get("status") == "healthy" else "degraded",
            "version": APP_VERSION,
            "environment": settings.environment,
            "mongo": mongo_health
        }


app = create_app()
