"""
DoseCall Backend
FastAPI application hosting the medication reminder engine
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional
from datetime import datetime
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Configuration and database
from config import settings
from database import init_db

from api import include_routers
from errors import ConfigurationError, NotFoundError, ReminderError, TransportError
from services import ReminderComponents, build_reminder_components

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": True,
            "message": message,
            "status_code": status_code,
            "timestamp": datetime.utcnow().isoformat()
        }
    )


def create_app(
    component_factory: Optional[Callable[[], ReminderComponents]] = None,
    run_scheduler: Optional[bool] = None
) -> FastAPI:
    """
    Build the application

    Args:
        component_factory: builds the reminder components at startup; the
            default creates the tables and wires Twilio from settings
        run_scheduler: start the scheduler runtime (defaults to SCHEDULER_ENABLED)
    """
    if run_scheduler is None:
        run_scheduler = settings.SCHEDULER_ENABLED

    # ==================== LIFESPAN ====================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup and shutdown"""
        # Startup
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Environment: {settings.ENV}")

        if component_factory is None:
            try:
                init_db()
            except Exception as e:
                logger.error(f"Database initialization failed: {e}")
                raise
            components = build_reminder_components()
        else:
            components = component_factory()

        app.state.components = components
        report = await components.start(run_scheduler=run_scheduler)
        logger.info(
            f"Reminder engine ready: {len(report.installed)} triggers, "
            f"{len(report.errors)} skipped entries"
        )

        yield

        # Shutdown
        logger.info(f"Shutting down {settings.APP_NAME}")
        await components.shutdown()
        app.state.components = None

    # ==================== APP INITIALIZATION ====================

    app = FastAPI(
        title=settings.APP_NAME,
        description="""
        ## DoseCall API

        Automated medication reminder calls with family escalation.

        ### Features
        - **Recurring reminders**: one call per medication time slot, in the patient's timezone
        - **Keypad responses**: 1 confirms, 2 asks for a call back in 15 minutes
        - **Retries and escalation**: unanswered calls are retried, then SMS and family alerts
        - **Live events**: WebSocket stream per patient
        """,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Attach modular API routers (prefix /api/v1)
    include_routers(app, prefix=settings.API_PREFIX)

    # ==================== EXCEPTION HANDLERS ====================

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc: HTTPException):
        return _error_response(exc.status_code, exc.detail)

    @app.exception_handler(ReminderError)
    async def reminder_exception_handler(request, exc: ReminderError):
        if isinstance(exc, ConfigurationError):
            status_code = 422
        elif isinstance(exc, NotFoundError):
            status_code = 404
        elif isinstance(exc, TransportError):
            status_code = 502
        else:
            status_code = 400
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc}")
        return _error_response(status_code, str(exc))

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc: Exception):
        logger.error(f"Unexpected error: {exc}", exc_info=True)
        return _error_response(500, "An unexpected error occurred" if not settings.DEBUG else str(exc))

    # ==================== HEALTH ====================

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Liveness plus a summary of the live schedule"""
        components = getattr(app.state, "components", None)
        if components is None:
            return {"status": "starting", "timestamp": datetime.utcnow().isoformat()}
        return {
            "status": "healthy",
            "scheduler_running": components.scheduler.is_running,
            "triggers": len(components.scheduler.all_triggers()),
            "active_calls": components.dispatcher.active_calls,
            "timestamp": datetime.utcnow().isoformat()
        }

    @app.get(f"{settings.API_PREFIX}/schedule/jobs", tags=["Health"])
    async def list_scheduled_jobs():
        """Scheduled reminder and retry jobs"""
        components = getattr(app.state, "components", None)
        if components is None:
            return {"jobs": []}
        return {"jobs": components.scheduler.get_jobs_info()}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
