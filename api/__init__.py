"""
API Module
FastAPI routers for the DoseCall application
"""

from api.patients import router as patients_router
from api.calls import router as calls_router
from api.webhooks import router as webhooks_router
from api.events import router as events_router

from api.deps import (
    get_components,
    get_db,
    get_patient_or_404,
    pagination_params,
)


__all__ = [
    # Routers
    "patients_router",
    "calls_router",
    "webhooks_router",
    "events_router",
    # Dependencies
    "get_components",
    "get_db",
    "get_patient_or_404",
    "pagination_params",
]


def include_routers(app, prefix: str = "/api/v1"):
    """
    Include all API routers in the FastAPI app

    Usage:
        from api import include_routers
        include_routers(app)
    """
    app.include_router(patients_router, prefix=prefix)
    app.include_router(calls_router, prefix=prefix)
    app.include_router(webhooks_router, prefix=prefix)
    app.include_router(events_router)
