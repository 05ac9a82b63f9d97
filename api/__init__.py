"""
API Module
FastAPI routers for the CareCadence application
"""

from api.patients import router as patients_router
from api.medications import router as medications_router
from api.schedules import router as schedules_router
from api.doses import router as doses_router
from api.adherence import router as adherence_router

from api.deps import get_db, services


__all__ = [
    # Routers
    "patients_router",
    "medications_router",
    "schedules_router",
    "doses_router",
    "adherence_router",
    # Dependencies
    "get_db",
    "services",
    "include_routers",
]


def include_routers(app, prefix: str = "/api/v1"):
    """
    Include all API routers in the FastAPI app

    Usage:
        from api import include_routers
        include_routers(app)
    """
    app.include_router(patients_router, prefix=prefix)
    app.include_router(medications_router, prefix=prefix)
    app.include_router(schedules_router, prefix=prefix)
    app.include_router(doses_router, prefix=prefix)
    app.include_router(adherence_router, prefix=prefix)
