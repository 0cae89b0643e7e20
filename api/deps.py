"""
API Dependencies
Common dependencies for FastAPI endpoints
"""

from typing import Generator
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from services import ReminderComponents
import models


def get_components(request: Request) -> ReminderComponents:
    """Reminder components built by the application lifespan"""
    components = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reminder service is not running"
        )
    return components


def get_db(
    components: ReminderComponents = Depends(get_components)
) -> Generator[Session, None, None]:
    """
    Database session dependency
    Yields a session bound to the same database as the reminder components
    """
    db = components.store.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_patient_or_404(
    patient_id: int,
    db: Session = Depends(get_db)
) -> models.Patient:
    """
    Validate patient exists and return it
    """
    patient = db.get(models.Patient, patient_id)
    if not patient:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Patient {patient_id} not found"
        )
    return patient


def pagination_params(
    page: int = 1,
    page_size: int = 20
) -> dict:
    """
    Common pagination parameters
    """
    if page < 1:
        page = 1
    if page_size < 1:
        page_size = 20
    if page_size > 100:
        page_size = 100

    return {
        "page": page,
        "page_size": page_size,
        "offset": (page - 1) * page_size
    }
