"""
Reminder Store
Persistence access for patients, family members and call attempts
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Callable, Generator, List, Optional, TypeVar
from datetime import datetime
from sqlalchemy import and_
from sqlalchemy.orm import Session, sessionmaker

from config import settings
from database import SessionLocal
import models
from errors import AttemptNotFoundError, PatientNotFoundError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReminderStore:
    """
    Reads patients and medications, and keeps the call attempt history

    Objects returned here are detached from their session; relationships
    the orchestration core needs (medications, family members, follow-up
    actions) are loaded eagerly.

    Session work runs on a small worker pool so a slow query never stalls
    the event loop that drives triggers, retry timers and webhooks.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, max_workers: Optional[int] = None):
        self.session_factory = session_factory or SessionLocal
        self.max_workers = max_workers or settings.DATABASE_WORKERS
        self._executor: Optional[ThreadPoolExecutor] = None

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _in_session(self, work: Callable[[Session], T]) -> T:
        with self._session() as session:
            return work(session)

    async def _run(self, work: Callable[[Session], T]) -> T:
        """Run one unit of session work on the store's worker pool"""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="reminder-store"
            )
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._in_session, work)

    def close(self) -> None:
        """Release the worker pool; queued work still runs to completion"""
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ==================== PATIENTS ====================

    async def list_active_patients(self) -> List[models.Patient]:
        """Active patients that have at least one active medication"""
        def work(session: Session) -> List[models.Patient]:
            return session.query(models.Patient).filter(
                models.Patient.is_active.is_(True),
                models.Patient.medications.any(models.Medication.is_active.is_(True))
            ).order_by(models.Patient.id).all()

        return await self._run(work)

    async def find_patient(self, patient_id: int) -> Optional[models.Patient]:
        return await self._run(lambda session: session.get(models.Patient, patient_id))

    async def get_patient(self, patient_id: int) -> models.Patient:
        patient = await self.find_patient(patient_id)
        if patient is None:
            raise PatientNotFoundError(patient_id)
        return patient

    async def list_family_members(
        self,
        patient_id: int,
        active_only: bool = True
    ) -> List[models.FamilyMember]:
        def work(session: Session) -> List[models.FamilyMember]:
            query = session.query(models.FamilyMember).filter(
                models.FamilyMember.patients.any(models.Patient.id == patient_id)
            )
            if active_only:
                query = query.filter(models.FamilyMember.is_active.is_(True))
            return query.order_by(models.FamilyMember.id).all()

        return await self._run(work)

    # ==================== CALL ATTEMPTS ====================

    async def find_attempt(self, call_sid: str) -> Optional[models.CallAttempt]:
        return await self._run(
            lambda session: session.query(models.CallAttempt).filter(
                models.CallAttempt.call_sid == call_sid
            ).first()
        )

    async def get_attempt(self, call_sid: str) -> models.CallAttempt:
        """
        Look up an attempt by transport call id

        Raises:
            AttemptNotFoundError: the callback arrived for an unknown call
        """
        attempt = await self.find_attempt(call_sid)
        if attempt is None:
            raise AttemptNotFoundError(call_sid)
        return attempt

    async def create_attempt(self, attempt: models.CallAttempt) -> models.CallAttempt:
        def work(session: Session) -> models.CallAttempt:
            session.add(attempt)
            session.flush()
            return attempt

        attempt = await self._run(work)
        logger.info(
            f"Recorded call attempt {attempt.call_sid} "
            f"(patient {attempt.patient_id}, attempt {attempt.attempt_number}/{attempt.max_attempts})"
        )
        return attempt

    async def save_attempt(self, attempt: models.CallAttempt) -> models.CallAttempt:
        """Persist changes made to a detached attempt, including new follow-up actions"""
        def work(session: Session) -> models.CallAttempt:
            merged = session.merge(attempt)
            session.flush()
            return merged

        return await self._run(work)

    async def list_attempts(
        self,
        patient_id: int,
        since: Optional[datetime] = None,
        medication_id: Optional[int] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[models.CallAttempt]:
        """Newest-first call history for a patient"""
        def work(session: Session) -> List[models.CallAttempt]:
            query = session.query(models.CallAttempt).filter(
                models.CallAttempt.patient_id == patient_id
            )
            if since is not None:
                query = query.filter(models.CallAttempt.created_at >= since)
            if medication_id is not None:
                query = query.filter(models.CallAttempt.medication_id == medication_id)
            query = query.order_by(models.CallAttempt.created_at.desc(), models.CallAttempt.id.desc())
            if offset:
                query = query.offset(offset)
            if limit is not None:
                query = query.limit(limit)
            return query.all()

        return await self._run(work)

    async def count_attempts(self, patient_id: int) -> int:
        return await self._run(
            lambda session: session.query(models.CallAttempt).filter(
                models.CallAttempt.patient_id == patient_id
            ).count()
        )

    async def count_confirmed(
        self,
        patient_id: int,
        medication_id: int,
        since: datetime
    ) -> int:
        return await self._run(
            lambda session: session.query(models.CallAttempt).filter(
                and_(
                    models.CallAttempt.patient_id == patient_id,
                    models.CallAttempt.medication_id == medication_id,
                    models.CallAttempt.created_at >= since,
                    models.CallAttempt.confirmed.is_(True)
                )
            ).count()
        )
