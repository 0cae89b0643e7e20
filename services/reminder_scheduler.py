"""
Reminder Scheduler
Keeps one recurring trigger per (patient, medication, time slot) and the
one-shot retry timers armed by the call orchestrator
"""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

import models
from errors import ConfigurationError
from services.reminder_store import ReminderStore
from tools.clock import build_cron_trigger, resolve_timezone


logger = logging.getLogger(__name__)

TriggerKey = Tuple[int, int, str]  # (patient_id, medication_id, time_slot)
FireHandler = Callable[[int, int, str], Awaitable[Any]]


@dataclass
class ReminderTrigger:
    """Installed recurring reminder for one medication time slot"""
    key: TriggerKey
    job_id: str
    trigger: CronTrigger
    timezone: str
    frequency: str
    installed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def patient_id(self) -> int:
        return self.key[0]

    @property
    def medication_id(self) -> int:
        return self.key[1]

    @property
    def time_slot(self) -> str:
        return self.key[2]

    def next_fire_time(self, now: Optional[datetime] = None) -> Optional[datetime]:
        return self.trigger.get_next_fire_time(None, now or datetime.now(timezone.utc))


@dataclass
class RetryTimer:
    """One-shot timer handle; cancel() guarantees the callback never runs"""
    timer_id: str
    patient_id: int
    medication_id: int
    run_at: datetime
    callback: Callable[[], Awaitable[Any]]
    call_sid: Optional[str] = None
    cancelled: bool = False
    fired: bool = False

    async def fire(self) -> bool:
        if self.cancelled or self.fired:
            return False
        self.fired = True
        await self.callback()
        return True


@dataclass
class ScheduleReport:
    """Outcome of a schedule build"""
    installed: List[TriggerKey] = field(default_factory=list)
    removed: int = 0
    errors: List[ConfigurationError] = field(default_factory=list)

    def merge(self, other: "ScheduleReport") -> None:
        self.installed.extend(other.installed)
        self.removed += other.removed
        self.errors.extend(other.errors)


@dataclass
class _PatientLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class ReminderScheduler:
    """
    Owns the live trigger set and the pending retry timers

    Responsibilities:
    - Install one trigger per active (patient, medication, time slot)
    - Replace a patient's triggers atomically when their medications change
    - Cancel triggers and retry timers when a patient is deactivated
    - Invoke the fire handler (the call orchestrator) at each trigger instant

    Read-modify-write sequences on the trigger set run under a per-patient
    lock; the install/cancel steps themselves never await.
    """

    def __init__(
        self,
        store: ReminderStore,
        fire_handler: Optional[FireHandler] = None,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.store = store
        self.fire_handler = fire_handler
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._triggers: Dict[TriggerKey, ReminderTrigger] = {}
        self._retries: Dict[int, Dict[str, RetryTimer]] = {}
        self._locks: Dict[int, _PatientLock] = {}

    # ==================== LIFECYCLE ====================

    @property
    def is_running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if self._scheduler.running:
            logger.warning("ReminderScheduler already running")
            return
        self._scheduler.start()
        logger.info(f"ReminderScheduler started with {len(self._triggers)} triggers")

    def shutdown(self) -> None:
        """Cancel every trigger and pending retry, then stop the runtime"""
        cancelled = 0
        for key in list(self._triggers):
            self._cancel_trigger(self._triggers.pop(key))
            cancelled += 1
        for patient_id in list(self._retries):
            cancelled += self._cancel_retries(patient_id)

        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info(f"ReminderScheduler stopped ({cancelled} jobs cancelled)")

    @asynccontextmanager
    async def _patient_lock(self, patient_id: int):
        """Per-patient critical section; the entry is dropped once nobody holds or awaits it"""
        entry = self._locks.get(patient_id)
        if entry is None:
            entry = self._locks[patient_id] = _PatientLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[patient_id]

    # ==================== TRIGGERS ====================

    async def schedule_all(self, patients: Iterable[models.Patient]) -> ScheduleReport:
        """
        Install triggers for every active medication time slot of the given patients

        Configuration errors are logged and skipped per entry; the remaining
        entries and patients are still scheduled.
        """
        report = ScheduleReport()
        patient_count = 0

        for patient in patients:
            patient_count += 1
            async with self._patient_lock(patient.id):
                try:
                    report.merge(self._replace_patient_triggers(patient))
                except Exception as e:
                    logger.error(f"Failed to schedule reminders for patient {patient.id}: {e}", exc_info=True)

        for error in report.errors:
            logger.error(f"Skipped reminder entry: {error}")

        logger.info(
            f"Scheduled {len(report.installed)} reminders for {patient_count} patients "
            f"({len(report.errors)} configuration errors)"
        )
        return report

    async def reschedule_patient(self, patient_id: int) -> ScheduleReport:
        """
        Re-read a patient and replace all of their triggers

        Other patients' triggers are untouched. A missing or inactive patient
        ends up with no triggers.

        Raises:
            ConfigurationError: after the valid entries are installed, if any
                entry could not be scheduled
        """
        async with self._patient_lock(patient_id):
            patient = await self.store.find_patient(patient_id)
            if patient is None:
                report = ScheduleReport(removed=self._cancel_patient_triggers(patient_id))
                logger.info(f"Patient {patient_id} not found; removed {report.removed} triggers")
                return report
            report = self._replace_patient_triggers(patient)

        logger.info(
            f"Updated schedule for patient {patient_id}: "
            f"{len(report.installed)} installed, {report.removed} removed"
        )
        if report.errors:
            messages = "; ".join(str(e) for e in report.errors)
            raise ConfigurationError(
                f"{len(report.errors)} reminder entries for patient {patient_id} could not be scheduled: {messages}",
                patient_id=patient_id
            )
        return report

    async def cancel_patient(self, patient_id: int) -> int:
        """Remove all triggers and armed retry timers of a patient"""
        async with self._patient_lock(patient_id):
            removed = self._cancel_patient_triggers(patient_id)
            removed += self._cancel_retries(patient_id)

        logger.info(f"Cancelled {removed} jobs for patient {patient_id}")
        return removed

    def _replace_patient_triggers(self, patient: models.Patient) -> ScheduleReport:
        report = ScheduleReport(removed=self._cancel_patient_triggers(patient.id))

        if not patient.is_active:
            return report

        try:
            resolve_timezone(patient.timezone)
        except ConfigurationError as e:
            e.patient_id = patient.id
            report.errors.append(e)
            return report

        for medication in patient.medications:
            if not medication.is_current():
                continue

            if not medication.times:
                report.errors.append(ConfigurationError(
                    f"Active medication {medication.id} ({medication.name}) has no time slots",
                    patient_id=patient.id,
                    medication_id=medication.id
                ))
                continue

            for slot in medication.times:
                try:
                    report.installed.append(self._install_trigger(patient, medication, slot))
                except ConfigurationError as e:
                    e.patient_id = patient.id
                    e.medication_id = medication.id
                    report.errors.append(e)

        return report

    def _install_trigger(self, patient: models.Patient, medication: models.Medication, slot: str) -> TriggerKey:
        key: TriggerKey = (patient.id, medication.id, slot)
        trigger = build_cron_trigger(
            slot,
            patient.timezone,
            frequency=medication.frequency,
            start_date=medication.start_date,
            end_date=medication.end_date
        )

        existing = self._triggers.pop(key, None)
        if existing is not None:
            self._cancel_trigger(existing)

        job_id = f"reminder_{patient.id}_{medication.id}_{slot}"
        self._scheduler.add_job(
            self._fire,
            trigger=trigger,
            args=[patient.id, medication.id, slot],
            id=job_id,
            name=f"{medication.name} reminder for patient {patient.id} at {slot}",
            replace_existing=True,
            coalesce=True,
            misfire_grace_time=300
        )
        self._triggers[key] = ReminderTrigger(
            key=key,
            job_id=job_id,
            trigger=trigger,
            timezone=patient.timezone,
            frequency=medication.frequency
        )

        logger.info(f"Scheduled reminder for patient {patient.id} at {slot} ({patient.timezone})")
        return key

    def _cancel_trigger(self, reminder_trigger: ReminderTrigger) -> None:
        self._remove_job(reminder_trigger.job_id)

    def _cancel_patient_triggers(self, patient_id: int) -> int:
        keys = [key for key in self._triggers if key[0] == patient_id]
        for key in keys:
            self._cancel_trigger(self._triggers.pop(key))
        return len(keys)

    def _remove_job(self, job_id: str) -> None:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            # One-shot jobs are dropped by the runtime once they have run
            pass

    async def _fire(self, patient_id: int, medication_id: int, time_slot: str) -> None:
        if self.fire_handler is None:
            logger.warning(f"Reminder fired for patient {patient_id} with no handler attached")
            return
        try:
            await self.fire_handler(patient_id, medication_id, time_slot)
        except Exception as e:
            logger.error(
                f"Reminder for patient {patient_id}, medication {medication_id} at {time_slot} failed: {e}",
                exc_info=True
            )

    # ==================== RETRY TIMERS ====================

    def arm_retry(
        self,
        patient_id: int,
        medication_id: int,
        delay_minutes: float,
        callback: Callable[[], Awaitable[Any]],
        call_sid: Optional[str] = None
    ) -> RetryTimer:
        """Arm a one-shot timer tied to a patient; cancel_patient() invalidates it"""
        timer_id = f"retry_{patient_id}_{medication_id}_{uuid.uuid4().hex[:8]}"
        run_at = datetime.now(timezone.utc) + timedelta(minutes=delay_minutes)

        timer = RetryTimer(
            timer_id=timer_id,
            patient_id=patient_id,
            medication_id=medication_id,
            run_at=run_at,
            callback=callback,
            call_sid=call_sid
        )
        self._retries.setdefault(patient_id, {})[timer_id] = timer
        self._scheduler.add_job(
            self._run_retry_job,
            trigger=DateTrigger(run_date=run_at, timezone=timezone.utc),
            args=[patient_id, timer_id],
            id=timer_id,
            name=f"Retry call for patient {patient_id}",
            misfire_grace_time=None
        )
        return timer

    async def run_retry(self, timer: RetryTimer) -> bool:
        """Run a retry timer now; returns False when it was cancelled or already ran"""
        self._forget_retry(timer)
        self._remove_job(timer.timer_id)
        try:
            return await timer.fire()
        except Exception as e:
            logger.error(f"Retry timer {timer.timer_id} failed: {e}", exc_info=True)
            return False

    async def _run_retry_job(self, patient_id: int, timer_id: str) -> None:
        timer = self._retries.get(patient_id, {}).get(timer_id)
        if timer is None:
            logger.info(f"Retry timer {timer_id} was cancelled before it fired")
            return
        await self.run_retry(timer)

    def cancel_retry(self, timer: RetryTimer) -> None:
        timer.cancelled = True
        self._forget_retry(timer)
        self._remove_job(timer.timer_id)

    def _forget_retry(self, timer: RetryTimer) -> None:
        timers = self._retries.get(timer.patient_id)
        if timers is None:
            return
        timers.pop(timer.timer_id, None)
        if not timers:
            del self._retries[timer.patient_id]

    def cancel_call_retries(self, patient_id: int, call_sid: str) -> int:
        """Cancel the retry timers armed for one call"""
        timers = [t for t in self._retries.get(patient_id, {}).values() if t.call_sid == call_sid]
        for timer in timers:
            self.cancel_retry(timer)
        return len(timers)

    def _cancel_retries(self, patient_id: int) -> int:
        timers = self._retries.pop(patient_id, {})
        for timer in timers.values():
            timer.cancelled = True
            self._remove_job(timer.timer_id)
        return len(timers)

    # ==================== INTROSPECTION ====================

    def get_trigger(self, key: TriggerKey) -> Optional[ReminderTrigger]:
        return self._triggers.get(key)

    def triggers_for_patient(self, patient_id: int) -> List[ReminderTrigger]:
        return [t for key, t in self._triggers.items() if key[0] == patient_id]

    def all_triggers(self) -> List[ReminderTrigger]:
        return list(self._triggers.values())

    def pending_retries(self, patient_id: int) -> List[RetryTimer]:
        return list(self._retries.get(patient_id, {}).values())

    def get_jobs_info(self) -> List[Dict[str, Any]]:
        """Information about scheduled jobs"""
        jobs = []
        for job in self._scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
            })
        return jobs
