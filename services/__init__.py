"""
Services Module
Reminder orchestration core and its startup wiring
"""

import logging
from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.orm import sessionmaker

from config import settings
from services.reminder_store import ReminderStore
from services.reminder_scheduler import ReminderScheduler, ReminderTrigger, RetryTimer, ScheduleReport
from services.call_orchestrator import CallOrchestrator
from services.call_state_machine import (
    CallEventDispatcher,
    CallResponseEvent,
    CallStateMachine,
    CallStatusEvent,
    ResponseOutcome,
    StatusOutcome,
    StatusResult,
)
from services.adherence_service import AdherenceService
from tools.notification_service import EmailSender, NotificationService
from tools.realtime import RealtimeHub
from tools.twilio_transport import TwilioTransport


logger = logging.getLogger(__name__)


@dataclass
class ReminderComponents:
    """Process-scoped reminder components, built once at startup"""
    store: ReminderStore
    transport: TwilioTransport
    realtime: RealtimeHub
    notifications: NotificationService
    scheduler: ReminderScheduler
    orchestrator: CallOrchestrator
    state_machine: CallStateMachine
    dispatcher: CallEventDispatcher
    adherence: AdherenceService

    async def start(self, run_scheduler: bool = True) -> ScheduleReport:
        """Install triggers for every active patient and start the scheduler runtime"""
        patients = await self.store.list_active_patients()
        report = await self.scheduler.schedule_all(patients)
        if run_scheduler:
            self.scheduler.start()
        return report

    async def shutdown(self) -> None:
        await self.dispatcher.close()
        self.scheduler.shutdown()
        self.store.close()


def build_reminder_components(
    session_factory: Optional[sessionmaker] = None,
    transport: Optional[TwilioTransport] = None,
    realtime: Optional[RealtimeHub] = None,
    email_sender: Optional[EmailSender] = None,
    scheduler: Optional[AsyncIOScheduler] = None,
    needs_time_retry_minutes: Optional[int] = None
) -> ReminderComponents:
    """
    Wire the reminder components together

    Any collaborator can be supplied (tests pass fakes); the rest are built
    from settings.
    """
    store = ReminderStore(session_factory)
    transport = transport or TwilioTransport()
    realtime = realtime or RealtimeHub()
    notifications = NotificationService(store, transport, realtime, email_sender)

    reminder_scheduler = ReminderScheduler(store, scheduler=scheduler)
    orchestrator = CallOrchestrator(store, transport, reminder_scheduler)
    reminder_scheduler.fire_handler = orchestrator.fire_reminder

    state_machine = CallStateMachine(
        store,
        orchestrator,
        notifications,
        needs_time_retry_minutes=needs_time_retry_minutes or settings.NEEDS_TIME_RETRY_MINUTES
    )

    logger.info("Reminder components initialized")
    return ReminderComponents(
        store=store,
        transport=transport,
        realtime=realtime,
        notifications=notifications,
        scheduler=reminder_scheduler,
        orchestrator=orchestrator,
        state_machine=state_machine,
        dispatcher=CallEventDispatcher(state_machine),
        adherence=AdherenceService(store),
    )


__all__ = [
    # Components
    "ReminderStore",
    "ReminderScheduler",
    "CallOrchestrator",
    "CallStateMachine",
    "CallEventDispatcher",
    "AdherenceService",
    # Values
    "ReminderTrigger",
    "RetryTimer",
    "ScheduleReport",
    "CallStatusEvent",
    "CallResponseEvent",
    "StatusOutcome",
    "StatusResult",
    "ResponseOutcome",
    # Wiring
    "ReminderComponents",
    "build_reminder_components",
]
