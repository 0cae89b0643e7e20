"""
Clock / Timezone Resolver
Turns "HH:MM" time slots plus an IANA timezone into trigger instants
"""

import logging
import re
from typing import Optional, Tuple
from datetime import datetime, date, time, timedelta, timezone as dt_timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

from models import MedicationFrequency
from errors import ConfigurationError


logger = logging.getLogger(__name__)

TIME_SLOT_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_time_slot(slot: str) -> Tuple[int, int]:
    """
    Parse a 24-hour "HH:MM" slot

    Raises:
        ConfigurationError: if the slot is not a valid time of day
    """
    if not isinstance(slot, str):
        raise ConfigurationError(f"Time slot must be a string, got {type(slot).__name__}", time_slot=slot)

    match = TIME_SLOT_PATTERN.match(slot.strip())
    if not match:
        raise ConfigurationError(f"Malformed time slot: {slot!r} (expected HH:MM)", time_slot=slot)

    return int(match.group(1)), int(match.group(2))


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Look up an IANA timezone, raising ConfigurationError for unknown names"""
    if not name:
        raise ConfigurationError("Patient timezone is not set")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone: {name!r}") from e


def next_trigger_instant(
    slot: str,
    tz_name: str,
    now: Optional[datetime] = None,
    weekday: Optional[int] = None
) -> datetime:
    """
    Next instant strictly after `now` at which the wall clock in `tz_name` reads `slot`

    Args:
        slot: "HH:MM" time of day
        tz_name: IANA timezone of the patient
        now: reference instant (aware; naive values are taken as UTC)
        weekday: restrict to this weekday (0=Monday) for weekly cadence

    Returns:
        Timezone-aware datetime in `tz_name`
    """
    hour, minute = parse_time_slot(slot)
    tz = resolve_timezone(tz_name)

    now = now or datetime.now(dt_timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt_timezone.utc)
    local_now = now.astimezone(tz)

    candidate_date = local_now.date()
    for _ in range(8):
        if weekday is None or candidate_date.weekday() == weekday:
            candidate = _normalize(datetime.combine(candidate_date, time(hour, minute), tzinfo=tz), tz)
            if candidate > now:
                return candidate
        candidate_date += timedelta(days=1)

    # Only reachable when a weekly slot fell in a DST gap on both weeks
    return _normalize(datetime.combine(candidate_date, time(hour, minute), tzinfo=tz), tz)


def _normalize(local_dt: datetime, tz: ZoneInfo) -> datetime:
    """Round-trip through UTC so nonexistent (DST gap) wall times move forward"""
    return local_dt.astimezone(dt_timezone.utc).astimezone(tz)


def occurrence_time(slot: str, tz_name: str, now: Optional[datetime] = None) -> datetime:
    """Today's local instant for `slot`, as naive UTC for storage"""
    hour, minute = parse_time_slot(slot)
    tz = resolve_timezone(tz_name)
    now = now or datetime.now(dt_timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt_timezone.utc)
    local = datetime.combine(now.astimezone(tz).date(), time(hour, minute), tzinfo=tz)
    return local.astimezone(dt_timezone.utc).replace(tzinfo=None)


def build_cron_trigger(
    slot: str,
    tz_name: str,
    frequency: str = MedicationFrequency.DAILY.value,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> CronTrigger:
    """
    Recurring trigger for one medication time slot

    Daily cadences fire every day at the slot. Weekly fires on the weekday
    of `start_date` (today when absent). `end_date` is inclusive in the
    patient's timezone.
    """
    hour, minute = parse_time_slot(slot)
    tz = resolve_timezone(tz_name)

    try:
        cadence = MedicationFrequency(frequency)
    except ValueError as e:
        raise ConfigurationError(f"Unknown medication frequency: {frequency!r}", time_slot=slot) from e

    day_of_week = "*"
    if cadence == MedicationFrequency.WEEKLY:
        day_of_week = str((start_date or datetime.now(tz).date()).weekday())

    end = None
    if end_date is not None:
        end = datetime.combine(end_date, time(23, 59, 59), tzinfo=tz)

    return CronTrigger(
        day_of_week=day_of_week,
        hour=hour,
        minute=minute,
        timezone=tz,
        end_date=end
    )
