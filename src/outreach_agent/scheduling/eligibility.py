"""Reminder eligibility.

Decides whether an appointment's reminder call should fire now. Pure and
timezone-agnostic: every comparison is between absolute instants.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Protocol

DEFAULT_REMINDER_MINUTES = 30

# E.164, leading plus optional
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")


class RemindableAppointment(Protocol):
    scheduled_at: datetime
    created_at: datetime
    reminder_minutes_before: int | None


def is_valid_phone(phone: str | None) -> bool:
    """Whether ``phone`` is a dialable E.164 number."""
    return bool(phone) and PHONE_PATTERN.match(phone) is not None


def reminder_lead(appointment: RemindableAppointment) -> int:
    """Lead time in minutes, defaulting when the appointment has none."""
    lead = appointment.reminder_minutes_before
    return DEFAULT_REMINDER_MINUTES if lead is None else lead


def reminder_time(appointment: RemindableAppointment) -> datetime:
    """Instant at which the reminder becomes due."""
    return appointment.scheduled_at - timedelta(minutes=reminder_lead(appointment))


def should_trigger(appointment: RemindableAppointment, now: datetime) -> bool:
    """Whether the reminder for ``appointment`` should fire at ``now``.

    A zero lead means "call at the appointment time" and skips the creation
    check. Otherwise an appointment created after its own reminder time is
    never reminded (creating it already told the customer); one created
    exactly at its reminder time still is.

    Args:
        appointment: Anything with scheduled_at, created_at and
            reminder_minutes_before
        now: Current instant

    Returns:
        True if the reminder is due
    """
    if reminder_lead(appointment) == 0:
        return now >= appointment.scheduled_at

    due_at = reminder_time(appointment)
    if appointment.created_at > due_at:
        return False
    return now >= due_at


def skip_reason(appointment: RemindableAppointment, now: datetime) -> str | None:
    """Human-readable reason ``should_trigger`` is False, or None if due."""
    if should_trigger(appointment, now):
        return None

    if reminder_lead(appointment) == 0:
        return "appointment time not reached"

    due_at = reminder_time(appointment)
    if appointment.created_at > due_at:
        return "created after reminder time"
    minutes = int((due_at - now).total_seconds() // 60)
    return f"reminder due in {minutes} min"
