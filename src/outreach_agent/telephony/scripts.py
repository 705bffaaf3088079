"""Spoken call scripts.

Built-in English text for the announce-and-gather path, and placeholder
rendering for database templates.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from outreach_agent.scheduling.window import resolve_timezone
from outreach_agent.telephony.base import CallContext

DEFAULT_CUSTOMER_NAME = "there"
DEFAULT_APPOINTMENT_TITLE = "your appointment"
DEFAULT_BUSINESS_NAME = "our office"

CONFIRMED_SCRIPT = "Great! Your appointment is confirmed. We look forward to seeing you. Goodbye!"
RESCHEDULE_SCRIPT = "No problem. Please contact us to reschedule your appointment. Goodbye!"
CLOSING_SCRIPT = "Thank you for your time. If you have questions, please contact us. Goodbye!"


def format_appointment_time(value: str | datetime | None, tz_name: str | None) -> str:
    """Spoken form of an appointment time, e.g. "Monday, January 15 at 2:30 PM".

    Args:
        value: Appointment instant (datetime or ISO 8601 string)
        tz_name: Business timezone the time is read out in

    Returns:
        Formatted time, or "soon" when the time is unknown
    """
    if not value:
        return "soon"
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return "soon"

    local = value.astimezone(resolve_timezone(tz_name))
    hour = local.hour % 12 or 12
    return f"{local:%A, %B} {local.day} at {hour}:{local:%M} {local:%p}"


def reminder_script(context: CallContext) -> str:
    """Personalized reminder read out when the call is answered."""
    name = context.customer_name or DEFAULT_CUSTOMER_NAME
    business = context.business_name or DEFAULT_BUSINESS_NAME
    title = context.appointment_title or DEFAULT_APPOINTMENT_TITLE
    when = format_appointment_time(context.appointment_time, context.business_timezone)
    return (
        f"Hello {name}! This is a friendly reminder from {business} about {title} "
        f"scheduled for {when}. Press 1 to confirm your appointment, "
        f"or press 2 if you need to reschedule. Thank you!"
    )


def voicemail_script(context: CallContext) -> str:
    """Message left on an answering machine."""
    business = context.business_name or DEFAULT_BUSINESS_NAME
    title = context.appointment_title or DEFAULT_APPOINTMENT_TITLE
    return (
        f"Hello, this is a reminder from {business} about your upcoming appointment "
        f"for {title}. Please call us back to confirm. Thank you!"
    )


class _Placeholders(dict):
    """Leaves unknown placeholders in place instead of raising."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def template_values(context: CallContext) -> dict[str, str]:
    return {
        "customer_name": context.customer_name or DEFAULT_CUSTOMER_NAME,
        "business_name": context.business_name or DEFAULT_BUSINESS_NAME,
        "appointment_title": context.appointment_title or DEFAULT_APPOINTMENT_TITLE,
        "appointment_time": format_appointment_time(
            context.appointment_time, context.business_timezone
        ),
    }


def render_template(text: str | None, context: CallContext) -> str:
    """Fill ``{customer_name}``-style placeholders from the call context."""
    if not text:
        return ""
    return text.format_map(_Placeholders(template_values(context)))


def render_system_prompt(template: dict[str, Any] | None, context: CallContext) -> str:
    """System instruction for a conversational session.

    Combines the template's prompt, greeting and goal/asks into one
    instruction. Without a template the reminder script stands in.
    """
    if not template:
        return (
            "You are a friendly phone assistant calling on behalf of "
            f"{context.business_name or DEFAULT_BUSINESS_NAME}. "
            f"Deliver this reminder and ask the customer to confirm or reschedule: "
            f"{reminder_script(context)}"
        )

    parts = [render_template(template.get("system_prompt"), context)]
    for key, label in (
        ("greeting", "Open with"),
        ("goal_prompt", "Goal"),
        ("confirmation_ask", "To confirm, ask"),
        ("reschedule_ask", "To reschedule, ask"),
        ("closing", "Close with"),
        ("voicemail", "If you reach voicemail, say"),
    ):
        if template.get(key):
            parts.append(f"{label}: {render_template(template[key], context)}")
    return "\n".join(part for part in parts if part)
