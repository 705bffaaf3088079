"""Call events.

Typed events parsed from call-control webhook payloads:

    {"data": {"event_type": "call.answered",
              "payload": {"call_control_id": "...", "client_state": "..."}}}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from outreach_agent.telephony.base import CallContext


@dataclass(frozen=True)
class CallInitiated:
    pass


@dataclass(frozen=True)
class CallAnswered:
    pass


@dataclass(frozen=True)
class SpeechEnded:
    pass


@dataclass(frozen=True)
class DigitsGathered:
    digits: str | None


@dataclass(frozen=True)
class MachineDetectionEnded:
    result: str | None


@dataclass(frozen=True)
class CallHangup:
    duration_seconds: int | None


@dataclass(frozen=True)
class ConversationUnavailable:
    """Raised internally when a conversation session cannot be opened."""


@dataclass(frozen=True)
class UnknownEvent:
    name: str | None


CallEvent = Union[
    CallInitiated,
    CallAnswered,
    SpeechEnded,
    DigitsGathered,
    MachineDetectionEnded,
    CallHangup,
    ConversationUnavailable,
    UnknownEvent,
]


@dataclass(frozen=True)
class ParsedEvent:
    """A webhook event with its correlation handle and decoded context."""

    handle: str | None
    event: CallEvent
    context: CallContext | None


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def to_event(event_type: str | None, payload: dict[str, Any]) -> CallEvent:
    if event_type == "call.initiated":
        return CallInitiated()
    if event_type == "call.answered":
        return CallAnswered()
    if event_type == "call.speak.ended":
        return SpeechEnded()
    if event_type == "call.gather.ended":
        return DigitsGathered(digits=payload.get("digits") or None)
    if event_type == "call.machine.detection.ended":
        return MachineDetectionEnded(result=payload.get("result"))
    if event_type == "call.hangup":
        return CallHangup(duration_seconds=_int_or_none(payload.get("duration_secs")))
    return UnknownEvent(name=event_type)


def parse_event(body: dict[str, Any]) -> ParsedEvent:
    """Parse a webhook body into a typed event.

    Missing fields never raise; an unrecognized event type becomes
    ``UnknownEvent``.
    """
    data = body.get("data") if isinstance(body, dict) else None
    data = data if isinstance(data, dict) else {}
    payload = data.get("payload")
    payload = payload if isinstance(payload, dict) else {}

    return ParsedEvent(
        handle=payload.get("call_control_id"),
        event=to_event(data.get("event_type"), payload),
        context=CallContext.decode(payload.get("client_state")),
    )
