"""Base Voice Provider Interface.

Defines the abstract interface every outbound calling backend implements,
plus the call context that travels with a call from dispatch to the
provider's event webhooks.
"""

from __future__ import annotations

import base64
import json
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from outreach_agent.core.logging import get_logger

log = get_logger(__name__)


@dataclass
class CallContext:
    """Everything the call flow needs to personalize and record a call.

    Serialized into the provider's client state on dial and decoded again
    from each call event.
    """

    call_type: str
    business_id: str
    customer_id: str | None = None
    appointment_id: str | None = None
    campaign_call_id: str | None = None
    campaign_type: str | None = None
    customer_name: str | None = None
    business_name: str | None = None
    business_category: str | None = None
    business_timezone: str | None = None
    appointment_title: str | None = None
    appointment_time: str | None = None  # ISO 8601
    voice: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CallContext | None:
        """Build a context from a decoded dict, ignoring unknown keys."""
        if not data or "call_type" not in data or "business_id" not in data:
            return None
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def encode(self) -> str:
        """Base64 JSON, the form providers echo back as client state."""
        raw = json.dumps(self.to_dict(), separators=(",", ":"))
        return base64.b64encode(raw.encode()).decode()

    @classmethod
    def decode(cls, value: str | None) -> CallContext | None:
        """Inverse of ``encode``; None for missing or undecodable state."""
        if not value:
            return None
        try:
            data = json.loads(base64.b64decode(value))
        except (ValueError, TypeError) as e:
            log.warning("Undecodable client state", error=str(e))
            return None
        return cls.from_dict(data) if isinstance(data, dict) else None


@dataclass
class CallRequest:
    """Outbound call to place."""

    to: str  # E.164
    context: CallContext
    reference: str  # Appointment or campaign call id, used for room naming
    template: dict[str, Any] | None = None
    voice: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)  # Campaign settings etc.


@dataclass
class DialResult:
    """Handles returned by a provider for a placed call."""

    call_id: str | None
    provider: str
    room_name: str | None = None
    placed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "provider": self.provider,
            "room_name": self.room_name,
            "placed_at": self.placed_at.isoformat(),
        }


class VoiceProvider(ABC):
    """Abstract base class for outbound calling backends.

    Implementations must provide:
    - dial: Place an outbound call
    - speak / gather_digits / hangup: In-call actions for the
      announce-and-gather path
    """

    name: str = "base"

    @property
    def handles_campaigns(self) -> bool:
        """Whether calls placed here are driven by a conversational agent.

        Campaign calls need an agent to hold the conversation; providers
        that can only announce and gather digits cannot carry them.
        """
        return False

    @abstractmethod
    async def dial(self, request: CallRequest) -> DialResult:
        """Place an outbound call.

        Raises:
            DialError: If the provider rejected or could not place the call
        """

    @abstractmethod
    async def speak(self, call_id: str, text: str) -> None:
        """Speak text on an active call."""

    @abstractmethod
    async def gather_digits(
        self,
        call_id: str,
        min_digits: int = 1,
        max_digits: int = 1,
        timeout_ms: int = 10000,
    ) -> None:
        """Start collecting DTMF digits on an active call."""

    @abstractmethod
    async def hangup(self, call_id: str) -> None:
        """Hang up an active call."""

    async def start_media_stream(self, call_id: str) -> None:
        """Fork the call's audio to the media websocket.

        Default implementation does nothing; providers without a media
        fork rely on their own agent transport.
        """

    async def close(self) -> None:
        """Release HTTP clients and other resources."""


class MockVoiceProvider(VoiceProvider):
    """Mock provider for development and testing.

    Records every request instead of calling anyone.
    """

    name = "mock"

    def __init__(self, conversational: bool = False):
        self.conversational = conversational
        self.dialed: list[CallRequest] = []
        self.actions: list[tuple[str, str, Any]] = []
        self.fail_next_dial: Exception | None = None

    @property
    def handles_campaigns(self) -> bool:
        return self.conversational

    async def dial(self, request: CallRequest) -> DialResult:
        if self.fail_next_dial is not None:
            error, self.fail_next_dial = self.fail_next_dial, None
            raise error

        self.dialed.append(request)
        call_id = f"mock-{uuid4().hex[:12]}"
        room_name = f"mock-room-{request.reference}" if self.conversational else None
        log.info(
            "Mock call placed",
            call_id=call_id,
            call_type=request.context.call_type,
            reference=request.reference,
        )
        return DialResult(call_id=call_id, provider=self.name, room_name=room_name)

    async def speak(self, call_id: str, text: str) -> None:
        self.actions.append(("speak", call_id, text))

    async def gather_digits(
        self,
        call_id: str,
        min_digits: int = 1,
        max_digits: int = 1,
        timeout_ms: int = 10000,
    ) -> None:
        self.actions.append(("gather", call_id, (min_digits, max_digits, timeout_ms)))

    async def hangup(self, call_id: str) -> None:
        self.actions.append(("hangup", call_id, None))

    async def start_media_stream(self, call_id: str) -> None:
        self.actions.append(("stream", call_id, None))
