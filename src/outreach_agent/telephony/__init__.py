"""Outbound calling backends."""

from outreach_agent.telephony.base import (
    CallContext,
    CallRequest,
    DialResult,
    MockVoiceProvider,
    VoiceProvider,
)
from outreach_agent.telephony.factory import create_voice_provider

__all__ = [
    "CallContext",
    "CallRequest",
    "DialResult",
    "MockVoiceProvider",
    "VoiceProvider",
    "create_voice_provider",
]
