"""Voice Provider Factory.

Creates the configured voice provider.

Supported providers:
- call_control: Announce-and-gather calls driven by call event webhooks
- rooms: Conversational calls run by a dispatched room agent
- mock: For development and testing
"""

from __future__ import annotations

from outreach_agent.config import Settings
from outreach_agent.core.logging import get_logger
from outreach_agent.telephony.base import MockVoiceProvider, VoiceProvider

log = get_logger(__name__)


def create_voice_provider(settings: Settings) -> VoiceProvider:
    """Build the voice provider named by ``telephony.provider``.

    Missing credentials fall back to the mock provider with a warning;
    production settings validation rejects that configuration at startup.

    Args:
        settings: Application settings

    Returns:
        Voice provider instance
    """
    telephony = settings.telephony
    provider = telephony.provider.lower()
    log.info("Initializing voice provider", provider=provider)

    if provider == "call_control":
        if not telephony.call_control.api_key or not telephony.call_control.connection_id:
            log.warning("Call-control credentials not configured, using mock provider")
            return MockVoiceProvider()

        from outreach_agent.telephony.call_control import CallControlVoiceProvider

        return CallControlVoiceProvider(
            config=telephony.call_control,
            webhook_url=settings.call_events_url,
            media_stream_url=settings.media_stream_url,
        )

    if provider == "rooms":
        if not telephony.rooms.configured:
            log.warning("Room provider not configured, using mock provider")
            return MockVoiceProvider(conversational=True)

        from outreach_agent.telephony.rooms import RoomVoiceProvider

        return RoomVoiceProvider(config=telephony.rooms)

    if provider == "mock":
        return MockVoiceProvider()

    log.warning(f"Unknown voice provider '{provider}', using mock")
    return MockVoiceProvider()
