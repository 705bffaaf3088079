"""Process-wide singletons, exposed as FastAPI dependencies.

Routes receive them through ``Depends``; the lifespan calls the same
functions directly so the loops and the API share one provider, one
session arena and one executor. Each factory builds its object once under
a lock and ``reset_dependencies()`` drops them all.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach_agent.config import Settings, get_settings
from outreach_agent.db.session import get_db as _get_db, get_session_factory

if TYPE_CHECKING:
    from outreach_agent.api.webhook_security import WebhookSecurityManager
    from outreach_agent.calls.executor import CallEventExecutor
    from outreach_agent.conversation.analysis import TranscriptAnalyzer
    from outreach_agent.conversation.base import ConversationService
    from outreach_agent.conversation.sessions import SessionArena
    from outreach_agent.scheduling.campaigns import CampaignDispatcher
    from outreach_agent.scheduling.reminders import ReminderDispatcher
    from outreach_agent.telephony.base import VoiceProvider


_provider_lock = threading.Lock()
_arena_lock = threading.Lock()
_analyzer_lock = threading.Lock()
_conversation_lock = threading.Lock()
_executor_lock = threading.Lock()
_scheduler_lock = threading.Lock()
_security_lock = threading.Lock()


def get_app_settings() -> Settings:
    return get_settings()


# =============================================================================
# Database Dependencies
# =============================================================================


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request session; a separate name so tests can override it."""
    async for session in _get_db():
        yield session


def get_app_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work outside a request (loops, call events)."""
    return get_session_factory()


# =============================================================================
# Telephony Dependencies
# =============================================================================


_provider_instance: VoiceProvider | None = None


def get_voice_provider() -> VoiceProvider:
    """Get voice provider singleton.

    Thread-safe via double-checked locking pattern.

    Returns:
        The provider named by ``telephony.provider``
    """
    global _provider_instance

    if _provider_instance is None:
        with _provider_lock:
            # Double-check after acquiring lock
            if _provider_instance is None:
                from outreach_agent.telephony.factory import create_voice_provider
                _provider_instance = create_voice_provider(get_settings())

    return _provider_instance


# =============================================================================
# Conversation Dependencies
# =============================================================================


_arena_instance: SessionArena | None = None
_analyzer_instance: TranscriptAnalyzer | None = None
_conversation_instance: ConversationService | None = None


def get_session_arena() -> SessionArena:
    """Get the registry of live conversation sessions."""
    global _arena_instance

    if _arena_instance is None:
        with _arena_lock:
            if _arena_instance is None:
                from outreach_agent.conversation.sessions import SessionArena
                _arena_instance = SessionArena()

    return _arena_instance


def get_transcript_analyzer() -> TranscriptAnalyzer:
    """Get transcript analyzer singleton.

    Disabled (returns no analysis) when no Groq API key is configured.
    """
    global _analyzer_instance

    if _analyzer_instance is None:
        with _analyzer_lock:
            if _analyzer_instance is None:
                from outreach_agent.conversation.analysis import TranscriptAnalyzer
                config = get_settings().conversation
                _analyzer_instance = TranscriptAnalyzer(config.groq_api_key, config.groq_model)

    return _analyzer_instance


def get_conversation_service() -> ConversationService | None:
    """Get conversation service singleton.

    Returns:
        RealtimeConversationService, or None when conversation is disabled
    """
    global _conversation_instance

    settings = get_settings()
    if not settings.conversation.enabled:
        return None

    if _conversation_instance is None:
        with _conversation_lock:
            if _conversation_instance is None:
                from outreach_agent.conversation.realtime import RealtimeConversationService
                _conversation_instance = RealtimeConversationService(
                    settings.conversation,
                    analyzer=get_transcript_analyzer(),
                )

    return _conversation_instance


# =============================================================================
# Call Event Dependencies
# =============================================================================


_executor_instance: CallEventExecutor | None = None


def get_call_executor() -> CallEventExecutor:
    """Get call event executor singleton."""
    global _executor_instance

    if _executor_instance is None:
        with _executor_lock:
            if _executor_instance is None:
                from outreach_agent.calls.executor import CallEventExecutor
                _executor_instance = CallEventExecutor(
                    session_factory=get_session_factory(),
                    provider=get_voice_provider(),
                    arena=get_session_arena(),
                    conversation=get_conversation_service(),
                )

    return _executor_instance


# =============================================================================
# Scheduler Dependencies
# =============================================================================


_reminder_dispatcher: ReminderDispatcher | None = None
_campaign_dispatcher: CampaignDispatcher | None = None


def get_reminder_dispatcher() -> ReminderDispatcher:
    """Get reminder dispatch loop singleton."""
    global _reminder_dispatcher

    if _reminder_dispatcher is None:
        with _scheduler_lock:
            if _reminder_dispatcher is None:
                from outreach_agent.scheduling.reminders import ReminderDispatcher
                _reminder_dispatcher = ReminderDispatcher(
                    get_session_factory(),
                    get_voice_provider(),
                    get_settings().scheduler,
                )

    return _reminder_dispatcher


def get_campaign_dispatcher() -> CampaignDispatcher:
    """Get campaign dispatch loop singleton."""
    global _campaign_dispatcher

    if _campaign_dispatcher is None:
        with _scheduler_lock:
            if _campaign_dispatcher is None:
                from outreach_agent.scheduling.campaigns import CampaignDispatcher
                _campaign_dispatcher = CampaignDispatcher(
                    get_session_factory(),
                    get_voice_provider(),
                    get_settings().scheduler,
                )

    return _campaign_dispatcher


# =============================================================================
# Security Dependencies
# =============================================================================


_security_manager: WebhookSecurityManager | None = None


def get_webhook_security() -> WebhookSecurityManager:
    """Get webhook security manager singleton."""
    global _security_manager

    if _security_manager is None:
        with _security_lock:
            if _security_manager is None:
                from outreach_agent.api.webhook_security import (
                    WebhookSecurityConfig,
                    WebhookSecurityManager,
                )
                config = WebhookSecurityConfig.from_settings(get_settings().telephony.webhooks)
                _security_manager = WebhookSecurityManager(config)

    return _security_manager


# =============================================================================
# Reset (for testing)
# =============================================================================


def reset_dependencies() -> None:
    """Drop every cached singleton.

    Running loops and open clients are not stopped; shut them down first.
    """
    global _provider_instance, _arena_instance, _analyzer_instance
    global _conversation_instance, _executor_instance
    global _reminder_dispatcher, _campaign_dispatcher, _security_manager

    _provider_instance = None
    _arena_instance = None
    _analyzer_instance = None
    _conversation_instance = None
    _executor_instance = None
    _reminder_dispatcher = None
    _campaign_dispatcher = None
    _security_manager = None
