"""Realtime voice conversations and transcript analysis."""

from outreach_agent.conversation.base import (
    VALID_ANALYSIS_OUTCOMES,
    ConversationService,
    ConversationSession,
    TranscriptAnalysis,
)
from outreach_agent.conversation.sessions import SessionArena

__all__ = [
    "VALID_ANALYSIS_OUTCOMES",
    "ConversationService",
    "ConversationSession",
    "SessionArena",
    "TranscriptAnalysis",
]
