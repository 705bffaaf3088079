"""Conversation Service Interface.

A conversation service opens a realtime voice session for an answered
call and classifies the transcript once the call has ended.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator

from outreach_agent.db.models.core import CallOutcome

# Closed set of outcomes a transcript classification may produce
VALID_ANALYSIS_OUTCOMES = frozenset(
    {
        CallOutcome.ANSWERED.value,
        CallOutcome.CONFIRMED.value,
        CallOutcome.RESCHEDULED.value,
        CallOutcome.CANCELED.value,
        CallOutcome.VOICEMAIL.value,
        CallOutcome.NO_ANSWER.value,
        CallOutcome.FAILED.value,
    }
)


@dataclass
class TranscriptAnalysis:
    """Summary and outcome derived from a call transcript."""

    summary: str
    outcome: str

    def to_dict(self) -> dict[str, Any]:
        return {"summary": self.summary, "outcome": self.outcome}


class ConversationSession(ABC):
    """One live, bidirectional voice session tied to a call."""

    handle: str

    @abstractmethod
    async def send_audio(self, payload: str) -> None:
        """Forward one base64 audio frame from the caller."""

    @abstractmethod
    def responses(self) -> AsyncIterator[str]:
        """Yield base64 audio frames synthesized for the caller."""

    @property
    @abstractmethod
    def transcript(self) -> list[dict[str, str]]:
        """Messages so far as ``{"role": "agent"|"user", "content": ...}``."""

    async def greet(self) -> None:
        """Prompt the model to speak first. Optional."""

    @abstractmethod
    async def close(self) -> None:
        """Tear the session down. Safe to call more than once."""


class ConversationService(ABC):
    """Factory for sessions plus post-call classification."""

    @abstractmethod
    async def open_session(
        self,
        handle: str,
        system_prompt: str,
        voice: str | None = None,
    ) -> ConversationSession:
        """Open a session for the call identified by ``handle``.

        Raises:
            SessionUnavailableError: If no session could be established
        """

    @abstractmethod
    async def classify(self, transcript: list[dict[str, Any]] | None) -> TranscriptAnalysis | None:
        """Classify a finished call, or None when there is nothing to judge."""

    async def close(self) -> None:
        """Release shared resources."""
