"""Transcript analysis via Groq.

Summarizes a finished call and classifies its outcome into the closed
outcome set. Any failure yields None so the caller keeps whatever outcome
it already has.
"""

from __future__ import annotations

import json
from typing import Any

from outreach_agent.conversation.base import VALID_ANALYSIS_OUTCOMES, TranscriptAnalysis
from outreach_agent.core.logging import get_logger

log = get_logger(__name__)

ANALYSIS_PROMPT = """Analyze this phone call transcript between an AI appointment reminder agent and a customer.

Transcript:
{transcript}

Respond with a JSON object with two keys:
- "summary": a concise 1-3 sentence summary of the call from the business owner's perspective. Focus on what happened and the result.
- "call_outcome": one of {outcomes}."""


def conversation_messages(transcript: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Agent and user messages only; system entries are dropped."""
    if not transcript or not isinstance(transcript, list):
        return []
    return [
        message
        for message in transcript
        if isinstance(message, dict) and message.get("role") in ("agent", "user")
    ]


def parse_analysis(text: str | None) -> TranscriptAnalysis | None:
    """Validate a model reply; None unless both fields are present and valid."""
    if not text:
        log.error("Transcript analysis returned an empty response")
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        log.error("Transcript analysis returned invalid JSON", error=str(e))
        return None

    if not isinstance(parsed, dict):
        return None
    summary = parsed.get("summary")
    outcome = parsed.get("call_outcome")
    if not summary or not outcome:
        log.error("Transcript analysis missing fields", keys=sorted(parsed))
        return None
    if outcome not in VALID_ANALYSIS_OUTCOMES:
        log.error("Transcript analysis returned invalid outcome", call_outcome=outcome)
        return None
    return TranscriptAnalysis(summary=str(summary), outcome=outcome)


class TranscriptAnalyzer:
    """Groq chat-completion classifier in JSON mode."""

    def __init__(self, api_key: str, model: str = "llama-3.3-70b-versatile"):
        """Initialize the analyzer.

        Args:
            api_key: Groq API key (empty disables analysis)
            model: Chat model name
        """
        self.api_key = api_key
        self.model = model
        self._client = None

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            from groq import AsyncGroq

            self._client = AsyncGroq(api_key=self.api_key)
        return self._client

    async def analyze(self, transcript: list[dict[str, Any]] | None) -> TranscriptAnalysis | None:
        if not self.enabled:
            log.debug("Transcript analysis skipped, no API key")
            return None

        messages = conversation_messages(transcript)
        if len(messages) < 2:
            log.debug("Transcript analysis skipped, too few messages", count=len(messages))
            return None

        formatted = "\n".join(
            f"{message['role'].upper()}: {message.get('content', '')}" for message in messages
        )
        prompt = ANALYSIS_PROMPT.format(
            transcript=formatted,
            outcomes=", ".join(sorted(VALID_ANALYSIS_OUTCOMES)),
        )

        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
                temperature=0.0,
            )
            text = response.choices[0].message.content
        except Exception as e:
            log.error("Transcript analysis failed", error=str(e))
            return None

        analysis = parse_analysis(text)
        if analysis:
            log.info(
                "Transcript analysis complete",
                summary_length=len(analysis.summary),
                call_outcome=analysis.outcome,
            )
        return analysis

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
