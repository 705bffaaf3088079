"""Realtime conversation over the Gemini Live websocket API.

Caller audio (base64 PCMU frames from the call's media stream) is sent as
realtime input; synthesized audio comes back as inline data and is
forwarded to the call leg. Input and output transcriptions accumulate
into the session transcript, which is classified after hangup.

Protocol: https://ai.google.dev/api/live
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from outreach_agent.config import ConversationSettings
from outreach_agent.conversation.analysis import TranscriptAnalyzer
from outreach_agent.conversation.base import (
    ConversationService,
    ConversationSession,
    TranscriptAnalysis,
)
from outreach_agent.core.exceptions import SessionUnavailableError
from outreach_agent.core.logging import get_logger

log = get_logger(__name__)

CALLER_AUDIO_MIME_TYPE = "audio/pcmu"
GREETING_PROMPT = "The customer has answered the phone. Greet them now."


def setup_message(model: str, system_prompt: str, voice: str) -> dict[str, Any]:
    return {
        "setup": {
            "model": model,
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}},
                },
            },
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "inputAudioTranscription": {},
            "outputAudioTranscription": {},
        }
    }


class RealtimeSession(ConversationSession):
    """One Gemini Live websocket bound to a call."""

    def __init__(self, handle: str, websocket: Any):
        self.handle = handle
        self._ws = websocket
        self._transcript: list[dict[str, str]] = []
        self._closed = False
        self._shut_down = False

    @property
    def transcript(self) -> list[dict[str, str]]:
        return list(self._transcript)

    @property
    def closed(self) -> bool:
        return self._closed

    def _record(self, role: str, text: str | None) -> None:
        """Append a transcription fragment, merging consecutive same-role text."""
        if not text:
            return
        if self._transcript and self._transcript[-1]["role"] == role:
            self._transcript[-1]["content"] += text
        else:
            self._transcript.append({"role": role, "content": text})

    async def send_audio(self, payload: str) -> None:
        if self._closed:
            return
        message = {
            "realtimeInput": {
                "audio": {"data": payload, "mimeType": CALLER_AUDIO_MIME_TYPE},
            }
        }
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed:
            log.debug("Session socket closed while sending audio", call_control_id=self.handle)
            self._closed = True

    async def greet(self) -> None:
        await self._ws.send(
            json.dumps(
                {
                    "clientContent": {
                        "turns": [{"role": "user", "parts": [{"text": GREETING_PROMPT}]}],
                        "turnComplete": True,
                    }
                }
            )
        )

    def handle_message(self, message: dict[str, Any]) -> list[str]:
        """Extract outbound audio and record transcriptions from one message."""
        content = message.get("serverContent") or {}
        self._record("user", (content.get("inputTranscription") or {}).get("text"))
        self._record("agent", (content.get("outputTranscription") or {}).get("text"))

        frames = []
        for part in (content.get("modelTurn") or {}).get("parts") or []:
            inline = part.get("inlineData") or {}
            if inline.get("data") and str(inline.get("mimeType", "")).startswith("audio/"):
                frames.append(inline["data"])

        if content.get("turnComplete"):
            log.debug("Model turn complete", call_control_id=self.handle)
        return frames

    async def responses(self) -> AsyncIterator[str]:
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    log.debug("Ignoring non-JSON session message", call_control_id=self.handle)
                    continue
                for frame in self.handle_message(message):
                    yield frame
        except ConnectionClosed:
            log.debug("Session socket closed", call_control_id=self.handle)
        finally:
            self._closed = True

    async def close(self) -> None:
        if self._shut_down:
            return
        self._shut_down = True
        self._closed = True
        try:
            await self._ws.close()
        except WebSocketException as e:
            log.debug("Error closing session socket", call_control_id=self.handle, error=str(e))


class RealtimeConversationService(ConversationService):
    """Gemini Live sessions with Groq transcript classification."""

    def __init__(self, config: ConversationSettings, analyzer: TranscriptAnalyzer | None = None):
        self.config = config
        self.analyzer = analyzer or TranscriptAnalyzer(config.groq_api_key, config.groq_model)

    async def open_session(
        self,
        handle: str,
        system_prompt: str,
        voice: str | None = None,
    ) -> RealtimeSession:
        if not self.config.gemini_api_key:
            raise SessionUnavailableError(
                "Realtime conversation API key not configured",
                details={"call_control_id": handle},
            )

        url = f"{self.config.gemini_ws_url}?key={self.config.gemini_api_key}"
        try:
            websocket = await websockets.connect(
                url, open_timeout=self.config.connect_timeout_seconds
            )
            await websocket.send(
                json.dumps(
                    setup_message(self.config.gemini_model, system_prompt, voice or self.config.voice)
                )
            )
            reply = await asyncio.wait_for(
                websocket.recv(), timeout=self.config.connect_timeout_seconds
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise SessionUnavailableError(
                "Could not open realtime conversation session",
                details={"call_control_id": handle},
                cause=e,
            ) from e

        if "setupComplete" not in json.loads(reply):
            await websocket.close()
            raise SessionUnavailableError(
                "Realtime session setup was not acknowledged",
                details={"call_control_id": handle},
            )

        log.info("Realtime session opened", call_control_id=handle, model=self.config.gemini_model)
        return RealtimeSession(handle, websocket)

    async def classify(self, transcript: list[dict[str, Any]] | None) -> TranscriptAnalysis | None:
        return await self.analyzer.analyze(transcript)

    async def close(self) -> None:
        await self.analyzer.close()
