"""Media stream websocket.

The call-control provider forks call audio to ``/media-stream`` once a
conversational call is answered. Caller frames are forwarded to the live
conversation session of the call; synthesized frames from the session
are sent back on the same socket.

Protocol (provider side, JSON text frames):
- start: stream started, carries the call control id
- media: base64 audio chunk (PCMU, 8kHz, mono)
- stop: stream ended

The conversation session is owned by the call event flow: it is opened
on answer and torn down on hangup, not when the stream disconnects.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from outreach_agent.conversation.base import ConversationSession
from outreach_agent.conversation.sessions import SessionArena
from outreach_agent.core.logging import get_logger
from outreach_agent.dependencies import get_session_arena

log = get_logger(__name__)

router = APIRouter()


async def _pump_responses(websocket: WebSocket, session: ConversationSession) -> None:
    """Send synthesized audio back to the call until the session ends."""
    try:
        async for frame in session.responses():
            await websocket.send_json({"event": "media", "media": {"payload": frame}})
    except asyncio.CancelledError:
        raise
    except Exception as e:
        log.warning("Response pump stopped", call_control_id=session.handle, error=str(e))


@router.websocket("/media-stream")
async def media_stream(
    websocket: WebSocket,
    arena: Annotated[SessionArena, Depends(get_session_arena)],
    call_control_id: str = "",
) -> None:
    """Bidirectional media stream for one call."""
    await websocket.accept()
    handle = call_control_id
    log.info("Media stream connected", call_control_id=handle)

    pump: asyncio.Task | None = None

    def ensure_pump() -> None:
        nonlocal pump
        if pump is not None or not handle:
            return
        session = arena.get(handle)
        if session is not None:
            pump = asyncio.create_task(_pump_responses(websocket, session))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                log.debug("Ignoring non-JSON media frame", call_control_id=handle)
                continue
            if not isinstance(message, dict):
                continue

            event = message.get("event")
            if event == "start":
                start = message.get("start") or {}
                handle = start.get("call_control_id") or handle
                log.info("Media stream started", call_control_id=handle)
                ensure_pump()

            elif event == "media":
                payload = (message.get("media") or {}).get("payload")
                if not payload or not handle:
                    continue
                ensure_pump()
                await arena.send_audio(handle, payload)

            elif event == "stop":
                log.info("Media stream stopped", call_control_id=handle)
                break

    except WebSocketDisconnect:
        log.info("Media stream disconnected", call_control_id=handle)
    finally:
        if pump is not None:
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
