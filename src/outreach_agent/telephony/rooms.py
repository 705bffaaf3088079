"""Room/agent Voice Provider.

Places conversational calls through a LiveKit-style server API: an agent
is dispatched into a fresh room with the call metadata, then a SIP
participant bridges the customer's phone into the same room. The agent
holds the conversation and reports back through the internal callbacks.

The server API is Twirp (JSON over HTTP POST) authenticated with a short
lived HS256 access token.
"""

from __future__ import annotations

import json
import time
from typing import Any

import httpx
import jwt

from outreach_agent.config import RoomSettings
from outreach_agent.core.exceptions import DialError, TelephonyError, UnsupportedCallError
from outreach_agent.core.logging import get_logger
from outreach_agent.core.retry import (
    PROVIDER_RETRY_CONFIG,
    CircuitOpen,
    RetryConfig,
    get_circuit_breaker,
    retry_async,
)
from outreach_agent.db.models.core import DEFAULT_VOICE, CallType
from outreach_agent.telephony.base import CallRequest, DialResult, VoiceProvider

log = get_logger(__name__)

TOKEN_TTL_SECONDS = 600

DISPATCH_PATH = "/twirp/livekit.AgentDispatchService/CreateDispatch"
SIP_PARTICIPANT_PATH = "/twirp/livekit.SIP/CreateSIPParticipant"


def http_base_url(url: str) -> str:
    """Server API base URL; websocket schemes map to their HTTP twins."""
    url = url.rstrip("/")
    if url.startswith("wss://"):
        return "https://" + url[len("wss://"):]
    if url.startswith("ws://"):
        return "http://" + url[len("ws://"):]
    return url


def room_name_for(request: CallRequest, now: float | None = None) -> str:
    """Unique room name per call attempt.

    Reminders: ``reminder-{appointment_id}-{ms}``.
    Campaigns: ``campaign-{type}-{campaign_call_id}-{ms}``.
    """
    millis = int((now if now is not None else time.time()) * 1000)
    campaign_type = request.context.campaign_type
    if campaign_type:
        return f"campaign-{campaign_type.lower()}-{request.reference}-{millis}"
    return f"{request.context.call_type.lower()}-{request.reference}-{millis}"


class RoomVoiceProvider(VoiceProvider):
    """Conversational provider backed by agent rooms.

    Attributes:
        config: Room server credentials, SIP trunk and agent name
    """

    name = "rooms"

    def __init__(
        self,
        config: RoomSettings,
        retry_config: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.retry_config = retry_config or PROVIDER_RETRY_CONFIG
        self._breaker = get_circuit_breaker(f"telephony.{self.name}")
        self._client = httpx.AsyncClient(
            base_url=http_base_url(config.url),
            timeout=config.timeout_seconds,
            transport=transport,
        )

    @property
    def handles_campaigns(self) -> bool:
        return True

    def access_token(self, room_name: str) -> str:
        """Mint a server token allowed to dispatch agents and dial SIP."""
        now = int(time.time())
        claims = {
            "iss": self.config.api_key,
            "sub": f"{self.config.agent_name}-dispatcher",
            "nbf": now,
            "exp": now + TOKEN_TTL_SECONDS,
            "video": {"roomAdmin": True, "roomCreate": True, "room": room_name},
            "sip": {"admin": True, "call": True},
        }
        return jwt.encode(claims, self.config.api_secret, algorithm="HS256")

    def build_metadata(self, request: CallRequest) -> dict[str, Any]:
        """Job metadata the agent reads to run the call."""
        context = request.context
        metadata: dict[str, Any] = {
            "call_type": context.call_type.lower(),
            "voice_preference": request.voice or context.voice or DEFAULT_VOICE,
            "business": {
                "id": context.business_id,
                "name": context.business_name,
                "category": context.business_category,
                "timezone": context.business_timezone,
            },
            "customer": {
                "id": context.customer_id,
                "name": context.customer_name,
                "phone": request.to,
            },
            "template": request.template,
        }
        if context.call_type == CallType.REMINDER.value:
            metadata["appointment"] = {
                "id": context.appointment_id,
                "title": context.appointment_title,
                "scheduled_at": context.appointment_time,
                "customer_name": context.customer_name,
                "business_name": context.business_name,
                "business_category": context.business_category,
                "business_timezone": context.business_timezone,
            }
        if context.campaign_call_id:
            metadata["campaign_call_id"] = context.campaign_call_id
        metadata.update(request.extra)
        return metadata

    async def _twirp(self, path: str, payload: dict[str, Any], room_name: str) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.access_token(room_name)}"}
        try:
            async with self._breaker:
                response = await retry_async(
                    self._client.post,
                    path,
                    json=payload,
                    headers=headers,
                    config=self.retry_config,
                )
        except CircuitOpen as e:
            raise DialError("Room provider circuit open", details={"path": path}, cause=e) from e
        except httpx.HTTPError as e:
            raise DialError("Room provider request failed", details={"path": path}, cause=e) from e

        if response.status_code >= 400:
            raise DialError(
                f"Room provider API error: {response.status_code}",
                details={"path": path, "room_name": room_name, "body": response.text[:500]},
            )
        try:
            return response.json()
        except ValueError:
            return {}

    async def dial(self, request: CallRequest) -> DialResult:
        room_name = room_name_for(request)

        await self._twirp(
            DISPATCH_PATH,
            {
                "room": room_name,
                "agent_name": self.config.agent_name,
                "metadata": json.dumps(self.build_metadata(request)),
            },
            room_name,
        )

        participant = await self._twirp(
            SIP_PARTICIPANT_PATH,
            {
                "sip_trunk_id": self.config.sip_trunk_id,
                "sip_call_to": request.to,
                "room_name": room_name,
                "participant_identity": f"customer-{request.context.customer_id}",
                "participant_name": request.context.customer_name or "Customer",
                "play_dialtone": False,
            },
            room_name,
        )

        call_id = participant.get("sip_call_id")
        log.info(
            "Agent call created",
            provider=self.name,
            room_name=room_name,
            sip_call_id=call_id,
            call_type=request.context.call_type,
        )
        return DialResult(call_id=call_id, provider=self.name, room_name=room_name)

    def _unsupported(self, action: str, call_id: str) -> TelephonyError:
        return UnsupportedCallError(
            f"{action} is handled by the room agent",
            details={"call_id": call_id, "provider": self.name},
        )

    async def speak(self, call_id: str, text: str) -> None:
        raise self._unsupported("speak", call_id)

    async def gather_digits(
        self,
        call_id: str,
        min_digits: int = 1,
        max_digits: int = 1,
        timeout_ms: int = 10000,
    ) -> None:
        raise self._unsupported("gather", call_id)

    async def hangup(self, call_id: str) -> None:
        raise self._unsupported("hangup", call_id)

    async def close(self) -> None:
        await self._client.aclose()
