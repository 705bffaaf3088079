"""Call-control REST Voice Provider.

Places calls through a Telnyx-style call-control API and drives them with
speak / gather / hangup actions. Every call event for the call is posted
back to our webhook with the encoded call context as client state.

API Documentation: https://developers.telnyx.com/api/call-control
"""

from __future__ import annotations

from typing import Any

import httpx

from outreach_agent.config import CallControlSettings
from outreach_agent.core.exceptions import CallActionError, DialError, TelephonyError
from outreach_agent.core.logging import get_logger
from outreach_agent.core.retry import (
    PROVIDER_RETRY_CONFIG,
    CircuitOpen,
    RetryConfig,
    get_circuit_breaker,
    retry_async,
)
from outreach_agent.telephony.base import CallRequest, DialResult, VoiceProvider

log = get_logger(__name__)


class CallControlVoiceProvider(VoiceProvider):
    """Announce-and-gather provider.

    Call flow:
    1. POST /calls with our webhook URL and client state
    2. Provider posts call.initiated / call.answered / ... to the webhook
    3. The call event state machine answers with speak / gather / hangup
       actions issued through this provider

    Attributes:
        config: Call-control credentials and voice options
        webhook_url: Where the provider posts call events
        media_stream_url: Websocket the provider forks audio to
    """

    name = "call_control"

    def __init__(
        self,
        config: CallControlSettings,
        webhook_url: str,
        media_stream_url: str | None = None,
        retry_config: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the provider.

        Args:
            config: Call-control settings section
            webhook_url: Public URL of the call-events webhook
            media_stream_url: Public URL of the media websocket
            retry_config: Retry policy for transport failures
            transport: Optional httpx transport (tests)
        """
        self.config = config
        self.webhook_url = webhook_url
        self.media_stream_url = media_stream_url
        self.retry_config = retry_config or PROVIDER_RETRY_CONFIG
        self._breaker = get_circuit_breaker(f"telephony.{self.name}")

        self._client = httpx.AsyncClient(
            base_url=config.api_url.rstrip("/"),
            timeout=config.timeout_seconds,
            transport=transport,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Accept": "application/json",
            },
        )

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        error_class: type[TelephonyError],
    ) -> dict[str, Any]:
        """POST to the API with retry and circuit breaking.

        Raises:
            error_class: On circuit open, transport failure or non-2xx response
        """
        try:
            async with self._breaker:
                response = await retry_async(
                    self._client.post, path, json=payload, config=self.retry_config
                )
        except CircuitOpen as e:
            raise error_class(
                "Call-control provider circuit open",
                details={"path": path},
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise error_class(
                "Call-control request failed",
                details={"path": path},
                cause=e,
            ) from e

        if response.status_code >= 400:
            raise error_class(
                f"Call-control API error: {response.status_code}",
                details={"path": path, "body": response.text[:500]},
            )

        try:
            return response.json()
        except ValueError:
            return {}

    async def dial(self, request: CallRequest) -> DialResult:
        context = request.context
        payload: dict[str, Any] = {
            "connection_id": self.config.connection_id,
            "to": request.to,
            "from": self.config.from_number,
            "webhook_url": self.webhook_url,
            "webhook_url_method": "POST",
            "client_state": context.encode(),
            "custom_headers": [
                {"name": "X-Call-Type", "value": context.call_type},
                {"name": "X-Reference", "value": request.reference},
            ],
        }
        if context.appointment_id:
            payload["custom_headers"].append(
                {"name": "X-Appointment-Id", "value": context.appointment_id}
            )
        if self.config.answering_machine_detection:
            payload["answering_machine_detection"] = "detect"

        data = await self._post("/calls", payload, DialError)
        call_id = (data.get("data") or {}).get("call_control_id")
        if not call_id:
            raise DialError(
                "Call-control API returned no call id",
                details={"reference": request.reference},
            )

        log.info(
            "Call placed",
            provider=self.name,
            call_control_id=call_id,
            call_type=context.call_type,
            reference=request.reference,
        )
        return DialResult(call_id=call_id, provider=self.name)

    async def speak(self, call_id: str, text: str) -> None:
        await self._post(
            f"/calls/{call_id}/actions/speak",
            {
                "payload": text,
                "voice": self.config.voice,
                "language": self.config.language,
            },
            CallActionError,
        )

    async def gather_digits(
        self,
        call_id: str,
        min_digits: int = 1,
        max_digits: int = 1,
        timeout_ms: int = 10000,
    ) -> None:
        await self._post(
            f"/calls/{call_id}/actions/gather",
            {
                "minimum_digits": min_digits,
                "maximum_digits": max_digits,
                "timeout_millis": timeout_ms,
            },
            CallActionError,
        )

    async def hangup(self, call_id: str) -> None:
        await self._post(f"/calls/{call_id}/actions/hangup", {}, CallActionError)

    async def start_media_stream(self, call_id: str) -> None:
        if not self.media_stream_url:
            raise CallActionError(
                "No media stream URL configured",
                details={"call_control_id": call_id},
            )
        await self._post(
            f"/calls/{call_id}/actions/streaming_start",
            {
                "stream_url": f"{self.media_stream_url}?call_control_id={call_id}",
                "stream_track": "both_tracks",
                "stream_bidirectional_mode": "rtp",
            },
            CallActionError,
        )

    async def close(self) -> None:
        await self._client.aclose()
