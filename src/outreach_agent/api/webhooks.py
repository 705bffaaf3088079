"""Webhook endpoint for call-control events.

The call-control provider posts one event per call lifecycle step
(initiated, answered, speak ended, gather ended, machine detection ended,
hangup). Each event is verified, parsed and handed to the call event
executor, which drives the call state machine.

Security:
- Every event is verified before parsing (see webhook_security.py)
- Rejected events never touch call state
"""

from __future__ import annotations

import json
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from outreach_agent.api.rate_limits import RateLimits, limiter
from outreach_agent.api.webhook_security import WebhookSecurityError, WebhookSecurityManager
from outreach_agent.calls.events import parse_event
from outreach_agent.calls.executor import CallEventExecutor
from outreach_agent.core.exceptions import InvalidSignatureError
from outreach_agent.core.logging import get_logger
from outreach_agent.dependencies import get_call_executor, get_webhook_security

log = get_logger(__name__)

router = APIRouter()


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the provider."""

    received: bool = True
    state: str | None = None


async def verify_call_event(
    request: Request,
    security: Annotated[WebhookSecurityManager, Depends(get_webhook_security)],
) -> bytes:
    """Dependency verifying the event signature.

    Returns the raw body so the handler parses exactly the signed bytes.

    Raises:
        InvalidSignatureError: If validation fails (403)
    """
    try:
        return await security.validate_call_event(request)
    except WebhookSecurityError as e:
        log.warning(
            "Invalid call event signature",
            path=str(request.url.path),
            error=str(e),
        )
        raise InvalidSignatureError("Invalid signature") from e


@router.post("/webhooks/call-events", response_model=WebhookResponse)
@limiter.limit(RateLimits.WEBHOOK)
async def handle_call_event(
    request: Request,
    body: Annotated[bytes, Depends(verify_call_event)],
    executor: Annotated[CallEventExecutor, Depends(get_call_executor)],
) -> WebhookResponse:
    """Handle one call-control event.

    Events for unknown calls or of unknown types are acknowledged without
    side effects so the provider does not retry them.
    """
    try:
        payload: Any = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    parsed = parse_event(payload)
    log.debug(
        "Call event received",
        call_control_id=parsed.handle,
        event_type=type(parsed.event).__name__,
    )

    result = await executor.handle(parsed)
    return WebhookResponse(
        received=True,
        state=result.state.phase.value if result else None,
    )
