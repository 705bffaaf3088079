"""Internal API key authentication.

Agent callbacks authenticate with a shared secret sent as a Bearer token.
Provider webhooks are not covered here; they use signature validation
(see webhook_security.py).

Development mode: when no internal API key is configured the check is
skipped.
"""

from __future__ import annotations

import hmac
from typing import Annotated

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from outreach_agent.config import Settings
from outreach_agent.core.exceptions import ForbiddenError, UnauthorizedError
from outreach_agent.core.logging import get_logger
from outreach_agent.dependencies import get_app_settings

log = get_logger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


async def require_internal_key(
    settings: Annotated[Settings, Depends(get_app_settings)],
    credentials: HTTPAuthorizationCredentials | None = Security(security),
) -> None:
    """Require the internal API key on agent callbacks.

    Raises:
        UnauthorizedError: If the Authorization header is missing
        ForbiddenError: If the key does not match
    """
    expected = settings.internal_api_key
    if not expected:
        return

    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Missing authorization header")

    if not hmac.compare_digest(credentials.credentials.encode(), expected.encode()):
        log.warning("Invalid internal API key")
        raise ForbiddenError("Invalid API key")


InternalAuth = Depends(require_internal_key)
