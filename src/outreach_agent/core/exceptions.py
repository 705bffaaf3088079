"""Error types raised by the dispatch engine.

Every class carries the HTTP status and machine-readable code the API
answers with, so routes raise these and let the app handler render them.
"""

from __future__ import annotations

from typing import Any


class OutreachAgentError(Exception):
    """Root of the hierarchy.

    Args:
        message: Text shown to API clients and in logs
        details: Structured context, included in the response body
        cause: Lower-level exception this one translates
    """

    status_code: int = 500
    error_code: str = "OUTREACH_AGENT_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            body["details"] = self.details
        if self.cause is not None:
            body["cause"] = str(self.cause)
        return body

    def __str__(self) -> str:
        text = f"{self.error_code}: {self.message}"
        if self.details:
            text += f" | details={self.details}"
        if self.cause is not None:
            text += f" | cause={self.cause}"
        return text


# =============================================================================
# Storage
# =============================================================================


class DatabaseError(OutreachAgentError):
    status_code = 503
    error_code = "DATABASE_ERROR"


class RecordNotFoundError(DatabaseError):
    """Lookup by id or provider handle matched nothing."""

    status_code = 404
    error_code = "RECORD_NOT_FOUND"


class RecordAlreadyExistsError(DatabaseError):
    status_code = 409
    error_code = "RECORD_ALREADY_EXISTS"


class CampaignAlreadyExistsError(RecordAlreadyExistsError):
    """A business may own only one campaign per campaign type."""

    error_code = "CAMPAIGN_ALREADY_EXISTS"


# =============================================================================
# Voice providers
# =============================================================================


class TelephonyError(OutreachAgentError):
    """The voice provider failed or answered with an error."""

    status_code = 502
    error_code = "TELEPHONY_ERROR"


class DialError(TelephonyError):
    """An outbound call could not be placed."""

    error_code = "DIAL_ERROR"


class CallActionError(TelephonyError):
    """Speak, gather or hangup on a live call was refused."""

    error_code = "CALL_ACTION_ERROR"


class UnsupportedCallError(TelephonyError):
    status_code = 501
    error_code = "UNSUPPORTED_CALL"


# =============================================================================
# Conversation
# =============================================================================


class ConversationError(OutreachAgentError):
    status_code = 503
    error_code = "CONVERSATION_ERROR"


class SessionUnavailableError(ConversationError):
    """No realtime session could be opened for a call."""

    error_code = "SESSION_UNAVAILABLE"


# =============================================================================
# Request content
# =============================================================================


class BusinessError(OutreachAgentError):
    status_code = 400
    error_code = "BUSINESS_ERROR"


class ValidationError(BusinessError):
    """Well-formed input the domain still rejects."""

    error_code = "VALIDATION_ERROR"


# =============================================================================
# Access
# =============================================================================


class AuthError(OutreachAgentError):
    status_code = 401
    error_code = "AUTH_ERROR"


class UnauthorizedError(AuthError):
    """Missing or unknown API key."""

    error_code = "UNAUTHORIZED"


class ForbiddenError(AuthError):
    """Authenticated, but the key may not touch this resource."""

    status_code = 403
    error_code = "FORBIDDEN"


class InvalidSignatureError(AuthError):
    """A provider webhook failed signature or timestamp checks."""

    status_code = 403
    error_code = "INVALID_SIGNATURE"
