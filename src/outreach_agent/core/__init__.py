"""Core utilities: logging, errors, retry."""

from outreach_agent.core.exceptions import (
    AuthError,
    CampaignAlreadyExistsError,
    ConversationError,
    DatabaseError,
    DialError,
    ForbiddenError,
    InvalidSignatureError,
    OutreachAgentError,
    RecordAlreadyExistsError,
    RecordNotFoundError,
    SessionUnavailableError,
    TelephonyError,
    UnauthorizedError,
    UnsupportedCallError,
    ValidationError,
)
from outreach_agent.core.logging import get_logger, setup_logging

__all__ = [
    "AuthError",
    "CampaignAlreadyExistsError",
    "ConversationError",
    "DatabaseError",
    "DialError",
    "ForbiddenError",
    "InvalidSignatureError",
    "OutreachAgentError",
    "RecordAlreadyExistsError",
    "RecordNotFoundError",
    "SessionUnavailableError",
    "TelephonyError",
    "UnauthorizedError",
    "UnsupportedCallError",
    "ValidationError",
    "get_logger",
    "setup_logging",
]
