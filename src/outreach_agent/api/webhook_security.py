"""Authenticity checks for inbound call event webhooks.

A call event may move a call to a terminal state and book an outcome, so
nothing is parsed before its origin is proven. Two schemes are accepted:

- Ed25519: the call-control provider signs ``"{timestamp}|{body}"`` with
  its private key; we hold the public key.
- HMAC: a relay in front of us re-signs ``"{timestamp}.{body}"`` with a
  shared secret and must send the timestamp header.

Both reject timestamps outside the tolerance window to stop replays.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from outreach_agent.config import WebhookSettings
from outreach_agent.core.logging import get_logger

if TYPE_CHECKING:
    from fastapi import Request

log = get_logger(__name__)

ED25519_SIGNATURE_HEADER = "telnyx-signature-ed25519"
ED25519_TIMESTAMP_HEADER = "telnyx-timestamp"

_HASHES = {"sha256": hashlib.sha256, "sha512": hashlib.sha512}


@dataclass
class WebhookSecurityConfig:
    validate_signatures: bool = True
    public_key: str = ""
    hmac_secret: str = ""
    timestamp_tolerance_seconds: int = 300

    @classmethod
    def from_settings(cls, settings: WebhookSettings) -> WebhookSecurityConfig:
        return cls(
            validate_signatures=settings.validate_signatures,
            public_key=settings.public_key,
            hmac_secret=settings.hmac_secret,
            timestamp_tolerance_seconds=settings.timestamp_tolerance_seconds,
        )


class WebhookSecurityError(Exception):
    """The webhook could not be proven to come from the provider."""


def _b64decode(value: str) -> bytes | None:
    try:
        return base64.b64decode(value, validate=True)
    except (ValueError, binascii.Error):
        return None


class Ed25519SignatureValidator:
    """Checks provider signatures against a base64 raw 32-byte public key.

    A key that fails to decode leaves the validator unconfigured; every
    signature is then rejected.
    """

    def __init__(self, public_key: str) -> None:
        self._key: Ed25519PublicKey | None = None
        raw = _b64decode(public_key) if public_key else None
        if public_key and raw is None:
            log.error("Ed25519 public key is not valid base64")
        elif raw is not None:
            try:
                self._key = Ed25519PublicKey.from_public_bytes(raw)
            except ValueError as e:
                log.error("Invalid Ed25519 public key", error=str(e))

    @property
    def configured(self) -> bool:
        return self._key is not None

    def validate(self, signature: str, timestamp: str, body: bytes) -> bool:
        if self._key is None:
            log.warning("Ed25519 signature received but no public key loaded")
            return False
        raw_signature = _b64decode(signature) if signature and timestamp else None
        if raw_signature is None:
            return False
        try:
            self._key.verify(raw_signature, b"%s|%s" % (timestamp.encode("utf-8"), body))
        except InvalidSignature:
            return False
        return True


class GenericHMACValidator:
    """Hex HMAC over ``"{timestamp}.{body}"``, or the bare body without a timestamp.

    Args:
        secret: Shared secret; an empty secret rejects everything
        algorithm: ``"sha256"`` or ``"sha512"``
        signature_header: Header carrying the signature
        timestamp_header: Header carrying the unix timestamp

    Raises:
        ValueError: For any other algorithm
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "sha256",
        signature_header: str = "X-Signature",
        timestamp_header: str = "X-Timestamp",
    ) -> None:
        if algorithm not in _HASHES:
            raise ValueError(f"Unsupported algorithm: {algorithm}")
        self.secret = secret
        self.algorithm = algorithm
        self.signature_header = signature_header
        self.timestamp_header = timestamp_header

    def sign(self, body: bytes, timestamp: str | None = None) -> str:
        message = b"%s.%s" % (timestamp.encode("utf-8"), body) if timestamp else body
        return hmac.new(self.secret.encode("utf-8"), message, _HASHES[self.algorithm]).hexdigest()

    def validate(self, signature: str, body: bytes, timestamp: str | None = None) -> bool:
        """Compare in constant time; a leading ``"sha256="`` style prefix is ignored."""
        if not self.secret:
            log.warning("HMAC signature received but no secret configured")
            return False
        _, _, digest = signature.rpartition(f"{self.algorithm}=")
        return hmac.compare_digest(self.sign(body, timestamp), digest)


class TimestampValidator:
    """Accepts unix timestamps no further than ``tolerance_seconds`` from now."""

    def __init__(self, tolerance_seconds: int = 300) -> None:
        self.tolerance_seconds = tolerance_seconds

    def validate(self, timestamp: str | int | float | None, now: float | None = None) -> bool:
        try:
            sent_at = float(timestamp)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return False
        skew = abs((time.time() if now is None else now) - sent_at)
        if skew <= self.tolerance_seconds:
            return True
        log.warning("Webhook timestamp outside tolerance", skew_seconds=round(skew))
        return False


class WebhookSecurityManager:
    """Picks the configured scheme and verifies call events with it.

    Ed25519 wins when a public key is loaded, HMAC is used when only a
    secret is set, and having neither is an error unless validation is
    switched off entirely.
    """

    def __init__(self, config: WebhookSecurityConfig) -> None:
        self.config = config
        self._ed25519 = Ed25519SignatureValidator(config.public_key)
        self._hmac = GenericHMACValidator(config.hmac_secret)
        self._timestamp = TimestampValidator(config.timestamp_tolerance_seconds)

    def _verify_ed25519(self, headers: Mapping[str, str], body: bytes, now: float | None) -> None:
        timestamp = headers.get(ED25519_TIMESTAMP_HEADER, "")
        if not self._timestamp.validate(timestamp, now):
            raise WebhookSecurityError("Request timestamp expired")
        if not self._ed25519.validate(headers.get(ED25519_SIGNATURE_HEADER, ""), timestamp, body):
            raise WebhookSecurityError("Invalid signature")

    def _verify_hmac(self, headers: Mapping[str, str], body: bytes, now: float | None) -> None:
        timestamp = headers.get(self._hmac.timestamp_header, "")
        if not timestamp:
            raise WebhookSecurityError("Missing request timestamp")
        if not self._timestamp.validate(timestamp, now):
            raise WebhookSecurityError("Request timestamp expired")
        if not self._hmac.validate(headers.get(self._hmac.signature_header, ""), body, timestamp):
            raise WebhookSecurityError("Invalid signature")

    def verify(self, headers: Mapping[str, str], body: bytes, now: float | None = None) -> None:
        """Raise WebhookSecurityError unless ``body`` is authentic."""
        if not self.config.validate_signatures:
            log.debug("Webhook signature validation disabled")
        elif self._ed25519.configured:
            self._verify_ed25519(headers, body, now)
        elif self.config.hmac_secret:
            self._verify_hmac(headers, body, now)
        else:
            raise WebhookSecurityError("No webhook verification key configured")

    async def validate_call_event(self, request: Request) -> bytes:
        """Read the request body once, verify it and hand it back for parsing."""
        body = await request.body()
        path = request.url.path
        try:
            self.verify(request.headers, body)
        except WebhookSecurityError as e:
            log.warning("Rejected call event webhook", path=path, reason=str(e))
            raise
        return body
