"""Webhook signature verification for Vapi server messages.

Vapi can authenticate server messages two ways:
- an HMAC-SHA256 signature of the raw body in ``X-Vapi-Signature``
- the configured shared secret echoed in ``X-Vapi-Secret``

Verification applies only when ``vapi.webhook_secret`` is set and
``webhooks.validate_signatures`` is enabled.
"""

from __future__ import annotations

import hashlib
import hmac

from fastapi import Request

from crm_dialer.config import Settings, get_settings
from crm_dialer.core.exceptions import InvalidSignatureError
from crm_dialer.core.logging import get_logger

log = get_logger(__name__)

SIGNATURE_HEADER = "X-Vapi-Signature"
SECRET_HEADER = "X-Vapi-Secret"


class GenericHMACValidator:
    """HMAC signature validator (SHA256 or SHA512) over the raw body."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "sha256",
        signature_header: str = SIGNATURE_HEADER,
    ) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.signature_header = signature_header

        if algorithm == "sha256":
            self._hash_func = hashlib.sha256
        elif algorithm == "sha512":
            self._hash_func = hashlib.sha512
        else:
            raise ValueError(f"Unsupported algorithm: {algorithm}")

    def sign(self, body: bytes) -> str:
        """Hex digest of ``body`` under the secret."""
        return hmac.new(self.secret.encode("utf-8"), body, self._hash_func).hexdigest()

    def validate(self, signature: str, body: bytes) -> bool:
        """Check a signature, accepting an optional ``sha256=``/``sha512=`` prefix."""
        if not self.secret:
            log.warning("HMAC secret not configured")
            return False
        if not signature:
            return False

        prefix = f"{self.algorithm}="
        if signature.startswith(prefix):
            signature = signature[len(prefix):]

        return hmac.compare_digest(self.sign(body).encode(), signature.encode("utf-8"))

    async def validate_request(self, request: Request) -> bool:
        signature = request.headers.get(self.signature_header, "")
        body = await request.body()
        return self.validate(signature, body)


def signatures_required(settings: Settings) -> bool:
    return bool(settings.vapi.webhook_secret) and settings.webhooks.validate_signatures


async def verify_vapi_request(request: Request, settings: Settings | None = None) -> None:
    """Reject a Vapi webhook request whose signature or secret does not match.

    Raises:
        InvalidSignatureError: If verification is enabled and fails
    """
    settings = settings or get_settings()
    if not signatures_required(settings):
        return

    secret = settings.vapi.webhook_secret

    shared = request.headers.get(SECRET_HEADER)
    # Header values may carry any latin-1 text; compare as bytes
    if shared is not None and hmac.compare_digest(shared.encode("utf-8"), secret.encode("utf-8")):
        return

    validator = GenericHMACValidator(secret)
    if await validator.validate_request(request):
        return

    log.warning(
        "Rejected Vapi webhook",
        client=request.client.host if request.client else None,
        has_signature=SIGNATURE_HEADER in request.headers,
        has_secret=shared is not None,
    )
    raise InvalidSignatureError("Invalid webhook signature")
