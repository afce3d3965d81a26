"""Shared-secret HMAC-SHA256 webhook signatures (GitHub, Bitbucket)."""

import hashlib
import hmac
import logging

from qarecipe.adapters.auth.base import (
    InboundRequest,
    InstallationResolver,
    VerificationResult,
    WebhookVerifier,
)

logger = logging.getLogger(__name__)


def compute_signature(secret: str, payload_body: bytes, prefix: str = "sha256=") -> str:
    """Return the prefixed hex HMAC-SHA256 of *payload_body*."""
    mac = hmac.new(str(secret).encode("utf-8"), msg=payload_body, digestmod=hashlib.sha256)
    return f"{prefix}{mac.hexdigest()}"


def verify_signature(
    payload_body: bytes,
    signature_header: str | None,
    secret: str | None,
    prefix: str = "sha256=",
) -> bool:
    """Verify a prefixed hex signature over the exact raw request bytes."""
    if not secret or not signature_header:
        return False
    if not isinstance(payload_body, (bytes, bytearray)):
        raise TypeError("payload_body must be the raw request bytes")
    if prefix and not signature_header.startswith(prefix):
        return False

    expected_signature = compute_signature(secret, bytes(payload_body), prefix)
    return hmac.compare_digest(
        expected_signature.encode("utf-8"), signature_header.strip().encode("utf-8")
    )


class HmacSignatureVerifier(WebhookVerifier):
    """Verifies ``<header>: sha256=<hex>`` against one app-level secret.

    Args:
        secret: Shared webhook secret.
        header: Name of the signature header.
        prefix: Fixed prefix in front of the hex digest.
        allow_unsigned: Accept deliveries when no secret is configured.
    """

    def __init__(
        self,
        secret: str | None,
        header: str = "X-Hub-Signature-256",
        prefix: str = "sha256=",
        allow_unsigned: bool = False,
    ):
        self._secret = secret
        self._header = header
        self._prefix = prefix
        self._allow_unsigned = allow_unsigned

    @property
    def scheme(self) -> str:
        return "hmac-sha256"

    async def verify(
        self,
        request: InboundRequest,
        resolve_installation: InstallationResolver | None = None,
    ) -> VerificationResult:
        if not self._secret:
            if self._allow_unsigned:
                logger.warning("⚠️ No webhook secret configured - accepting unsigned delivery")
                return VerificationResult(valid=True, reason="unsigned")
            return VerificationResult.reject("webhook secret not configured")

        signature = request.header(self._header)
        if not signature:
            return VerificationResult.reject(f"missing {self._header} header")

        if not verify_signature(request.raw_body, signature, self._secret, self._prefix):
            return VerificationResult.reject("signature mismatch")
        return VerificationResult(valid=True)
