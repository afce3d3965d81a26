"""Org-keyed HMAC signatures (Linear).

The organization id embedded in the payload selects the installation whose
webhook secret signs the raw body (plain hex digest, no prefix).
"""

import json
import logging
from typing import Any

from qarecipe.adapters.auth.base import (
    InboundRequest,
    InstallationResolver,
    VerificationResult,
    WebhookVerifier,
)
from qarecipe.adapters.auth.hmac_signature import verify_signature
from qarecipe.core.errors import MalformedPayloadError

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("Linear-Signature", "X-Linear-Signature")


def extract_organization_id(payload: dict[str, Any]) -> str | None:
    """Return ``data.organization.id`` or the top-level ``organizationId``."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data") or {}
    organization = data.get("organization") if isinstance(data, dict) else None
    if isinstance(organization, dict) and organization.get("id"):
        return str(organization["id"])
    if payload.get("organizationId"):
        return str(payload["organizationId"])
    return None


class OrgSignatureVerifier(WebhookVerifier):
    """Args:
        production: When False, an installation without a webhook secret is
            accepted unsigned (with a warning). In production it is rejected.
    """

    def __init__(self, production: bool = True):
        self._production = production

    @property
    def scheme(self) -> str:
        return "org-hmac"

    async def verify(
        self,
        request: InboundRequest,
        resolve_installation: InstallationResolver | None = None,
    ) -> VerificationResult:
        try:
            payload = json.loads(request.raw_body or b"{}")
        except ValueError as exc:
            raise MalformedPayloadError(f"Webhook body is not valid JSON: {exc}") from exc

        org_id = extract_organization_id(payload)
        if not org_id:
            raise MalformedPayloadError("Missing organization id in webhook payload")
        if resolve_installation is None:
            return VerificationResult.reject("no installation resolver")

        installation = await resolve_installation(org_id)
        if installation is None or not installation.enabled:
            return VerificationResult.reject(f"unknown or disabled organization {org_id}")

        secret = installation.secret("webhook_secret")
        if not secret:
            if self._production:
                return VerificationResult.reject(f"organization {org_id} has no webhook secret")
            logger.warning(
                "⚠️ No webhook secret for organization %s - accepting unsigned (non-production)",
                org_id,
            )
            return VerificationResult(valid=True, installation=installation, reason="unsigned")

        signature = None
        for header in SIGNATURE_HEADERS:
            signature = request.header(header)
            if signature:
                break
        if not signature:
            return VerificationResult.reject("missing signature header")

        if not verify_signature(request.raw_body, signature, secret, prefix=""):
            logger.error("❌ Invalid webhook signature for organization %s", org_id)
            return VerificationResult.reject("signature mismatch")
        return VerificationResult(valid=True, installation=installation)
