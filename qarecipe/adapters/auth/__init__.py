"""Inbound webhook authentication schemes."""
from qarecipe.adapters.auth.base import (
    InboundRequest,
    InstallationResolver,
    VerificationResult,
    WebhookVerifier,
)
from qarecipe.adapters.auth.connect_jwt import (
    CONTEXT_QSH,
    ConnectJwtVerifier,
    compute_qsh,
    issue_installation_token,
)
from qarecipe.adapters.auth.hmac_signature import (
    HmacSignatureVerifier,
    compute_signature,
    verify_signature,
)
from qarecipe.adapters.auth.org_signature import OrgSignatureVerifier, extract_organization_id

__all__ = [
    "CONTEXT_QSH",
    "ConnectJwtVerifier",
    "HmacSignatureVerifier",
    "InboundRequest",
    "InstallationResolver",
    "OrgSignatureVerifier",
    "VerificationResult",
    "WebhookVerifier",
    "compute_qsh",
    "compute_signature",
    "extract_organization_id",
    "issue_installation_token",
    "verify_signature",
]
