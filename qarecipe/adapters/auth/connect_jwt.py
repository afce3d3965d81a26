"""Per-installation signed tokens with a request-binding ``qsh`` claim (Jira Connect).

Inbound: the token arrives in ``?jwt=`` or ``Authorization: JWT <token>``. Its
unverified ``iss`` names the installation whose shared secret verifies the
HS256 signature; the ``qsh`` claim must then hash to this exact request, or be
the session sentinel ``context-qsh``.

Outbound: :func:`issue_installation_token` mints a short-lived token for one
API call.
"""

import hashlib
import logging
import time
from urllib.parse import quote, urlsplit, parse_qs

import jwt

from qarecipe.adapters.auth.base import (
    InboundRequest,
    InstallationResolver,
    VerificationResult,
    WebhookVerifier,
)

logger = logging.getLogger(__name__)

CONTEXT_QSH = "context-qsh"
TOKEN_TTL_SECONDS = 180


def _encode(value: str) -> str:
    return quote(str(value), safe="~")


def canonical_request(method: str, path: str, query: dict[str, list[str]] | None = None) -> str:
    """Build ``METHOD&canonical-path&sorted-query`` for hashing.

    The ``jwt`` parameter is excluded; repeated values are sorted and
    comma-joined; keys are sorted after percent-encoding.
    """
    canonical_path = path or "/"
    if not canonical_path.startswith("/"):
        canonical_path = "/" + canonical_path
    if len(canonical_path) > 1 and canonical_path.endswith("/"):
        canonical_path = canonical_path.rstrip("/")
    canonical_path = canonical_path.replace("&", "%26")

    parts = []
    for key in sorted((query or {}).keys(), key=_encode):
        if key == "jwt":
            continue
        values = sorted(_encode(v) for v in (query or {}).get(key) or [""])
        parts.append(f"{_encode(key)}={','.join(values)}")
    return f"{method.upper()}&{canonical_path}&{'&'.join(parts)}"


def compute_qsh(method: str, path: str, query: dict[str, list[str]] | None = None) -> str:
    """SHA-256 hex of the canonical request."""
    return hashlib.sha256(canonical_request(method, path, query).encode("utf-8")).hexdigest()


def compute_qsh_for_url(method: str, url: str, base_url: str = "") -> str:
    """Compute ``qsh`` for an absolute URL, relative to the installation base URL."""
    parts = urlsplit(url)
    path = parts.path
    base_path = urlsplit(base_url).path.rstrip("/") if base_url else ""
    if base_path and path.startswith(base_path):
        path = path[len(base_path):]
    query = parse_qs(parts.query, keep_blank_values=True)
    return compute_qsh(method, path, query)


def issue_installation_token(
    shared_secret: str,
    app_key: str,
    method: str | None = None,
    url: str | None = None,
    base_url: str = "",
    now: int | None = None,
) -> str:
    """Mint an HS256 token for one outbound call.

    Without *method*/*url* the token is bound to the session (``context-qsh``).
    """
    issued_at = int(now if now is not None else time.time())
    qsh = compute_qsh_for_url(method, url, base_url) if method and url else CONTEXT_QSH
    payload = {
        "iss": app_key,
        "iat": issued_at,
        "exp": issued_at + TOKEN_TTL_SECONDS,
        "qsh": qsh,
    }
    return jwt.encode(payload, shared_secret, algorithm="HS256")


def extract_token(request: InboundRequest) -> str | None:
    token = request.query_value("jwt")
    if token:
        return token
    auth_header = request.header("Authorization") or ""
    if auth_header.startswith("JWT "):
        return auth_header[4:].strip() or None
    return None


class ConnectJwtVerifier(WebhookVerifier):
    """Verifies Connect-style installation tokens and their ``qsh`` binding."""

    def __init__(self, leeway: int = 30):
        self._leeway = leeway

    @property
    def scheme(self) -> str:
        return "connect-jwt"

    async def verify(
        self,
        request: InboundRequest,
        resolve_installation: InstallationResolver | None = None,
    ) -> VerificationResult:
        token = extract_token(request)
        if not token:
            return VerificationResult.reject("no JWT token provided")

        try:
            unverified = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError as exc:
            return VerificationResult.reject(f"invalid JWT structure: {exc}")

        client_key = unverified.get("iss")
        if not client_key:
            return VerificationResult.reject("JWT has no iss claim")
        if resolve_installation is None:
            return VerificationResult.reject("no installation resolver")

        installation = await resolve_installation(str(client_key))
        if installation is None or not installation.enabled:
            return VerificationResult.reject(f"unknown or disabled installation {client_key}")

        shared_secret = installation.secret("shared_secret")
        if not shared_secret:
            return VerificationResult.reject(f"installation {client_key} has no shared secret")

        try:
            claims = jwt.decode(
                token,
                shared_secret,
                algorithms=["HS256"],
                leeway=self._leeway,
                options={"verify_aud": False, "require": ["iss", "iat", "exp"]},
            )
        except jwt.InvalidTokenError as exc:
            logger.error("❌ JWT verification failed for %s: %s", client_key, exc)
            return VerificationResult.reject(f"invalid JWT signature: {exc}")

        qsh = claims.get("qsh")
        if qsh != CONTEXT_QSH:
            expected = compute_qsh(request.method, request.path, request.query)
            if not qsh or qsh != expected:
                logger.error("❌ JWT qsh mismatch for %s %s", request.method, request.path)
                return VerificationResult.reject("request binding (qsh) mismatch")

        logger.info("✅ JWT verified for %s", client_key)
        return VerificationResult(valid=True, installation=installation, claims=claims)
