"""Tests for the three webhook authentication schemes."""
import asyncio
import json
import random
import time

import jwt
import pytest

from qarecipe.adapters.auth import (
    CONTEXT_QSH,
    ConnectJwtVerifier,
    HmacSignatureVerifier,
    InboundRequest,
    OrgSignatureVerifier,
    compute_qsh,
    compute_signature,
    issue_installation_token,
    verify_signature,
)
from qarecipe.adapters.auth.connect_jwt import canonical_request, compute_qsh_for_url
from qarecipe.core.errors import MalformedPayloadError
from qarecipe.core.models import Installation, Platform


def _flip_bit(data: bytes, bit: int) -> bytes:
    mutated = bytearray(data)
    mutated[bit // 8] ^= 1 << (bit % 8)
    return bytes(mutated)


# ---------------------------------------------------------------------------
# HMAC
# ---------------------------------------------------------------------------


class TestVerifySignature:
    def test_matching_signature_verifies_for_random_pairs(self):
        rng = random.Random(7)
        for _ in range(50):
            secret = "".join(rng.choice("abcdef0123456789") for _ in range(rng.randint(1, 40)))
            body = bytes(rng.getrandbits(8) for _ in range(rng.randint(0, 200)))
            assert verify_signature(body, compute_signature(secret, body), secret) is True

    def test_any_single_bit_flip_in_body_fails(self):
        body = b'{"action":"created","comment":{"body":"/qa"}}'
        signature = compute_signature("s3cret", body)
        for bit in range(len(body) * 8):
            assert verify_signature(_flip_bit(body, bit), signature, "s3cret") is False

    def test_any_single_bit_flip_in_signature_fails(self):
        body = b"payload"
        signature = compute_signature("s3cret", body).encode("ascii")
        for bit in range(len(signature) * 8):
            mutated = _flip_bit(signature, bit).decode("latin-1")
            assert verify_signature(body, mutated, "s3cret") is False

    def test_missing_secret_or_header_is_rejected(self):
        assert verify_signature(b"x", None, "secret") is False
        assert verify_signature(b"x", compute_signature("secret", b"x"), None) is False

    def test_rejects_parsed_body(self):
        with pytest.raises(TypeError):
            verify_signature({"a": 1}, "sha256=00", "secret")  # type: ignore[arg-type]

    def test_reserialized_body_does_not_verify(self):
        raw = b'{"b": 1,  "a": 2}'
        signature = compute_signature("secret", raw)
        reserialized = json.dumps(json.loads(raw)).encode()
        assert verify_signature(raw, signature, "secret") is True
        assert verify_signature(reserialized, signature, "secret") is False


class TestHmacSignatureVerifier:
    def _request(self, body: bytes, **headers) -> InboundRequest:
        return InboundRequest(raw_body=body, headers=headers)

    def test_valid_signature(self):
        body = b'{"x": 1}'
        verifier = HmacSignatureVerifier("secret")
        request = self._request(body, **{"x-hub-signature-256": compute_signature("secret", body)})
        assert asyncio.run(verifier.verify(request)).valid is True

    def test_no_secret_rejects_by_default(self):
        result = asyncio.run(HmacSignatureVerifier(None).verify(self._request(b"{}")))
        assert result.valid is False
        assert "not configured" in result.reason

    def test_no_secret_accepts_when_unsigned_allowed(self):
        verifier = HmacSignatureVerifier(None, header="X-Hub-Signature", allow_unsigned=True)
        assert asyncio.run(verifier.verify(self._request(b"{}"))).valid is True

    def test_missing_header_rejected_when_secret_configured(self):
        verifier = HmacSignatureVerifier("secret", header="X-Hub-Signature", allow_unsigned=True)
        assert asyncio.run(verifier.verify(self._request(b"{}"))).valid is False


# ---------------------------------------------------------------------------
# Connect JWT with request binding
# ---------------------------------------------------------------------------


JIRA_INSTALLATION = Installation(
    platform=Platform.JIRA,
    account_id="client-key-1",
    credentials={"shared_secret": "shh", "base_url": "https://acme.atlassian.net"},
    id=1,
)


async def _resolve(account_id: str):
    return JIRA_INSTALLATION if account_id == "client-key-1" else None


def _token(qsh: str, secret: str = "shh", iss: str = "client-key-1", **extra) -> str:
    now = int(time.time())
    claims = {"iss": iss, "iat": now, "exp": now + 180, "qsh": qsh}
    claims.update(extra)
    return jwt.encode(claims, secret, algorithm="HS256")


class TestCanonicalRequest:
    def test_sorted_query_excludes_jwt(self):
        query = {"b": ["2"], "a": ["z", "y"], "jwt": ["token"]}
        assert canonical_request("get", "/rest/api/", query) == "GET&/rest/api&a=y,z&b=2"

    def test_qsh_for_url_strips_base_path(self):
        direct = compute_qsh("GET", "/rest/api/3/issue/ABC-1", {"fields": ["summary"]})
        via_url = compute_qsh_for_url(
            "GET",
            "https://acme.atlassian.net/wiki/rest/api/3/issue/ABC-1?fields=summary",
            "https://acme.atlassian.net/wiki",
        )
        assert direct == via_url


class TestConnectJwtVerifier:
    def _request(self, token: str, path: str = "/jira/webhook", query=None) -> InboundRequest:
        query = dict(query or {})
        query["jwt"] = [token]
        return InboundRequest(raw_body=b"{}", headers={}, method="POST", path=path, query=query)

    def test_valid_bound_token(self):
        qsh = compute_qsh("POST", "/jira/webhook", {"event": ["comment_created"]})
        request = self._request(_token(qsh), query={"event": ["comment_created"]})
        result = asyncio.run(ConnectJwtVerifier().verify(request, _resolve))
        assert result.valid is True
        assert result.installation is JIRA_INSTALLATION

    def test_context_qsh_is_accepted(self):
        request = self._request(_token(CONTEXT_QSH))
        assert asyncio.run(ConnectJwtVerifier().verify(request, _resolve)).valid is True

    def test_token_from_authorization_header(self):
        qsh = compute_qsh("POST", "/jira/webhook")
        request = InboundRequest(
            raw_body=b"{}",
            headers={"Authorization": f"JWT {_token(qsh)}"},
            method="POST",
            path="/jira/webhook",
        )
        assert asyncio.run(ConnectJwtVerifier().verify(request, _resolve)).valid is True

    def test_binding_mismatch_is_rejected(self):
        qsh = compute_qsh("POST", "/jira/other-endpoint")
        result = asyncio.run(ConnectJwtVerifier().verify(self._request(_token(qsh)), _resolve))
        assert result.valid is False
        assert "qsh" in result.reason

    def test_missing_qsh_is_rejected(self):
        now = int(time.time())
        token = jwt.encode({"iss": "client-key-1", "iat": now, "exp": now + 60}, "shh", algorithm="HS256")
        assert asyncio.run(ConnectJwtVerifier().verify(self._request(token), _resolve)).valid is False

    def test_wrong_secret_is_rejected(self):
        qsh = compute_qsh("POST", "/jira/webhook")
        result = asyncio.run(
            ConnectJwtVerifier().verify(self._request(_token(qsh, secret="nope")), _resolve)
        )
        assert result.valid is False

    def test_expired_token_is_rejected(self):
        qsh = compute_qsh("POST", "/jira/webhook")
        past = int(time.time()) - 3600
        token = jwt.encode(
            {"iss": "client-key-1", "iat": past, "exp": past + 180, "qsh": qsh}, "shh", algorithm="HS256"
        )
        assert asyncio.run(ConnectJwtVerifier().verify(self._request(token), _resolve)).valid is False

    def test_unknown_installation_is_rejected(self):
        token = _token(CONTEXT_QSH, iss="someone-else")
        assert asyncio.run(ConnectJwtVerifier().verify(self._request(token), _resolve)).valid is False

    def test_no_token(self):
        request = InboundRequest(raw_body=b"{}", headers={})
        assert asyncio.run(ConnectJwtVerifier().verify(request, _resolve)).reason == "no JWT token provided"

    def test_issued_token_round_trips_through_verifier(self):
        token = issue_installation_token("shh", "client-key-1", method="POST", url="https://svc/jira/webhook", base_url="https://svc")
        claims = jwt.decode(token, "shh", algorithms=["HS256"])
        assert claims["exp"] - claims["iat"] == 180
        assert asyncio.run(ConnectJwtVerifier().verify(self._request(token), _resolve)).valid is True

    def test_session_token_uses_context_qsh(self):
        token = issue_installation_token("shh", "app")
        assert jwt.decode(token, "shh", algorithms=["HS256"])["qsh"] == CONTEXT_QSH


# ---------------------------------------------------------------------------
# Org-keyed signatures
# ---------------------------------------------------------------------------


def _linear_installation(secret: str | None) -> Installation:
    credentials = {"api_key": "lin_api"}
    if secret:
        credentials["webhook_secret"] = secret
    return Installation(platform=Platform.LINEAR, account_id="org-1", credentials=credentials, id=3)


class TestOrgSignatureVerifier:
    BODY = json.dumps({"type": "Comment", "action": "create", "organizationId": "org-1", "data": {}}).encode()

    def _resolver(self, installation):
        async def resolve(account_id):
            return installation if account_id == "org-1" else None

        return resolve

    def test_valid_signature(self):
        request = InboundRequest(
            raw_body=self.BODY,
            headers={"Linear-Signature": compute_signature("whsec", self.BODY, prefix="")},
        )
        result = asyncio.run(OrgSignatureVerifier().verify(request, self._resolver(_linear_installation("whsec"))))
        assert result.valid is True
        assert result.installation.account_id == "org-1"

    def test_alternate_header_name(self):
        request = InboundRequest(
            raw_body=self.BODY,
            headers={"X-Linear-Signature": compute_signature("whsec", self.BODY, prefix="")},
        )
        result = asyncio.run(OrgSignatureVerifier().verify(request, self._resolver(_linear_installation("whsec"))))
        assert result.valid is True

    def test_bad_signature(self):
        request = InboundRequest(raw_body=self.BODY, headers={"Linear-Signature": "deadbeef"})
        result = asyncio.run(OrgSignatureVerifier().verify(request, self._resolver(_linear_installation("whsec"))))
        assert result.valid is False

    def test_missing_secret_rejected_in_production(self):
        request = InboundRequest(raw_body=self.BODY, headers={})
        result = asyncio.run(
            OrgSignatureVerifier(production=True).verify(request, self._resolver(_linear_installation(None)))
        )
        assert result.valid is False

    def test_missing_secret_accepted_outside_production(self):
        request = InboundRequest(raw_body=self.BODY, headers={})
        result = asyncio.run(
            OrgSignatureVerifier(production=False).verify(request, self._resolver(_linear_installation(None)))
        )
        assert result.valid is True
        assert result.reason == "unsigned"

    def test_missing_organization_is_malformed(self):
        request = InboundRequest(raw_body=b'{"type": "Comment"}', headers={})
        with pytest.raises(MalformedPayloadError):
            asyncio.run(OrgSignatureVerifier().verify(request, self._resolver(None)))

    def test_invalid_json_is_malformed(self):
        request = InboundRequest(raw_body=b"not json", headers={})
        with pytest.raises(MalformedPayloadError):
            asyncio.run(OrgSignatureVerifier().verify(request, self._resolver(None)))
