"""Tests for the Flask webhook server routes."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from qarecipe.adapters.auth.connect_jwt import issue_installation_token
from qarecipe.adapters.auth.hmac_signature import compute_signature
from qarecipe.adapters.platforms.base import ReviewPlatform
from qarecipe.adapters.storage import SQLStateStore
from qarecipe.config import Settings
from qarecipe.core.invoker import AnalysisInvoker
from qarecipe.core.models import Installation, Platform, Revision, TargetDetails, TargetRef
from qarecipe.webhook_server import create_app

GITHUB_SECRET = "gh-secret"


class RecordingPlatform(ReviewPlatform):
    posted: list[tuple[str, Any]] = []

    @property
    def name(self) -> str:
        return "recording"

    async def fetch_details(self, target: TargetRef) -> TargetDetails:
        return TargetDetails(title="Change", head_revision="a" * 40)

    async def fetch_diff(self, target: TargetRef) -> str:
        return ""

    async def list_revisions(self, target: TargetRef) -> list[Revision]:
        return [Revision(id="a" * 40, message="Only commit")]

    async def post_comment(self, target: TargetRef, body: Any) -> str:
        self.posted.append((target.key, body))
        return "c-1"


class _Remote:
    name = "remote"

    async def generate(self, payload):
        return {"summary": "ok", "testRecipe": [{"name": "Smoke", "steps": "Open app"}]}


@pytest.fixture()
def server():
    RecordingPlatform.posted = []
    store = SQLStateStore("sqlite:///:memory:")
    settings = Settings(github_webhook_secret=GITHUB_SECRET, storage_dsn="sqlite:///:memory:")
    app = create_app(
        settings=settings,
        store=store,
        clients=RecordingPlatform,
        invoker_factory=lambda: AnalysisInvoker([_Remote()]),
    )
    try:
        yield app, store
    finally:
        app.extensions["qarecipe"]["executor"].shutdown(wait=True)
        store.close()


def _drain(app) -> None:
    app.extensions["qarecipe"]["executor"].shutdown(wait=True)


def _github_comment(body: str = "/qa", login: str = "jane", sender_type: str = "User") -> bytes:
    return json.dumps(
        {
            "action": "created",
            "issue": {"number": 5, "pull_request": {"url": "https://api.github.com/x"}},
            "comment": {"body": body},
            "sender": {"login": login, "type": sender_type},
            "repository": {"full_name": "acme/shop"},
        }
    ).encode()


def _post_github(client, body: bytes, secret: str = GITHUB_SECRET, event: str = "issue_comment"):
    return client.post(
        "/github/webhook",
        data=body,
        headers={
            "X-GitHub-Event": event,
            "X-Hub-Signature-256": compute_signature(secret, body),
        },
        content_type="application/json",
    )


class TestHealth:
    def test_health(self, server):
        app, _ = server
        response = app.test_client().get("/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"


class TestGitHubWebhook:
    def test_bad_signature_is_rejected(self, server):
        app, _ = server
        response = _post_github(app.test_client(), _github_comment(), secret="wrong")
        assert response.status_code == 401
        assert response.get_json() == {"error": "Authentication failed"}

    def test_invalid_json_is_malformed(self, server):
        app, _ = server
        response = _post_github(app.test_client(), b"{not json")
        assert response.status_code == 400

    def test_ping_is_skipped(self, server):
        app, _ = server
        response = _post_github(app.test_client(), b"{}", event="ping")
        assert response.get_json() == {"status": "skipped", "reason": "ping"}

    def test_bot_sender_is_skipped(self, server):
        app, _ = server
        response = _post_github(app.test_client(), _github_comment(login="ci-bot", sender_type="Bot"))
        assert response.status_code == 200
        assert response.get_json()["status"] == "skipped"

    def test_own_comment_is_skipped(self, server):
        app, _ = server
        body = _github_comment(body="/qa\n*🤖 **With Quality By Ovi** - AI-powered QA analysis by FirstQA*")
        response = _post_github(app.test_client(), body)
        assert response.get_json()["status"] == "skipped"

    def test_trigger_is_accepted_and_posted(self, server):
        app, store = server
        response = _post_github(app.test_client(), _github_comment())

        assert response.status_code == 200
        assert response.get_json() == {"status": "accepted", "target": "github:acme/shop#5"}

        _drain(app)
        ((target, comment),) = RecordingPlatform.posted
        assert target == "github:acme/shop#5"
        assert "| Smoke |" in comment
        installation = asyncio.run(store.get_installation(Platform.GITHUB, "acme"))
        assert installation is not None
        cursor = asyncio.run(store.get_cursor(installation.id, target))
        assert cursor.revision_id == "a" * 40


class TestBitbucketWebhook:
    def test_missing_event_key_is_malformed(self, server):
        app, _ = server
        response = app.test_client().post("/bitbucket/webhook", data=b"{}", content_type="application/json")
        assert response.status_code == 400

    def test_other_event_is_skipped(self, server):
        app, _ = server
        response = app.test_client().post(
            "/bitbucket/webhook",
            data=b"{}",
            headers={"X-Event-Key": "repo:push"},
            content_type="application/json",
        )
        assert response.get_json()["status"] == "skipped"


class TestJira:
    def _install(self, client) -> None:
        response = client.post(
            "/jira/installed",
            data=json.dumps(
                {
                    "clientKey": "site-1",
                    "sharedSecret": "jira-secret",
                    "baseUrl": "https://acme.atlassian.net",
                }
            ),
            content_type="application/json",
        )
        assert response.status_code == 200

    def _comment(self) -> bytes:
        return json.dumps(
            {
                "webhookEvent": "comment_created",
                "comment": {"body": "/qa", "author": {"displayName": "Jane"}},
                "issue": {"key": "ABC-1"},
            }
        ).encode()

    def test_installed_requires_secret(self, server):
        app, _ = server
        response = app.test_client().post(
            "/jira/installed", data=json.dumps({"clientKey": "x"}), content_type="application/json"
        )
        assert response.status_code == 400

    def test_signed_webhook_is_accepted(self, server):
        app, _ = server
        client = app.test_client()
        self._install(client)
        token = issue_installation_token(
            "jira-secret",
            "site-1",
            method="POST",
            url="http://localhost/jira/webhook?event=comment_created",
        )
        response = client.post(
            "/jira/webhook?event=comment_created",
            data=self._comment(),
            headers={"Authorization": f"JWT {token}"},
            content_type="application/json",
        )
        assert response.status_code == 200
        assert response.get_json()["target"] == "jira:site-1#ABC-1"

    def test_token_bound_to_other_request_is_rejected(self, server):
        app, _ = server
        client = app.test_client()
        self._install(client)
        token = issue_installation_token(
            "jira-secret", "site-1", method="GET", url="http://localhost/rest/api/3/issue/ABC-1"
        )
        response = client.post(
            "/jira/webhook?event=comment_created",
            data=self._comment(),
            headers={"Authorization": f"JWT {token}"},
            content_type="application/json",
        )
        assert response.status_code == 401

    def test_uninstalled_disables(self, server):
        app, store = server
        client = app.test_client()
        self._install(client)
        token = issue_installation_token(
            "jira-secret", "site-1", method="POST", url="http://localhost/jira/uninstalled"
        )
        response = client.post(
            "/jira/uninstalled",
            data=json.dumps({"clientKey": "site-1"}),
            headers={"Authorization": f"JWT {token}"},
            content_type="application/json",
        )
        assert response.status_code == 200
        installation = asyncio.run(store.get_installation(Platform.JIRA, "site-1"))
        assert installation.enabled is False

        token = issue_installation_token("jira-secret", "site-1")
        response = client.post(
            "/jira/webhook",
            data=self._comment(),
            headers={"Authorization": f"JWT {token}"},
            content_type="application/json",
        )
        assert response.status_code == 401

    def test_reinstall_requires_token_from_stored_secret(self, server):
        app, store = server
        client = app.test_client()
        self._install(client)
        hijack = json.dumps(
            {"clientKey": "site-1", "sharedSecret": "attacker", "baseUrl": "https://evil.example"}
        )

        response = client.post("/jira/installed", data=hijack, content_type="application/json")
        assert response.status_code == 401

        forged = issue_installation_token(
            "attacker", "site-1", method="POST", url="http://localhost/jira/installed"
        )
        response = client.post(
            "/jira/installed",
            data=hijack,
            headers={"Authorization": f"JWT {forged}"},
            content_type="application/json",
        )
        assert response.status_code == 401
        installation = asyncio.run(store.get_installation(Platform.JIRA, "site-1"))
        assert installation.secret("shared_secret") == "jira-secret"

    def test_reinstall_signed_with_stored_secret_rotates(self, server):
        app, store = server
        client = app.test_client()
        self._install(client)
        token = issue_installation_token(
            "jira-secret", "site-1", method="POST", url="http://localhost/jira/installed"
        )
        response = client.post(
            "/jira/installed",
            data=json.dumps({"clientKey": "site-1", "sharedSecret": "rotated", "baseUrl": "https://acme.atlassian.net"}),
            headers={"Authorization": f"JWT {token}"},
            content_type="application/json",
        )
        assert response.status_code == 200
        installation = asyncio.run(store.get_installation(Platform.JIRA, "site-1"))
        assert installation.secret("shared_secret") == "rotated"


class TestLinear:
    def _comment(self, org: str = "org-1") -> bytes:
        return json.dumps(
            {
                "type": "Comment",
                "action": "create",
                "data": {
                    "body": "/qa",
                    "issueId": "iss-1",
                    "user": {"name": "Jane"},
                    "organization": {"id": org},
                },
            }
        ).encode()

    def _install(self, client, **extra) -> None:
        payload = {"apiKey": "lin_api_key", "organizationId": "org-1", **extra}
        response = client.post("/linear/install", data=json.dumps(payload), content_type="application/json")
        assert response.status_code == 200

    def test_install_requires_api_key(self, server):
        app, _ = server
        response = app.test_client().post(
            "/linear/install", data=json.dumps({"organizationId": "org-1"}), content_type="application/json"
        )
        assert response.status_code == 400

    def test_signed_webhook_is_accepted(self, server):
        app, _ = server
        client = app.test_client()
        self._install(client, webhookSecret="lin-secret")
        body = self._comment()
        response = client.post(
            "/linear/webhook",
            data=body,
            headers={"Linear-Signature": compute_signature("lin-secret", body, prefix="")},
            content_type="application/json",
        )
        assert response.status_code == 200
        assert response.get_json()["target"] == "linear:org-1#iss-1"

    def test_bad_signature_is_rejected(self, server):
        app, _ = server
        client = app.test_client()
        self._install(client, webhookSecret="lin-secret")
        response = client.post(
            "/linear/webhook",
            data=self._comment(),
            headers={"Linear-Signature": "0" * 64},
            content_type="application/json",
        )
        assert response.status_code == 401

    def test_missing_organization_is_malformed(self, server):
        app, _ = server
        body = json.dumps({"type": "Comment", "action": "create", "data": {"body": "/qa"}}).encode()
        response = app.test_client().post("/linear/webhook", data=body, content_type="application/json")
        assert response.status_code == 400

    def test_uninstalled_org_is_rejected(self, server):
        app, _ = server
        client = app.test_client()
        self._install(client)
        client.post(
            "/linear/uninstall", data=json.dumps({"organizationId": "org-1"}), content_type="application/json"
        )
        response = client.post("/linear/webhook", data=self._comment(), content_type="application/json")
        assert response.status_code == 401


def test_unknown_installation_never_runs(server):
    app, store = server
    asyncio.run(store.save_installation(Installation(Platform.GITHUB, "acme", enabled=False)))
    response = _post_github(app.test_client(), _github_comment())
    assert response.get_json() == {"status": "skipped", "reason": "no installation"}
