"""HTTP-level webhook request processing, one extractor per platform.

The Flask layer only hands over raw bytes, headers and query; everything
else (verification, payload parsing, loop guard, command detection) happens
here, and the result is a ``(json_body, status)`` tuple.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from qarecipe.adapters.auth.base import InboundRequest, InstallationResolver, WebhookVerifier
from qarecipe.adapters.auth.org_signature import extract_organization_id
from qarecipe.adapters.platforms.bitbucket import resolve_repo_slug, resolve_workspace
from qarecipe.core.commands import detect_trigger
from qarecipe.core.errors import AuthenticationError, MalformedPayloadError
from qarecipe.core.models import Installation, Platform, TargetRef, TriggerCommand
from qarecipe.core.pipeline import TriggerEvent


@dataclass
class TriggerMatch:
    """A trigger found in a payload, before its installation is resolved."""

    account_id: str
    target: TargetRef
    command: TriggerCommand
    requested_by: str


# (match, skip_reason): exactly one of the two is set.
ExtractResult = tuple[TriggerMatch | None, str | None]


def _header(headers: Mapping[str, Any], name: str) -> str | None:
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted:
            return value
    return None


def parse_json_body(payload_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(payload_body or b"")
    except ValueError as exc:
        raise MalformedPayloadError(f"Request body is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Request body must be a JSON object")
    return payload


# ---------------------------------------------------------------------------
# Per-platform trigger extraction
# ---------------------------------------------------------------------------


def extract_github_trigger(
    payload: dict[str, Any], headers: Mapping[str, Any], installation: Installation | None = None
) -> ExtractResult:
    event_type = _header(headers, "X-GitHub-Event")
    if event_type == "ping":
        return None, "ping"
    if event_type != "issue_comment":
        return None, f"unhandled event type: {event_type}"
    if payload.get("action") != "created":
        return None, f"unhandled action: {payload.get('action')}"

    issue = payload.get("issue") or {}
    if not issue.get("pull_request"):
        return None, "comment is not on a pull request"

    sender = payload.get("sender") or {}
    login = str(sender.get("login") or "")
    if sender.get("type") == "Bot" or "bot" in login.lower():
        return None, "sender is a bot"

    repo_name = (payload.get("repository") or {}).get("full_name")
    number = issue.get("number")
    if not repo_name or "/" not in repo_name or number is None:
        raise MalformedPayloadError("issue_comment payload missing repository or issue number")

    comment = payload.get("comment") or {}
    command, reason = detect_trigger(comment.get("body"), author_name=login)
    if command is None:
        return None, reason
    return (
        TriggerMatch(
            account_id=repo_name.split("/", 1)[0],
            target=TargetRef(Platform.GITHUB, repo_name, str(number)),
            command=command,
            requested_by=login,
        ),
        None,
    )


def extract_bitbucket_trigger(
    payload: dict[str, Any], headers: Mapping[str, Any], installation: Installation | None = None
) -> ExtractResult:
    event_key = _header(headers, "X-Event-Key")
    if not event_key:
        raise MalformedPayloadError("Missing X-Event-Key header")
    if event_key != "pullrequest:comment_created":
        return None, f"unhandled event type: {event_key}"

    actor = payload.get("actor") or {}
    if actor.get("type") == "app":
        return None, "actor is an app"

    workspace = resolve_workspace(payload)
    repo_slug = resolve_repo_slug(payload)
    pr_id = (payload.get("pullrequest") or {}).get("id")
    if not workspace or not repo_slug or pr_id is None:
        raise MalformedPayloadError("Bitbucket payload missing workspace, repository or pull request id")

    comment = payload.get("comment") or {}
    raw = (comment.get("content") or {}).get("raw")
    author = actor.get("display_name") or actor.get("nickname") or ""
    command, reason = detect_trigger(raw, author_name=author)
    if command is None:
        return None, reason
    return (
        TriggerMatch(
            account_id=workspace,
            target=TargetRef(Platform.BITBUCKET, f"{workspace}/{repo_slug}", str(pr_id)),
            command=command,
            requested_by=author,
        ),
        None,
    )


def extract_jira_trigger(
    payload: dict[str, Any],
    headers: Mapping[str, Any],
    installation: Installation | None = None,
    event: str | None = None,
) -> ExtractResult:
    event = event or payload.get("webhookEvent")
    if event != "comment_created":
        return None, f"unhandled event type: {event}"

    comment = payload.get("comment")
    issue = payload.get("issue")
    if not isinstance(comment, dict) or not isinstance(issue, dict) or not issue.get("key"):
        raise MalformedPayloadError("Jira payload missing comment or issue")
    if installation is None:
        return None, "no installation"

    author = (comment.get("author") or {}).get("displayName") or ""
    command, reason = detect_trigger(comment.get("body"), author_name=author)
    if command is None:
        return None, reason
    return (
        TriggerMatch(
            account_id=installation.account_id,
            target=TargetRef(Platform.JIRA, installation.account_id, str(issue["key"])),
            command=command,
            requested_by=author,
        ),
        None,
    )


def unwrap_linear_event(payload: dict[str, Any]) -> tuple[str, str, dict[str, Any]] | None:
    """Return ``(type, action, data)`` for the direct or nested payload shape."""
    if payload.get("type") and payload.get("action") and isinstance(payload.get("data"), dict):
        return str(payload["type"]), str(payload["action"]), payload["data"]
    nested = payload.get("data")
    if (
        isinstance(nested, dict)
        and nested.get("type")
        and nested.get("action")
        and isinstance(nested.get("data"), dict)
    ):
        return str(nested["type"]), str(nested["action"]), nested["data"]
    return None


def extract_linear_trigger(
    payload: dict[str, Any], headers: Mapping[str, Any], installation: Installation | None = None
) -> ExtractResult:
    unwrapped = unwrap_linear_event(payload)
    if unwrapped is None:
        return None, "unknown payload structure"
    event_type, action, data = unwrapped
    if "comment" not in event_type.lower() or action != "create":
        return None, f"unhandled event: {event_type}.{action}"

    issue = data.get("issue")
    issue_id = data.get("issueId") or (issue.get("id") if isinstance(issue, dict) else issue)
    if not issue_id:
        raise MalformedPayloadError("Linear comment payload missing issue id")
    if installation is None:
        return None, "no installation"

    user = data.get("user") or {}
    author = user.get("name") or user.get("displayName") or ""
    command, reason = detect_trigger(
        data.get("body"), author_name=author, author_is_bot=bool(data.get("botActor"))
    )
    if command is None:
        return None, reason
    return (
        TriggerMatch(
            account_id=installation.account_id,
            target=TargetRef(Platform.LINEAR, installation.account_id, str(issue_id)),
            command=command,
            requested_by=author,
        ),
        None,
    )


EXTRACTORS: dict[Platform, Callable[..., ExtractResult]] = {
    Platform.GITHUB: extract_github_trigger,
    Platform.BITBUCKET: extract_bitbucket_trigger,
    Platform.JIRA: extract_jira_trigger,
    Platform.LINEAR: extract_linear_trigger,
}


# ---------------------------------------------------------------------------
# Request processing
# ---------------------------------------------------------------------------


async def _verify_and_extract(
    *,
    platform: Platform,
    request: InboundRequest,
    verifier: WebhookVerifier,
    resolve_installation: InstallationResolver | None,
    resolve_trigger_installation: Callable[[Platform, str], Awaitable[Installation | None]],
    extractor: Callable[..., ExtractResult],
    logger,
) -> tuple[TriggerEvent | None, str | None]:
    verification = await verifier.verify(request, resolve_installation)
    if not verification.valid:
        raise AuthenticationError(verification.reason or "verification failed")

    payload = parse_json_body(request.raw_body)
    if platform == Platform.JIRA:
        match, reason = extractor(
            payload,
            request.headers,
            verification.installation,
            event=request.query_value("event"),
        )
    else:
        match, reason = extractor(payload, request.headers, verification.installation)
    if match is None:
        return None, reason

    installation = verification.installation or await resolve_trigger_installation(
        platform, match.account_id
    )
    if installation is None or not installation.enabled:
        logger.warning("⚠️ No enabled %s installation for %s", platform.value, match.account_id)
        return None, "no installation"
    return (
        TriggerEvent(
            installation=installation,
            target=match.target,
            command=match.command,
            requested_by=match.requested_by,
        ),
        None,
    )


def process_webhook_request(
    *,
    platform: Platform,
    payload_body: bytes,
    headers: Mapping[str, Any],
    method: str = "POST",
    path: str = "/",
    query: dict[str, list[str]] | None = None,
    logger,
    verifier: WebhookVerifier,
    resolve_installation: InstallationResolver | None,
    resolve_trigger_installation: Callable[[Platform, str], Awaitable[Installation | None]],
    dispatch: Callable[[TriggerEvent], Any],
) -> tuple[dict[str, Any], int]:
    """Verify, parse and route one webhook; return JSON payload + status code.

    ``dispatch`` receives the :class:`TriggerEvent` and must return quickly
    (it hands the run to a background worker).
    """
    request = InboundRequest(
        raw_body=payload_body or b"",
        headers=dict(headers),
        method=method,
        path=path,
        query=dict(query or {}),
    )
    logger.info("📨 Webhook received: %s (%d bytes)", platform.value, len(request.raw_body))

    try:
        event, reason = asyncio.run(
            _verify_and_extract(
                platform=platform,
                request=request,
                verifier=verifier,
                resolve_installation=resolve_installation,
                resolve_trigger_installation=resolve_trigger_installation,
                extractor=EXTRACTORS[platform],
                logger=logger,
            )
        )
        if event is None:
            logger.info("⏭️ Skipped %s webhook: %s", platform.value, reason)
            return {"status": "skipped", "reason": reason}, 200

        dispatch(event)
        logger.info("📥 Accepted %s for %s", event.command.name, event.target.key)
        return {"status": "accepted", "target": event.target.key}, 200
    except AuthenticationError as exc:
        logger.error("❌ Webhook authentication failed for %s: %s", platform.value, exc)
        return {"error": "Authentication failed"}, 401
    except MalformedPayloadError as exc:
        logger.error("❌ Malformed %s webhook: %s", platform.value, exc)
        return {"error": str(exc)}, 400
    except Exception as exc:
        logger.error("❌ Error processing webhook: %s", exc, exc_info=True)
        return {"error": "Internal error"}, 500


# ---------------------------------------------------------------------------
# Installation lifecycle callbacks
# ---------------------------------------------------------------------------


async def _authorize_jira_lifecycle(
    *, client_key: str, request: InboundRequest, verifier: WebhookVerifier, store
) -> None:
    """Require a token signed with the stored secret when *client_key* is already known.

    A first install has nothing to verify against and is accepted as-is.
    """
    existing = await store.get_installation(Platform.JIRA, client_key)
    if existing is None or not existing.secret("shared_secret"):
        return

    async def _resolve(account_id: str) -> Installation | None:
        # Disabled installations may re-install, but only with their old secret.
        return replace(existing, enabled=True) if account_id == client_key else None

    result = await verifier.verify(request, _resolve)
    if not result.valid:
        raise AuthenticationError(f"lifecycle callback for {client_key}: {result.reason}")


def process_jira_installed(
    *,
    payload_body: bytes,
    store,
    logger,
    verifier: WebhookVerifier,
    headers: Mapping[str, Any] | None = None,
    method: str = "POST",
    path: str = "/",
    query: dict[str, list[str]] | None = None,
) -> tuple[dict[str, Any], int]:
    try:
        payload = parse_json_body(payload_body)
        client_key = payload.get("clientKey")
        shared_secret = payload.get("sharedSecret")
        if not client_key or not shared_secret:
            raise MalformedPayloadError("Missing clientKey or sharedSecret")
        request = InboundRequest(
            raw_body=payload_body, headers=dict(headers or {}), method=method, path=path, query=dict(query or {})
        )
        asyncio.run(
            _authorize_jira_lifecycle(
                client_key=str(client_key), request=request, verifier=verifier, store=store
            )
        )
        installation = Installation(
            platform=Platform.JIRA,
            account_id=str(client_key),
            credentials={
                "shared_secret": shared_secret,
                "base_url": payload.get("baseUrl") or "",
            },
            display_name=payload.get("displayUrl") or payload.get("baseUrl"),
        )
        saved = asyncio.run(store.save_installation(installation))
        logger.info("✅ Jira installation saved for %s (id=%s)", client_key, saved.id)
        return {"success": True}, 200
    except AuthenticationError as exc:
        logger.error("❌ Jira installation rejected: %s", exc)
        return {"error": "Authentication failed"}, 401
    except MalformedPayloadError as exc:
        logger.error("❌ Invalid Jira installation payload: %s", exc)
        return {"error": str(exc)}, 400
    except Exception as exc:
        logger.error("❌ Jira installation failed: %s", exc, exc_info=True)
        return {"error": "Installation failed"}, 500


def process_jira_uninstalled(
    *,
    payload_body: bytes,
    store,
    logger,
    verifier: WebhookVerifier,
    headers: Mapping[str, Any] | None = None,
    method: str = "POST",
    path: str = "/",
    query: dict[str, list[str]] | None = None,
) -> tuple[dict[str, Any], int]:
    try:
        payload = parse_json_body(payload_body)
        client_key = payload.get("clientKey")
        if not client_key:
            raise MalformedPayloadError("Missing clientKey")
        request = InboundRequest(
            raw_body=payload_body, headers=dict(headers or {}), method=method, path=path, query=dict(query or {})
        )
        asyncio.run(
            _authorize_jira_lifecycle(
                client_key=str(client_key), request=request, verifier=verifier, store=store
            )
        )
        disabled = asyncio.run(store.disable_installation(Platform.JIRA, str(client_key)))
        logger.info("📤 Jira installation %s disabled: %s", client_key, disabled)
        return {"success": True}, 200
    except AuthenticationError as exc:
        logger.error("❌ Jira uninstallation rejected: %s", exc)
        return {"error": "Authentication failed"}, 401
    except MalformedPayloadError as exc:
        return {"error": str(exc)}, 400
    except Exception as exc:
        logger.error("❌ Jira uninstallation failed: %s", exc, exc_info=True)
        return {"error": "Uninstallation failed"}, 500


def process_linear_install(*, payload_body: bytes, store, logger) -> tuple[dict[str, Any], int]:
    try:
        payload = parse_json_body(payload_body)
        api_key = payload.get("apiKey")
        org_id = payload.get("organizationId") or extract_organization_id(payload)
        if not api_key or not org_id:
            raise MalformedPayloadError("Missing apiKey or organizationId")
        credentials = {"api_key": api_key}
        if payload.get("webhookSecret"):
            credentials["webhook_secret"] = payload["webhookSecret"]
        installation = Installation(
            platform=Platform.LINEAR,
            account_id=str(org_id),
            credentials=credentials,
            display_name=payload.get("organizationName"),
        )
        saved = asyncio.run(store.save_installation(installation))
        logger.info("✅ Linear installation saved for %s (id=%s)", org_id, saved.id)
        return {"success": True}, 200
    except MalformedPayloadError as exc:
        logger.error("❌ Invalid Linear installation payload: %s", exc)
        return {"error": str(exc)}, 400
    except Exception as exc:
        logger.error("❌ Linear installation failed: %s", exc, exc_info=True)
        return {"error": "Installation failed"}, 500


def process_linear_uninstall(*, payload_body: bytes, store, logger) -> tuple[dict[str, Any], int]:
    try:
        payload = parse_json_body(payload_body)
        org_id = payload.get("organizationId")
        if not org_id:
            raise MalformedPayloadError("Missing organizationId")
        disabled = asyncio.run(store.disable_installation(Platform.LINEAR, str(org_id)))
        logger.info("📤 Linear installation %s disabled: %s", org_id, disabled)
        return {"success": True}, 200
    except MalformedPayloadError as exc:
        return {"error": str(exc)}, 400
    except Exception as exc:
        logger.error("❌ Linear uninstallation failed: %s", exc, exc_info=True)
        return {"error": "Uninstallation failed"}, 500
