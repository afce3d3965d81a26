"""Jira Cloud ticket client authenticated as a Connect app installation."""

import logging
from typing import Any
from urllib.parse import urlencode

from qarecipe.adapters.auth.connect_jwt import issue_installation_token
from qarecipe.adapters.platforms.base import ReviewPlatform
from qarecipe.adapters.platforms.http import HttpClient
from qarecipe.core.commands import flatten_document
from qarecipe.core.errors import PlatformAPIError, PostError
from qarecipe.core.models import Installation, Revision, TargetDetails, TargetRef

logger = logging.getLogger(__name__)

ISSUE_FIELDS = "summary,description,comment,labels,priority,issuetype,status,assignee,reporter,updated"
MAX_TICKET_COMMENTS = 20


class JiraClient(ReviewPlatform):
    """Jira client for one Connect installation.

    Every request carries a fresh HS256 token whose ``qsh`` binds it to that
    exact method and URL.

    Args:
        installation: Needs ``credentials["shared_secret"]`` and ``["base_url"]``.
        app_key: Connect app key used as the token issuer.
    """

    comment_format = "adf"

    def __init__(
        self,
        installation: Installation,
        app_key: str = "com.firstqa.jira",
        http: HttpClient | None = None,
    ):
        super().__init__(installation)
        self._shared_secret = installation.secret("shared_secret") or ""
        self._base_url = (installation.secret("base_url") or "").rstrip("/")
        self._app_key = installation.secret("app_key") or app_key
        self._http = http or HttpClient(self._base_url or "https://invalid.atlassian.net")
        self._issue_cache: dict[str, dict[str, Any]] = {}

    @property
    def name(self) -> str:
        return "jira"

    def _auth_headers(self, method: str, url: str) -> dict[str, str]:
        token = issue_installation_token(
            self._shared_secret, self._app_key, method=method, url=url, base_url=self._base_url
        )
        return {"Authorization": f"JWT {token}", "Accept": "application/json"}

    async def _signed(self, method: str, path: str, json_body: Any = None) -> Any:
        url = f"{self._base_url}{path}"
        return await self._http.request(
            method, url, json_body=json_body, headers=self._auth_headers(method, url)
        )

    async def _load_issue(self, issue_key: str) -> dict[str, Any]:
        cached = self._issue_cache.get(issue_key)
        if cached is not None:
            return cached
        query = urlencode({"fields": ISSUE_FIELDS, "expand": "renderedFields"})
        issue = await self._signed("GET", f"/rest/api/3/issue/{issue_key}?{query}")
        fields = issue.get("fields") or {}
        if not (fields.get("summary") or (issue.get("renderedFields") or {}).get("summary")):
            logger.error(
                "❌ Unexpected Jira issue payload for %s (keys: %s)",
                issue_key,
                ", ".join(sorted(issue.keys())),
            )
            raise PlatformAPIError(200, "missing summary in issue payload", issue_key)
        self._issue_cache[issue_key] = issue
        return issue

    async def fetch_details(self, target: TargetRef) -> TargetDetails:
        issue = await self._load_issue(target.number)
        fields = issue.get("fields") or {}
        comments = []
        for item in ((fields.get("comment") or {}).get("comments") or [])[-MAX_TICKET_COMMENTS:]:
            comments.append(
                {
                    "author": (item.get("author") or {}).get("displayName", "Unknown"),
                    "body": flatten_document(item.get("body")),
                    "created": item.get("created", ""),
                }
            )
        return TargetDetails(
            title=fields.get("summary") or "",
            body=flatten_document(fields.get("description")),
            head_revision=fields.get("updated"),
            url=f"{self._base_url}/browse/{issue.get('key', target.number)}",
            extra={
                "type": (fields.get("issuetype") or {}).get("name", "Task"),
                "priority": (fields.get("priority") or {}).get("name", "Medium"),
                "status": (fields.get("status") or {}).get("name", "Unknown"),
                "labels": list(fields.get("labels") or []),
                "comments": comments,
            },
        )

    async def fetch_diff(self, target: TargetRef) -> str:
        return ""

    async def list_revisions(self, target: TargetRef) -> list[Revision]:
        """Tickets have one logical revision: their last update stamp."""
        issue = await self._load_issue(target.number)
        updated = (issue.get("fields") or {}).get("updated")
        if not updated:
            return []
        return [Revision(id=str(updated), message="Ticket updated", date=str(updated))]

    async def post_comment(self, target: TargetRef, body: Any) -> str:
        logger.info("💬 Posting comment to Jira ticket %s", target.number)
        try:
            data = await self._signed(
                "POST", f"/rest/api/3/issue/{target.number}/comment", json_body={"body": body}
            )
        except PlatformAPIError as exc:
            raise PostError(f"Jira comment on {target.number} failed: {exc}") from exc
        logger.info("✅ Comment posted to %s", target.number)
        return str(data.get("id", ""))

    async def aclose(self) -> None:
        await self._http.aclose()
