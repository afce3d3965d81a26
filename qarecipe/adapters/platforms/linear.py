"""Linear ticket client (GraphQL API)."""

import logging
from typing import Any

from qarecipe.adapters.platforms.base import ReviewPlatform
from qarecipe.adapters.platforms.http import HttpClient
from qarecipe.core.errors import PlatformAPIError, PostError
from qarecipe.core.models import Installation, Revision, TargetDetails, TargetRef

logger = logging.getLogger(__name__)

LINEAR_GRAPHQL_URL = "https://api.linear.app/graphql"

_ISSUE_QUERY = """
query Issue($id: String!) {
  issue(id: $id) {
    id
    identifier
    title
    description
    url
    updatedAt
    priorityLabel
    labels { nodes { name } }
    comments(first: 20) { nodes { body createdAt user { name } } }
  }
}
"""

_COMMENT_CREATE = """
mutation CommentCreate($issueId: String!, $body: String!) {
  commentCreate(input: { issueId: $issueId, body: $body }) {
    success
    comment { id }
  }
}
"""


def normalize_api_key(api_key: str | None) -> str:
    """Linear expects the raw key, so a ``Bearer`` prefix is stripped."""
    key = str(api_key or "").strip()
    if key.lower().startswith("bearer "):
        key = key[7:].strip()
    return key


class LinearClient(ReviewPlatform):
    """Linear client for one organization installation (``credentials["api_key"]``)."""

    def __init__(
        self,
        installation: Installation,
        api_url: str = LINEAR_GRAPHQL_URL,
        http: HttpClient | None = None,
    ):
        super().__init__(installation)
        self._api_key = normalize_api_key(installation.secret("api_key"))
        self._api_url = api_url
        self._http = http or HttpClient(api_url)
        self._issue_cache: dict[str, dict[str, Any]] = {}

    @property
    def name(self) -> str:
        return "linear"

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        data = await self._http.request(
            "POST",
            self._api_url,
            json_body={"query": query, "variables": variables},
            headers={"Authorization": self._api_key, "Content-Type": "application/json"},
        )
        if data.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in data["errors"])
            raise PlatformAPIError(200, messages, self._api_url)
        return data.get("data") or {}

    async def _load_issue(self, issue_id: str) -> dict[str, Any]:
        cached = self._issue_cache.get(issue_id)
        if cached is not None:
            return cached
        data = await self._graphql(_ISSUE_QUERY, {"id": issue_id})
        issue = data.get("issue")
        if not issue:
            raise PlatformAPIError(404, f"issue {issue_id} not found", self._api_url)
        self._issue_cache[issue_id] = issue
        return issue

    async def fetch_details(self, target: TargetRef) -> TargetDetails:
        issue = await self._load_issue(target.number)
        comments = [
            {
                "author": (node.get("user") or {}).get("name", "Unknown"),
                "body": node.get("body", ""),
                "created": node.get("createdAt", ""),
            }
            for node in (issue.get("comments") or {}).get("nodes") or []
        ]
        return TargetDetails(
            title=issue.get("title") or "",
            body=issue.get("description") or "",
            head_revision=issue.get("updatedAt"),
            url=issue.get("url"),
            extra={
                "identifier": issue.get("identifier"),
                "priority": issue.get("priorityLabel") or "Medium",
                "labels": [n.get("name") for n in (issue.get("labels") or {}).get("nodes") or []],
                "comments": comments,
            },
        )

    async def fetch_diff(self, target: TargetRef) -> str:
        return ""

    async def list_revisions(self, target: TargetRef) -> list[Revision]:
        issue = await self._load_issue(target.number)
        updated = issue.get("updatedAt")
        if not updated:
            return []
        return [Revision(id=str(updated), message="Ticket updated", date=str(updated))]

    async def post_comment(self, target: TargetRef, body: Any) -> str:
        try:
            data = await self._graphql(_COMMENT_CREATE, {"issueId": target.number, "body": body})
        except PlatformAPIError as exc:
            raise PostError(f"Linear comment on {target.number} failed: {exc}") from exc
        result = data.get("commentCreate") or {}
        if not result.get("success"):
            raise PostError(f"Linear rejected comment on {target.number}")
        logger.info("✅ Comment posted to Linear issue %s", target.number)
        return str((result.get("comment") or {}).get("id", ""))

    async def aclose(self) -> None:
        await self._http.aclose()
