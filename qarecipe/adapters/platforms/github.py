"""GitHub pull request client (REST API v3)."""

import base64
import logging
from typing import Any

from qarecipe.adapters.platforms.base import ReviewPlatform
from qarecipe.adapters.platforms.http import HttpClient
from qarecipe.core.errors import PlatformAPIError, PostError
from qarecipe.core.models import ChangedFile, Installation, Revision, TargetDetails, TargetRef

logger = logging.getLogger(__name__)

REVIEWED_LABEL = "Reviewed by Ovi AI"
PAGE_SIZE = 100


def build_unified_diff(files: list[dict[str, Any]]) -> str:
    """Concatenate per-file patches into one ``diff --git`` document."""
    chunks = []
    for item in files or []:
        filename = item.get("filename")
        patch = item.get("patch")
        if not filename or not patch:
            continue
        chunks.append(f"diff --git a/{filename} b/{filename}\n{patch}")
    return "\n".join(chunks)


class GitHubClient(ReviewPlatform):
    """GitHub client bound to one installation.

    ``installation.credentials["token"]`` is used as a bearer token. With no
    token the client runs in simulated mode: reads return empty data and
    comments are logged instead of posted.

    Args:
        installation: Owning installation.
        api_base: REST API base URL.
        max_pages: Upper bound on commit pages fetched per target.
    """

    def __init__(
        self,
        installation: Installation,
        api_base: str = "https://api.github.com",
        max_pages: int = 10,
        http: HttpClient | None = None,
    ):
        super().__init__(installation)
        self._token = installation.secret("token")
        self.simulated = not self._token
        self._max_pages = max_pages
        self._http = http or HttpClient(api_base)
        if self.simulated:
            logger.warning(
                "⚠️ No GitHub token for %s - running in simulated mode", installation.account_id
            )

    @property
    def name(self) -> str:
        return "github"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _repo_path(self, target: TargetRef) -> str:
        return f"repos/{target.container}"

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._http.request("GET", path, params=params, headers=self._headers())

    # ------------------------------------------------------------------
    # ReviewPlatform interface
    # ------------------------------------------------------------------

    async def fetch_details(self, target: TargetRef) -> TargetDetails:
        if self.simulated:
            return TargetDetails(title=f"PR #{target.number}", body="")
        pr = await self._get(f"{self._repo_path(target)}/pulls/{target.number}")
        return TargetDetails(
            title=pr.get("title") or "",
            body=pr.get("body") or "No description provided",
            head_revision=(pr.get("head") or {}).get("sha"),
            url=pr.get("html_url"),
            extra={"author": (pr.get("user") or {}).get("login", "")},
        )

    async def fetch_diff(self, target: TargetRef) -> str:
        if self.simulated:
            return ""
        files = await self._list_files_raw(target)
        return build_unified_diff(files)

    async def list_revisions(self, target: TargetRef) -> list[Revision]:
        """PR commits, newest first (the API pages them oldest first)."""
        if self.simulated:
            return []
        commits: list[dict[str, Any]] = []
        for page in range(1, self._max_pages + 1):
            batch = await self._get(
                f"{self._repo_path(target)}/pulls/{target.number}/commits",
                params={"per_page": PAGE_SIZE, "page": page},
            )
            commits.extend(batch or [])
            if not batch or len(batch) < PAGE_SIZE:
                break
        revisions = [self._to_revision(item) for item in commits]
        revisions.reverse()
        return revisions

    async def fetch_revision_detail(self, target: TargetRef, revision: Revision) -> Revision:
        if self.simulated:
            return revision
        try:
            data = await self._get(f"{self._repo_path(target)}/commits/{revision.id}")
        except PlatformAPIError as exc:
            logger.warning("Could not fetch commit %s: %s", revision.short_id, exc)
            return revision
        detailed = self._to_revision(data)
        detailed.diff = build_unified_diff(data.get("files") or [])
        return detailed

    async def list_changed_files(self, target: TargetRef) -> list[ChangedFile]:
        if self.simulated:
            return []
        return [
            ChangedFile(path=item["filename"], status=item.get("status", "modified"))
            for item in await self._list_files_raw(target)
            if item.get("filename")
        ]

    async def fetch_file(self, target: TargetRef, path: str, ref: str | None = None) -> str | None:
        if self.simulated:
            return None
        params = {"ref": ref} if ref else None
        data = await self._get(f"{self._repo_path(target)}/contents/{path}", params=params)
        if not isinstance(data, dict) or data.get("type") != "file" or not data.get("content"):
            return None
        return base64.b64decode(data["content"]).decode("utf-8", errors="replace")

    async def post_comment(self, target: TargetRef, body: Any) -> str:
        if self.simulated:
            logger.info("[simulated] Would post comment to %s (%d chars)", target.key, len(str(body)))
            return "simulated"
        try:
            data = await self._http.request(
                "POST",
                f"{self._repo_path(target)}/issues/{target.number}/comments",
                json_body={"body": body},
                headers=self._headers(),
            )
        except PlatformAPIError as exc:
            raise PostError(f"GitHub comment on {target.key} failed: {exc}") from exc
        logger.info("✅ Comment posted to %s", target.key)
        return str(data.get("id", ""))

    async def mark_reviewed(self, target: TargetRef) -> None:
        """Best-effort reviewed label; failures are logged, not raised."""
        if self.simulated:
            return
        try:
            await self._http.request(
                "POST",
                f"{self._repo_path(target)}/issues/{target.number}/labels",
                json_body={"labels": [REVIEWED_LABEL]},
                headers=self._headers(),
            )
        except PlatformAPIError as exc:
            logger.warning("Could not add '%s' label to %s: %s", REVIEWED_LABEL, target.key, exc)

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _list_files_raw(self, target: TargetRef) -> list[dict[str, Any]]:
        files: list[dict[str, Any]] = []
        for page in range(1, self._max_pages + 1):
            batch = await self._get(
                f"{self._repo_path(target)}/pulls/{target.number}/files",
                params={"per_page": PAGE_SIZE, "page": page},
            )
            files.extend(batch or [])
            if not batch or len(batch) < PAGE_SIZE:
                break
        return files

    @staticmethod
    def _to_revision(data: dict[str, Any]) -> Revision:
        commit = data.get("commit") or {}
        author = commit.get("author") or {}
        return Revision(
            id=str(data.get("sha", "")),
            message=commit.get("message", ""),
            author=author.get("name") or (data.get("author") or {}).get("login", "Unknown"),
            date=author.get("date", ""),
        )
