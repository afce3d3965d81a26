"""Bitbucket Cloud pull request client (REST API 2.0)."""

import logging
from typing import Any

from qarecipe.adapters.platforms.base import ReviewPlatform
from qarecipe.adapters.platforms.http import HttpClient
from qarecipe.core.errors import PlatformAPIError, PostError
from qarecipe.core.models import ChangedFile, Installation, Revision, TargetDetails, TargetRef

logger = logging.getLogger(__name__)


def resolve_workspace(payload: dict[str, Any]) -> str | None:
    """Find the workspace slug; Bitbucket payload shapes vary between events."""
    pullrequest = payload.get("pullrequest") or {}
    destination = (pullrequest.get("destination") or {}).get("repository") or {}
    source = (pullrequest.get("source") or {}).get("repository") or {}
    repository = payload.get("repository") or {}

    candidates = [
        (destination.get("workspace") or {}).get("slug"),
        (source.get("workspace") or {}).get("slug"),
        (repository.get("workspace") or {}).get("slug"),
        (destination.get("owner") or {}).get("username"),
        (destination.get("owner") or {}).get("nickname"),
        (repository.get("owner") or {}).get("username"),
        (repository.get("owner") or {}).get("nickname"),
    ]
    for full_name in (destination.get("full_name"), repository.get("full_name")):
        if full_name and "/" in full_name:
            candidates.append(full_name.split("/", 1)[0])
    for candidate in candidates:
        if candidate:
            return str(candidate)
    return None


def resolve_repo_slug(payload: dict[str, Any]) -> str | None:
    pullrequest = payload.get("pullrequest") or {}
    destination = (pullrequest.get("destination") or {}).get("repository") or {}
    source = (pullrequest.get("source") or {}).get("repository") or {}
    repository = payload.get("repository") or {}
    for candidate in (
        destination.get("slug"),
        source.get("slug"),
        repository.get("slug"),
        destination.get("name"),
    ):
        if candidate:
            return str(candidate)
    return None


class BitbucketClient(ReviewPlatform):
    """Bitbucket client bound to one workspace installation.

    ``installation.credentials["access_token"]`` is sent as a bearer token.
    """

    def __init__(
        self,
        installation: Installation,
        api_base: str = "https://api.bitbucket.org/2.0",
        max_pages: int = 10,
        http: HttpClient | None = None,
    ):
        super().__init__(installation)
        self._token = installation.secret("access_token")
        self._max_pages = max_pages
        self._http = http or HttpClient(api_base)

    @property
    def name(self) -> str:
        return "bitbucket"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _pr_path(self, target: TargetRef) -> str:
        return f"repositories/{target.container}/pullrequests/{target.number}"

    async def fetch_details(self, target: TargetRef) -> TargetDetails:
        pr = await self._http.request("GET", self._pr_path(target), headers=self._headers())
        source = pr.get("source") or {}
        return TargetDetails(
            title=pr.get("title") or "",
            body=pr.get("description") or "No description provided",
            head_revision=(source.get("commit") or {}).get("hash"),
            url=((pr.get("links") or {}).get("html") or {}).get("href"),
            extra={"author": (pr.get("author") or {}).get("display_name", "")},
        )

    async def fetch_diff(self, target: TargetRef) -> str:
        return await self._http.request(
            "GET", f"{self._pr_path(target)}/diff", headers=self._headers(), as_text=True
        )

    async def list_revisions(self, target: TargetRef) -> list[Revision]:
        """PR commits, newest first (Bitbucket's native order)."""
        revisions: list[Revision] = []
        url: str | None = f"{self._pr_path(target)}/commits"
        pages = 0
        while url and pages < self._max_pages:
            data = await self._http.request("GET", url, headers=self._headers())
            revisions.extend(self._to_revision(item) for item in data.get("values") or [])
            url = data.get("next")
            pages += 1
        return revisions

    async def fetch_revision_detail(self, target: TargetRef, revision: Revision) -> Revision:
        try:
            diff = await self._http.request(
                "GET",
                f"repositories/{target.container}/diff/{revision.id}",
                headers=self._headers(),
                as_text=True,
            )
        except PlatformAPIError as exc:
            logger.warning("Could not fetch commit diff %s: %s", revision.short_id, exc)
            return revision
        return Revision(
            id=revision.id,
            message=revision.message,
            author=revision.author,
            date=revision.date,
            diff=diff or "",
        )

    async def list_changed_files(self, target: TargetRef) -> list[ChangedFile]:
        data = await self._http.request(
            "GET", f"{self._pr_path(target)}/diffstat", headers=self._headers()
        )
        files = []
        for item in data.get("values") or []:
            new = item.get("new") or {}
            old = item.get("old") or {}
            path = new.get("path") or old.get("path")
            if path:
                files.append(ChangedFile(path=path, status=item.get("status", "modified")))
        return files

    async def fetch_file(self, target: TargetRef, path: str, ref: str | None = None) -> str | None:
        if not ref:
            return None
        return await self._http.request(
            "GET",
            f"repositories/{target.container}/src/{ref}/{path}",
            headers=self._headers(),
            as_text=True,
        )

    async def post_comment(self, target: TargetRef, body: Any) -> str:
        logger.info("📝 Posting comment to %s (%d chars)", target.key, len(str(body)))
        try:
            data = await self._http.request(
                "POST",
                f"{self._pr_path(target)}/comments",
                json_body={"content": {"raw": body}},
                headers=self._headers(),
            )
        except PlatformAPIError as exc:
            raise PostError(f"Bitbucket comment on {target.key} failed: {exc}") from exc
        logger.info("✅ Comment posted successfully, id: %s", data.get("id"))
        return str(data.get("id", ""))

    async def aclose(self) -> None:
        await self._http.aclose()

    @staticmethod
    def _to_revision(data: dict[str, Any]) -> Revision:
        return Revision(
            id=str(data.get("hash", "")),
            message=data.get("message", ""),
            author=(data.get("author") or {}).get("raw", "Unknown"),
            date=data.get("date", ""),
        )
