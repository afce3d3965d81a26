"""Shared aiohttp plumbing for platform API clients."""

import logging
from typing import Any

import aiohttp

from qarecipe.core.errors import PlatformAPIError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30


class HttpClient:
    """Thin JSON/text HTTP client around a lazily created ``aiohttp`` session.

    Args:
        base_url: Prefix for relative paths.
        timeout: Total request timeout in seconds.
        session: Optional externally owned session (tests, connection reuse).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: "aiohttp.ClientSession | None" = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> "aiohttp.ClientSession":
        """Return a shared aiohttp session, creating it on first use."""
        session = self._session
        if session is None or session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session  # type: ignore[return-value]

    async def aclose(self) -> None:
        """Close the underlying aiohttp session, if we created it."""
        session = self._session
        if self._owns_session and session is not None and not session.closed:
            await session.close()

    def url_for(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
        as_text: bool = False,
    ) -> Any:
        """Send one request; return parsed JSON (or text) or raise ``PlatformAPIError``."""
        url = self.url_for(path)
        session = self._get_session()
        try:
            async with session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers or {},
            ) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise PlatformAPIError(resp.status, body, url)
                if as_text:
                    return await resp.text()
                if resp.status == 204:
                    return {}
                return await resp.json(content_type=None)
        except PlatformAPIError:
            logger.error("❌ %s %s failed", method, url)
            raise
        except aiohttp.ClientError as exc:
            logger.error("❌ %s %s failed: %s", method, url, exc)
            raise PlatformAPIError(0, str(exc), url) from exc
