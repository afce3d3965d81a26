"""Remote reasoning-service client."""

import logging
from typing import Any

import aiohttp

from qarecipe.adapters.ai.base import AnalysisStrategy
from qarecipe.core.errors import UpstreamAnalysisError

logger = logging.getLogger(__name__)

FULL_ANALYSIS_PATH = "/generate-test-recipe"
SHORT_ANALYSIS_PATH = "/generate-short-analysis"


class RemoteReasoningClient(AnalysisStrategy):
    """POSTs the payload to the reasoning endpoint and expects ``{success, data}``.

    Args:
        base_url: Service base URL.
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, base_url: str, timeout: float = 60.0):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    @property
    def name(self) -> str:
        return "remote"

    def _get_session(self) -> aiohttp.ClientSession:
        """Return a shared aiohttp session, creating it on first use."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
        return self._session

    async def aclose(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def generate(self, payload: dict[str, Any]) -> Any:
        path = SHORT_ANALYSIS_PATH if payload.get("analysisType") == "short" else FULL_ANALYSIS_PATH
        url = f"{self._base_url}{path}"
        session = self._get_session()
        try:
            async with session.post(url, json=payload) as resp:
                resp.raise_for_status()
                body = await resp.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise UpstreamAnalysisError(f"Reasoning endpoint {url} failed: {exc}") from exc

        if not isinstance(body, dict) or not body.get("success") or body.get("data") in (None, ""):
            error = body.get("error") if isinstance(body, dict) else None
            raise UpstreamAnalysisError(f"Reasoning endpoint returned no data: {error or body!r}"[:300])
        logger.info("🧠 Reasoning endpoint returned %s data", type(body["data"]).__name__)
        return body["data"]
