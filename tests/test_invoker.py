"""Tests for the strategy fallback chain and the reasoning strategies."""
import asyncio
import random
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from qarecipe.adapters.ai import LocalHeuristicGenerator, RemoteReasoningClient
from qarecipe.adapters.ai.local import detect_risks, extract_changed_files
from qarecipe.core.errors import UpstreamAnalysisError
from qarecipe.core.invoker import (
    ULTIMATE_FALLBACK_SOURCE,
    AnalysisInvoker,
    build_default_analysis,
)

PAYLOAD = {
    "targetId": "github:acme/shop#1",
    "title": "Add checkout",
    "body": "Adds a checkout page",
    "diff": "diff --git a/src/auth/login.ts b/src/auth/login.ts\n+const session = createSession()",
    "analysisType": "full",
}


class _Strategy:
    def __init__(self, name, result=None, error=None, delay=0.0):
        self.name = name
        self._result = result
        self._error = error
        self._delay = delay
        self.calls = 0

    async def generate(self, payload):
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._result


class TestAnalysisInvoker:
    @pytest.mark.asyncio
    async def test_first_success_wins(self):
        remote = _Strategy("remote", result={"testRecipe": []})
        local = _Strategy("local", result={"other": 1})
        result = await AnalysisInvoker([remote, local]).invoke(PAYLOAD)
        assert result.success is True
        assert result.source == "remote"
        assert local.calls == 0
        assert "fallback_errors" not in result.metadata

    @pytest.mark.asyncio
    async def test_timeout_advances_to_next_strategy(self):
        remote = _Strategy("remote", result="late", delay=1.0)
        local = _Strategy("local", result={"testRecipe": []})
        result = await AnalysisInvoker([remote, local], timeout=0.05).invoke(PAYLOAD)
        assert result.source == "local"
        assert "timed out" in result.metadata["fallback_errors"][0]

    @pytest.mark.asyncio
    async def test_empty_response_is_a_failure(self):
        remote = _Strategy("remote", result="")
        local = _Strategy("local", result={"testRecipe": []})
        result = await AnalysisInvoker([remote, local]).invoke(PAYLOAD)
        assert result.source == "local"

    @pytest.mark.asyncio
    async def test_all_failures_return_default(self):
        remote = _Strategy("remote", error=UpstreamAnalysisError("boom"))
        local = _Strategy("local", error=RuntimeError("also boom"))
        result = await AnalysisInvoker([remote, local]).invoke(PAYLOAD)
        assert result.success is True
        assert result.source == ULTIMATE_FALLBACK_SOURCE
        assert result.data == build_default_analysis("Add checkout")
        assert len(result.metadata["fallback_errors"]) == 2

    @pytest.mark.asyncio
    async def test_thousand_fault_injected_failures_always_resolve(self):
        rng = random.Random(11)
        faults = [
            lambda: UpstreamAnalysisError("upstream 502"),
            lambda: aiohttp.ClientConnectionError("refused"),
            lambda: ValueError("bad json"),
            lambda: KeyError("data"),
            lambda: asyncio.TimeoutError(),
        ]
        for _ in range(1000):
            strategies = [
                _Strategy("remote", error=rng.choice(faults)()),
                _Strategy("local", error=rng.choice(faults)()),
            ]
            result = await AnalysisInvoker(strategies, timeout=1).invoke(PAYLOAD)
            assert result.success is True
            assert result.data

    @pytest.mark.asyncio
    async def test_aclose_closes_strategies(self):
        remote = MagicMock()
        remote.aclose = AsyncMock()
        await AnalysisInvoker([remote, object()]).aclose()
        remote.aclose.assert_awaited_once()

    def test_default_analysis_is_deterministic(self):
        default = build_default_analysis("Checkout")
        assert default == build_default_analysis("Checkout")
        assert default["productionReadinessScore"]["level"] == "Needs Manual Review"
        assert default["testRecipe"]["criticalPath"]


class TestLocalHeuristicGenerator:
    @pytest.mark.asyncio
    async def test_structured_analysis_from_diff(self):
        data = await LocalHeuristicGenerator().generate(PAYLOAD)
        assert data["productionReadinessScore"]["level"] == "Needs Manual Review"
        assert 1 <= data["summary"]["shipScore"] <= 10
        names = [scenario["name"] for scenario in data["testRecipe"]]
        assert "Verify behaviour changed in auth/login.ts" in names
        assert any(s["priority"] == "Critical Path" for s in data["testRecipe"])

    @pytest.mark.asyncio
    async def test_nothing_to_analyze_raises(self):
        with pytest.raises(UpstreamAnalysisError):
            await LocalHeuristicGenerator().generate({"title": "", "diff": "", "body": ""})

    def test_changed_files_and_risks(self):
        diff = "diff --git a/db/migration_1.sql b/db/migration_1.sql\n+ALTER TABLE users"
        files = extract_changed_files(diff)
        assert files == ["db/migration_1.sql"]
        categories = {category for category, _ in detect_risks(diff, files)}
        assert "database" in categories


class _FakeResponse:
    def __init__(self, body, status=200):
        self._body = body
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status >= 400:
            raise aiohttp.ClientResponseError(MagicMock(), (), status=self.status)

    async def json(self, content_type=None):
        return self._body


class TestRemoteReasoningClient:
    def _client_with(self, response):
        client = RemoteReasoningClient("http://reasoning.local/")
        session = MagicMock()
        session.closed = False
        session.post = MagicMock(return_value=response)
        client._session = session
        return client, session

    @pytest.mark.asyncio
    async def test_full_analysis_endpoint(self):
        client, session = self._client_with(_FakeResponse({"success": True, "data": "## Test Recipe"}))
        assert await client.generate(PAYLOAD) == "## Test Recipe"
        assert session.post.call_args[0][0] == "http://reasoning.local/generate-test-recipe"

    @pytest.mark.asyncio
    async def test_short_analysis_endpoint(self):
        client, session = self._client_with(_FakeResponse({"success": True, "data": {"x": 1}}))
        await client.generate({**PAYLOAD, "analysisType": "short"})
        assert session.post.call_args[0][0] == "http://reasoning.local/generate-short-analysis"

    @pytest.mark.asyncio
    async def test_unsuccessful_body_raises(self):
        client, _ = self._client_with(_FakeResponse({"success": False, "error": "quota"}))
        with pytest.raises(UpstreamAnalysisError):
            await client.generate(PAYLOAD)

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        client, _ = self._client_with(_FakeResponse({}, status=503))
        with pytest.raises(UpstreamAnalysisError):
            await client.generate(PAYLOAD)

    @pytest.mark.asyncio
    async def test_remote_failure_falls_back_to_local(self):
        remote = RemoteReasoningClient("http://reasoning.local")
        with patch.object(remote, "generate", AsyncMock(side_effect=UpstreamAnalysisError("down"))):
            result = await AnalysisInvoker([remote, LocalHeuristicGenerator()]).invoke(PAYLOAD)
        assert result.source == "local"
        assert result.data["testRecipe"]
