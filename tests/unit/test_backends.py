"""Tests for the streaming provider backends using httpx.MockTransport."""

import json

import httpx
import pytest

from refactor_gateway.ai.backends import (
    GeminiBackend,
    OpenAICompatibleBackend,
    classify_upstream_error,
)
from refactor_gateway.ai.exceptions import UpstreamFatalError, UpstreamRateLimitError


def _sse(*payloads) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


def _delta(text):
    return {"choices": [{"delta": {"content": text}}]}


async def _collect(stream):
    return [fragment async for fragment in stream]


def _openrouter(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client, OpenAICompatibleBackend(client, "https://openrouter.test/api/v1", timeout=5)


class TestClassification:
    def test_429_is_rate_limit(self):
        error = classify_upstream_error(429, "slow down", "openrouter", {"Retry-After": "7"})
        assert isinstance(error, UpstreamRateLimitError)
        assert error.retry_after == 7.0

    @pytest.mark.parametrize("message", [
        "Rate limit exceeded",
        "rate-limited upstream",
        "You exceeded your current quota",
        "RESOURCE_EXHAUSTED",
    ])
    def test_rate_limit_messages(self, message):
        assert isinstance(classify_upstream_error(400, message, "gemini"), UpstreamRateLimitError)

    def test_other_errors_are_fatal(self):
        error = classify_upstream_error(401, "invalid api key", "openrouter")
        assert isinstance(error, UpstreamFatalError)
        assert error.status_code == 401

    def test_body_truncated(self):
        error = classify_upstream_error(500, "x" * 2000, "openrouter")
        assert len(error.response_body) == 500


class TestOpenAICompatibleBackend:
    async def test_streams_fragments_in_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            body = _sse(
                ": OPENROUTER PROCESSING",
                _delta("Hel"),
                {"choices": [{"delta": {}}]},
                _delta("lo"),
                "[DONE]",
                _delta("ignored"),
            )
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        client, backend = _openrouter(handler)
        async with client:
            fragments = await _collect(backend.stream("prompt", "vendor/model:free", "sk-or-1"))

        assert fragments == ["Hel", "lo"]
        assert seen["url"] == "https://openrouter.test/api/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-or-1"
        assert seen["body"]["stream"] is True
        assert seen["body"]["model"] == "vendor/model:free"
        assert seen["body"]["messages"][1] == {"role": "user", "content": "prompt"}

    async def test_http_429_raises_rate_limit(self):
        def handler(request):
            return httpx.Response(429, json={"error": {"message": "Rate limit exceeded"}})

        client, backend = _openrouter(handler)
        async with client:
            with pytest.raises(UpstreamRateLimitError):
                await _collect(backend.stream("p", "m", "k"))

    async def test_http_401_raises_fatal(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "No auth credentials found"}})

        client, backend = _openrouter(handler)
        async with client:
            with pytest.raises(UpstreamFatalError) as exc_info:
                await _collect(backend.stream("p", "m", "k"))
        assert "No auth credentials found" in str(exc_info.value)

    async def test_in_stream_error_is_classified(self):
        def handler(request):
            body = _sse(_delta("partial"), {"error": {"code": 429, "message": "Rate limit"}})
            return httpx.Response(200, content=body)

        client, backend = _openrouter(handler)
        received = []
        async with client:
            with pytest.raises(UpstreamRateLimitError):
                async for fragment in backend.stream("p", "m", "k"):
                    received.append(fragment)
        assert received == ["partial"]

    async def test_timeout_is_fatal(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client, backend = _openrouter(handler)
        async with client:
            with pytest.raises(UpstreamFatalError, match="timed out"):
                await _collect(backend.stream("p", "m", "k"))

    async def test_connect_error_is_fatal(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client, backend = _openrouter(handler)
        async with client:
            with pytest.raises(UpstreamFatalError, match="connection failed"):
                await _collect(backend.stream("p", "m", "k"))


class TestGeminiBackend:
    async def test_streams_candidate_parts(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-goog-api-key"]
            body = _sse(
                {"candidates": [{"content": {"parts": [{"text": "{\"files\""}]}}]},
                {"candidates": [{"content": {"parts": [{"text": ": []}"}]}}]},
            )
            return httpx.Response(200, content=body)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        backend = GeminiBackend(client, "https://gemini.test/v1beta", timeout=5)
        async with client:
            fragments = await _collect(backend.stream("p", "gemini-2.5-pro", "g-key"))

        assert "".join(fragments) == "{\"files\": []}"
        assert seen["url"] == (
            "https://gemini.test/v1beta/models/gemini-2.5-pro:streamGenerateContent?alt=sse"
        )
        assert seen["key"] == "g-key"

    async def test_quota_error_is_rate_limit(self):
        def handler(request):
            return httpx.Response(
                400, json=[{"error": {"code": 400, "message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}}]
            )

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        backend = GeminiBackend(client, "https://gemini.test/v1beta", timeout=5)
        async with client:
            with pytest.raises(UpstreamRateLimitError):
                await _collect(backend.stream("p", "gemini-2.5-pro", "g-key"))
