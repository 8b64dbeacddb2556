"""Streaming LLM provider backends.

Each backend turns one prompt into an async stream of text fragments over a
shared, injected ``httpx.AsyncClient``. Failures are classified into
``UpstreamRateLimitError`` (429 or a rate-limit/quota message) and
``UpstreamFatalError`` (everything else, including timeouts).
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Mapping, Optional

import httpx

from ..config import Settings
from .exceptions import UpstreamError, UpstreamFatalError, UpstreamRateLimitError
from .models import Provider
from .prompts import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

RATE_LIMIT_PATTERN = re.compile(r"rate[\s_-]?limit|quota|resource[\s_-]?exhausted", re.IGNORECASE)

MAX_ERROR_BODY = 500


def classify_upstream_error(
    status_code: int,
    message: str,
    provider: str,
    headers: Optional[Mapping[str, str]] = None,
) -> UpstreamError:
    """Map an upstream failure to a transient or fatal error."""
    body = message[:MAX_ERROR_BODY]
    if status_code == 429 or RATE_LIMIT_PATTERN.search(message or ""):
        return UpstreamRateLimitError(
            f"{provider} rate limited: {body}",
            retry_after=_parse_retry_after(headers),
            status_code=status_code or 429,
            response_body=body,
            provider=provider,
        )
    return UpstreamFatalError(
        f"{provider} API error: HTTP {status_code}: {body}",
        status_code=status_code,
        response_body=body,
        provider=provider,
    )


def _parse_retry_after(headers: Optional[Mapping[str, str]]) -> Optional[float]:
    """Parse Retry-After header (seconds only, not HTTP-date)."""
    if not headers:
        return None
    value = headers.get("Retry-After") or headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _error_message(body: str) -> str:
    """Pull ``error.message`` out of a JSON error body, else return the raw body."""
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return body
    if isinstance(payload, list) and payload:
        payload = payload[0]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("status") or body)
        if isinstance(error, str):
            return error
    return body


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """Yield the payload of each ``data:`` line; comments and blanks are skipped."""
    async for line in response.aiter_lines():
        line = line.strip()
        if not line or line.startswith(":"):
            continue
        if line.startswith("data:"):
            yield line[5:].strip()


class StreamingBackend(ABC):
    """One upstream provider endpoint."""

    provider: Provider

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        timeout: float,
        temperature: float = 0.0,
    ):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout, connect=30.0)
        self._temperature = temperature

    @abstractmethod
    def stream(self, prompt: str, upstream_model: str, api_key: str) -> AsyncIterator[str]:
        """Stream text fragments for *prompt* in arrival order."""

    async def _stream_events(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
    ) -> AsyncIterator[Dict[str, Any]]:
        provider = self.provider.value
        try:
            async with self._client.stream(
                "POST", url, json=payload, headers=headers, timeout=self._timeout
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise classify_upstream_error(
                        response.status_code, _error_message(body), provider, response.headers
                    )

                async for data in iter_sse_data(response):
                    if data == "[DONE]":
                        break
                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug("Skipping non-JSON %s stream line", provider)
                        continue
                    if isinstance(event, dict):
                        yield event

        except httpx.TimeoutException as exc:
            raise UpstreamFatalError(
                f"{provider} request timed out", provider=provider
            ) from exc
        except httpx.TransportError as exc:
            raise UpstreamFatalError(
                f"{provider} connection failed: {type(exc).__name__}", provider=provider
            ) from exc


class OpenAICompatibleBackend(StreamingBackend):
    """OpenRouter (OpenAI-compatible) chat completions with ``stream: true``."""

    provider = Provider.OPENROUTER

    async def stream(self, prompt: str, upstream_model: str, api_key: str) -> AsyncIterator[str]:
        payload = {
            "model": upstream_model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self._temperature,
            "stream": True,
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

        async for event in self._stream_events(
            f"{self._base_url}/chat/completions", payload, headers
        ):
            error = event.get("error")
            if error:
                # OpenRouter reports mid-stream failures as an error object.
                code = error.get("code") if isinstance(error, dict) else None
                message = error.get("message", "") if isinstance(error, dict) else str(error)
                raise classify_upstream_error(
                    code if isinstance(code, int) else 0, message, self.provider.value
                )

            choices = event.get("choices") or []
            if not choices:
                continue
            content = (choices[0].get("delta") or {}).get("content")
            if content:
                yield content


class GeminiBackend(StreamingBackend):
    """Google Gemini ``streamGenerateContent`` over SSE."""

    provider = Provider.GEMINI

    async def stream(self, prompt: str, upstream_model: str, api_key: str) -> AsyncIterator[str]:
        payload = {
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": self._temperature},
        }
        headers = {
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
        }
        url = f"{self._base_url}/models/{upstream_model}:streamGenerateContent?alt=sse"

        async for event in self._stream_events(url, payload, headers):
            error = event.get("error")
            if error:
                code = error.get("code", 0) if isinstance(error, dict) else 0
                message = error.get("message", "") if isinstance(error, dict) else str(error)
                raise classify_upstream_error(code, message, self.provider.value)

            for candidate in event.get("candidates") or []:
                for part in (candidate.get("content") or {}).get("parts") or []:
                    text = part.get("text")
                    if text:
                        yield text


def build_backends(client: httpx.AsyncClient, settings: Settings) -> Dict[Provider, StreamingBackend]:
    """Create one backend per provider sharing *client*."""
    return {
        Provider.OPENROUTER: OpenAICompatibleBackend(
            client,
            settings.openrouter_base_url,
            settings.upstream_timeout_seconds,
            settings.upstream_temperature,
        ),
        Provider.GEMINI: GeminiBackend(
            client,
            settings.gemini_base_url,
            settings.upstream_timeout_seconds,
            settings.upstream_temperature,
        ),
    }
