"""Upstream provider exception types.

Raised by the backends and the dispatcher. Rate-limit errors are the only
class the dispatcher treats as transient; everything else fails fast.
"""

from typing import List, Optional


class UpstreamError(Exception):
    """Base exception for all upstream provider errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        response_body: str = "",
        provider: str = "",
    ):
        self.status_code = status_code
        self.response_body = response_body
        self.provider = provider
        super().__init__(message)


class UpstreamRateLimitError(UpstreamError):
    """Rate limit or quota exhausted on the upstream key (429-class).

    Switching to another credential may succeed.
    """

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        status_code: int = 429,
        response_body: str = "",
        provider: str = "",
    ):
        self.retry_after = retry_after
        super().__init__(message, status_code, response_body, provider)


class UpstreamFatalError(UpstreamError):
    """Bad request, upstream auth failure, timeout, or malformed reply. Not retried."""


class UpstreamExhaustedError(UpstreamError):
    """Every failover credential hit a rate limit."""

    def __init__(self, attempts: int, last_error: UpstreamError):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"All {attempts} upstream credentials are rate limited. "
            f"Last error: {last_error}",
            status_code=last_error.status_code,
            response_body=last_error.response_body,
            provider=last_error.provider,
        )


class UnsupportedModelError(UpstreamError):
    """Requested model has no provider binding."""

    def __init__(self, model: str, supported: List[str]):
        self.model = model
        self.supported = supported
        super().__init__(
            f"Unsupported model '{model}'. Supported models: {', '.join(supported)}"
        )
