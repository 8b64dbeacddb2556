"""Gateway error taxonomy.

Every error carries a stable, display-ready ``message`` plus optional
``data`` (counts, limits, plan) for programmatic handling. The API layer
renders these as ``{"success": false, "error": ..., "data": ...}`` before a
stream is opened, and as SSE ``error`` events afterwards.
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base exception for all request-level failures."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        details: Optional[Any] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.data = data
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "error": self.message}
        if self.data is not None:
            body["data"] = self.data
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(GatewayError):
    """Malformed or missing request fields."""

    status_code = 400


class AuthError(GatewayError):
    """Unknown or revoked API secret. Never retried."""

    status_code = 401


class PolicyDenied(GatewayError):
    """Model not permitted for the plan, or a required caller credential is missing."""

    status_code = 403


class NotFoundError(GatewayError):
    status_code = 404


class ConflictError(GatewayError):
    status_code = 409


class QuotaExceeded(GatewayError):
    """Plan limit reached: lifetime for free, daily for pro."""

    status_code = 429


class InfrastructureError(GatewayError):
    """Store or other infrastructure unavailable. Safe to retry later.

    The caller only ever sees the generic message; the cause is logged.
    """

    status_code = 500

    def __init__(self, message: str = "Service temporarily unavailable", **kwargs):
        super().__init__(message, **kwargs)
