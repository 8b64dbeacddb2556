"""Paddle Billing integration: webhook signature verification and API calls."""

import hashlib
import hmac
import logging
import time
from typing import Any, Dict, Optional

import httpx

from ..config import Settings
from ..errors import GatewayError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Paddle-Signature"
MAX_SIGNATURE_AGE_SECONDS = 5


class PaddleError(GatewayError):
    """Paddle API call failed or returned a non-2xx response."""

    status_code = 500


def parse_signature_header(header: str) -> Dict[str, str]:
    """Split ``ts=...;h1=...`` into its parts."""
    parts: Dict[str, str] = {}
    for item in header.split(";"):
        key, sep, value = item.strip().partition("=")
        if sep and key:
            parts[key] = value
    return parts


def compute_signature(secret: str, timestamp: str, body: bytes) -> str:
    signed = timestamp.encode("utf-8") + b":" + body
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_paddle_signature(
    body: bytes,
    header: Optional[str],
    secret: Optional[str],
    max_age_seconds: Optional[int] = MAX_SIGNATURE_AGE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """Check a ``Paddle-Signature`` header against the raw request body.

    Pass ``max_age_seconds=None`` to skip the replay window check.
    """
    if not header or not secret or not body:
        return False

    parts = parse_signature_header(header)
    timestamp = parts.get("ts")
    received = parts.get("h1")
    if not timestamp or not received:
        return False

    if max_age_seconds is not None:
        try:
            age = (now if now is not None else time.time()) - int(timestamp)
        except ValueError:
            return False
        if abs(age) > max_age_seconds:
            logger.warning("Rejecting Paddle webhook with stale timestamp (age=%ss)", age)
            return False

    expected = compute_signature(secret, timestamp, body)
    return hmac.compare_digest(expected, received)


class PaddleClient:
    """Minimal client for the Paddle Billing REST API."""

    def __init__(self, client: httpx.AsyncClient, api_key: Optional[str], base_url: str):
        self._client = client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> "PaddleClient":
        return cls(client, settings.paddle_api_key, settings.paddle_api_base_url)

    async def cancel_subscription(
        self, subscription_id: str, effective_from: str = "next_billing_period"
    ) -> Dict[str, Any]:
        """Schedule cancellation of *subscription_id*; returns the subscription object."""
        if not self._api_key:
            raise PaddleError("Paddle cancellation failed", details="Paddle API key is not configured")

        url = f"{self._base_url}/subscriptions/{subscription_id}/cancel"
        try:
            response = await self._client.post(
                url,
                json={"effective_from": effective_from},
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=30.0,
            )
        except httpx.HTTPError as exc:
            logger.error("Paddle cancel request for %s failed: %s", subscription_id, exc)
            raise PaddleError("Paddle cancellation failed", details=str(exc)) from exc

        if response.status_code >= 400:
            logger.error(
                "Paddle cancel for %s returned %d: %s",
                subscription_id, response.status_code, response.text[:500],
            )
            raise PaddleError(
                "Paddle cancellation failed",
                details=f"Paddle API error: {response.status_code} - {response.text[:500]}",
            )

        return response.json().get("data") or {}
