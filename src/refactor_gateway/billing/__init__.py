"""Paddle billing: webhook verification, API client, subscription state."""

from .paddle import PaddleClient, PaddleError, verify_paddle_signature
from .subscriptions import SubscriptionService

__all__ = ["PaddleClient", "PaddleError", "verify_paddle_signature", "SubscriptionService"]
