"""Security module for Refactor Gateway: API key hashing and model access policy."""

from .auth import MASKED_API_KEY, generate_api_key, hash_api_key, verify_api_key
from .model_policy import PolicyResult, evaluate

__all__ = [
    "MASKED_API_KEY",
    "generate_api_key",
    "hash_api_key",
    "verify_api_key",
    "PolicyResult",
    "evaluate",
]
