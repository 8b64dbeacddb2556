"""Credential lookup and quota metering."""

from .limiter import UsageLimiter, UsageResult, utc_today
from .store import CredentialRecord, CredentialStore, IncrementResult, SQLCredentialStore

__all__ = [
    "UsageLimiter",
    "UsageResult",
    "utc_today",
    "CredentialRecord",
    "CredentialStore",
    "IncrementResult",
    "SQLCredentialStore",
]
