"""Database models for Refactor Gateway."""

from .base import Base
from .user import User, Plan, SubscriptionStatus
from .api_key import APIKeyRecord
from .plan_limit import PlanLimit
from .feedback import Feedback

__all__ = [
    "Base",
    "User",
    "Plan",
    "SubscriptionStatus",
    "APIKeyRecord",
    "PlanLimit",
    "Feedback",
]
