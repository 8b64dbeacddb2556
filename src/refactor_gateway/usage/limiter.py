"""Plan-based quota enforcement.

Free plan: lifetime counter, hard ceiling. Pro plan: daily counter that is
logically zero once ``last_reset_date`` is not today. All writes go through
``CredentialStore.increment_usage``; this module never does a separate
read-then-write on the counter.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..errors import QuotaExceeded
from ..models.user import Plan
from .store import CredentialRecord, CredentialStore, effective_count

logger = logging.getLogger(__name__)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class UsageResult:
    """Quota decision plus the usage snapshot reported to the caller."""

    allowed: bool
    count: int
    limit: int
    remaining: int
    plan: Plan
    error: Optional[str] = None
    is_lifetime_limit: bool = False

    def to_usage(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "limit": self.limit,
            "remaining": self.remaining,
            "plan": self.plan.value,
        }

    def to_error_data(self) -> Dict[str, Any]:
        data = self.to_usage()
        if self.is_lifetime_limit:
            data["isLifetimeLimit"] = True
        return data

    def raise_for_denial(self) -> None:
        """Raise ``QuotaExceeded`` if this result denies the request."""
        if not self.allowed:
            raise QuotaExceeded(self.error or "Usage limit reached", data=self.to_error_data())


def _free_limit_message(limit: int) -> str:
    return (
        f"Free plan limit reached. You have used all {limit} lifetime requests. "
        "Please upgrade to Pro plan for unlimited usage."
    )


def _daily_limit_message(limit: int) -> str:
    return (
        f"Daily limit reached. You have used all {limit} requests for today. "
        "Your limit resets tomorrow."
    )


class UsageLimiter:
    """Applies plan quota rules and increments the caller's counter."""

    def __init__(self, store: CredentialStore, clock: Callable[[], date] = utc_today):
        self._store = store
        self._clock = clock

    async def check_and_increment(self, record: CredentialRecord) -> UsageResult:
        """Check *record* against its plan limit and consume one request.

        Denials are returned, not raised, so callers can report the usage
        snapshot. Store failures propagate as ``InfrastructureError``.
        """
        plan = record.plan
        limit = await self._store.get_plan_limit(plan)
        today = self._clock()

        current = effective_count(plan, record.usage_count, record.last_reset_date, today)
        if current >= limit:
            logger.info(
                "Quota exhausted for %s (plan=%s, count=%d, limit=%d)",
                record.name, plan.value, current, limit,
            )
            return self._denied(plan, current, limit)

        result = await self._store.increment_usage(record.name, plan, limit, today)
        if not result.success:
            # Another request for the same caller won the race for the last slot.
            logger.info("Atomic increment refused for %s: %s", record.name, result.error)
            return self._denied(plan, result.count, limit)

        logger.debug(
            "Usage for %s now %d/%d (plan=%s)", record.name, result.count, limit, plan.value
        )
        return UsageResult(
            allowed=True,
            count=result.count,
            limit=limit,
            remaining=result.remaining,
            plan=plan,
        )

    async def snapshot(self, record: CredentialRecord) -> UsageResult:
        """Read-only view of *record*'s usage; never mutates the counter."""
        limit = await self._store.get_plan_limit(record.plan)
        current = effective_count(
            record.plan, record.usage_count, record.last_reset_date, self._clock()
        )
        return UsageResult(
            allowed=current < limit,
            count=current,
            limit=limit,
            remaining=max(0, limit - current),
            plan=record.plan,
            is_lifetime_limit=record.plan == Plan.FREE,
        )

    @staticmethod
    def _denied(plan: Plan, count: int, limit: int) -> UsageResult:
        if plan == Plan.FREE:
            return UsageResult(
                allowed=False,
                count=count,
                limit=limit,
                remaining=0,
                plan=plan,
                error=_free_limit_message(limit),
                is_lifetime_limit=True,
            )
        return UsageResult(
            allowed=False,
            count=count,
            limit=limit,
            remaining=max(0, limit - count),
            plan=plan,
            error=_daily_limit_message(limit),
        )
