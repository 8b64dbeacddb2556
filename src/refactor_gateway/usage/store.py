"""Credential store adapter.

The core only talks to persistence through ``CredentialStore``: find a caller
by plaintext secret, read a plan's limit, and atomically increment a usage
counter. ``SQLCredentialStore`` is the SQLAlchemy implementation; tests use
in-memory fakes.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import InfrastructureError
from ..models.api_key import APIKeyRecord
from ..models.plan_limit import PlanLimit
from ..models.user import Plan, User
from ..security.auth import verify_api_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialRecord:
    """Snapshot of one caller's credential row joined with their plan."""

    name: str
    hashed_secret: Optional[str]
    plan: Plan
    usage_count: int
    last_reset_date: date


@dataclass(frozen=True)
class IncrementResult:
    """Outcome of one atomic increment attempt."""

    success: bool
    count: int
    limit: int
    remaining: int
    error: Optional[str] = None


class CredentialStore(ABC):
    """Narrow persistence interface used by the usage limiter and orchestrator."""

    @abstractmethod
    async def find_by_secret(self, plaintext: str) -> Optional[CredentialRecord]:
        """Return the record whose hashed secret matches *plaintext*, if any."""

    @abstractmethod
    async def get_plan_limit(self, plan: Plan) -> int:
        """Return the request ceiling for *plan*."""

    @abstractmethod
    async def increment_usage(
        self, name: str, plan: Plan, limit: int, today: date
    ) -> IncrementResult:
        """Atomically roll over (pro), check the limit, and increment by one."""


def effective_count(plan: Plan, usage_count: int, last_reset_date: date, today: date) -> int:
    """Counter value the limit is enforced against.

    Free counters are lifetime. Pro counters are daily, so a stale reset date
    means the count is logically zero.
    """
    if plan == Plan.PRO and last_reset_date != today:
        return 0
    return usage_count


class SQLCredentialStore(CredentialStore):
    """``CredentialStore`` backed by the ``users``/``api_keys``/``plan_limits`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_by_secret(self, plaintext: str) -> Optional[CredentialRecord]:
        # O(n): salted hashes cannot be indexed by plaintext, so every active
        # record is verified in turn.
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(
                        APIKeyRecord.name,
                        APIKeyRecord.api_key,
                        APIKeyRecord.count,
                        APIKeyRecord.last_reset_date,
                        User.plan,
                    )
                    .join(User, User.name == APIKeyRecord.name)
                    .where(APIKeyRecord.api_key.is_not(None))
                )
                rows = result.all()
        except SQLAlchemyError as exc:
            logger.exception("Credential lookup failed")
            raise InfrastructureError() from exc

        for row in rows:
            if verify_api_key(plaintext, row.api_key):
                return CredentialRecord(
                    name=row.name,
                    hashed_secret=row.api_key,
                    plan=row.plan,
                    usage_count=row.count,
                    last_reset_date=row.last_reset_date,
                )
        return None

    async def get_plan_limit(self, plan: Plan) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(PlanLimit.limit_value).where(PlanLimit.plan == plan)
                )
                limit = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.exception("Plan limit lookup failed for %s", plan.value)
            raise InfrastructureError() from exc

        if limit is None:
            logger.error("No plan limit configured for plan %s", plan.value)
            raise InfrastructureError()
        return limit

    async def increment_usage(
        self, name: str, plan: Plan, limit: int, today: date
    ) -> IncrementResult:
        if plan == Plan.PRO:
            current = case(
                (APIKeyRecord.last_reset_date == today, APIKeyRecord.count),
                else_=0,
            )
            values = {"count": current + 1, "last_reset_date": today}
        else:
            current = APIKeyRecord.count
            values = {"count": APIKeyRecord.count + 1}

        # One conditional UPDATE: rollover, limit check and increment happen
        # under the row lock, so concurrent requests cannot lose updates.
        stmt = (
            update(APIKeyRecord)
            .where(APIKeyRecord.name == name, current < limit)
            .values(**values)
            .returning(APIKeyRecord.count)
            .execution_options(synchronize_session=False)
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                new_count = result.scalar_one_or_none()
                await session.commit()

                if new_count is not None:
                    return IncrementResult(
                        success=True,
                        count=new_count,
                        limit=limit,
                        remaining=max(0, limit - new_count),
                    )

                row = (
                    await session.execute(
                        select(APIKeyRecord.count, APIKeyRecord.last_reset_date).where(
                            APIKeyRecord.name == name
                        )
                    )
                ).first()
        except SQLAlchemyError as exc:
            logger.exception("Usage increment failed for %s", name)
            raise InfrastructureError() from exc

        if row is None:
            return IncrementResult(
                success=False, count=0, limit=limit, remaining=0,
                error="API key record not found",
            )

        count = effective_count(plan, row.count, row.last_reset_date, today)
        return IncrementResult(
            success=False,
            count=count,
            limit=limit,
            remaining=max(0, limit - count),
            error="Usage limit reached",
        )
