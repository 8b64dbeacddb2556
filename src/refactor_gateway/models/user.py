"""User identity, plan, and subscription state."""

import enum
from typing import Optional

from sqlalchemy import Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Plan(str, enum.Enum):
    """Entitlement tier attached to a user."""

    FREE = "free"
    PRO = "pro"


class SubscriptionStatus(str, enum.Enum):
    """Subscription lifecycle as reported by the payment provider."""

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    CANCEL_AT_PERIOD_END = "cancel_at_period_end"
    PAUSED = "paused"
    PENDING = "pending"


class User(Base):
    """A caller identity. The handle in ``name`` is unique."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False
    )
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    plan: Mapped[Plan] = mapped_column(
        Enum(
            Plan,
            name="plan",
            create_constraint=False,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=Plan.FREE,
    )

    subscription_status: Mapped[Optional[SubscriptionStatus]] = mapped_column(
        Enum(
            SubscriptionStatus,
            name="subscriptionstatus",
            create_constraint=False,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )
    subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )

    def __repr__(self) -> str:
        return f"<User(name='{self.name}', plan='{self.plan.value}')>"
