"""Plan to request-ceiling mapping."""

from sqlalchemy import Enum, Integer
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from .user import Plan


class PlanLimit(Base):
    """Request ceiling for a plan: lifetime for free, daily for pro."""

    __tablename__ = "plan_limits"

    plan: Mapped[Plan] = mapped_column(
        Enum(
            Plan,
            name="plan",
            create_constraint=False,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        unique=True,
        nullable=False,
    )
    limit_value: Mapped[int] = mapped_column(Integer, nullable=False)
