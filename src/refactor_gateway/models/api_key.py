"""API key record: hashed secret plus usage counters."""

from datetime import date
from typing import Optional

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class APIKeyRecord(Base):
    """One caller's credential and usage counter.

    ``api_key`` holds a bcrypt hash, never the plaintext. A NULL hash means
    the key was revoked (or never issued); the row and its counter survive.
    ``count`` is only changed through the store's atomic increment.
    """

    __tablename__ = "api_keys"
    __table_args__ = (
        CheckConstraint("count >= 0", name="ck_api_keys_count_non_negative"),
    )

    name: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.name", ondelete="CASCADE"),
        unique=True,
        index=True,
        nullable=False,
    )
    api_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reset_date: Mapped[date] = mapped_column(Date, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<APIKeyRecord(name='{self.name}', active={self.api_key is not None}, "
            f"count={self.count})>"
        )
