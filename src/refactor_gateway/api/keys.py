"""API key lifecycle and usage endpoints."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.connection import get_db_session
from ..errors import AuthError, ConflictError, NotFoundError, ValidationError
from ..models.api_key import APIKeyRecord
from ..models.user import Plan, User
from ..security.auth import MASKED_API_KEY, generate_api_key, hash_api_key
from ..usage.limiter import UsageLimiter, utc_today
from ..usage.store import CredentialRecord, CredentialStore
from .dependencies import get_credential_store, get_usage_limiter

logger = logging.getLogger(__name__)

router = APIRouter()


class NameRequest(BaseModel):
    name: Optional[Any] = None


class SecretRequest(BaseModel):
    api_key: Optional[Any] = None


def require_string(value: Any, message: str) -> str:
    """Return *value* stripped, or raise ``ValidationError`` with *message*."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(message)
    return value.strip()


@router.post("/generate-api-key")
async def create_api_key(body: NameRequest, session: AsyncSession = Depends(get_db_session)):
    """Issue a new key for *name*, creating the user on first use.

    The plaintext is returned once and only its hash is stored. An existing
    counter is preserved (free: always; pro: only within the same day).
    """
    user_name = require_string(body.name, "Name is required and must be a valid string")

    user = (await session.execute(select(User).where(User.name == user_name))).scalar_one_or_none()
    if user is None:
        user = User(name=user_name, plan=Plan.FREE)
        session.add(user)
        await session.flush()
        logger.info("Created free user %s", user_name)

    record = (
        await session.execute(select(APIKeyRecord).where(APIKeyRecord.name == user_name))
    ).scalar_one_or_none()
    if record is not None and record.api_key:
        raise ConflictError("API key already exists for this user. Delete existing key first.")

    plaintext = generate_api_key()
    today = utc_today()

    if record is None:
        record = APIKeyRecord(name=user_name, count=0, last_reset_date=today)
        session.add(record)
    elif user.plan == Plan.PRO and record.last_reset_date != today:
        record.count = 0
        record.last_reset_date = today
    record.api_key = hash_api_key(plaintext)

    await session.commit()
    logger.info("Generated API key for %s (count preserved: %d)", user_name, record.count)

    return {
        "success": True,
        "message": "API key generated successfully",
        "data": {
            "name": user_name,
            "api_key": plaintext,
            "plan": user.plan.value,
            "count": record.count,
            "preserved_usage": record.count > 0,
        },
    }


@router.post("/delete-api-key")
async def delete_api_key(body: NameRequest, session: AsyncSession = Depends(get_db_session)):
    """Revoke the caller's key. The record and its counter are kept."""
    user_name = require_string(body.name, "Name is required and must be a valid string")

    record = (
        await session.execute(select(APIKeyRecord).where(APIKeyRecord.name == user_name))
    ).scalar_one_or_none()
    if record is None:
        raise NotFoundError("No API key record found for this user")
    if not record.api_key:
        raise NotFoundError("No active API key found for this user")

    record.api_key = None
    await session.commit()
    logger.info("Revoked API key for %s", user_name)

    return {
        "success": True,
        "message": "API key deleted successfully",
        "data": {"name": user_name, "deleted_at": datetime.now(timezone.utc).isoformat()},
    }


@router.post("/update-count")
async def update_count(
    body: SecretRequest,
    store: CredentialStore = Depends(get_credential_store),
    limiter: UsageLimiter = Depends(get_usage_limiter),
):
    """Authenticate a secret and consume one request from its quota."""
    secret = require_string(body.api_key, "API key is required and must be a valid string")

    record = await store.find_by_secret(secret)
    if record is None:
        raise AuthError("Invalid API key")

    usage = await limiter.check_and_increment(record)
    usage.raise_for_denial()

    return {
        "success": True,
        "message": "Count updated successfully",
        "data": {**usage.to_usage(), "reset_date": utc_today().isoformat()},
    }


@router.post("/get-user-api-info")
async def get_user_api_info(
    body: NameRequest,
    session: AsyncSession = Depends(get_db_session),
    limiter: UsageLimiter = Depends(get_usage_limiter),
):
    """Masked key plus the caller's current usage and subscription state."""
    user_name = require_string(body.name, "Name is required and must be a valid string")

    row = (
        await session.execute(
            select(APIKeyRecord, User)
            .join(User, User.name == APIKeyRecord.name)
            .where(APIKeyRecord.name == user_name)
        )
    ).first()
    if row is None:
        raise NotFoundError("No API key found for this user")
    record, user = row
    if not record.api_key:
        raise NotFoundError("User exists but has no active API key")

    usage = await limiter.snapshot(
        CredentialRecord(
            name=record.name,
            hashed_secret=record.api_key,
            plan=user.plan,
            usage_count=record.count,
            last_reset_date=record.last_reset_date,
        )
    )

    return {
        "success": True,
        "data": {
            "name": user_name,
            "api_key": MASKED_API_KEY,
            "limit": usage.limit,
            "count": usage.count,
            "remaining": usage.remaining,
            "plan": user.plan.value,
            "subscription_status": (
                user.subscription_status.value if user.subscription_status else None
            ),
            "subscription_id": user.subscription_id,
            "last_reset_date": record.last_reset_date.isoformat(),
            "created_at": record.created_at.isoformat() if record.created_at else None,
            "is_limit_reached": not usage.allowed,
            "isLifetimeLimit": usage.is_lifetime_limit,
        },
    }
