"""Account endpoints: login bootstrap, user-count gate, feedback."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..database.connection import get_db_session
from ..models.api_key import APIKeyRecord
from ..models.feedback import Feedback
from ..models.user import Plan, User
from ..usage.limiter import utc_today
from .keys import require_string

logger = logging.getLogger(__name__)

router = APIRouter()


class UserAuthRequest(BaseModel):
    email: Optional[Any] = None


class FeedbackRequest(BaseModel):
    title: Optional[Any] = None
    description: Optional[Any] = None


@router.post("/handle-user-auth")
async def handle_user_auth(body: UserAuthRequest, session: AsyncSession = Depends(get_db_session)):
    """Ensure a user and its counter row exist for a signed-in email.

    Existing users keep their plan and counter.
    """
    email = require_string(body.email, "Email is required and must be a valid string")

    user = (await session.execute(select(User).where(User.name == email))).scalar_one_or_none()
    if user is None:
        session.add(User(name=email, email=email, plan=Plan.FREE))
        await session.flush()
        logger.info("Registered new user %s", email)
    elif not user.email:
        user.email = email

    record = (
        await session.execute(select(APIKeyRecord).where(APIKeyRecord.name == email))
    ).scalar_one_or_none()
    if record is None:
        session.add(APIKeyRecord(name=email, count=0, last_reset_date=utc_today()))

    await session.commit()
    return {"success": True, "message": "User successfully processed and stored in database"}


@router.get("/check-user-limit")
async def check_user_limit(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
):
    """Login gate on the total number of users. Fails open."""
    max_users = settings.max_users
    try:
        current = (await session.execute(select(func.count()).select_from(User))).scalar_one()
    except SQLAlchemyError:
        logger.exception("User count check failed, allowing login")
        return {
            "success": True,
            "canLogin": True,
            "message": "User limit check temporarily unavailable",
        }

    if current >= max_users:
        return {
            "success": True,
            "canLogin": False,
            "message": f"Currently {max_users} users only allowed. Try again later.",
            "data": {"currentUsers": current, "maxUsers": max_users, "limitReached": True},
        }

    return {
        "success": True,
        "canLogin": True,
        "message": "Login allowed",
        "data": {
            "currentUsers": current,
            "maxUsers": max_users,
            "remainingSlots": max_users - current,
            "limitReached": False,
        },
    }


@router.post("/submit-feedback")
async def submit_feedback(body: FeedbackRequest, session: AsyncSession = Depends(get_db_session)):
    title = require_string(body.title, "Title is required and must be a valid string")
    description = require_string(
        body.description, "Description is required and must be a valid string"
    )

    feedback = Feedback(title=title, description=description)
    session.add(feedback)
    await session.commit()
    logger.info("Feedback submitted: %s", title)

    return {
        "success": True,
        "message": "Feedback submitted successfully",
        "data": [{"id": str(feedback.id), "title": title, "description": description}],
    }
