"""Subscription checkout, cancellation and Paddle webhook endpoints."""

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..billing.paddle import SIGNATURE_HEADER, PaddleClient, verify_paddle_signature
from ..billing.subscriptions import SubscriptionService
from ..config import Settings, get_settings
from ..database.connection import get_db_session
from ..errors import InfrastructureError, ValidationError
from .dependencies import get_paddle_client
from .keys import require_string

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateSubscriptionRequest(BaseModel):
    userName: Optional[Any] = None
    plan: Optional[Any] = None


class CancelSubscriptionRequest(BaseModel):
    userName: Optional[Any] = None


@router.post("/payment/create-subscription")
async def create_subscription(
    body: CreateSubscriptionRequest,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
):
    """Return the price id for client-side checkout and mark the user pending."""
    user_name = require_string(body.userName, "Missing required fields")
    require_string(body.plan, "Missing required fields")

    if not settings.paddle_price_id:
        logger.error("Checkout requested but no Paddle price id is configured")
        raise InfrastructureError()

    service = SubscriptionService(session, settings.subscription_change_action)
    await service.create_subscription(user_name)
    logger.info("Checkout started for %s", user_name)
    return {"success": True, "priceId": settings.paddle_price_id}


@router.post("/subscription/cancel")
async def cancel_subscription(
    body: CancelSubscriptionRequest,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
    paddle: PaddleClient = Depends(get_paddle_client),
):
    user_name = require_string(body.userName, "Missing required fields")
    service = SubscriptionService(session, settings.subscription_change_action)
    return await service.cancel_subscription(user_name, paddle)


@router.post("/webhooks/paddle")
async def paddle_webhook(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
):
    """Verify and apply one Paddle notification."""
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    if not signature or not body:
        raise ValidationError("Invalid webhook request")
    if not verify_paddle_signature(body, signature, settings.paddle_webhook_secret):
        logger.warning("Rejected Paddle webhook with invalid signature")
        return JSONResponse(status_code=400, content={"success": False, "error": "Webhook failed"})

    try:
        event = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        event = None
    if not isinstance(event, dict):
        return JSONResponse(status_code=400, content={"success": False, "error": "Webhook failed"})

    service = SubscriptionService(session, settings.subscription_change_action)
    await service.handle_event(event)
    return {"received": True}
