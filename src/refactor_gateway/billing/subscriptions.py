"""Subscription state changes driven by Paddle webhooks and account actions."""

import logging
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFoundError, ValidationError
from ..models.api_key import APIKeyRecord
from ..models.user import Plan, SubscriptionStatus, User
from .paddle import PaddleClient

logger = logging.getLogger(__name__)

CHANGE_KEEP = "keep"
CHANGE_RESET_USAGE = "reset_usage"
CHANGE_REVOKE_KEY = "revoke_key"


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _field(obj: Dict[str, Any], snake: str, camel: str) -> Any:
    """Read a field that may arrive in snake_case (raw webhook) or camelCase (SDK)."""
    if snake in obj:
        return obj[snake]
    return obj.get(camel)


class SubscriptionService:
    """Applies subscription lifecycle changes to ``users`` and ``api_keys``.

    ``change_action`` decides what happens to a caller's key and counter when
    a webhook moves them between plans: ``keep`` leaves both alone,
    ``reset_usage`` zeroes the counter, ``revoke_key`` nulls the hash.
    """

    def __init__(self, session: AsyncSession, change_action: str = CHANGE_KEEP):
        self.session = session
        self.change_action = change_action
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[bool]]] = {
            "subscription.created": self._activated,
            "subscription.activated": self._activated,
            "subscription.updated": self._updated,
            "subscription.past_due": self._past_due,
            "subscription.canceled": self._cancelled,
            "subscription.paused": self._paused,
            "subscription.resumed": self._resumed,
        }

    async def handle_event(self, event: Dict[str, Any]) -> bool:
        """Dispatch one verified webhook event. Returns False when it was ignored."""
        event_type = _field(event, "event_type", "eventType")
        data = event.get("data") or {}
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Ignoring unhandled Paddle event type %s", event_type)
            return False
        if not isinstance(data, dict):
            logger.warning("Ignoring Paddle event %s with malformed data", event_type)
            return False
        logger.info("Processing Paddle event %s for subscription %s", event_type, data.get("id"))
        handled = await handler(data)
        await self.session.commit()
        return handled

    async def create_subscription(self, user_name: str) -> User:
        """Mark *user_name* as awaiting checkout."""
        user = await self._get_user(user_name)
        user.subscription_status = SubscriptionStatus.PENDING
        await self.session.commit()
        return user

    async def cancel_subscription(self, user_name: str, paddle: PaddleClient) -> Dict[str, Any]:
        """Cancel at the end of the billing period, or immediately if Paddle says so."""
        user = await self._get_user(user_name)
        if not user.subscription_id:
            raise ValidationError("No subscription found", details="User does not have an active subscription")
        if user.subscription_status == SubscriptionStatus.CANCELLED:
            raise ValidationError("Already cancelled", details="Subscription is already cancelled")
        if user.subscription_status == SubscriptionStatus.CANCEL_AT_PERIOD_END:
            raise ValidationError(
                "Already scheduled for cancellation",
                details="Subscription is already scheduled to cancel at the end of the billing period",
            )
        if user.subscription_status == SubscriptionStatus.PAST_DUE:
            raise ValidationError(
                "Subscription past due",
                details=(
                    "Cannot cancel a past due subscription. Please update your payment "
                    "method first or contact support."
                ),
            )

        subscription = await paddle.cancel_subscription(user.subscription_id)
        scheduled = _field(subscription, "scheduled_change", "scheduledChange") or {}

        if scheduled.get("action") == "cancel":
            user.subscription_status = SubscriptionStatus.CANCEL_AT_PERIOD_END
            await self.session.commit()
            logger.info("Subscription %s scheduled for cancellation", user.subscription_id)
            return {
                "success": True,
                "message": "Subscription cancelled successfully",
                "details": (
                    "Your subscription will remain active until the end of your current "
                    "billing period. You will continue to have Pro access until then."
                ),
                "status": SubscriptionStatus.CANCEL_AT_PERIOD_END.value,
                "effective_at": _field(scheduled, "effective_at", "effectiveAt"),
            }

        previous_plan = user.plan
        user.subscription_status = SubscriptionStatus.CANCELLED
        user.plan = Plan.FREE
        await self._apply_plan_change(user.name, previous_plan, Plan.FREE)
        await self.session.commit()
        logger.info("Subscription %s cancelled immediately", user.subscription_id)
        return {
            "success": True,
            "message": "Subscription cancelled immediately",
            "details": (
                "Your subscription has been cancelled and you have been downgraded "
                "to the free plan."
            ),
            "status": SubscriptionStatus.CANCELLED.value,
        }

    async def _get_user(self, user_name: str) -> User:
        result = await self.session.execute(select(User).where(User.name == user_name))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found", details="User account not found")
        return user

    async def _find_by_subscription(self, subscription_id: Optional[str]) -> Optional[User]:
        if not subscription_id:
            return None
        result = await self.session.execute(
            select(User).where(User.subscription_id == subscription_id)
        )
        return result.scalar_one_or_none()

    async def _set_state(
        self,
        data: Dict[str, Any],
        status: SubscriptionStatus,
        plan: Optional[Plan] = None,
    ) -> bool:
        user = await self._find_by_subscription(data.get("id"))
        if user is None:
            logger.warning("No user for subscription %s", data.get("id"))
            return False
        user.subscription_status = status
        if plan is not None and user.plan != plan:
            previous = user.plan
            user.plan = plan
            await self._apply_plan_change(user.name, previous, plan)
        return True

    async def _activated(self, data: Dict[str, Any]) -> bool:
        custom = _field(data, "custom_data", "customData") or {}
        user_name = custom.get("userName")
        email = custom.get("email")
        if not user_name and not email:
            logger.error("Subscription %s carries no user identifier", data.get("id"))
            return False

        if user_name:
            query = select(User).where(User.name == user_name)
        else:
            query = select(User).where(User.email == email)
        user = (await self.session.execute(query.limit(1))).scalar_one_or_none()
        if user is None:
            logger.error("User not found for subscription activation %s", data.get("id"))
            return False

        previous = user.plan
        user.plan = Plan.PRO
        user.subscription_status = SubscriptionStatus.ACTIVE
        user.subscription_id = data.get("id")
        if previous != Plan.PRO:
            await self._apply_plan_change(user.name, previous, Plan.PRO)
        logger.info("Subscription activated for %s", user.name)
        return True

    async def _updated(self, data: Dict[str, Any]) -> bool:
        scheduled = _field(data, "scheduled_change", "scheduledChange")
        if scheduled and scheduled.get("action") == "cancel":
            return await self._set_state(data, SubscriptionStatus.CANCEL_AT_PERIOD_END)
        if data.get("status") == "active" and not scheduled:
            return await self._set_state(data, SubscriptionStatus.ACTIVE)
        logger.info(
            "No status change for subscription %s (status=%s)", data.get("id"), data.get("status")
        )
        return False

    async def _past_due(self, data: Dict[str, Any]) -> bool:
        return await self._set_state(data, SubscriptionStatus.PAST_DUE, Plan.FREE)

    async def _cancelled(self, data: Dict[str, Any]) -> bool:
        return await self._set_state(data, SubscriptionStatus.CANCELLED, Plan.FREE)

    async def _paused(self, data: Dict[str, Any]) -> bool:
        return await self._set_state(data, SubscriptionStatus.PAUSED, Plan.FREE)

    async def _resumed(self, data: Dict[str, Any]) -> bool:
        return await self._set_state(data, SubscriptionStatus.ACTIVE, Plan.PRO)

    async def _apply_plan_change(self, user_name: str, previous: Plan, current: Plan) -> None:
        if self.change_action == CHANGE_KEEP:
            return
        logger.info(
            "Plan change %s -> %s for %s, applying %s",
            previous.value, current.value, user_name, self.change_action,
        )
        if self.change_action == CHANGE_RESET_USAGE:
            values = {"count": 0, "last_reset_date": _utc_today()}
        elif self.change_action == CHANGE_REVOKE_KEY:
            values = {"api_key": None}
        else:
            raise ValueError(f"Unknown subscription change action: {self.change_action}")
        await self.session.execute(
            update(APIKeyRecord)
            .where(APIKeyRecord.name == user_name)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
