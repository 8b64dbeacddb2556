"""Model access policy: which plan may use which model, and on whose credential.

``evaluate()`` is a pure function: zero I/O. The orchestrator calls it after
authentication and before the usage counter is touched, so a denied model
never consumes quota.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..ai.models import ModelTable, ModelTier
from ..models.user import Plan

logger = logging.getLogger(__name__)

PRO_AGGREGATOR_ALLOW = "allow"
PRO_AGGREGATOR_REDIRECT = "redirect"
PRO_AGGREGATOR_DENY = "deny"


@dataclass(frozen=True, slots=True)
class PolicyResult:
    """Result of evaluating a model request against the plan rules.

    ``model`` is the model that will actually be invoked; it differs from the
    requested one only when a pro request is redirected to the premium model.
    """

    allowed: bool
    reason: str
    model: str
    requires_caller_key: bool = False


def evaluate(
    plan: Plan,
    requested_model: str,
    caller_upstream_key: Optional[str],
    table: ModelTable,
    pro_aggregator_policy: str = PRO_AGGREGATOR_ALLOW,
    premium_model: Optional[str] = None,
) -> PolicyResult:
    """Decide whether *plan* may invoke *requested_model*."""
    binding = table.get(requested_model)
    if binding is None:
        supported = ", ".join(table.names())
        return PolicyResult(
            allowed=False,
            reason=f"Unsupported model '{requested_model}'. Supported models: {supported}",
            model=requested_model,
        )

    if binding.tier == ModelTier.PREMIUM:
        if plan == Plan.PRO:
            return PolicyResult(allowed=True, reason="", model=binding.name)
        free_models = ", ".join(table.names_for_tier(ModelTier.AGGREGATOR))
        return PolicyResult(
            allowed=False,
            reason=(
                f"Model '{binding.name}' is only available on the Pro plan. "
                f"Free plan models: {free_models}"
            ),
            model=binding.name,
        )

    # Aggregator tier
    if plan == Plan.FREE:
        if caller_upstream_key and caller_upstream_key.strip():
            return PolicyResult(
                allowed=True, reason="", model=binding.name, requires_caller_key=True
            )
        return PolicyResult(
            allowed=False,
            reason=(
                f"Model '{binding.name}' requires your own OpenRouter API key on the "
                "free plan. Add it in the extension settings and try again."
            ),
            model=binding.name,
            requires_caller_key=True,
        )

    premium = premium_model or next(iter(table.names_for_tier(ModelTier.PREMIUM)), None)
    if pro_aggregator_policy == PRO_AGGREGATOR_REDIRECT and premium:
        logger.info("Redirecting pro request for %s to %s", binding.name, premium)
        return PolicyResult(allowed=True, reason="", model=premium)
    if pro_aggregator_policy == PRO_AGGREGATOR_DENY:
        return PolicyResult(
            allowed=False,
            reason=f"Pro plan requests must use the '{premium}' model",
            model=binding.name,
        )
    return PolicyResult(allowed=True, reason="", model=binding.name)
