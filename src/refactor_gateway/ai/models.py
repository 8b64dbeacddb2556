"""Static binding of logical model names to upstream providers."""

import enum
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..config import Settings


class Provider(str, enum.Enum):
    OPENROUTER = "openrouter"
    GEMINI = "gemini"


class ModelTier(str, enum.Enum):
    """Premium models are pro-only; aggregator models are routed via OpenRouter."""

    PREMIUM = "premium"
    AGGREGATOR = "aggregator"


@dataclass(frozen=True)
class ModelBinding:
    name: str
    provider: Provider
    upstream_model: str
    tier: ModelTier
    failover: bool = False


class ModelTable:
    """Lookup table of supported models, in declaration order."""

    def __init__(self, bindings: List[ModelBinding]):
        self._bindings: Dict[str, ModelBinding] = {b.name: b for b in bindings}

    def get(self, name: str) -> Optional[ModelBinding]:
        return self._bindings.get(name)

    def names(self) -> List[str]:
        return list(self._bindings)

    def names_for_tier(self, tier: ModelTier) -> List[str]:
        return [b.name for b in self._bindings.values() if b.tier == tier]

    def __contains__(self, name: str) -> bool:
        return name in self._bindings


def default_model_table(settings: Settings) -> ModelTable:
    """Build the model table; the premium model name comes from settings."""
    return ModelTable([
        ModelBinding(
            name=settings.premium_model_name,
            provider=Provider.GEMINI,
            upstream_model=settings.premium_model_name,
            tier=ModelTier.PREMIUM,
        ),
        ModelBinding(
            name="deepseek-r1-free",
            provider=Provider.OPENROUTER,
            upstream_model="deepseek/deepseek-r1:free",
            tier=ModelTier.AGGREGATOR,
            failover=True,
        ),
        ModelBinding(
            name="qwen3-coder-free",
            provider=Provider.OPENROUTER,
            upstream_model="qwen/qwen3-coder:free",
            tier=ModelTier.AGGREGATOR,
            failover=True,
        ),
    ])
