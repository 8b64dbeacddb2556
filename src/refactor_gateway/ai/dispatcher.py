"""Routes prompts to LLM backends with multi-credential failover.

For aggregator-routed models the dispatcher walks an ordered credential
chain: the caller's own key(s) first, then (pro plan only) the service's
pool. A rate-limit failure moves to the next credential and restarts the
fragment stream; any other failure is raised immediately.
"""

import inspect
import logging
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Union

import httpx

from ..config import Settings
from ..errors import PolicyDenied
from ..models.user import Plan
from .backends import StreamingBackend, build_backends
from .exceptions import (
    UnsupportedModelError,
    UpstreamError,
    UpstreamExhaustedError,
    UpstreamFatalError,
    UpstreamRateLimitError,
)
from .models import ModelBinding, ModelTable, ModelTier, default_model_table
from .streaming import StreamFragment, TextAccumulator, accumulate

logger = logging.getLogger(__name__)

CallerKey = Union[str, Sequence[str], None]
ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]


def _normalize_keys(keys: CallerKey) -> List[str]:
    if keys is None:
        return []
    if isinstance(keys, str):
        keys = [keys]
    return [k.strip() for k in keys if k and k.strip()]


class AIDispatcher:
    """Resolves a logical model to a backend and streams its output."""

    def __init__(
        self,
        backends: Dict,
        model_table: ModelTable,
        service_keys: Optional[List[str]] = None,
        premium_key: Optional[str] = None,
    ):
        self._backends: Dict = backends
        self.model_table = model_table
        self._service_keys = list(service_keys or [])
        self._premium_key = premium_key

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> "AIDispatcher":
        return cls(
            backends=build_backends(client, settings),
            model_table=default_model_table(settings),
            service_keys=settings.get_openrouter_api_keys(),
            premium_key=settings.gemini_api_key,
        )

    def resolve(self, model: str) -> ModelBinding:
        binding = self.model_table.get(model)
        if binding is None:
            raise UnsupportedModelError(model, self.model_table.names())
        return binding

    def credential_chain(
        self, binding: ModelBinding, plan: Plan, caller_key: CallerKey = None
    ) -> List[str]:
        """Ordered credentials to try for *binding*.

        Re-checks the plan/model rules; the orchestrator has already gated the
        request, so a violation here means a caller bypassed the policy.
        """
        if binding.tier == ModelTier.PREMIUM:
            if plan != Plan.PRO:
                raise PolicyDenied(f"Model '{binding.name}' requires the Pro plan")
            if not self._premium_key:
                raise UpstreamFatalError(
                    f"No upstream credential configured for model '{binding.name}'",
                    provider=binding.provider.value,
                )
            return [self._premium_key]

        chain = _normalize_keys(caller_key)
        if plan == Plan.PRO:
            chain.extend(self._service_keys)
        elif not chain:
            raise PolicyDenied(
                f"Model '{binding.name}' requires your own OpenRouter API key on the free plan"
            )

        # Preserve order, drop duplicates.
        chain = list(dict.fromkeys(chain))
        if not chain:
            raise UpstreamFatalError(
                f"No upstream credential configured for model '{binding.name}'",
                provider=binding.provider.value,
            )
        if not binding.failover:
            chain = chain[:1]
        return chain

    async def stream(
        self,
        prompt: str,
        model: str,
        plan: Plan,
        caller_key: CallerKey = None,
    ) -> AsyncIterator[StreamFragment]:
        """Yield fragments from the first credential that is not rate limited.

        Each attempt opens with an empty fragment so consumers can drop
        whatever an abandoned attempt produced before its first new text.
        """
        binding = self.resolve(model)
        chain = self.credential_chain(binding, plan, caller_key)
        backend: StreamingBackend = self._backends[binding.provider]

        last_error: Optional[UpstreamError] = None
        for attempt, api_key in enumerate(chain, start=1):
            logger.info(
                "Invoking %s model %s (attempt %d/%d)",
                binding.provider.value, binding.upstream_model, attempt, len(chain),
            )
            yield StreamFragment(text="", attempt=attempt)
            try:
                async for text in backend.stream(prompt, binding.upstream_model, api_key):
                    yield StreamFragment(text=text, attempt=attempt)
                return
            except UpstreamRateLimitError as exc:
                last_error = exc
                logger.warning(
                    "Upstream credential %d/%d rate limited for %s: %s",
                    attempt, len(chain), binding.name, exc,
                )

        raise UpstreamExhaustedError(len(chain), last_error)

    async def invoke(
        self,
        prompt: str,
        model: str,
        plan: Plan,
        caller_key: CallerKey = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> str:
        """Stream to *on_chunk* and return the full text of the successful attempt."""
        accumulator = TextAccumulator()
        async for fragment in accumulate(self.stream(prompt, model, plan, caller_key), accumulator):
            if on_chunk is not None:
                result = on_chunk(fragment.text)
                if inspect.isawaitable(result):
                    await result
        return accumulator.text
