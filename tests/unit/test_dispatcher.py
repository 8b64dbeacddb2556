"""Tests for model dispatch and multi-credential failover."""

import pytest

from refactor_gateway.ai.dispatcher import AIDispatcher
from refactor_gateway.ai.exceptions import (
    UnsupportedModelError,
    UpstreamExhaustedError,
    UpstreamFatalError,
    UpstreamRateLimitError,
)
from refactor_gateway.ai.models import Provider, default_model_table
from refactor_gateway.ai.streaming import StreamFragment, TextAccumulator, accumulate
from refactor_gateway.errors import PolicyDenied
from refactor_gateway.models.user import Plan

FREE_MODEL = "deepseek-r1-free"
PREMIUM = "gemini-2.5-pro"


def _rate_limited():
    return UpstreamRateLimitError("openrouter rate limited: slow down", provider="openrouter")


async def _collect(stream):
    return [fragment async for fragment in stream]


class TestCredentialChain:
    def test_free_plan_uses_only_caller_key(self, dispatcher):
        binding = dispatcher.resolve(FREE_MODEL)
        assert dispatcher.credential_chain(binding, Plan.FREE, "sk-or-caller") == ["sk-or-caller"]

    def test_free_plan_without_key_denied(self, dispatcher):
        with pytest.raises(PolicyDenied):
            dispatcher.credential_chain(dispatcher.resolve(FREE_MODEL), Plan.FREE, None)

    def test_pro_plan_appends_service_pool(self, dispatcher):
        chain = dispatcher.credential_chain(dispatcher.resolve(FREE_MODEL), Plan.PRO, "sk-or-caller")
        assert chain == ["sk-or-caller", "svc-key-1", "svc-key-2"]

    def test_duplicates_removed(self, dispatcher):
        chain = dispatcher.credential_chain(dispatcher.resolve(FREE_MODEL), Plan.PRO, "svc-key-2")
        assert chain == ["svc-key-2", "svc-key-1"]

    def test_premium_requires_pro(self, dispatcher):
        with pytest.raises(PolicyDenied):
            dispatcher.credential_chain(dispatcher.resolve(PREMIUM), Plan.FREE, "sk-or-caller")

    def test_premium_uses_service_key(self, dispatcher):
        assert dispatcher.credential_chain(dispatcher.resolve(PREMIUM), Plan.PRO) == ["gemini-test-key"]

    def test_premium_without_key_is_fatal(self, backends, settings):
        dispatcher = AIDispatcher(backends, default_model_table(settings), premium_key=None)
        with pytest.raises(UpstreamFatalError):
            dispatcher.credential_chain(dispatcher.resolve(PREMIUM), Plan.PRO)

    def test_unknown_model(self, dispatcher):
        with pytest.raises(UnsupportedModelError) as exc_info:
            dispatcher.resolve("gpt-9")
        assert FREE_MODEL in str(exc_info.value)


class TestFailover:
    async def test_exhaustion_after_exactly_three_attempts(self, dispatcher, backends):
        openrouter = backends[Provider.OPENROUTER]
        openrouter.default = [_rate_limited()]

        with pytest.raises(UpstreamExhaustedError) as exc_info:
            await _collect(dispatcher.stream("p", FREE_MODEL, Plan.PRO, "sk-or-caller"))

        assert len(openrouter.calls) == 3
        assert [c["api_key"] for c in openrouter.calls] == ["sk-or-caller", "svc-key-1", "svc-key-2"]
        assert exc_info.value.attempts == 3
        assert "slow down" in str(exc_info.value)

    async def test_rate_limit_moves_to_next_key(self, dispatcher, backends):
        openrouter = backends[Provider.OPENROUTER]
        openrouter.scripts["sk-or-caller"] = ["stale ", _rate_limited()]
        openrouter.scripts["svc-key-1"] = ["fresh ", "text"]

        fragments = await _collect(dispatcher.stream("p", FREE_MODEL, Plan.PRO, "sk-or-caller"))

        assert [(f.text, f.attempt) for f in fragments] == [
            ("", 1), ("stale ", 1), ("", 2), ("fresh ", 2), ("text", 2),
        ]
        assert len(openrouter.calls) == 2

    async def test_fatal_error_is_not_retried(self, dispatcher, backends):
        openrouter = backends[Provider.OPENROUTER]
        openrouter.default = [UpstreamFatalError("bad request", status_code=400)]

        with pytest.raises(UpstreamFatalError):
            await _collect(dispatcher.stream("p", FREE_MODEL, Plan.PRO, "sk-or-caller"))

        assert len(openrouter.calls) == 1

    async def test_free_plan_never_touches_service_pool(self, dispatcher, backends):
        openrouter = backends[Provider.OPENROUTER]
        openrouter.default = [_rate_limited()]

        with pytest.raises(UpstreamExhaustedError):
            await _collect(dispatcher.stream("p", FREE_MODEL, Plan.FREE, "sk-or-caller"))

        assert [c["api_key"] for c in openrouter.calls] == ["sk-or-caller"]

    async def test_premium_routes_to_gemini(self, dispatcher, backends):
        backends[Provider.GEMINI].default = ["ok"]

        fragments = await _collect(dispatcher.stream("p", PREMIUM, Plan.PRO))

        assert [f.text for f in fragments] == ["", "ok"]
        assert backends[Provider.GEMINI].calls[0]["model"] == PREMIUM
        assert backends[Provider.OPENROUTER].calls == []


class TestInvoke:
    async def test_streams_and_accumulates(self, dispatcher, backends):
        backends[Provider.OPENROUTER].default = ["a", "b", "c"]
        chunks = []

        text = await dispatcher.invoke("p", FREE_MODEL, Plan.FREE, "sk-or-caller", chunks.append)

        assert chunks == ["a", "b", "c"]
        assert text == "abc"

    async def test_async_callback(self, dispatcher, backends):
        backends[Provider.OPENROUTER].default = ["x", "y"]
        chunks = []

        async def on_chunk(text):
            chunks.append(text)

        text = await dispatcher.invoke("p", FREE_MODEL, Plan.FREE, "sk-or-caller", on_chunk)

        assert chunks == ["x", "y"]
        assert text == "xy"

    async def test_result_excludes_abandoned_attempt(self, dispatcher, backends):
        openrouter = backends[Provider.OPENROUTER]
        openrouter.scripts["sk-or-caller"] = ["garbage", _rate_limited()]
        openrouter.scripts["svc-key-1"] = ["{}"]

        text = await dispatcher.invoke("p", FREE_MODEL, Plan.PRO, "sk-or-caller")

        assert text == "{}"

    async def test_silent_retry_discards_partial_text(self, dispatcher, backends):
        openrouter = backends[Provider.OPENROUTER]
        openrouter.scripts["sk-or-caller"] = ["PARTIAL", _rate_limited()]
        openrouter.scripts["svc-key-1"] = []
        chunks = []

        text = await dispatcher.invoke("p", FREE_MODEL, Plan.PRO, "sk-or-caller", chunks.append)

        assert text == ""
        assert chunks == ["PARTIAL"]
        assert len(openrouter.calls) == 2


class TestAccumulate:
    async def test_accumulator_resets_on_new_attempt(self):
        async def fragments():
            for fragment in [StreamFragment("a", 1), StreamFragment("b", 2), StreamFragment("c", 2)]:
                yield fragment

        accumulator = TextAccumulator()
        forwarded = [f.text async for f in accumulate(fragments(), accumulator)]

        assert forwarded == ["a", "b", "c"]
        assert accumulator.text == "bc"

    async def test_attempt_marker_resets_without_forwarding(self):
        async def fragments():
            for fragment in [
                StreamFragment("", 1), StreamFragment("a", 1), StreamFragment("", 2),
            ]:
                yield fragment

        accumulator = TextAccumulator()
        forwarded = [f.text async for f in accumulate(fragments(), accumulator)]

        assert forwarded == ["a"]
        assert accumulator.text == ""
        assert accumulator.attempt == 2
