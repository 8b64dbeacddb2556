"""Unit tests for the model access policy.

``evaluate()`` is a pure function of plan, model, caller key and the model
table, so every case is checked without I/O.
"""

import pytest

from refactor_gateway.ai.models import default_model_table
from refactor_gateway.models.user import Plan
from refactor_gateway.security.model_policy import evaluate

PREMIUM = "gemini-2.5-pro"
FREE_MODEL = "deepseek-r1-free"


@pytest.fixture
def table(settings):
    return default_model_table(settings)


class TestUnknownModel:
    def test_unknown_model_denied_with_supported_list(self, table):
        result = evaluate(Plan.PRO, "gpt-9", None, table)
        assert result.allowed is False
        assert "gpt-9" in result.reason
        for name in table.names():
            assert name in result.reason


class TestPremiumModel:
    def test_free_plan_denied(self, table):
        result = evaluate(Plan.FREE, PREMIUM, "sk-or-caller", table)
        assert result.allowed is False
        assert "Pro plan" in result.reason
        assert FREE_MODEL in result.reason

    def test_pro_plan_allowed(self, table):
        result = evaluate(Plan.PRO, PREMIUM, None, table)
        assert result.allowed is True
        assert result.model == PREMIUM
        assert result.requires_caller_key is False


class TestAggregatorModelFreePlan:
    def test_without_caller_key_denied_with_distinct_reason(self, table):
        result = evaluate(Plan.FREE, FREE_MODEL, None, table)
        assert result.allowed is False
        assert result.requires_caller_key is True
        assert "OpenRouter API key" in result.reason

    def test_blank_caller_key_counts_as_missing(self, table):
        assert evaluate(Plan.FREE, FREE_MODEL, "   ", table).allowed is False

    def test_with_caller_key_allowed(self, table):
        result = evaluate(Plan.FREE, FREE_MODEL, "sk-or-caller", table)
        assert result.allowed is True
        assert result.requires_caller_key is True
        assert result.model == FREE_MODEL

    def test_reason_differs_from_wrong_plan(self, table):
        missing_key = evaluate(Plan.FREE, FREE_MODEL, None, table)
        wrong_plan = evaluate(Plan.FREE, PREMIUM, None, table)
        assert missing_key.reason != wrong_plan.reason


class TestAggregatorModelProPlan:
    def test_allow_policy(self, table):
        result = evaluate(Plan.PRO, FREE_MODEL, None, table, pro_aggregator_policy="allow")
        assert result.allowed is True
        assert result.model == FREE_MODEL
        assert result.requires_caller_key is False

    def test_redirect_policy(self, table):
        result = evaluate(
            Plan.PRO, FREE_MODEL, None, table,
            pro_aggregator_policy="redirect", premium_model=PREMIUM,
        )
        assert result.allowed is True
        assert result.model == PREMIUM

    def test_deny_policy_names_premium_model(self, table):
        result = evaluate(
            Plan.PRO, FREE_MODEL, None, table,
            pro_aggregator_policy="deny", premium_model=PREMIUM,
        )
        assert result.allowed is False
        assert PREMIUM in result.reason

    def test_redirect_defaults_to_table_premium(self, table):
        result = evaluate(Plan.PRO, FREE_MODEL, None, table, pro_aggregator_policy="redirect")
        assert result.model == PREMIUM
