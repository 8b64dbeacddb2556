"""Test configuration and fixtures."""

import asyncio
import os
from datetime import date
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

# Set test environment variables BEFORE importing the app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["OPENROUTER_API_KEYS"] = "svc-key-1,svc-key-2"
os.environ["GEMINI_API_KEY"] = "gemini-test-key"
os.environ["PADDLE_WEBHOOK_SECRET"] = "pdl_ntfset_test_secret"
os.environ["PADDLE_API_KEY"] = "pdl_test_api_key"
os.environ["PADDLE_PRICE_ID"] = "pri_test_123"

from refactor_gateway.ai.dispatcher import AIDispatcher
from refactor_gateway.ai.models import Provider, default_model_table
from refactor_gateway.api.dependencies import get_dispatcher
from refactor_gateway.config import Settings, get_settings
from refactor_gateway.main import create_app
from refactor_gateway.models.user import Plan
from refactor_gateway.security.auth import hash_api_key, verify_api_key
from refactor_gateway.usage.store import (
    CredentialRecord,
    CredentialStore,
    IncrementResult,
    effective_count,
)


VALID_AI_RESPONSE = [
    "```json\n{\"files\": [{\"path\": \"src/app.js\", ",
    "\"content\": \"export const app = 1;\", \"isNew\": false}], ",
    "\"changes_summary\": \"Cleaned up\", \"secrets\": {}}\n```",
]


class ScriptedBackend:
    """Provider backend that replays scripted fragments per upstream key.

    A script item that is an exception is raised at that point in the stream.
    """

    def __init__(self, scripts: Optional[Dict[str, list]] = None, default: Optional[list] = None):
        self.scripts = scripts or {}
        self.default = default if default is not None else list(VALID_AI_RESPONSE)
        self.calls: List[dict] = []

    async def stream(self, prompt: str, upstream_model: str, api_key: str):
        self.calls.append({"prompt": prompt, "model": upstream_model, "api_key": api_key})
        for item in self.scripts.get(api_key, self.default):
            if isinstance(item, BaseException):
                raise item
            yield item


class InMemoryCredentialStore(CredentialStore):
    """Dict-backed store whose increment is atomic within the event loop."""

    def __init__(self, limits: Optional[Dict[Plan, int]] = None):
        self.limits = limits or {Plan.FREE: 3, Plan.PRO: 100}
        self.records: Dict[str, CredentialRecord] = {}
        self.increment_calls = 0

    def add(
        self,
        name: str,
        secret: Optional[str],
        plan: Plan = Plan.FREE,
        count: int = 0,
        last_reset_date: Optional[date] = None,
    ) -> CredentialRecord:
        record = CredentialRecord(
            name=name,
            hashed_secret=hash_api_key(secret) if secret else None,
            plan=plan,
            usage_count=count,
            last_reset_date=last_reset_date or date.today(),
        )
        self.records[name] = record
        return record

    async def find_by_secret(self, plaintext: str) -> Optional[CredentialRecord]:
        for record in self.records.values():
            if record.hashed_secret and verify_api_key(plaintext, record.hashed_secret):
                return record
        return None

    async def get_plan_limit(self, plan: Plan) -> int:
        return self.limits[plan]

    async def increment_usage(self, name: str, plan: Plan, limit: int, today: date) -> IncrementResult:
        self.increment_calls += 1
        # Yield so concurrent callers interleave before the check-and-set below.
        await asyncio.sleep(0)
        record = self.records.get(name)
        if record is None:
            return IncrementResult(False, 0, limit, 0, "API key record not found")
        current = effective_count(plan, record.usage_count, record.last_reset_date, today)
        if current >= limit:
            return IncrementResult(False, current, limit, 0, "Usage limit reached")
        self.records[name] = CredentialRecord(
            name=record.name,
            hashed_secret=record.hashed_secret,
            plan=record.plan,
            usage_count=current + 1,
            last_reset_date=today,
        )
        return IncrementResult(True, current + 1, limit, limit - current - 1)


@pytest.fixture
def settings() -> Settings:
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def memory_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def backends() -> Dict[Provider, ScriptedBackend]:
    return {Provider.OPENROUTER: ScriptedBackend(), Provider.GEMINI: ScriptedBackend()}


@pytest.fixture
def dispatcher(backends, settings) -> AIDispatcher:
    return AIDispatcher(
        backends=backends,
        model_table=default_model_table(settings),
        service_keys=settings.get_openrouter_api_keys(),
        premium_key=settings.gemini_api_key,
    )


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the app at a fresh SQLite file for this test."""
    path = tmp_path / "gateway.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{path}")
    get_settings.cache_clear()
    yield path
    get_settings.cache_clear()


@pytest.fixture
def sync_engine(db_path):
    """Synchronous engine on the same file, for seeding and inspecting rows."""
    engine = create_engine(f"sqlite:///{db_path}")
    yield engine
    engine.dispose()


@pytest.fixture
def client(db_path, dispatcher) -> TestClient:
    """Test client running the full lifespan against a temporary database."""
    app = create_app()
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
