"""FastAPI dependencies wiring the store, limiter, dispatcher and payment client."""

from fastapi import Depends, Request

from ..ai.dispatcher import AIDispatcher
from ..billing.paddle import PaddleClient
from ..config import Settings, get_settings
from ..database.connection import db_manager
from ..errors import InfrastructureError
from ..pipeline.orchestrator import GenerationOrchestrator
from ..usage.limiter import UsageLimiter
from ..usage.store import CredentialStore, SQLCredentialStore


def get_credential_store() -> CredentialStore:
    if db_manager.session_factory is None:
        db_manager.initialize()
    return SQLCredentialStore(db_manager.session_factory)


def get_usage_limiter(store: CredentialStore = Depends(get_credential_store)) -> UsageLimiter:
    return UsageLimiter(store)


def get_dispatcher(request: Request) -> AIDispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise InfrastructureError()
    return dispatcher


def get_paddle_client(request: Request, settings: Settings = Depends(get_settings)) -> PaddleClient:
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        raise InfrastructureError()
    return PaddleClient.from_settings(client, settings)


def get_orchestrator(
    store: CredentialStore = Depends(get_credential_store),
    limiter: UsageLimiter = Depends(get_usage_limiter),
    dispatcher: AIDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
) -> GenerationOrchestrator:
    return GenerationOrchestrator(store, limiter, dispatcher, settings)
