"""Streaming generation pipeline.

One async generator per operation. Each request moves through the stages of
``RequestStage`` in order; once ``connected`` has been written every failure
is reported as an ``error`` event followed by ``end``.
"""

import enum
import logging
import time
import traceback
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from pydantic import ValidationError as SchemaValidationError

from ..ai.dispatcher import AIDispatcher
from ..ai.exceptions import UpstreamError
from ..ai.extractor import ExtractionError, extract
from ..ai.prompts import build_custom_prompt, build_optimize_prompt, build_rewrite_prompt
from ..ai.streaming import TextAccumulator, accumulate
from ..config import Settings
from ..errors import AuthError, GatewayError, PolicyDenied, ValidationError
from ..observability.logging import clear_log_context, set_log_context
from ..security.model_policy import evaluate
from ..usage.limiter import UsageLimiter, UsageResult
from ..usage.store import CredentialRecord, CredentialStore
from . import events
from .requests import GenerationRequest

logger = logging.getLogger(__name__)


class Operation(str, enum.Enum):
    REWRITE = "rewrite"
    CUSTOM = "custom-generate"
    OPTIMIZE = "optimize"


class RequestStage(str, enum.Enum):
    RECEIVED = "received"
    STREAM_OPENED = "stream-opened"
    AUTHENTICATED = "authenticated"
    POLICY_CHECKED = "policy-checked"
    QUOTA_CHECKED = "quota-checked"
    PROMPT_BUILT = "prompt-built"
    AI_INVOKED = "ai-invoked"
    EXTRACTED = "extracted"
    FINAL_EMITTED = "final-emitted"
    STREAM_CLOSED = "stream-closed"


@dataclass
class _RequestState:
    request_id: str
    operation: Operation
    started: float
    stage: RequestStage = RequestStage.RECEIVED

    def advance(self, stage: RequestStage) -> None:
        self.stage = stage
        logger.debug("%s request %s -> %s", self.operation.value, self.request_id, stage.value)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class GenerationOrchestrator:
    """Runs the authenticate, gate, meter, prompt, invoke and extract sequence."""

    def __init__(
        self,
        store: CredentialStore,
        limiter: UsageLimiter,
        dispatcher: AIDispatcher,
        settings: Settings,
    ):
        self.store = store
        self.limiter = limiter
        self.dispatcher = dispatcher
        self.settings = settings

    def rewrite(self, payload: Any) -> AsyncIterator[str]:
        return self._run(Operation.REWRITE, payload)

    def custom_generate(self, payload: Any) -> AsyncIterator[str]:
        return self._run(Operation.CUSTOM, payload)

    def optimize(self, payload: Any) -> AsyncIterator[str]:
        return self._run(Operation.OPTIMIZE, payload)

    async def _run(self, operation: Operation, payload: Any) -> AsyncIterator[str]:
        state = _RequestState(
            request_id=uuid.uuid4().hex[:12],
            operation=operation,
            started=time.monotonic(),
        )
        set_log_context(request_id=state.request_id)
        try:
            yield events.connected()
            state.advance(RequestStage.STREAM_OPENED)
            try:
                async for frame in self._pipeline(state, payload):
                    yield frame
            except GatewayError as exc:
                logger.info(
                    "%s request failed at %s: %s", operation.value, state.stage.value, exc.message
                )
                yield events.error(exc.message, data=exc.data, details=exc.details)
            except ExtractionError as exc:
                logger.warning("Could not extract JSON from AI response: %s", exc.original_error)
                yield events.error(str(exc), details=exc.to_details())
            except UpstreamError as exc:
                logger.warning(
                    "Upstream failure during %s (status=%s): %s",
                    operation.value, exc.status_code, exc,
                )
                yield events.error(str(exc), details=self._debug_details(exc))
            except Exception as exc:
                logger.exception("Unexpected error in %s request", operation.value)
                yield events.error("Internal server error", details=self._debug_details(exc))
            yield events.end()
        finally:
            state.advance(RequestStage.STREAM_CLOSED)
            logger.info(
                "%s request finished at %s in %.2fs",
                operation.value, state.stage.value, time.monotonic() - state.started,
            )
            clear_log_context()

    async def _pipeline(self, state: _RequestState, payload: Any) -> AsyncIterator[str]:
        request = self._validate(state.operation, payload)

        yield events.status("Validating API key...")
        record = await self.store.find_by_secret(request.api_key.strip())
        if record is None:
            raise AuthError("Invalid API key")
        set_log_context(api_user=record.name)
        state.advance(RequestStage.AUTHENTICATED)

        policy = evaluate(
            record.plan,
            request.selected_model,
            request.upstream_key,
            self.dispatcher.model_table,
            pro_aggregator_policy=self.settings.pro_aggregator_policy,
            premium_model=self.settings.premium_model_name,
        )
        if not policy.allowed:
            raise PolicyDenied(policy.reason)
        model = policy.model
        set_log_context(model=model)
        state.advance(RequestStage.POLICY_CHECKED)

        yield events.status("Checking usage limits...")
        usage = await self.limiter.check_and_increment(record)
        usage.raise_for_denial()
        state.advance(RequestStage.QUOTA_CHECKED)

        yield events.status("Creating prompt...")
        prompt = self._build_prompt(state.operation, request)
        state.advance(RequestStage.PROMPT_BUILT)

        yield events.status("Starting AI processing with streaming...")
        accumulator = TextAccumulator()
        fragments = self.dispatcher.stream(prompt, model, record.plan, request.upstream_key)
        async for fragment in accumulate(fragments, accumulator):
            yield events.chunk(fragment.text)
        state.advance(RequestStage.AI_INVOKED)

        parsed = extract(accumulator.text)
        state.advance(RequestStage.EXTRACTED)

        data, metadata = self._final_payload(state.operation, request, record, usage, parsed, model)
        yield events.final(data, metadata)
        state.advance(RequestStage.FINAL_EMITTED)
        yield events.complete()

    @staticmethod
    def _validate(operation: Operation, payload: Any) -> GenerationRequest:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid request body")
        try:
            request = GenerationRequest.model_validate(payload)
        except SchemaValidationError as exc:
            raise ValidationError(
                "Invalid request body",
                details=exc.errors(include_url=False, include_context=False, include_input=False),
            ) from exc

        if not request.api_key or not request.api_key.strip():
            raise ValidationError("API key is required and must be a valid string")
        if not request.selected_model:
            raise ValidationError("selectedModel is required and must be a valid string")

        if operation == Operation.CUSTOM:
            if not request.user_prompt or not request.user_prompt.strip():
                raise ValidationError("Invalid input: userPrompt is required and cannot be empty")
            if request.files is None:
                request.files = []
        elif not request.files:
            raise ValidationError("Invalid input: files array is required and cannot be empty")

        if operation == Operation.REWRITE and request.package_json is None:
            raise ValidationError("Invalid input: packageJson is required and must be an object")

        for entry in request.files:
            if not isinstance(entry.get("path"), str) or not entry["path"]:
                raise ValidationError("Invalid input: every file needs a non-empty path")
        return request

    @staticmethod
    def _build_prompt(operation: Operation, request: GenerationRequest) -> str:
        project_type = request.project_type or "Unknown"
        if operation == Operation.REWRITE:
            return build_rewrite_prompt(
                project_type,
                request.files,
                request.project_language,
                request.package_json,
                request.all_files_metadata,
            )
        if operation == Operation.CUSTOM:
            return build_custom_prompt(
                request.user_prompt,
                request.files,
                request.project_language,
                project_type,
                request.all_files_metadata,
            )
        return build_optimize_prompt(
            request.files, request.project_language, project_type, request.package_json
        )

    @staticmethod
    def _final_payload(
        operation: Operation,
        request: GenerationRequest,
        record: CredentialRecord,
        usage: UsageResult,
        parsed: Dict[str, Any],
        model: str,
    ):
        data = dict(parsed)
        if operation == Operation.CUSTOM:
            data["usage"] = usage.to_usage()
            metadata = {
                "userPrompt": request.user_prompt,
                "projectLanguage": request.project_language,
                "processingTime": _iso_now(),
                "apiKeyUser": record.name,
                "selectedModel": model,
            }
            return data, metadata

        mode_key = "replacementMode" if operation == Operation.REWRITE else "optimizationMode"
        data[mode_key] = True
        data["originalFilesProcessed"] = len(request.files)
        data["usage"] = usage.to_usage()
        metadata = {
            "originalProjectType": request.project_type,
            "originalTotalFiles": request.total_files,
            "originalTotalWords": request.total_words,
            "projectLanguage": request.project_language,
            "processingTime": _iso_now(),
            mode_key: True,
            "apiKeyUser": record.name,
            "selectedModel": model,
        }
        return data, metadata

    def _debug_details(self, exc: Exception) -> Optional[str]:
        if not self.settings.debug:
            return None
        return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
