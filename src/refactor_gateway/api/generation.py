"""Streaming generation endpoints.

The body is read as raw JSON and handed to the orchestrator untouched, so
field validation failures are reported as SSE ``error`` events after
``connected`` rather than as HTTP errors.
"""

import json
import logging
from typing import Any, AsyncIterator, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from ..pipeline import events
from ..pipeline.orchestrator import GenerationOrchestrator
from .dependencies import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


async def _read_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        # Left for the orchestrator to reject inside the stream.
        return None


def _event_stream(generator: Callable[[Any], AsyncIterator[str]], payload: Any) -> StreamingResponse:
    return StreamingResponse(
        generator(payload),
        media_type="text/event-stream",
        headers=events.SSE_HEADERS,
    )


@router.post("/process-code")
async def process_code(
    request: Request,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Rewrite every submitted file."""
    return _event_stream(orchestrator.rewrite, await _read_body(request))


@router.post("/generate-custom")
async def generate_custom(
    request: Request,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Apply free-form user instructions to the submitted files."""
    return _event_stream(orchestrator.custom_generate, await _read_body(request))


@router.post("/optimize-files")
async def optimize_files(
    request: Request,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Performance-optimize the submitted files."""
    return _event_stream(orchestrator.optimize, await _read_body(request))
