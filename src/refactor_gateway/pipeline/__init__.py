"""Streaming generation pipeline and its SSE event framing."""

from .orchestrator import GenerationOrchestrator, Operation, RequestStage
from .requests import GenerationRequest

__all__ = ["GenerationOrchestrator", "Operation", "RequestStage", "GenerationRequest"]
