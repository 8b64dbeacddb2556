"""LLM backends, dispatch, prompt templates, and response extraction."""

from .dispatcher import AIDispatcher
from .extractor import ExtractionError, extract
from .models import ModelBinding, ModelTable, ModelTier, Provider, default_model_table
from .streaming import StreamFragment, TextAccumulator, accumulate

__all__ = [
    "AIDispatcher",
    "ExtractionError",
    "extract",
    "ModelBinding",
    "ModelTable",
    "ModelTier",
    "Provider",
    "default_model_table",
    "StreamFragment",
    "TextAccumulator",
    "accumulate",
]
