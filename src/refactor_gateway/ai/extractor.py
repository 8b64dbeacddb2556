"""Recover one JSON document from free-form LLM output.

Candidate finders are tried in order; the first candidate that parses wins.
If none parses, each failed candidate is repaired (trimmed to its outermost
braces, trailing commas dropped) and retried in the same order.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200

_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_TRAILING_COMMA_OBJECT = re.compile(r",\s*}")
_TRAILING_COMMA_ARRAY = re.compile(r",\s*]")


class ExtractionError(Exception):
    """Raised when no candidate or repaired text parses as a JSON object."""

    def __init__(
        self,
        message: str,
        original_error: str,
        repair_error: Optional[str],
        preview: str,
    ):
        self.original_error = original_error
        self.repair_error = repair_error
        self.preview = preview
        super().__init__(message)

    def to_details(self) -> Dict[str, Any]:
        return {
            "originalError": self.original_error,
            "fallbackError": self.repair_error,
            "responsePreview": self.preview,
            "suggestion": (
                "The AI response format was unexpected. This might be a "
                "temporary issue. Please try again."
            ),
        }


def json_fence_candidate(text: str) -> Optional[str]:
    """Interior of the first ```json fenced block."""
    match = _JSON_FENCE.search(text)
    if match:
        return match.group(1).strip() or None
    return None


def brace_span_candidate(text: str) -> Optional[str]:
    """Span from the first ``{`` to the last ``}``."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def stripped_candidate(text: str) -> Optional[str]:
    """Whole text with anything before the first ``{`` and after the last ``}`` removed."""
    start = text.find("{")
    if start == -1:
        return None
    cleaned = text[start:]
    end = cleaned.rfind("}")
    if end == -1:
        return None
    cleaned = cleaned[:end + 1].strip()
    if cleaned.startswith("{") and cleaned.endswith("}"):
        return cleaned
    return None


CANDIDATE_FINDERS: List[Callable[[str], Optional[str]]] = [
    json_fence_candidate,
    brace_span_candidate,
    stripped_candidate,
]


def repair_json(text: str) -> str:
    """Trim to the outermost braces and drop trailing commas."""
    candidate = stripped_candidate(text) or text
    candidate = _TRAILING_COMMA_OBJECT.sub("}", candidate)
    candidate = _TRAILING_COMMA_ARRAY.sub("]", candidate)
    return candidate.strip()


def _preview(text: str) -> str:
    if len(text) <= PREVIEW_LENGTH:
        return text
    return text[:PREVIEW_LENGTH] + "..."


def _candidates(raw_text: str) -> List[str]:
    """Distinct candidate spans in finder order."""
    found: List[str] = []
    for finder in CANDIDATE_FINDERS:
        candidate = finder(raw_text)
        if candidate is not None and candidate not in found:
            found.append(candidate)
    return found


def extract(raw_text: str) -> Dict[str, Any]:
    """Parse the JSON object embedded in *raw_text*.

    Raises ``ExtractionError`` with a bounded preview when nothing parses.
    A missing or non-list ``files`` key is coerced to an empty list.
    """
    raw_text = raw_text or ""
    candidates = _candidates(raw_text)
    if not candidates:
        raise ExtractionError(
            "Failed to parse AI response as JSON",
            original_error="No JSON content found in AI response",
            repair_error=None,
            preview=_preview(raw_text),
        )

    parsed: Any = None
    found = False
    original_error: Optional[str] = None
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
            found = True
            break
        except json.JSONDecodeError as exc:
            if original_error is None:
                original_error = str(exc)
            logger.debug("Candidate failed to parse: %s", exc)

    repair_error: Optional[str] = None
    if not found:
        for candidate in candidates:
            try:
                parsed = json.loads(repair_json(candidate))
                found = True
                break
            except json.JSONDecodeError as exc:
                if repair_error is None:
                    repair_error = str(exc)

    if not found:
        logger.warning("AI response could not be parsed even after repair: %s", repair_error)
        raise ExtractionError(
            "Failed to parse AI response as JSON",
            original_error=original_error,
            repair_error=repair_error,
            preview=_preview(raw_text),
        )

    if not isinstance(parsed, dict):
        raise ExtractionError(
            "Invalid response structure from AI",
            original_error=f"Expected JSON object but got: {type(parsed).__name__}",
            repair_error=None,
            preview=_preview(raw_text),
        )

    if not isinstance(parsed.get("files"), list):
        logger.warning("AI response missing files array, using an empty list")
        parsed["files"] = []

    return parsed
