"""Server-sent event framing for the generation endpoints.

Every event is one ``data: <json>\\n\\n`` frame whose object carries ``type``
and an ISO-8601 ``timestamp``.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

CONNECTED = "connected"
STATUS = "status"
CHUNK = "chunk"
FINAL = "final"
COMPLETE = "complete"
ERROR = "error"
END = "end"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def sse_event(event_type: str, **fields: Any) -> str:
    payload: Dict[str, Any] = {"type": event_type}
    payload.update({k: v for k, v in fields.items() if v is not None})
    payload["timestamp"] = _timestamp()
    return f"data: {json.dumps(payload, default=str)}\n\n"


def connected() -> str:
    return sse_event(CONNECTED, message="Connected to stream")


def status(message: str) -> str:
    return sse_event(STATUS, message=message)


def chunk(content: str) -> str:
    return sse_event(CHUNK, content=content)


def final(data: Dict[str, Any], metadata: Dict[str, Any]) -> str:
    return sse_event(FINAL, success=True, data=data, metadata=metadata)


def complete() -> str:
    return sse_event(COMPLETE, message="Processing complete")


def error(message: str, data: Optional[Dict[str, Any]] = None, details: Optional[Any] = None) -> str:
    return sse_event(ERROR, error=message, data=data, details=details)


def end() -> str:
    return sse_event(END)


def parse_event(frame: str) -> Dict[str, Any]:
    """Decode one rendered frame back into its payload."""
    line = frame.strip()
    if not line.startswith("data:"):
        raise ValueError(f"Not an SSE data frame: {frame!r}")
    return json.loads(line[len("data:"):].strip())
