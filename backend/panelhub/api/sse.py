"""Server-sent event framing shared by the streaming routes."""

from __future__ import annotations

import json
from typing import Any

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_frame(data: Any, event: str | None = None) -> str:
    """One ``data:`` frame, optionally tagged with an ``event:`` line."""
    body = f"data: {json.dumps(data)}\n\n"
    if event:
        return f"event: {event}\n{body}"
    return body
