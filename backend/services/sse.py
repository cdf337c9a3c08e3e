"""Server-Sent Events framing.

Frame grammar on the chat stream:
    data: <line>\\n ... \\n        one data line per line of the token
    event: meta\\ndata: <json>\\n\\n
    data: [DONE]\\n\\n
"""

import json
from typing import Any

DONE_FRAME = "data: [DONE]\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def data_frame(text: str) -> str:
    """Encode text as a data frame; embedded newlines become extra data lines."""
    lines = text.split("\n")
    return "".join(f"data: {line}\n" for line in lines) + "\n"


def meta_frame(payload: dict[str, Any]) -> str:
    return f"event: meta\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


def comment_frame(comment: str) -> str:
    """SSE comment line; clients ignore it, logs and proxies keep it."""
    return f": {comment}\n\n"


def parse_frames(body: str) -> list[dict[str, Any]]:
    """Split an SSE body into frames of ``{"event", "data", "comment"}``.

    Used by the CLI to render a stream and by tests to inspect one.
    """
    frames = []
    for block in body.split("\n\n"):
        if not block:
            continue
        event = None
        data_lines = []
        comments = []
        for line in block.split("\n"):
            if line.startswith(":"):
                comments.append(line[1:].strip())
            elif line.startswith("event:"):
                event = line[len("event:"):].strip()
            elif line.startswith("data:"):
                value = line[len("data:"):]
                data_lines.append(value[1:] if value.startswith(" ") else value)
        frames.append({
            "event": event,
            "data": "\n".join(data_lines) if data_lines else None,
            "comment": " ".join(comments) if comments else None,
        })
    return frames
