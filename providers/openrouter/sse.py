"""Server-Sent-Events parsing and framing.

Parsing is kept free of caching and health concerns so it can be exercised
on its own.
"""

from __future__ import annotations

import json
from typing import Any, Optional

DONE = "[DONE]"
DONE_FRAME = f"data: {DONE}\n\n"


def format_sse(data: str) -> str:
    return f"data: {data}\n\n"


def content_frame(text: str) -> str:
    """Frame text in the chat-completions delta shape clients already parse."""
    payload = {"choices": [{"delta": {"content": text}}]}
    return format_sse(json.dumps(payload, ensure_ascii=False))


class SSEParser:
    """Line-oriented SSE parser.

    Feed it lines as they arrive (without trailing newlines); it returns the
    joined ``data`` payload whenever a blank line dispatches an event.
    """

    def __init__(self):
        self._data_lines: list[str] = []

    def feed_line(self, line: str) -> Optional[str]:
        line = line.rstrip("\r")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            # Comment / keep-alive, e.g. ": OPENROUTER PROCESSING"
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data_lines.append(value)
        return None

    def flush(self) -> Optional[str]:
        return self._dispatch()

    def _dispatch(self) -> Optional[str]:
        if not self._data_lines:
            return None
        data = "\n".join(self._data_lines)
        self._data_lines = []
        return data


def _load_json(data: str) -> Any:
    try:
        return json.loads(data)
    except ValueError:
        return None


def extract_delta_content(data: str) -> Optional[str]:
    """Text carried by a chat-completions chunk, if any."""
    parsed = _load_json(data)
    if not isinstance(parsed, dict):
        return None
    choices = parsed.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) and content else None


def extract_stream_error(data: str) -> Optional[str]:
    """Message of an in-band upstream error event, if this is one."""
    parsed = _load_json(data)
    if not isinstance(parsed, dict) or "error" not in parsed:
        return None
    error = parsed["error"]
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or error)
    return str(error)
