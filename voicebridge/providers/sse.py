"""
Server-sent-event line parsing shared by every streaming provider.

Providers frame their streams as lines like

    event: content_block_delta
    data: {"type": "content_block_delta", ...}
    data: [DONE]

Only `data:` payloads matter here. A line that fails to decode (a partial
line at a buffer boundary, a keep-alive, garbage) yields nothing for that
tick instead of killing the stream.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

logger = logging.getLogger(__name__)

DONE = object()  # returned for "data: [DONE]"

_IGNORED_FIELDS = ("event:", "id:", "retry:")


def parse_sse_line(line: str):
    """
    Decode one line. Returns a dict payload, DONE, or None when the line
    carries nothing usable.
    """
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if line.startswith(_IGNORED_FIELDS):
        return None

    data = line[5:].strip() if line.startswith("data:") else line
    if data == "[DONE]":
        return DONE

    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping undecodable stream line: %.80s", data)
        return None

    return payload if isinstance(payload, dict) else None


async def iter_sse_payloads(lines: AsyncIterator[str]) -> AsyncIterator[dict]:
    """Yield decoded JSON payloads from a line stream until [DONE] or EOF."""
    async for line in lines:
        payload = parse_sse_line(line)
        if payload is DONE:
            return
        if payload is not None:
            yield payload
