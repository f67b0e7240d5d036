"""
Parser for StreamGenerate responses.

The body is line-oriented.  Relevant lines are JSON arrays starting with
``[["wrb.fr"``; their third element is itself a JSON-encoded string that has
to be decoded a second time to reach the real data::

    [["wrb.fr", null, "[null, [\\"c_abc\\", \\"r_1\\"], null, null, [[\\"rc_1\\", [\\"Hel\\"]]]]"]]

From the decoded payload:

- ``[1][0]`` holds the conversation id, prefixed with ``c_``.  The first line
  that exposes one wins.
- ``[4][0][1][0]`` holds a candidate reply text.  The reply streams in as
  progressively longer fragments with no explicit final-chunk marker, so the
  longest candidate across the whole body is taken as the reply.  This is an
  observed-traffic assumption, not a documented guarantee.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from .constants import CONVERSATION_ID_PREFIX, STREAM_LINE_MARKER

logger = logging.getLogger(__name__)


def strip_prefix(conversation_id: str) -> str:
    """Drop the provider prefix if present."""
    if conversation_id.startswith(CONVERSATION_ID_PREFIX):
        return conversation_id[len(CONVERSATION_ID_PREFIX):]
    return conversation_id


def add_prefix(conversation_id: str) -> str:
    """Ensure the provider prefix is present (idempotent)."""
    if conversation_id.startswith(CONVERSATION_ID_PREFIX):
        return conversation_id
    return f"{CONVERSATION_ID_PREFIX}{conversation_id}"


@dataclass
class ParsedStream:
    """
    Result of parsing one StreamGenerate body.

    Attributes:
        conversation_id: Id without prefix, or None if no line carried one.
        response_text: Longest reply text seen, stripped; None if none.
        relevant_lines: Marker lines that decoded successfully.
        malformed_lines: Marker lines whose outer or inner JSON failed to parse.
    """

    conversation_id: Optional[str] = None
    response_text: Optional[str] = None
    relevant_lines: int = 0
    malformed_lines: int = 0


def _dig(data: Any, *path: int) -> Any:
    for index in path:
        try:
            data = data[index]
        except (IndexError, KeyError, TypeError):
            return None
    return data


def parse_stream_response(raw_body: str) -> ParsedStream:
    """
    Decode a StreamGenerate body into a conversation id and reply text.

    Lines without the marker are ignored, as are marker lines that fail to
    decode (the stream can end on a truncated line).  A body with no relevant
    lines yields ``ParsedStream(None, None)``; callers decide whether that is
    fatal.
    """
    result = ParsedStream()
    longest = ""

    for line in (raw_body or "").split("\n"):
        if not line.startswith(STREAM_LINE_MARKER):
            continue
        try:
            outer = json.loads(line)
            inner_string = _dig(outer, 0, 2)
            if not inner_string:
                continue
            inner = json.loads(inner_string)
        except (json.JSONDecodeError, TypeError) as exc:
            result.malformed_lines += 1
            logger.debug("Skipping undecodable stream line: %s", exc)
            continue

        result.relevant_lines += 1

        if result.conversation_id is None:
            candidate_id = _dig(inner, 1, 0)
            if isinstance(candidate_id, str) and candidate_id.startswith(CONVERSATION_ID_PREFIX):
                result.conversation_id = strip_prefix(candidate_id)
                logger.debug("Found conversation id %s", result.conversation_id)

        text = _dig(inner, 4, 0, 1, 0)
        if isinstance(text, str) and text.strip() and len(text) > len(longest):
            longest = text

    if longest.strip():
        result.response_text = longest.strip()

    logger.info(
        "Parsed stream: %d relevant lines, %d malformed, id=%s, text=%s chars",
        result.relevant_lines,
        result.malformed_lines,
        result.conversation_id,
        len(result.response_text) if result.response_text else 0,
    )
    return result
