"""
StreamGenerate request schema.

The service validates the shape of its generation request server-side: a
101-slot positional array where only a handful of slots carry data.  The
request is modelled here as a named-field dataclass and converted to the
positional wire form in exactly one place, :meth:`StreamGenerateRequest.encode`.
A golden-vector test pins that encoding; if the service's schema drifts, that
test and this function are the only things to change.
"""

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, List, Optional

PAYLOAD_LENGTH = 101

# Slots that carry request data.
MESSAGE_SLOT = 0
LANGUAGE_SLOT = 1
EMBEDDED_TOKEN_SLOT = 3
REQUEST_UUID_SLOT = 4
GEM_ID_SLOT = 19
SECONDARY_UUID_SLOT = 59


def generate_request_uuid() -> str:
    """Uppercase random v4 UUID, as the web client formats it."""
    return str(uuid.uuid4()).upper()


def _compact_json(value: Any) -> str:
    # Mirrors JSON.stringify: no whitespace, non-ASCII left as-is.
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


@dataclass
class StreamGenerateRequest:
    """
    Named-field view of a StreamGenerate request.

    Attributes:
        message: Prompt text for the new conversation.
        embedded_token: Page-embedded token (``SNlM0e``).
        language: Interface language code.
        gem_id: Context identifier; None leaves the slot empty.
        request_uuid: First client-generated id.
        secondary_uuid: Second client-generated id.
    """

    message: str
    embedded_token: str
    language: str = "en"
    gem_id: Optional[str] = None
    request_uuid: str = field(default_factory=generate_request_uuid)
    secondary_uuid: str = field(default_factory=generate_request_uuid)

    def encode(self) -> List[Any]:
        """Positional wire form of the request."""
        payload: List[Any] = [None] * PAYLOAD_LENGTH
        payload[MESSAGE_SLOT] = [self.message, 0, None, None, None, None, 0]
        payload[LANGUAGE_SLOT] = [self.language]
        payload[2] = ["", "", "", None, None, None, None, None, None, ""]
        payload[EMBEDDED_TOKEN_SLOT] = self.embedded_token
        payload[REQUEST_UUID_SLOT] = self.request_uuid
        payload[6] = [1]
        payload[7] = 1
        payload[10] = 1
        payload[11] = 0
        payload[17] = [[0]]
        payload[18] = 0
        payload[GEM_ID_SLOT] = self.gem_id or None
        payload[27] = 1
        payload[30] = [4]
        payload[41] = [1]
        payload[53] = 0
        payload[SECONDARY_UUID_SLOT] = self.secondary_uuid
        payload[61] = []
        payload[100] = []
        return payload

    def to_form_value(self) -> str:
        """``f.req`` value: the JSON payload wrapped in a ``[null, <json>]`` envelope."""
        return _compact_json([None, _compact_json(self.encode())])


def encode_batch_request(rpc_id: str, rpc_payload: Any) -> str:
    """``f.req`` value for a single batchexecute call."""
    return _compact_json([[[rpc_id, _compact_json(rpc_payload), None, "generic"]]])
