"""
gemini_forker - fork a Gemini web conversation into a new, pre-seeded one.

Given a point in an existing conversation, the forker optionally compresses
everything before it into a generated summary, starts a new conversation
seeded with that summary plus the retained tail, and hands the user off to it.

Main classes:

- :class:`CredentialCache`: captures the secrets the private endpoints need.
- :class:`GeminiWebClient`: create/delete conversations over the private API.
- :class:`ForkOrchestrator`: runs the fork workflow.
- :class:`TranscriptExtractor`: turns the page's message tree into messages.

Quick start::

    from gemini_forker.browser import attach_over_cdp
    from gemini_forker import ForkRequest

    with attach_over_cdp("http://localhost:9222") as browser:
        browser.prime()
        result = browser.build_orchestrator().fork(
            ForkRequest(anchor=-1, retain_percent=70, gem_id=browser.detect_gem_id())
        )

Configuration is driven by environment variables.  See
:mod:`gemini_forker.config` for all available settings.
"""

__version__ = "0.1.0"

from gemini_forker.client import GeminiWebClient
from gemini_forker.constants import DEFAULT_SUMMARY_PROMPT, ForkState, Role
from gemini_forker.credentials import CredentialCache
from gemini_forker.exceptions import (
    CredentialNotReady,
    ForkerError,
    MalformedResponse,
    MissingConversationId,
    TransportError,
    UnknownAction,
)
from gemini_forker.models import (
    Credentials,
    ForkRequest,
    Message,
    ReadinessStatus,
    RemoteConversationResult,
)
from gemini_forker.orchestrator import (
    ForkOrchestrator,
    ForkResult,
    build_target_url,
    detect_gem_id,
)
from gemini_forker.stream_parser import add_prefix, parse_stream_response, strip_prefix
from gemini_forker.transcript import (
    TranscriptExtractor,
    compute_split_point,
    extract_transcript,
    split_transcript,
)

__all__ = [
    "GeminiWebClient",
    "CredentialCache",
    "ForkOrchestrator",
    "ForkResult",
    "TranscriptExtractor",
    "ForkRequest",
    "Message",
    "Credentials",
    "ReadinessStatus",
    "RemoteConversationResult",
    "Role",
    "ForkState",
    "DEFAULT_SUMMARY_PROMPT",
    "ForkerError",
    "CredentialNotReady",
    "TransportError",
    "MalformedResponse",
    "MissingConversationId",
    "UnknownAction",
    "build_target_url",
    "detect_gem_id",
    "compute_split_point",
    "extract_transcript",
    "split_transcript",
    "parse_stream_response",
    "add_prefix",
    "strip_prefix",
]
