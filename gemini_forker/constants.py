"""
Constants and Enums for the Gemini forker.

Centralizes wire-level identifiers, host selectors and prompt templates so
the client and orchestrator never carry magic strings.

Includes:
- Role: Author of a transcript message
- ForkState: States of the fork workflow
- Endpoint paths and the delete RPC identifier
- Conversation id prefix marker and stream line marker
- Host page selectors used by the transcript extractor
- Prompt templates for the summary round and the seeded conversation
"""

from enum import Enum


class Role(str, Enum):
    """Author of a transcript message, rendered as its label in prompts."""

    USER = "User"
    ASSISTANT = "Assistant"


class ForkState(str, Enum):
    """
    States of the fork workflow.

    A run moves forward through EXTRACT -> SUMMARIZE (optional) -> CREATE_FINAL
    -> PROPAGATE -> NAVIGATE -> DONE and can drop into FAILED from any state.
    """

    EXTRACT = "extract"
    SUMMARIZE = "summarize"
    CREATE_FINAL = "create_final"
    PROPAGATE = "propagate"
    NAVIGATE = "navigate"
    DONE = "done"
    FAILED = "failed"


# =============================================================================
# Wire protocol
# =============================================================================

STREAM_GENERATE_PATH = (
    "/_/BardChatUi/data/assistant.lamda.BardFrontendService/StreamGenerate"
)
BATCH_EXECUTE_PATH = "/_/BardChatUi/data/batchexecute"

# Substrings used to recognise observed traffic.
BATCH_EXECUTE_MARKER = "batchexecute"
STREAM_GENERATE_MARKER = "StreamGenerate"

DELETE_RPC_ID = "GzXR5e"

CONVERSATION_ID_PREFIX = "c_"

# Relevant StreamGenerate lines start with this literal.
STREAM_LINE_MARKER = '[["wrb.fr"'

# batchexecute responses start with a fixed anti-JSON-hijacking prefix.
BATCH_RESPONSE_PREFIX_LENGTH = 4

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded;charset=UTF-8"

# Host page global holding the embedded token.
EMBEDDED_TOKEN_GLOBAL = "WIZ_global_data"
EMBEDDED_TOKEN_KEY = "SNlM0e"

# =============================================================================
# Host document selectors
# =============================================================================

USER_MESSAGE_TAG = "user-query"
ASSISTANT_MESSAGE_TAG = "model-response"
USER_TEXT_SELECTOR = ".query-text p, .query-text-line"
ASSISTANT_CONTENT_SELECTORS = ("message-content .markdown", "message-content")
ASSISTANT_NOISE_SELECTOR = (
    "message-actions, .response-options, .model-tools, .citation-chip-container"
)

# =============================================================================
# Prompts
# =============================================================================

TRANSCRIPT_SEPARATOR = "\n\n---\n\n"

MISSING_SUMMARY_PLACEHOLDER = (
    "[Summary was generated, but text could not be extracted.]"
)

DEFAULT_SUMMARY_PROMPT = (
    "I've attached a chatlog from a previous conversation. Please create a "
    "complete, detailed summary of the conversation that covers all important "
    "points, questions, and responses. This summary will be used to continue "
    "the conversation in a new chat, so make sure it provides enough context "
    "to understand the full discussion. Be thorough, and think things through. "
    "Make it lengthy.\n"
    "If this is a technical discussion, include any relevant technical details, "
    "code snippets, or explanations that were part of the conversation, "
    "maintaining information concerning only the latest version of any code "
    "discussed.\n"
    "If this is a writing or creative discussion, include sections for "
    "characters, plot points, setting info, etcetera."
)

FORK_PROMPT_TEMPLATE = """This conversation is forked from a previous chat. The context is provided below.
Please read it, respond only with "Acknowledged", and then wait for my next prompt.

---
[START CONTEXT]
{context}
[END CONTEXT]
---

Please respond only with "Acknowledged"."""
