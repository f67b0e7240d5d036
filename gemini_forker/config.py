"""
Configuration constants for the Gemini forker.

All configuration is driven by environment variables with sensible defaults.
This module centralizes config so other modules import from here rather than
reading os.environ directly.

The two settle delays stand in for completion signals the service does not
expose.  They are compatibility workarounds: keep them here, named, instead
of sprinkling sleeps through the workflow.
"""

import os
import logging

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Host service
# ---------------------------------------------------------------------------

GEMINI_BASE_URL = os.environ.get(
    "GEMINI_FORKER_BASE_URL", "https://gemini.google.com"
).rstrip("/")
"""Origin of the host web application."""

GEMINI_LANGUAGE = os.environ.get("GEMINI_FORKER_LANGUAGE", "en")
"""Interface language sent as ``hl`` and inside the generation payload."""

GEMINI_USER_AGENT = os.environ.get(
    "GEMINI_FORKER_USER_AGENT",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
)
"""User agent for requests issued outside a browser."""

# ---------------------------------------------------------------------------
# Timeouts (seconds)
# ---------------------------------------------------------------------------

GEMINI_REQUEST_TIMEOUT = int(os.environ.get("GEMINI_FORKER_REQUEST_TIMEOUT", "120"))
"""Timeout for StreamGenerate calls (the whole reply is read before parsing)."""

GEMINI_RPC_TIMEOUT = int(os.environ.get("GEMINI_FORKER_RPC_TIMEOUT", "30"))
"""Timeout for batchexecute calls."""

# ---------------------------------------------------------------------------
# Settle delays (seconds)
# ---------------------------------------------------------------------------

DELETE_SETTLE_DELAY = float(os.environ.get("GEMINI_FORKER_DELETE_SETTLE_DELAY", "0.5"))
"""Wait after deleting the temporary summary conversation."""

PROPAGATE_SETTLE_DELAY = float(
    os.environ.get("GEMINI_FORKER_PROPAGATE_SETTLE_DELAY", "1.5")
)
"""Wait after creating the final conversation, before navigating to it."""

EMBEDDED_TOKEN_RETRY_DELAY = float(
    os.environ.get("GEMINI_FORKER_EMBEDDED_TOKEN_RETRY_DELAY", "2.0")
)
"""Delay before the second opportunistic read of the embedded token."""

# ---------------------------------------------------------------------------
# Browser binding
# ---------------------------------------------------------------------------

GEMINI_CDP_URL = os.environ.get("GEMINI_FORKER_CDP_URL", "")
"""Chrome DevTools endpoint of a running, signed-in browser (optional)."""

# ---------------------------------------------------------------------------
# Logging helper
# ---------------------------------------------------------------------------


def log_config_summary():
    """Log the active configuration."""
    logger.info(
        "Gemini forker config: base_url=%s  hl=%s  request_timeout=%ss  "
        "rpc_timeout=%ss  delete_settle=%ss  propagate_settle=%ss  cdp=%s",
        GEMINI_BASE_URL,
        GEMINI_LANGUAGE,
        GEMINI_REQUEST_TIMEOUT,
        GEMINI_RPC_TIMEOUT,
        DELETE_SETTLE_DELAY,
        PROPAGATE_SETTLE_DELAY,
        GEMINI_CDP_URL or "(not set)",
    )
