"""
Error taxonomy for the Gemini forker.

Every protocol-layer failure derives from :class:`ForkerError` so the
orchestrator can catch the whole family at its boundary and turn it into a
single user-visible message.
"""

from typing import Optional


class ForkerError(Exception):
    """Base class for all forker failures."""


class CredentialNotReady(ForkerError):
    """Raised when the embedded token or the signing token has not been captured.

    The two causes need different recovery (reload the page vs. send one
    message first), so the message names exactly which secret is missing.
    """

    def __init__(self, missing_embedded_token: bool, missing_signing_token: bool):
        self.missing_embedded_token = missing_embedded_token
        self.missing_signing_token = missing_signing_token
        message = "Gemini API client is not ready. Try refreshing."
        if missing_embedded_token:
            message += " (Missing: SNlM0e Token)"
        if missing_signing_token:
            message += " (Missing: 'at' Token - try sending a message)"
        super().__init__(message)


class TransportError(ForkerError):
    """Non-2xx response or network failure.

    ``status`` is None when no HTTP response was received.
    """

    def __init__(self, message: str, status: Optional[int] = None, body_excerpt: str = ""):
        self.status = status
        self.body_excerpt = body_excerpt
        super().__init__(message)


class MalformedResponse(ForkerError):
    """Outer or inner JSON of a response could not be parsed."""


class MissingConversationId(ForkerError):
    """A create call succeeded but no conversation id was found in the reply."""


class UnknownAction(ForkerError):
    """The client was asked to perform an operation it does not know."""
