"""
Data models for the Gemini forker.

- Message: One role-tagged transcript entry
- ForkRequest: Parameters of a single user-initiated fork
- RemoteConversationResult: Outcome of a create-conversation call
- Credentials: Snapshot of the secrets needed to forge calls
- ReadinessStatus: Which secrets are present
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .constants import Role


@dataclass(frozen=True)
class Message:
    """A single transcript message. Immutable once extracted."""

    role: Role
    text: str

    def to_markdown(self) -> str:
        return f"**{self.role.value}:**\n{self.text}"


@dataclass
class ForkRequest:
    """
    Parameters of one fork operation.

    Attributes:
        anchor: Index of the assistant message to fork at, or a node inside
            it; None forks the whole visible conversation.
        retain_percent: Share of the most recent messages kept verbatim, 0-100.
        summary_prompt: Instruction prepended to the transcript in the summary
            round. Empty means the default prompt.
        gem_id: Context identifier the new conversation is created under.
    """

    anchor: Any = None
    retain_percent: int = 100
    summary_prompt: str = ""
    gem_id: Optional[str] = None

    def __post_init__(self):
        if not 0 <= int(self.retain_percent) <= 100:
            raise ValueError(
                f"retain_percent must be between 0 and 100, got {self.retain_percent}"
            )
        self.retain_percent = int(self.retain_percent)


@dataclass
class RemoteConversationResult:
    """
    Result of a create-conversation call.

    Attributes:
        conversation_id: Id without the provider prefix.
        response_text: Longest reply text seen in the stream, if any.
    """

    conversation_id: str
    response_text: Optional[str] = None


@dataclass(frozen=True)
class Credentials:
    """
    Secrets and routing parameters needed to issue protocol calls.

    Attributes:
        embedded_token: Page-embedded token (``SNlM0e``), placed in the payload.
        signing_token: Request-signing token (``at``) for batchexecute.
        stream_signing_token: Latest ``at`` seen on a StreamGenerate call.
        session_id: ``f.sid`` routing parameter.
        build_label: ``bl`` routing parameter.
        routing_token: ``rt`` routing parameter.
        target_endpoint: batchexecute URL without its query string.
    """

    embedded_token: str
    signing_token: str
    stream_signing_token: Optional[str] = None
    session_id: Optional[str] = None
    build_label: Optional[str] = None
    routing_token: Optional[str] = None
    target_endpoint: Optional[str] = None

    @property
    def generation_signing_token(self) -> str:
        """Token used to sign StreamGenerate calls."""
        return self.stream_signing_token or self.signing_token


@dataclass
class ReadinessStatus:
    """Which secrets the credential cache currently holds."""

    has_signing_token: bool = False
    has_embedded_token: bool = False

    @property
    def all(self) -> bool:
        return self.has_signing_token and self.has_embedded_token

    def to_dict(self) -> Dict[str, bool]:
        return {
            "has_signing_token": self.has_signing_token,
            "has_embedded_token": self.has_embedded_token,
            "all": self.all,
        }
