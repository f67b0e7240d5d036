"""
Fork workflow: turn a point in an existing conversation into a new one.

:class:`ForkOrchestrator` runs, strictly in sequence::

    EXTRACT -> SUMMARIZE (only if something is to be summarized)
            -> CREATE_FINAL -> PROPAGATE -> NAVIGATE -> DONE

and drops into FAILED from any state.  Failures are caught once, at
:meth:`ForkOrchestrator.fork`, and reported as a single user-visible message;
nothing is retried.  The temporary summary conversation may already have
been created (and deleted) when a later step fails.

The summary round is serialized before the final creation because the final
prompt embeds the summary.  The two settle delays come from
:mod:`gemini_forker.config`; the service exposes no completion signal to poll.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional
from urllib.parse import parse_qs, urlsplit

from .client import GeminiWebClient
from .config import DELETE_SETTLE_DELAY, GEMINI_BASE_URL, PROPAGATE_SETTLE_DELAY
from .constants import (
    DEFAULT_SUMMARY_PROMPT,
    FORK_PROMPT_TEMPLATE,
    MISSING_SUMMARY_PLACEHOLDER,
    ForkState,
)
from .exceptions import ForkerError, MissingConversationId
from .models import ForkRequest, Message
from .transcript import build_context_block, build_summary_prompt, split_transcript

logger = logging.getLogger(__name__)

_GEM_PATH_RE = re.compile(r"/gem/([a-f0-9]+)")


def detect_gem_id(url: Optional[str]) -> Optional[str]:
    """
    Find the Gem (context identifier) the current page is scoped to.

    Checks the ``/gem/<hex>`` path segment first, then the ``gem`` and
    ``gem_id`` query parameters.  Returns None when the page is not inside a
    Gem; an id is never invented.
    """
    if not url:
        return None
    parts = urlsplit(url)
    match = _GEM_PATH_RE.search(parts.path)
    if match:
        logger.info("Detected Gem from URL path: %s", match.group(1))
        return match.group(1)
    query = parse_qs(parts.query)
    for key in ("gem", "gem_id"):
        values = query.get(key)
        if values and values[0]:
            logger.info("Detected Gem from URL params: %s", values[0])
            return values[0]
    return None


def build_target_url(
    gem_id: Optional[str], conversation_id: str, base_url: Optional[str] = None
) -> str:
    """Where to send the user: through the Gem if there is one, else ``/app``."""
    root = (base_url or GEMINI_BASE_URL).rstrip("/")
    if gem_id:
        return f"{root}/gem/{gem_id}/{conversation_id}"
    return f"{root}/app/{conversation_id}"


def build_fork_prompt(context_block: str) -> str:
    """Seed prompt asking the new conversation to acknowledge and wait."""
    return FORK_PROMPT_TEMPLATE.format(context=context_block)


@dataclass
class ForkResult:
    """
    Outcome of one fork run.

    Attributes:
        state: Terminal state, DONE or FAILED.
        target_url: Navigation target of the new conversation.
        conversation_id: Id of the new conversation.
        summarized_count: Messages folded into the summary.
        retained_count: Messages carried over verbatim.
        summary_text: Summary used in the seed prompt ("" if none).
        error: User-visible failure message.
        states_visited: Every state entered, in order.
    """

    state: ForkState = ForkState.EXTRACT
    target_url: Optional[str] = None
    conversation_id: Optional[str] = None
    summarized_count: int = 0
    retained_count: int = 0
    summary_text: str = ""
    error: Optional[str] = None
    states_visited: List[ForkState] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state == ForkState.DONE


class ForkOrchestrator:
    """Sequences extraction, summarization, creation and navigation.

    Parameters
    ----------
    client : GeminiWebClient
        Protocol client used for create/delete calls.
    extractor : object
        Anything with ``extract(anchor) -> List[Message]``, typically a
        :class:`~gemini_forker.transcript.TranscriptExtractor`.
    navigate_fn : callable, optional
        ``fn(url)`` that moves the user to the new conversation.
    notify_fn : callable, optional
        ``fn(message)`` that shows the failure message to the user.
    sleep_fn : callable, optional
        Used for the settle delays (``time.sleep`` by default).
    delete_settle_delay, propagate_settle_delay : float, optional
        Override the configured settle delays (seconds).
    base_url : str, optional
        Origin used to build the navigation target.
    """

    def __init__(
        self,
        client: GeminiWebClient,
        extractor,
        navigate_fn: Optional[Callable[[str], None]] = None,
        notify_fn: Optional[Callable[[str], None]] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        delete_settle_delay: Optional[float] = None,
        propagate_settle_delay: Optional[float] = None,
        base_url: Optional[str] = None,
    ):
        self._client = client
        self._extractor = extractor
        self._navigate_fn = navigate_fn
        self._notify_fn = notify_fn
        self._sleep_fn = sleep_fn
        self.delete_settle_delay = (
            DELETE_SETTLE_DELAY if delete_settle_delay is None else delete_settle_delay
        )
        self.propagate_settle_delay = (
            PROPAGATE_SETTLE_DELAY if propagate_settle_delay is None else propagate_settle_delay
        )
        self.base_url = base_url or client.base_url

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fork(self, request: ForkRequest) -> ForkResult:
        """Run one fork to completion or failure.

        Never raises; the outcome (including the failure message) is in the
        returned :class:`ForkResult`.
        """
        result = ForkResult()
        gem_id = request.gem_id
        logger.info(
            "Forking at %d%% retained (gem=%s)", request.retain_percent, gem_id or "none"
        )
        try:
            self._enter(result, ForkState.EXTRACT)
            messages = self._extractor.extract(request.anchor)
            to_summarize, to_retain = split_transcript(messages, request.retain_percent)
            result.summarized_count = len(to_summarize)
            result.retained_count = len(to_retain)
            logger.info(
                "To summarize: %d messages, to keep: %d messages",
                len(to_summarize),
                len(to_retain),
            )

            if to_summarize:
                self._enter(result, ForkState.SUMMARIZE)
                result.summary_text = self._summarize(
                    to_summarize, request.summary_prompt, gem_id
                )

            self._enter(result, ForkState.CREATE_FINAL)
            result.conversation_id = self._create_final(
                result.summary_text, to_retain, gem_id
            )

            self._enter(result, ForkState.PROPAGATE)
            self._sleep_fn(self.propagate_settle_delay)

            self._enter(result, ForkState.NAVIGATE)
            result.target_url = build_target_url(gem_id, result.conversation_id, self.base_url)
            logger.info("Navigating to %s", result.target_url)
            if self._navigate_fn is not None:
                self._navigate_fn(result.target_url)

            self._enter(result, ForkState.DONE)
        except Exception as exc:
            logger.exception("Forking failed in state %s", result.state.value)
            result.error = f"Forking failed: {exc}"
            self._enter(result, ForkState.FAILED)
            if self._notify_fn is not None:
                self._notify_fn(result.error)
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _enter(self, result: ForkResult, state: ForkState) -> None:
        result.state = state
        result.states_visited.append(state)

    def _summarize(
        self, messages: List[Message], instruction: str, gem_id: Optional[str]
    ) -> str:
        prompt = build_summary_prompt(instruction or DEFAULT_SUMMARY_PROMPT, messages)
        summary = self._client.create_conversation(prompt, gem_id)

        if summary.response_text:
            summary_text = summary.response_text
            logger.info(
                "Summary conversation %s returned %d chars",
                summary.conversation_id,
                len(summary_text),
            )
        else:
            logger.warning(
                "Summary conversation %s created, but no summary text was returned",
                summary.conversation_id,
            )
            summary_text = MISSING_SUMMARY_PLACEHOLDER

        self._cleanup(summary.conversation_id)
        self._sleep_fn(self.delete_settle_delay)
        return summary_text

    def _cleanup(self, conversation_id: str) -> None:
        try:
            self._client.delete_conversation(conversation_id)
        except ForkerError as exc:
            logger.warning("Could not delete summary conversation %s: %s", conversation_id, exc)

    def _create_final(
        self, summary_text: str, retained: List[Message], gem_id: Optional[str]
    ) -> str:
        prompt = build_fork_prompt(build_context_block(summary_text, retained))
        final = self._client.create_conversation(prompt, gem_id)
        if not final or not final.conversation_id:
            raise MissingConversationId(
                "Failed to create the final chat. The API did not return a chat ID."
            )
        logger.info("New conversation created: %s", final.conversation_id)
        return final.conversation_id

