"""
Credential capture for the Gemini private endpoints.

The web app never hands out its secrets directly.  Two of them are needed to
forge calls:

- the page-embedded token (``WIZ_global_data.SNlM0e``), read from the page;
- the request-signing token (``at``) plus routing parameters (``f.sid``,
  ``bl``, ``rt``, ``_reqid``), read off the page's own outgoing requests.

:class:`CredentialCache` passively observes that traffic and exposes a
readiness predicate plus :meth:`CredentialCache.acquire`, which returns an
immutable :class:`~gemini_forker.models.Credentials` snapshot or raises
:class:`~gemini_forker.exceptions.CredentialNotReady` naming the missing
secret.  One cache is owned per browser session and passed by reference to
the client.
"""

import logging
import random
from typing import Callable, Dict, Optional, Union
from urllib.parse import parse_qs

from .constants import BATCH_EXECUTE_MARKER, STREAM_GENERATE_MARKER
from .exceptions import CredentialNotReady
from .models import Credentials, ReadinessStatus

logger = logging.getLogger(__name__)

EmbeddedTokenSource = Callable[[], Optional[str]]


def _preview(secret: str) -> str:
    return f"{secret[:30]}..." if len(secret) > 30 else secret


def _parse_form(body: Union[str, bytes, None]) -> Optional[Dict[str, str]]:
    """Decode a form-encoded body into single-valued params; None if unusable."""
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(body, str) or not body:
        return None
    return {key: values[0] for key, values in parse_qs(body, keep_blank_values=True).items()}


class CredentialCache:
    """Incrementally filled store of the secrets needed to forge calls.

    Fields are only ever set, never cleared.  The request counter is the one
    value that moves: it increments for every signed call.

    Parameters
    ----------
    embedded_token_source : callable, optional
        Zero-argument callable returning the current embedded token (or None).
        Invoked by :meth:`refresh_embedded` and by the readiness gate.
    """

    def __init__(self, embedded_token_source: Optional[EmbeddedTokenSource] = None):
        self._embedded_token_source = embedded_token_source
        self.embedded_token: Optional[str] = None
        self.signing_token: Optional[str] = None
        self.stream_signing_token: Optional[str] = None
        self.session_id: Optional[str] = None
        self.build_label: Optional[str] = None
        self.routing_token: Optional[str] = None
        self.target_endpoint: Optional[str] = None
        self.request_counter: int = random.randint(0, 99999)
        self._routing_captured = False

    @classmethod
    def from_values(
        cls,
        embedded_token: str,
        signing_token: str,
        session_id: Optional[str] = None,
        build_label: Optional[str] = None,
        routing_token: Optional[str] = None,
        request_id: Optional[int] = None,
        target_endpoint: Optional[str] = None,
    ) -> "CredentialCache":
        """Build a ready cache from secrets obtained some other way."""
        cache = cls()
        cache.observe_embedded(embedded_token)
        cache.signing_token = signing_token
        cache.session_id = session_id
        cache.build_label = build_label
        cache.routing_token = routing_token
        cache.target_endpoint = target_endpoint
        if request_id is not None:
            cache.request_counter = int(request_id)
        cache._routing_captured = True
        return cache

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def observe_embedded(self, token: Optional[str]) -> bool:
        """Record the page-embedded token.

        Returns
        -------
        bool
            True if a token was supplied.  Re-setting the same value is a no-op;
            a different value overwrites the old one.
        """
        if not token:
            return False
        if token == self.embedded_token:
            return True
        if self.embedded_token is None:
            logger.info("Embedded token captured: %s", _preview(token))
        else:
            logger.info("Embedded token changed; now %s", _preview(token))
        self.embedded_token = token
        return True

    def refresh_embedded(self) -> bool:
        """Read the embedded token again from the configured source."""
        if self._embedded_token_source is None:
            return False
        try:
            token = self._embedded_token_source()
        except Exception as exc:
            logger.warning("Could not read embedded token: %s", exc)
            return False
        return self.observe_embedded(token)

    def observe(self, url: Optional[str], body: Union[str, bytes, None]) -> None:
        """Inspect an outgoing request made by the host page.

        batchexecute calls yield the signing token and routing parameters
        once (first capture wins).  StreamGenerate calls refresh the
        generation signing token on every call.
        """
        if not url:
            return
        if BATCH_EXECUTE_MARKER in url:
            self._observe_batch_execute(url, body)
        if STREAM_GENERATE_MARKER in url:
            self._observe_stream_generate(body)

    def _observe_batch_execute(self, url: str, body: Union[str, bytes, None]) -> None:
        if self._routing_captured:
            return
        params = _parse_form(body)
        if not params or not params.get("at"):
            return
        if self.signing_token is None:
            self.signing_token = params["at"]
        self.session_id = params.get("f.sid")
        self.build_label = params.get("bl")
        self.routing_token = params.get("rt")
        try:
            self.request_counter = int(params.get("_reqid", ""))
        except ValueError:
            pass
        self.target_endpoint = url.split("?", 1)[0]
        self._routing_captured = True
        logger.info("'at' token and API params cached (endpoint %s)", self.target_endpoint)

    def _observe_stream_generate(self, body: Union[str, bytes, None]) -> None:
        params = _parse_form(body)
        if not params or not params.get("at"):
            return
        token = params["at"]
        if self.signing_token is None:
            self.signing_token = token
        if token != self.stream_signing_token:
            logger.debug("StreamGenerate 'at' token refreshed")
        self.stream_signing_token = token

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def is_ready(self) -> ReadinessStatus:
        return ReadinessStatus(
            has_signing_token=bool(self.signing_token or self.stream_signing_token),
            has_embedded_token=bool(self.embedded_token),
        )

    def acquire(self) -> Credentials:
        """Return a credentials snapshot, re-reading the embedded token once if needed.

        Raises
        ------
        CredentialNotReady
            If either secret is still missing after the refresh.
        """
        status = self.is_ready()
        if not status.all:
            self.refresh_embedded()
            status = self.is_ready()
            if not status.all:
                raise CredentialNotReady(
                    missing_embedded_token=not status.has_embedded_token,
                    missing_signing_token=not status.has_signing_token,
                )
        return Credentials(
            embedded_token=self.embedded_token,
            signing_token=self.signing_token or self.stream_signing_token,
            stream_signing_token=self.stream_signing_token,
            session_id=self.session_id,
            build_label=self.build_label,
            routing_token=self.routing_token,
            target_endpoint=self.target_endpoint,
        )

    def next_request_id(self) -> int:
        """Advance the ``_reqid`` counter and return the new value."""
        self.request_counter += 1
        return self.request_counter
