"""
HTTP client for the Gemini web app's private endpoints.

Two calls are supported, both signed with secrets captured by a
:class:`~gemini_forker.credentials.CredentialCache`:

- ``create_conversation``: POST to StreamGenerate, which starts a new
  conversation and streams back the reply.
- ``delete_conversation``: a batchexecute RPC (``GzXR5e``).

Uses the ``requests`` library (sync).  The session must carry the signed-in
browser's cookies; :mod:`gemini_forker.browser` copies them over.

Typical usage::

    from gemini_forker import CredentialCache, GeminiWebClient

    client = GeminiWebClient(cache)
    result = client.create_conversation("Hello", gem_id=None)
    client.delete_conversation(result.conversation_id)
"""

import json
import logging
from typing import Any, Dict, Optional

import requests

from .config import (
    GEMINI_BASE_URL,
    GEMINI_LANGUAGE,
    GEMINI_REQUEST_TIMEOUT,
    GEMINI_RPC_TIMEOUT,
    GEMINI_USER_AGENT,
)
from .constants import (
    BATCH_EXECUTE_PATH,
    BATCH_RESPONSE_PREFIX_LENGTH,
    DELETE_RPC_ID,
    FORM_CONTENT_TYPE,
    STREAM_GENERATE_PATH,
)
from .credentials import CredentialCache
from .exceptions import MalformedResponse, MissingConversationId, TransportError, UnknownAction
from .models import RemoteConversationResult
from .payload import StreamGenerateRequest, encode_batch_request
from .stream_parser import add_prefix, parse_stream_response

logger = logging.getLogger(__name__)

CREATE_ACTION = "createChat"
DELETE_ACTION = "deleteChat"


def _drop_unset(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Leave out routing fields that were never captured, as the wire would."""
    return {key: value for key, value in fields.items() if value is not None}


class GeminiWebClient:
    """Synchronous client for StreamGenerate and batchexecute.

    Parameters
    ----------
    credentials : CredentialCache
        Cache owned by the browser session; read on every call.
    base_url : str, optional
        Origin of the web app (env ``GEMINI_FORKER_BASE_URL``).
    session : requests.Session, optional
        Session carrying the browser's cookies.  A fresh one is created if
        omitted.
    language : str, optional
        ``hl`` value and payload language (env ``GEMINI_FORKER_LANGUAGE``).
    """

    def __init__(
        self,
        credentials: CredentialCache,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        language: Optional[str] = None,
    ):
        self.credentials = credentials
        self.base_url = (base_url or GEMINI_BASE_URL).rstrip("/")
        self.language = language or GEMINI_LANGUAGE
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": GEMINI_USER_AGENT})
        self._session = session

    @property
    def session(self) -> requests.Session:
        return self._session

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _post_form(
        self,
        url: str,
        data: Dict[str, Any],
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[int] = None,
        label: str = "API request",
    ) -> requests.Response:
        """POST a form body and return the response, raising on 4xx/5xx.

        Redirects are followed by ``requests``, so any other status that
        reaches the caller is a success.

        Raises
        ------
        TransportError
            On network failure (``status`` None) or an error status.
        """
        try:
            resp = self._session.post(
                url,
                params=params,
                data=data,
                headers={"Content-Type": FORM_CONTENT_TYPE, "Origin": self.base_url},
                timeout=timeout or GEMINI_RPC_TIMEOUT,
            )
            resp.encoding = "utf-8"
            resp.raise_for_status()
            return resp
        except requests.exceptions.HTTPError as exc:
            body = resp.text or ""
            logger.error(
                "%s failed: POST %s -> %s %s", label, url, resp.status_code, body[:500]
            )
            raise TransportError(
                f"{label} failed: {resp.status_code}. Response: {body[:100]}...",
                status=resp.status_code,
                body_excerpt=body[:500],
            ) from exc
        except requests.exceptions.RequestException as exc:
            logger.error("%s failed: POST %s -> %s", label, url, exc)
            raise TransportError(f"{label} failed: network error ({exc})") from exc

    # ------------------------------------------------------------------
    # Batched RPC
    # ------------------------------------------------------------------

    def batch_execute(self, rpc_id: str, rpc_payload: Any) -> Any:
        """Issue one batchexecute RPC and return its decoded JSON body.

        Parameters
        ----------
        rpc_id : str
            Remote procedure identifier (e.g. ``GzXR5e``).
        rpc_payload : Any
            JSON-serialisable positional arguments of the procedure.

        Returns
        -------
        Any
            Response JSON after the anti-hijacking prefix is removed.

        Raises
        ------
        CredentialNotReady, TransportError, MalformedResponse
        """
        creds = self.credentials.acquire()
        data = {
            "f.req": encode_batch_request(rpc_id, rpc_payload),
            "at": creds.signing_token,
            "f.sid": creds.session_id,
            "bl": creds.build_label,
            "rt": creds.routing_token,
            "_reqid": self.credentials.next_request_id(),
        }
        data = _drop_unset(data)
        url = creds.target_endpoint or self._url(BATCH_EXECUTE_PATH)
        resp = self._post_form(url, data, label="API request")
        try:
            return json.loads(resp.text[BATCH_RESPONSE_PREFIX_LENGTH:])
        except json.JSONDecodeError as exc:
            logger.error("Undecodable batchexecute response: %s", resp.text[:500])
            raise MalformedResponse(f"Could not parse API response: {exc}") from exc

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(
        self, message: str, gem_id: Optional[str] = None
    ) -> RemoteConversationResult:
        """Start a new conversation with ``message`` as its first prompt.

        Parameters
        ----------
        message : str
            Prompt text.
        gem_id : str, optional
            Context identifier (Gem) to create the conversation under.

        Returns
        -------
        RemoteConversationResult
            Conversation id (without prefix) and the reply text, if any.

        Raises
        ------
        CredentialNotReady, TransportError, MalformedResponse,
        MissingConversationId
        """
        creds = self.credentials.acquire()
        logger.info("Creating conversation (%d chars, gem=%s)", len(message), gem_id or "none")

        request = StreamGenerateRequest(
            message=message,
            embedded_token=creds.embedded_token,
            language=self.language,
            gem_id=gem_id,
        )
        params = {
            "bl": creds.build_label,
            "f.sid": creds.session_id,
            "hl": self.language,
            "_reqid": self.credentials.next_request_id(),
            "rt": "c",
        }
        if gem_id:
            params["source-path"] = f"/gem/{gem_id}"
        params = _drop_unset(params)

        data = {"f.req": request.to_form_value(), "at": creds.generation_signing_token}
        resp = self._post_form(
            self._url(STREAM_GENERATE_PATH),
            data,
            params=params,
            timeout=GEMINI_REQUEST_TIMEOUT,
            label="StreamGenerate",
        )

        body = resp.text
        parsed = parse_stream_response(body)
        if parsed.conversation_id:
            logger.info(
                "Conversation created: %s (reply extracted: %s)",
                parsed.conversation_id,
                "yes" if parsed.response_text else "no",
            )
            return RemoteConversationResult(
                conversation_id=parsed.conversation_id,
                response_text=parsed.response_text,
            )

        logger.error("No chat ID in StreamGenerate response: %s", body[:500])
        if parsed.malformed_lines and not parsed.relevant_lines:
            raise MalformedResponse("Could not parse the StreamGenerate response")
        raise MissingConversationId("No chat ID returned by the API")

    def delete_conversation(self, conversation_id: str) -> Any:
        """Delete a conversation by id (with or without the ``c_`` prefix).

        Returns
        -------
        Any
            Decoded batchexecute response (opaque acknowledgement).
        """
        api_id = add_prefix(conversation_id)
        logger.info("Deleting conversation %s", api_id)
        ack = self.batch_execute(DELETE_RPC_ID, [api_id])
        logger.info("Conversation %s deleted", api_id)
        return ack

    # ------------------------------------------------------------------
    # Action dispatch
    # ------------------------------------------------------------------

    def dispatch(self, action: str, payload: Any) -> Any:
        """Run a named action, the way page scripts address the client.

        ``createChat`` accepts either the message string or a mapping with
        ``message`` and ``gemId``; ``deleteChat`` accepts the conversation id.

        Raises
        ------
        CredentialNotReady
            Checked before the action is looked at.
        UnknownAction
            For any other action name.
        """
        self.credentials.acquire()
        if action == CREATE_ACTION:
            if isinstance(payload, dict):
                return self.create_conversation(payload.get("message", ""), payload.get("gemId"))
            return self.create_conversation(payload)
        if action == DELETE_ACTION:
            return self.delete_conversation(payload)
        raise UnknownAction(f"Unknown action: {action}")
