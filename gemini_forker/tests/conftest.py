"""Shared fixtures for gemini_forker tests."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from gemini_forker.credentials import CredentialCache


SAMPLE_PAGE = """
<html><body><div class="chat-history">
  <user-query>
    <div class="query-text"><p class="query-text-line">What is Python?</p></div>
  </user-query>
  <model-response>
    <message-content>
      <div class="markdown">
        <h2>Python</h2>
        <p>A <strong>programming</strong> language.</p>
        <ul><li>Easy</li><li>Popular</li></ul>
        <div class="citation-chip-container">[1] python.org</div>
      </div>
    </message-content>
    <message-actions><button>Copy</button></message-actions>
  </model-response>
  <user-query>
    <div class="query-text"><p class="query-text-line">Show me hello world</p></div>
  </user-query>
  <model-response>
    <message-content>
      <div class="markdown">
        <p>Here you go:</p>
        <pre><code class="language-python">print("hello world")
</code></pre>
        <div class="model-tools">Run code</div>
      </div>
    </message-content>
  </model-response>
  <user-query>
    <div class="query-text"></div>
  </user-query>
  <model-response>
    <message-content><div class="markdown"><p>Anything else?</p></div></message-content>
  </model-response>
</div></body></html>
"""


def stream_line(inner) -> str:
    """One StreamGenerate line wrapping a double-encoded payload."""
    return json.dumps([["wrb.fr", None, json.dumps(inner)]])


def stream_body(*inners) -> str:
    lines = [")]}'", ""]
    for inner in inners:
        line = stream_line(inner)
        lines.append(str(len(line)))
        lines.append(line)
    return "\n".join(lines)


def reply_payload(conversation_id=None, text=None):
    """Decoded payload shape carrying an id at [1][0] and text at [4][0][1][0]."""
    payload = [None, None, None, None, None]
    if conversation_id is not None:
        payload[1] = [conversation_id, "r_1"]
    if text is not None:
        payload[4] = [["rc_1", [text]]]
    return payload


def fake_response(status_code=200, text="", url="https://gemini.google.com/"):
    """A real Response, so raise_for_status behaves as it does on the wire."""
    resp = requests.Response()
    resp.status_code = status_code
    resp._content = text.encode("utf-8")
    resp.encoding = "utf-8"
    resp.url = url
    return resp


@pytest.fixture
def sample_page():
    return SAMPLE_PAGE


@pytest.fixture
def ready_cache():
    """Cache holding every secret, as if the page had made its start-up calls."""
    return CredentialCache.from_values(
        embedded_token="EMBEDDED-TOKEN",
        signing_token="AT-TOKEN",
        session_id="-123456",
        build_label="boq_assistant-bard-web-server_20250101.00_p0",
        routing_token="c",
        request_id=1000,
        target_endpoint="https://gemini.google.com/_/BardChatUi/data/batchexecute",
    )


@pytest.fixture
def http_session():
    return MagicMock()
