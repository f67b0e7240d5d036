"""
Tests for the fork workflow.

Run with: python -m pytest gemini_forker/tests/test_orchestrator.py -v

The protocol client is replaced by FakeClient, which records every create and
delete call, so these tests pin call ordering and prompt contents without
touching the network.
"""

import pytest

from gemini_forker import (
    CredentialCache,
    ForkOrchestrator,
    ForkRequest,
    ForkState,
    GeminiWebClient,
    Message,
    RemoteConversationResult,
    Role,
    TransportError,
    build_target_url,
    detect_gem_id,
)
from gemini_forker.constants import DEFAULT_SUMMARY_PROMPT, MISSING_SUMMARY_PLACEHOLDER
from gemini_forker.orchestrator import build_fork_prompt
from gemini_forker.tests.conftest import fake_response, reply_payload, stream_body
from gemini_forker.transcript import build_context_block, format_transcript

BASE_URL = "https://gemini.google.com"


class FakeClient:
    """Stands in for GeminiWebClient; replays queued create results."""

    def __init__(self, results, delete_error=None):
        self.base_url = BASE_URL
        self._results = list(results)
        self._delete_error = delete_error
        self.created = []
        self.deleted = []
        self.calls = []

    def create_conversation(self, message, gem_id=None):
        self.created.append((message, gem_id))
        self.calls.append("create")
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def delete_conversation(self, conversation_id):
        self.deleted.append(conversation_id)
        self.calls.append("delete")
        if self._delete_error is not None:
            raise self._delete_error


class FakeExtractor:
    def __init__(self, messages):
        self.messages = messages
        self.anchors = []

    def extract(self, anchor=None):
        self.anchors.append(anchor)
        return list(self.messages)


def _messages(n):
    roles = (Role.USER, Role.ASSISTANT)
    return [Message(role=roles[i % 2], text=f"message {i}") for i in range(n)]


def _orchestrator(client, messages, **kwargs):
    recorder = {"sleeps": [], "navigated": [], "notified": []}
    orchestrator = ForkOrchestrator(
        client=client,
        extractor=FakeExtractor(messages),
        navigate_fn=recorder["navigated"].append,
        notify_fn=recorder["notified"].append,
        sleep_fn=recorder["sleeps"].append,
        **kwargs,
    )
    return orchestrator, recorder


class TestForkWithoutSummary:
    """retain_percent = 100: the whole transcript is carried over verbatim."""

    def test_single_create_and_app_navigation(self):
        messages = _messages(4)
        client = FakeClient([RemoteConversationResult("final1", "Acknowledged")])
        orchestrator, recorder = _orchestrator(client, messages)

        result = orchestrator.fork(ForkRequest(anchor=3, retain_percent=100))

        assert result.success
        assert result.error is None
        assert client.calls == ["create"]
        assert client.deleted == []
        assert client.created[0] == (build_fork_prompt(format_transcript(messages)), None)
        assert recorder["sleeps"] == [1.5]
        assert recorder["navigated"] == [f"{BASE_URL}/app/final1"]
        assert recorder["notified"] == []
        assert result.target_url == f"{BASE_URL}/app/final1"
        assert result.summarized_count == 0
        assert result.retained_count == 4
        assert result.states_visited == [
            ForkState.EXTRACT,
            ForkState.CREATE_FINAL,
            ForkState.PROPAGATE,
            ForkState.NAVIGATE,
            ForkState.DONE,
        ]

    def test_anchor_is_passed_to_extractor(self):
        client = FakeClient([RemoteConversationResult("f")])
        orchestrator, _ = _orchestrator(client, _messages(2))

        orchestrator.fork(ForkRequest(anchor=-2))

        assert orchestrator._extractor.anchors == [-2]

    def test_empty_transcript_still_forks(self):
        client = FakeClient([RemoteConversationResult("f")])
        orchestrator, recorder = _orchestrator(client, [])

        result = orchestrator.fork(ForkRequest(retain_percent=0))

        assert result.success
        assert client.calls == ["create"]
        assert client.created[0][0] == build_fork_prompt("")
        assert recorder["navigated"] == [f"{BASE_URL}/app/f"]


class TestForkWithSummary:
    """retain_percent < 100: the head goes through a temporary conversation."""

    def test_partial_retention_sequence(self):
        messages = _messages(10)
        client = FakeClient([
            RemoteConversationResult("sum1", "The summary."),
            RemoteConversationResult("final1", "Acknowledged"),
        ])
        orchestrator, recorder = _orchestrator(client, messages)

        result = orchestrator.fork(
            ForkRequest(retain_percent=70, summary_prompt="Summarize.", gem_id="abc123")
        )

        assert result.success
        assert client.calls == ["create", "delete", "create"]
        assert client.deleted == ["sum1"]
        assert (result.summarized_count, result.retained_count) == (3, 7)
        assert recorder["sleeps"] == [0.5, 1.5]

        summary_prompt, summary_gem = client.created[0]
        assert summary_prompt.startswith("Summarize.\n\n---\n\n**User:**\nmessage 0")
        assert "message 2" in summary_prompt
        assert "message 3" not in summary_prompt
        assert summary_gem == "abc123"

        final_prompt, final_gem = client.created[1]
        assert final_prompt == build_fork_prompt(build_context_block("The summary.", messages[3:]))
        assert "message 2" not in final_prompt
        assert final_gem == "abc123"

        assert recorder["navigated"] == [f"{BASE_URL}/gem/abc123/final1"]
        assert ForkState.SUMMARIZE in result.states_visited

    def test_zero_retention_context_is_summary_only(self):
        client = FakeClient([
            RemoteConversationResult("sum1", "Everything so far."),
            RemoteConversationResult("final1"),
        ])
        orchestrator, _ = _orchestrator(client, _messages(4))

        result = orchestrator.fork(ForkRequest(retain_percent=0, summary_prompt="S"))

        assert result.success
        assert result.summary_text == "Everything so far."
        assert client.created[1][0] == build_fork_prompt("Everything so far.")

    def test_empty_instruction_uses_default_prompt(self):
        client = FakeClient([RemoteConversationResult("s", "x"), RemoteConversationResult("f")])
        orchestrator, _ = _orchestrator(client, _messages(2))

        orchestrator.fork(ForkRequest(retain_percent=0))

        assert client.created[0][0].startswith(DEFAULT_SUMMARY_PROMPT)

    def test_missing_summary_text_uses_placeholder(self):
        client = FakeClient([RemoteConversationResult("sum1", None), RemoteConversationResult("f")])
        orchestrator, _ = _orchestrator(client, _messages(4))

        result = orchestrator.fork(ForkRequest(retain_percent=50))

        assert result.success
        assert result.summary_text == MISSING_SUMMARY_PLACEHOLDER
        assert MISSING_SUMMARY_PLACEHOLDER in client.created[1][0]
        assert client.deleted == ["sum1"]

    def test_failed_cleanup_does_not_abort_fork(self):
        client = FakeClient(
            [RemoteConversationResult("sum1", "S"), RemoteConversationResult("f")],
            delete_error=TransportError("API request failed: 500", status=500),
        )
        orchestrator, recorder = _orchestrator(client, _messages(4))

        result = orchestrator.fork(ForkRequest(retain_percent=50))

        assert result.success
        assert client.calls == ["create", "delete", "create"]
        assert recorder["sleeps"] == [0.5, 1.5]
        assert recorder["notified"] == []

    def test_configured_delays_can_be_overridden(self):
        client = FakeClient([RemoteConversationResult("s", "x"), RemoteConversationResult("f")])
        orchestrator, recorder = _orchestrator(
            client, _messages(2), delete_settle_delay=0, propagate_settle_delay=3
        )

        orchestrator.fork(ForkRequest(retain_percent=0))

        assert recorder["sleeps"] == [0, 3]


class TestForkFailures:
    """Any failure ends in FAILED with one notification and no navigation."""

    def test_missing_final_id(self):
        client = FakeClient([RemoteConversationResult("", "text")])
        orchestrator, recorder = _orchestrator(client, _messages(2))

        result = orchestrator.fork(ForkRequest())

        assert result.state == ForkState.FAILED
        assert not result.success
        assert result.error == (
            "Forking failed: Failed to create the final chat. "
            "The API did not return a chat ID."
        )
        assert recorder["navigated"] == []
        assert recorder["sleeps"] == []
        assert recorder["notified"] == [result.error]

    def test_reply_without_id_fails_through_real_client(self, ready_cache, http_session):
        http_session.post.return_value = fake_response(
            text=stream_body(reply_payload(None, "Acknowledged"))
        )
        client = GeminiWebClient(ready_cache, base_url=BASE_URL, session=http_session)
        orchestrator, recorder = _orchestrator(client, _messages(2))

        result = orchestrator.fork(ForkRequest())

        assert result.state == ForkState.FAILED
        assert result.error == "Forking failed: No chat ID returned by the API"
        assert result.conversation_id is None
        assert http_session.post.call_count == 1
        assert recorder["navigated"] == []
        assert recorder["sleeps"] == []
        assert recorder["notified"] == [result.error]

    def test_summary_round_failure_stops_before_final_create(self):
        client = FakeClient([TransportError("StreamGenerate failed: 400", status=400)])
        orchestrator, recorder = _orchestrator(client, _messages(4))

        result = orchestrator.fork(ForkRequest(retain_percent=50))

        assert result.state == ForkState.FAILED
        assert result.error == "Forking failed: StreamGenerate failed: 400"
        assert client.calls == ["create"]
        assert result.states_visited[-2:] == [ForkState.SUMMARIZE, ForkState.FAILED]
        assert len(recorder["notified"]) == 1

    def test_credentials_missing_reports_which_secret(self, http_session):
        cache = CredentialCache()
        cache.signing_token = "AT-ONLY"
        client = GeminiWebClient(cache, base_url=BASE_URL, session=http_session)
        orchestrator, recorder = _orchestrator(client, _messages(2))

        result = orchestrator.fork(ForkRequest())

        assert result.state == ForkState.FAILED
        assert "SNlM0e" in result.error
        assert "'at' Token" not in result.error
        http_session.post.assert_not_called()
        assert recorder["navigated"] == []

    def test_extraction_failure_is_reported(self):
        class BrokenExtractor:
            def extract(self, anchor=None):
                raise RuntimeError("page gone")

        notified = []
        orchestrator = ForkOrchestrator(
            client=FakeClient([]),
            extractor=BrokenExtractor(),
            notify_fn=notified.append,
            sleep_fn=lambda seconds: None,
        )

        result = orchestrator.fork(ForkRequest())

        assert result.state == ForkState.FAILED
        assert notified == ["Forking failed: page gone"]


class TestGemRouting:
    """Tests for detect_gem_id and build_target_url."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://gemini.google.com/gem/1a2b3c/c9d8", "1a2b3c"),
            ("https://gemini.google.com/gem/deadbeef", "deadbeef"),
            ("https://gemini.google.com/app/abc?gem=f00d", "f00d"),
            ("https://gemini.google.com/app/abc?gem_id=beef", "beef"),
            ("https://gemini.google.com/app/abc", None),
            ("https://gemini.google.com/gem/", None),
            ("", None),
            (None, None),
        ],
    )
    def test_detect_gem_id(self, url, expected):
        assert detect_gem_id(url) == expected

    def test_target_url_with_and_without_gem(self):
        assert build_target_url("g1", "c1", BASE_URL) == f"{BASE_URL}/gem/g1/c1"
        assert build_target_url(None, "c1", BASE_URL + "/") == f"{BASE_URL}/app/c1"
