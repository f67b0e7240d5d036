"""
Tests for CredentialCache.

Run with: python -m pytest gemini_forker/tests/test_credentials.py -v
"""

import logging

import pytest

from gemini_forker import CredentialCache, CredentialNotReady

BATCH_URL = "https://gemini.google.com/_/BardChatUi/data/batchexecute?rpcids=MaZiqc&source-path=%2Fapp"
STREAM_URL = (
    "https://gemini.google.com/_/BardChatUi/data/assistant.lamda.BardFrontendService/"
    "StreamGenerate?bl=x&_reqid=5&rt=c"
)


def _batch_body(at="AT-1", reqid="4321"):
    return f"f.req=%5B%5D&at={at}&f.sid=-99&bl=build-1&rt=c&_reqid={reqid}"


class TestObservation:
    """Tests for traffic observation."""

    def test_batch_execute_captures_signing_token_and_routing(self):
        cache = CredentialCache()
        cache.observe(BATCH_URL, _batch_body())

        assert cache.signing_token == "AT-1"
        assert cache.session_id == "-99"
        assert cache.build_label == "build-1"
        assert cache.routing_token == "c"
        assert cache.request_counter == 4321
        assert cache.target_endpoint == "https://gemini.google.com/_/BardChatUi/data/batchexecute"

    def test_batch_capture_happens_once(self):
        cache = CredentialCache()
        cache.observe(BATCH_URL, _batch_body(at="FIRST", reqid="1"))
        cache.observe(BATCH_URL, _batch_body(at="SECOND", reqid="2"))

        assert cache.signing_token == "FIRST"
        assert cache.request_counter == 1

    def test_batch_body_without_token_is_ignored(self):
        cache = CredentialCache()
        cache.observe(BATCH_URL, "f.req=%5B%5D&f.sid=-99")
        cache.observe(BATCH_URL, _batch_body(at="LATER"))

        assert cache.signing_token == "LATER"
        assert cache.session_id == "-99"

    def test_unparseable_reqid_keeps_random_seed(self):
        cache = CredentialCache()
        seed = cache.request_counter
        cache.observe(BATCH_URL, _batch_body(reqid="abc"))
        assert cache.request_counter == seed

    def test_stream_generate_refreshes_token_every_call(self):
        cache = CredentialCache()
        cache.observe(STREAM_URL, "f.req=x&at=S1")
        cache.observe(STREAM_URL, b"f.req=x&at=S2")

        assert cache.stream_signing_token == "S2"
        assert cache.signing_token == "S1"

    def test_stream_token_does_not_block_batch_routing_capture(self):
        cache = CredentialCache()
        cache.observe(STREAM_URL, "at=S1")
        cache.observe(BATCH_URL, _batch_body(at="B1"))

        assert cache.signing_token == "S1"
        assert cache.session_id == "-99"

    def test_unrelated_traffic_and_bodies_are_ignored(self):
        cache = CredentialCache()
        cache.observe("https://gemini.google.com/log", "at=NOPE")
        cache.observe(BATCH_URL, None)
        cache.observe(None, "at=NOPE")

        assert cache.signing_token is None
        assert cache.stream_signing_token is None

    def test_embedded_token_same_value_is_noop(self, caplog):
        cache = CredentialCache()
        with caplog.at_level(logging.INFO, logger="gemini_forker.credentials"):
            assert cache.observe_embedded("TOKEN")
            assert cache.observe_embedded("TOKEN")
        assert len([r for r in caplog.records if "Embedded token" in r.getMessage()]) == 1

    def test_embedded_token_change_overwrites_and_logs(self, caplog):
        cache = CredentialCache()
        cache.observe_embedded("OLD")
        with caplog.at_level(logging.INFO, logger="gemini_forker.credentials"):
            cache.observe_embedded("NEW")

        assert cache.embedded_token == "NEW"
        assert "changed" in caplog.text

    def test_empty_embedded_token_is_not_recorded(self):
        cache = CredentialCache()
        assert cache.observe_embedded(None) is False
        assert cache.observe_embedded("") is False
        assert cache.embedded_token is None


class TestReadiness:
    """Tests for readiness and acquire()."""

    def test_empty_cache_is_not_ready(self):
        status = CredentialCache().is_ready()
        assert status.to_dict() == {
            "has_signing_token": False,
            "has_embedded_token": False,
            "all": False,
        }

    def test_missing_embedded_token_is_named(self):
        cache = CredentialCache()
        cache.observe(BATCH_URL, _batch_body())

        assert cache.is_ready().has_signing_token is True
        assert cache.is_ready().all is False
        with pytest.raises(CredentialNotReady) as excinfo:
            cache.acquire()

        assert "SNlM0e" in str(excinfo.value)
        assert "'at' Token" not in str(excinfo.value)
        assert excinfo.value.missing_embedded_token is True
        assert excinfo.value.missing_signing_token is False

    def test_missing_signing_token_is_named(self):
        cache = CredentialCache()
        cache.observe_embedded("EMB")

        with pytest.raises(CredentialNotReady) as excinfo:
            cache.acquire()

        assert "'at' Token - try sending a message" in str(excinfo.value)
        assert "SNlM0e" not in str(excinfo.value)

    def test_acquire_rereads_embedded_token_before_failing(self):
        reads = []

        def source():
            reads.append(1)
            return "EMB"

        cache = CredentialCache(embedded_token_source=source)
        cache.observe(BATCH_URL, _batch_body())

        creds = cache.acquire()

        assert reads == [1]
        assert creds.embedded_token == "EMB"
        assert creds.signing_token == "AT-1"

    def test_failing_source_still_reports_missing_token(self):
        def source():
            raise RuntimeError("page closed")

        cache = CredentialCache(embedded_token_source=source)
        cache.observe(BATCH_URL, _batch_body())

        with pytest.raises(CredentialNotReady):
            cache.acquire()

    def test_stream_token_preferred_for_generation(self, ready_cache):
        ready_cache.observe(STREAM_URL, "at=STREAM")
        creds = ready_cache.acquire()

        assert creds.signing_token == "AT-TOKEN"
        assert creds.generation_signing_token == "STREAM"

    def test_request_counter_increments(self, ready_cache):
        assert ready_cache.next_request_id() == 1001
        assert ready_cache.next_request_id() == 1002
