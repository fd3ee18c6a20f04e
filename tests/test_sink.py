import pytest
import requests

from conftest import API_KEY, FakeResponse, FakeSession
from factsync.config import SinkConfig
from factsync.errors import ConfigurationError, NetworkError, RemoteRejection
from factsync.sink import SinkOutcome, RemoteSinkClient


def test_send_batch_posts_to_table_endpoint(sink, session):
    records = [{"domain": "example.com", "rating": 3}]

    result = sink.send_batch("fact_check_analytics", records)

    assert result.ok
    assert result.count == 1
    call = session.posts[0]
    assert call["url"] == "https://example-project.supabase.co/rest/v1/fact_check_analytics"
    assert call["json"] == records
    assert call["headers"]["apikey"] == API_KEY
    assert call["headers"]["Authorization"] == f"Bearer {API_KEY}"
    assert call["headers"]["Prefer"] == "return=minimal"
    assert call["timeout"] == 2.0


def test_trailing_slash_in_project_url(session):
    client = RemoteSinkClient(SinkConfig("https://example-project.supabase.co/", API_KEY), session=session)

    client.send_batch("user_feedback", [{"rating": "positive"}])

    assert session.posts[0]["url"] == "https://example-project.supabase.co/rest/v1/user_feedback"


def test_empty_batch_is_not_sent(sink, session):
    result = sink.send_batch("fact_check_analytics", [])

    assert result.ok
    assert session.posts == []


def test_non_2xx_is_rejection_with_truncated_body(sink_config):
    session = FakeSession(lambda index, url, body: FakeResponse(400, "x" * 2000))
    client = RemoteSinkClient(sink_config, session=session)

    result = client.send_batch("fact_check_analytics", [{"a": 1}])

    assert result.outcome is SinkOutcome.REJECTED
    assert result.status == 400
    assert len(result.body) == 500
    assert not result.ok


@pytest.mark.parametrize("error", [requests.Timeout("slow"), requests.ConnectionError("refused")])
def test_transport_failures_are_classified(sink_config, error):
    client = RemoteSinkClient(sink_config, session=FakeSession(lambda index, url, body: error))

    result = client.send_batch("fact_check_analytics", [{"a": 1}])

    assert result.outcome is SinkOutcome.TRANSPORT_ERROR
    assert result.error


@pytest.mark.parametrize(
    "url, key",
    [
        ("", API_KEY),
        ("http://example-project.supabase.co", API_KEY),
        ("https://example-project.supabase.co", "short"),
    ],
)
def test_validate_rejects_malformed_config(url, key):
    with pytest.raises(ConfigurationError):
        RemoteSinkClient(SinkConfig(url, key)).validate()


def test_test_connection_raises_on_rejection(sink_config):
    class DeniedSession(FakeSession):
        def get(self, url, **kwargs):
            return FakeResponse(401, "invalid api key")

    client = RemoteSinkClient(sink_config, session=DeniedSession())

    with pytest.raises(RemoteRejection) as excinfo:
        client.test_connection()
    assert excinfo.value.status == 401


def test_test_connection_raises_on_network_error(sink_config):
    class OfflineSession(FakeSession):
        def get(self, url, **kwargs):
            raise requests.ConnectionError("offline")

    with pytest.raises(NetworkError):
        RemoteSinkClient(sink_config, session=OfflineSession()).test_connection()


def test_close_leaves_injected_session_open(sink, session):
    sink.close()

    assert not session.closed
