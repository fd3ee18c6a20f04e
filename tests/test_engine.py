import threading

import pytest
import requests

from conftest import FakeResponse, FakeSession, FlakyStore, make_events, make_feedback
from factsync.config import SinkConfig, SyncConfig
from factsync.consent import ConsentGate
from factsync.engine import BatchSyncEngine, analytics_queue, chunk, feedback_queue
from factsync.errors import ConcurrencyBusy
from factsync.models import STATUS_BUSY, STATUS_CONSENT_DISABLED, STATUS_EMPTY, STATUS_ERROR
from factsync.sink import RemoteSinkClient


def _engine(store, sink, clock, config=None, consent=None):
    return BatchSyncEngine(store, config or SyncConfig(), sink=sink, consent=consent, clock=clock)


def _fill(store, events):
    queue = analytics_queue(store)
    for event in events:
        queue.append(event)


def test_chunk_produces_ceil_batches_in_order():
    items = list(range(123))

    batches = chunk(items, 50)

    assert [len(batch) for batch in batches] == [50, 50, 23]
    assert [item for batch in batches for item in batch] == items
    assert chunk([], 50) == []


def test_empty_cycle_makes_no_network_calls(store, sink, session, clock):
    engine = _engine(store, sink, clock)

    result = engine.run_cycle()

    assert (result.successful, result.failed) == (0, 0)
    assert result.status == STATUS_EMPTY
    assert session.posts == []


def test_120_events_with_third_batch_rejected(store, sink_config, clock):
    def responder(index, url, body):
        return FakeResponse(500, "boom") if index == 2 else FakeResponse(201)

    session = FakeSession(responder)
    events = make_events(120)
    _fill(store, events)
    engine = _engine(store, RemoteSinkClient(sink_config, session=session), clock)

    result = engine.run_cycle()

    assert len(session.posts) == 3
    assert [len(call["json"]) for call in session.posts] == [50, 50, 20]
    assert analytics_queue(store).load() == events[100:]
    assert (result.successful, result.failed) == (100, 20)
    assert engine.last_sync_result == result
    assert engine.sync_error_count == 1


def test_middle_batch_failure_keeps_only_that_batch(store, sink_config, clock):
    session = FakeSession(lambda index, url, body: FakeResponse(400) if index == 1 else FakeResponse(204))
    events = make_events(30)
    _fill(store, events)
    engine = _engine(store, RemoteSinkClient(sink_config, session=session), clock, SyncConfig(batch_size=10))

    engine.run_cycle()

    assert analytics_queue(store).load() == events[10:20]


def test_transport_error_counts_batch_as_failed(store, sink_config, clock):
    session = FakeSession(lambda index, url, body: requests.ConnectionError("reset") if index == 0 else FakeResponse(201))
    events = make_events(4)
    _fill(store, events)
    engine = _engine(store, RemoteSinkClient(sink_config, session=session), clock, SyncConfig(batch_size=2))

    result = engine.run_cycle()

    assert (result.successful, result.failed) == (2, 2)
    assert analytics_queue(store).load() == events[:2]


def test_events_recorded_during_cycle_are_merged_after_failures(store, sink_config, clock):
    late = make_events(3, start=500, domain="late.example")

    def responder(index, url, body):
        # Producer appends while the batch is on the wire.
        analytics_queue(store).append(late[index])
        return FakeResponse(503) if index == 0 else FakeResponse(201)

    session = FakeSession(responder)
    events = make_events(6)
    _fill(store, events)
    engine = _engine(store, RemoteSinkClient(sink_config, session=session), clock, SyncConfig(batch_size=2))

    engine.run_cycle()

    assert analytics_queue(store).load() == events[:2] + late


def test_no_event_lost_across_interleaved_cycles(store, sink_config, clock):
    outcomes = iter([500, 201, 500, 201, 201, 201, 201, 201])
    delivered = []

    def responder(index, url, body):
        status = next(outcomes)
        if status < 300:
            delivered.extend(record["text_length"] for record in body)
        return FakeResponse(status)

    engine = _engine(store, RemoteSinkClient(sink_config, session=FakeSession(responder)), clock, SyncConfig(batch_size=3))
    recorded = []
    for start in (0, 5, 9):
        batch = make_events(4, start=start * 10)
        _fill(store, batch)
        recorded.extend(event.text_length for event in batch)
        engine.run_cycle()

    pending = [event.text_length for event in analytics_queue(store).load()]
    assert sorted(pending + delivered) == sorted(recorded)


def test_consent_disabled_leaves_queue_untouched(store, sink, session, clock):
    events = make_events(12)
    _fill(store, events)
    store.set({"shareAnalytics": False})
    before = store.get(["pendingAnalytics"])
    engine = _engine(store, sink, clock, consent=ConsentGate(store))

    for _ in range(3):
        result = engine.run_cycle()
        assert result.status == STATUS_CONSENT_DISABLED

    assert store.get(["pendingAnalytics"]) == before
    assert session.posts == []
    assert engine.last_sync_time == 0


def test_second_trigger_is_noop_while_cycle_in_flight(store, sink_config, clock, sync_config):
    entered = threading.Event()
    release = threading.Event()

    def responder(index, url, body):
        entered.set()
        release.wait(5)
        return FakeResponse(201)

    session = FakeSession(responder)
    _fill(store, make_events(3))
    engine = _engine(store, RemoteSinkClient(sink_config, session=session), clock, sync_config)

    worker = threading.Thread(target=engine.run_cycle)
    worker.start()
    assert entered.wait(5)

    assert engine.is_syncing
    assert engine.run_cycle().status == STATUS_BUSY
    with pytest.raises(ConcurrencyBusy):
        engine.force_sync()

    release.set()
    worker.join(5)
    assert not engine.is_syncing
    assert len(session.posts) == 1
    assert analytics_queue(store).load() == []


def test_error_count_increments_and_resets(store, sink_config, clock):
    statuses = iter([500, 500, 201])
    session = FakeSession(lambda index, url, body: FakeResponse(next(statuses)))
    engine = _engine(store, RemoteSinkClient(sink_config, session=session), clock)

    for expected in (1, 2, 0):
        _fill(store, make_events(1))
        engine.run_cycle()
        assert engine.sync_error_count == expected


def test_degraded_after_max_retry_attempts(store, sink_config, clock):
    session = FakeSession(lambda index, url, body: FakeResponse(500))
    engine = _engine(store, RemoteSinkClient(sink_config, session=session), clock, SyncConfig(max_retry_attempts=1))
    _fill(store, make_events(1))

    engine.run_cycle()
    assert not engine.degraded
    engine.run_cycle()
    assert engine.degraded
    assert len(analytics_queue(store)) == 1


def test_misconfigured_sink_aborts_cycle_only(store, clock):
    bad_sink = RemoteSinkClient(SinkConfig(project_url="http://insecure.example", api_key="short"), session=FakeSession())
    events = make_events(3)
    _fill(store, events)
    engine = _engine(store, bad_sink, clock)

    result = engine.run_cycle()

    assert result.status == STATUS_ERROR
    assert "https" in result.error
    assert analytics_queue(store).load() == events
    assert engine.sync_error_count == 1
    assert not engine.is_syncing


def test_missing_sink_is_a_configuration_error(store, clock):
    _fill(store, make_events(1))
    engine = _engine(store, None, clock)

    result = engine.run_cycle()

    assert result.status == STATUS_ERROR
    assert len(analytics_queue(store)) == 1


def test_wire_records_carry_identity_and_iso_timestamp(store, sink, session, clock):
    _fill(store, make_events(1))
    engine = _engine(store, sink, clock)

    engine.run_cycle()

    record = session.posts[0]["json"][0]
    assert record["client_id"] == engine.identity.client_id
    assert len(record["client_id"]) == 32
    assert record["session_id"] == engine.identity.session_id
    assert record["timestamp"].endswith("Z")
    assert record["model_used"] == "gpt-4o-mini"


def test_feedback_is_posted_to_feedback_table(store, sink, session, clock):
    queue = feedback_queue(store)
    for event in make_feedback(3):
        queue.append(event)
    engine = _engine(store, sink, clock)

    result = engine.run_cycle()

    assert result.successful == 3
    assert session.posts[0]["url"].endswith("/rest/v1/user_feedback")
    assert session.posts[0]["json"][0] == {"analytics_id": "a-0", "rating": "positive"}
    assert queue.load() == []


def test_status_is_mirrored_into_store_and_reloaded(store, sink, clock):
    _fill(store, make_events(2))
    engine = _engine(store, sink, clock)

    engine.run_cycle()

    saved = store.get(["lastSyncTime", "lastSyncResult"])
    assert saved["lastSyncTime"] == clock.now
    assert saved["lastSyncResult"]["successful"] == 2
    assert _engine(store, sink, clock).last_sync_time == clock.now


def test_merge_write_failure_is_absorbed(sink_config, clock):
    store = FlakyStore()
    _fill(store, make_events(2))

    def responder(index, url, body):
        store.fail_set = True
        return FakeResponse(201)

    engine = _engine(store, RemoteSinkClient(sink_config, session=FakeSession(responder)), clock)

    result = engine.run_cycle()

    assert result.status == STATUS_ERROR
    assert result.successful == 2
    assert not engine.is_syncing
    store.fail_set = False
    assert len(analytics_queue(store)) == 2


def test_feedback_write_back_failure_keeps_analytics_totals(sink_config, clock):
    store = FlakyStore()
    _fill(store, make_events(3))
    feedback_queue(store).append(make_feedback(1)[0])

    def responder(index, url, body):
        if url.endswith("/user_feedback"):
            store.fail_set = True
        return FakeResponse(201)

    engine = _engine(store, RemoteSinkClient(sink_config, session=FakeSession(responder)), clock)

    result = engine.run_cycle()

    assert (result.successful, result.failed) == (4, 0)
    assert result.status == STATUS_ERROR
    assert "feedback write-back" in result.error
    assert engine.last_sync_result == result
    store.fail_set = False
    assert analytics_queue(store).load() == []
    assert len(feedback_queue(store)) == 1


def test_undecodable_entry_is_held_without_blocking_its_batch(store, sink, session, clock):
    events = make_events(3)
    bad = dict(events[0].to_dict(), timestamp=1_700_000_000_000_000)
    store.set({"pendingAnalytics": [events[0].to_dict(), bad, events[1].to_dict(), events[2].to_dict()]})
    engine = _engine(store, sink, clock)

    for _ in range(3):
        engine.run_cycle()

    assert len(session.posts) == 1
    assert [record["text_length"] for record in session.posts[0]["json"]] == [100, 101, 102]
    assert store.get(["pendingAnalytics"])["pendingAnalytics"] == [bad]
    assert engine.sync_error_count == 0
    assert engine.pending_count() == 1
