import time

import pytest

from telemetrykit.session import (
    MAX_SESSION_ITEMS,
    Session,
    SessionAggregates,
    SessionFlusher,
    SessionMode,
    SessionStatus,
    SessionUpdate,
)
from telemetrykit.transport import CapturingTransport


def _kinds(envelope):
    return [kind for kind, _ in envelope.items()]


def test_session_startstop():
    transport = CapturingTransport()
    with SessionFlusher(transport) as flusher:
        session = Session(flusher, "some-release")
        time.sleep(0.02)
        session.end()
    envelopes = transport.fetch_and_clear_envelopes()
    assert len(envelopes) == 1
    items = envelopes[0].items()
    assert len(items) == 1
    kind, update = items[0]
    assert kind == "session"
    assert update.status is SessionStatus.EXITED
    assert update.duration > 0.01
    assert update.errors == 0
    assert update.release == "some-release"
    assert update.init is True


def test_session_batching():
    transport = CapturingTransport()
    with SessionFlusher(transport) as flusher:
        for _ in range(MAX_SESSION_ITEMS * 2):
            Session(flusher, "some-release").end()
    envelopes = transport.fetch_and_clear_envelopes()
    assert len(envelopes) == 2
    kinds = _kinds(envelopes[0]) + _kinds(envelopes[1])
    assert len(kinds) == MAX_SESSION_ITEMS * 2
    assert set(kinds) == {"session"}


def test_session_aggregation():
    transport = CapturingTransport()
    started = 1_700_000_010.0
    with SessionFlusher(transport, SessionMode.REQUEST) as flusher:
        flusher.enqueue(
            SessionUpdate(
                release="some-release",
                started=started,
                status=SessionStatus.EXITED,
                errors=1,
            )
        )
        for _ in range(50):
            flusher.enqueue(
                SessionUpdate(
                    release="some-release",
                    started=started,
                    status=SessionStatus.EXITED,
                )
            )
        for _ in range(50):
            flusher.enqueue(
                SessionUpdate(
                    release="some-release",
                    started=started + 5,
                    distinct_id="foo-bar",
                    status=SessionStatus.EXITED,
                )
            )
    envelopes = transport.fetch_and_clear_envelopes()
    assert len(envelopes) == 1
    items = envelopes[0].items()
    assert len(items) == 1
    kind, payload = items[0]
    assert kind == "sessions"
    assert isinstance(payload, SessionAggregates)
    assert payload.release == "some-release"
    aggregates = sorted(payload.aggregates, key=lambda a: a.distinct_id or "")
    assert len(aggregates) == 2
    assert aggregates[0].distinct_id is None
    assert aggregates[0].exited == 50
    assert aggregates[0].errored == 1
    assert aggregates[1].distinct_id == "foo-bar"
    assert aggregates[1].exited == 50
    assert aggregates[1].errored == 0
    assert aggregates[0].started == 1_699_999_980.0


def test_aggregation_counts_crashed_and_abnormal():
    transport = CapturingTransport()
    with SessionFlusher(transport, SessionMode.REQUEST) as flusher:
        flusher.enqueue(
            SessionUpdate(release="r", started=120.0, status=SessionStatus.CRASHED)
        )
        flusher.enqueue(
            SessionUpdate(release="r", started=130.0, status=SessionStatus.ABNORMAL)
        )
    (envelope,) = transport.fetch_and_clear_envelopes()
    (_, payload), = envelope.items()
    (bucket,) = payload.aggregates
    assert (bucket.crashed, bucket.abnormal, bucket.exited) == (1, 1, 0)
    assert bucket.started == 120.0


def test_request_mode_sends_partially_sent_sessions_individually():
    transport = CapturingTransport()
    with SessionFlusher(transport, SessionMode.REQUEST) as flusher:
        Session(flusher, "some-release").end()
        partial = Session(flusher, "some-release")
        partial.record_event(True, False)
        assert partial.create_envelope_item() is not None
        partial.end()
    envelopes = transport.fetch_and_clear_envelopes()
    assert [_kinds(e) for e in envelopes] == [["sessions"], ["session"]]
    _, update = envelopes[1].items()[0]
    assert update.init is False
    assert update.errors == 1


def test_session_error():
    transport = CapturingTransport()
    with SessionFlusher(transport) as flusher:
        session = Session(flusher, "some-release")
        session.record_event(True, False)
        item = session.create_envelope_item()
        assert item.status is SessionStatus.OK
        assert item.errors == 1
        assert item.release == "some-release"
        assert item.init is True
        assert session.create_envelope_item() is None
        session.end()
    envelopes = transport.fetch_and_clear_envelopes()
    assert len(envelopes) == 1
    (kind, update), = envelopes[0].items()
    assert kind == "session"
    assert update.status is SessionStatus.EXITED
    assert update.errors == 1
    assert update.init is False


def test_session_abnormal():
    transport = CapturingTransport()
    with SessionFlusher(transport) as flusher:
        session = Session(flusher, "some-release")
        session.close(SessionStatus.ABNORMAL)
        session.end()
    envelopes = transport.fetch_and_clear_envelopes()
    assert len(envelopes) == 1
    (_, update), = envelopes[0].items()
    assert update.status is SessionStatus.ABNORMAL
    assert update.init is True


def test_session_counts_many_errors():
    transport = CapturingTransport()
    with SessionFlusher(transport) as flusher:
        session = Session(flusher, "some-release")
        for _ in range(100):
            session.record_event(True, False)
        session.end()
    (envelope,) = transport.fetch_and_clear_envelopes()
    (_, update), = envelope.items()
    assert update.status is SessionStatus.EXITED
    assert update.errors == 100


def test_crash_is_terminal():
    transport = CapturingTransport()
    with SessionFlusher(transport) as flusher:
        session = Session(flusher, "r")
        session.record_event(False, True)
        session.record_event(True, False)
        session.close(SessionStatus.ABNORMAL)
        assert session.update.status is SessionStatus.CRASHED
        assert session.update.errors == 1
        session.end()
    (envelope,) = transport.fetch_and_clear_envelopes()
    (_, update), = envelope.items()
    assert update.status is SessionStatus.CRASHED


def test_close_with_ok_means_exited():
    transport = CapturingTransport()
    with SessionFlusher(transport) as flusher:
        session = Session(flusher, "r")
        session.close(SessionStatus.OK)
        assert session.update.status is SessionStatus.EXITED
        assert session.update.duration >= 0.0
        session.end()
    assert len(transport.fetch_and_clear_envelopes()) == 1


def test_end_twice_enqueues_once():
    transport = CapturingTransport()
    with SessionFlusher(transport) as flusher:
        session = Session(flusher, "r", environment="staging", distinct_id="user-1")
        session.end()
        session.end()
    (envelope,) = transport.fetch_and_clear_envelopes()
    (_, update), = envelope.items()
    assert update.environment == "staging"
    assert update.distinct_id == "user-1"
    assert len(envelope.items()) == 1


def test_flush_sends_queue_immediately():
    transport = CapturingTransport()
    with SessionFlusher(transport) as flusher:
        Session(flusher, "r").end()
        flusher.flush()
        assert len(transport.fetch_and_clear_envelopes()) == 1
        flusher.flush()
        assert transport.fetch_and_clear_envelopes() == []


def test_background_flush():
    transport = CapturingTransport()
    with SessionFlusher(transport, flush_interval=0.05) as flusher:
        Session(flusher, "r").end()
        deadline = time.monotonic() + 5.0
        envelopes = []
        while not envelopes and time.monotonic() < deadline:
            time.sleep(0.01)
            envelopes = transport.fetch_and_clear_envelopes()
        assert len(envelopes) == 1
        assert _kinds(envelopes[0]) == ["session"]


def test_enqueue_after_close_raises():
    flusher = SessionFlusher(CapturingTransport())
    flusher.close()
    with pytest.raises(RuntimeError):
        flusher.enqueue(SessionUpdate(release="r", status=SessionStatus.EXITED))