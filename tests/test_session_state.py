import pytest

from superray_tui.core.session_state import SessionState, TrafficHistory
from superray_tui.core.types import (
    ConnectionPhase, RateEstimate, TrafficCounters, TrafficSample
)

from .conftest import make_server


def sample(t, up=0, down=0):
    return TrafficSample(timestamp=t, upload_bytes=up, download_bytes=down)


def test_history_evicts_oldest_first():
    history = TrafficHistory(capacity=3)
    for t in range(5):
        history.append(sample(float(t)))

    assert len(history) == 3
    assert [s.timestamp for s in history] == [2.0, 3.0, 4.0]
    assert history.latest.timestamp == 4.0


def test_history_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        TrafficHistory(capacity=0)


def test_fresh_state_is_disconnected():
    state = SessionState()
    assert state.phase == ConnectionPhase.DISCONNECTED
    assert state.active_server is None
    assert state.session_handle is None
    state.check_invariants()


def test_mark_connected_resets_traffic():
    state = SessionState()
    state.history.append(sample(1.0, 10, 10))
    state.rate = RateEstimate(5.0, 5.0)
    state.total_download = 99

    state.mark_connected(make_server('Alpha'), 'session-1')

    assert state.connected
    assert len(state.history) == 0
    assert state.rate == RateEstimate()
    assert state.total_download == 0
    state.check_invariants()


def test_mark_disconnected_clears_session_fields():
    state = SessionState()
    state.mark_connected(make_server('Alpha'), 'session-1')
    state.routing_active = True
    state.counters = TrafficCounters(1, 2)

    state.mark_disconnected()

    assert state.phase == ConnectionPhase.DISCONNECTED
    assert state.active_server is None
    assert state.session_handle is None
    assert not state.routing_active
    assert state.counters is None
    state.check_invariants()


def test_snapshot_is_detached_from_state(state):
    state.history.append(sample(1.0, 1, 1))
    snap = state.snapshot()

    state.history.append(sample(2.0, 2, 2))
    state.catalog.replace([])

    assert len(snap.history) == 1
    assert len(snap.servers) == 3
    assert snap.selected_server.name == 'Alpha'
