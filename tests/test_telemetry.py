import threading
import time

import pytest

from superray_tui.core.telemetry import TelemetryPoller, compute_rate
from superray_tui.core.types import (
    ConnectionPhase, RateEstimate, TrafficCounters, TrafficSample
)

from .conftest import make_server


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def connect(state, handle='session-1'):
    with state.lock:
        state.mark_connected(make_server('Alpha'), handle)


def test_rate_between_two_samples():
    previous = TrafficSample(0.0, 1000, 2000)
    current = TrafficSample(1.0, 3000, 2500)
    assert compute_rate(previous, current) == RateEstimate(2000.0, 500.0)


def test_rate_without_previous_sample_is_zero():
    assert compute_rate(None, TrafficSample(1.0, 10, 10)) == RateEstimate()


def test_rate_when_time_does_not_advance_is_zero():
    sample = TrafficSample(1.0, 10, 10)
    assert compute_rate(sample, TrafficSample(1.0, 20, 20)) == RateEstimate()


def test_rate_clamps_counter_reset_to_zero():
    rate = compute_rate(TrafficSample(0.0, 5000, 100), TrafficSample(2.0, 10, 300))
    assert rate.upload_bps == 0
    assert rate.download_bps == 100


def test_tick_without_session_records_nothing(state, engine, supervisor):
    poller = TelemetryPoller(state, engine, supervisor)
    assert poller.tick() is False
    assert 'query_counters' not in engine.call_names()


def test_ticks_derive_rate_and_totals(state, engine, supervisor):
    clock = Clock()
    poller = TelemetryPoller(state, engine, supervisor, clock=clock)
    connect(state)

    engine.counters = TrafficCounters(1000, 2000)
    assert poller.tick()
    clock.now = 1.0
    engine.counters = TrafficCounters(3000, 2500)
    assert poller.tick()

    snap = state.snapshot()
    assert snap.rate == RateEstimate(2000.0, 500.0)
    assert snap.total_upload == 3000
    assert snap.total_download == 2500
    assert len(snap.history) == 2


def test_history_is_bounded(state, engine, supervisor):
    clock = Clock()
    poller = TelemetryPoller(state, engine, supervisor, clock=clock)
    connect(state)

    for i in range(8):
        clock.now = float(i)
        engine.counters = TrafficCounters(i, i)
        poller.tick()

    history = state.snapshot().history
    assert len(history) == 5
    assert history[0].timestamp == 3.0


def test_sample_dropped_when_session_changes_mid_query(state, engine, supervisor):
    poller = TelemetryPoller(state, engine, supervisor)
    connect(state, 'session-1')

    def swap_session(handle=None):
        with state.lock:
            state.mark_connected(make_server('Bravo'), 'session-2')
        return TrafficCounters(10, 10)

    engine.query_counters = swap_session
    assert poller.tick() is False
    assert len(state.snapshot().history) == 0


@pytest.mark.timeout(5)
def test_failing_tick_does_not_stop_the_loop(state, engine, supervisor):
    poller = TelemetryPoller(state, engine, supervisor, interval=0.01)
    connect(state)

    def crash(handle=None):
        raise RuntimeError('counter decode bug')

    working = engine.query_counters
    engine.query_counters = crash

    ticks = threading.Semaphore(0)
    poller.register_callback(ticks.release)
    poller.start()
    try:
        for _ in range(3):
            assert ticks.acquire(timeout=2)
        assert poller.running

        engine.query_counters = working
        engine.counters = TrafficCounters(7, 9)
        deadline = time.monotonic() + 2
        while state.snapshot().total_download != 9:
            assert time.monotonic() < deadline
            time.sleep(0.01)
    finally:
        poller.stop(timeout=1)

    assert not poller.running
    assert supervisor.failures
    assert state.snapshot().total_download == 9


def test_phase_gate(state, engine, supervisor):
    poller = TelemetryPoller(state, engine, supervisor)
    connect(state)
    with state.lock:
        state.phase = ConnectionPhase.DISCONNECTING
    assert poller.tick() is False


def test_engine_error_skips_the_sample_quietly(state, engine, supervisor):
    poller = TelemetryPoller(state, engine, supervisor)
    connect(state)
    engine.counters = TrafficCounters(10, 20)
    assert poller.tick() is True

    engine.fail['query_counters'] = 'stats unavailable'
    assert poller.tick() is False
    assert poller.tick() is False

    snap = state.snapshot()
    assert len(snap.history) == 1
    assert snap.total_download == 20
    assert supervisor.failures == []
