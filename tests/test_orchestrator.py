import threading
import time

import pytest

from superray_tui.core.errors import (
    AlreadyInProgress, EngineError, PermissionDenied
)
from superray_tui.core.orchestrator import ConnectionOrchestrator
from superray_tui.core.system_routing import RoutingOutcome, SystemRouting
from superray_tui.core.types import ConnectionPhase, RoutingMode

from .conftest import make_server


@pytest.fixture
def orchestrator(state, engine, supervisor, root):
    routing = SystemRouting(engine, privilege_check=lambda: root['value'])
    orchestrator = ConnectionOrchestrator(
        state, engine, supervisor, routing, connect_timeout=2.0
    )
    yield orchestrator
    supervisor.join(timeout=2)


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.01)
    return True


def test_connect_and_disconnect(orchestrator, state, engine):
    server = make_server('Alpha')
    changes = []
    orchestrator.register_callback(
        'state_change', lambda old, new, info: changes.append(new)
    )

    assert orchestrator.connect(server) is None
    state.check_invariants()
    assert state.phase == ConnectionPhase.CONNECTED
    assert state.active_server is server
    assert state.session_handle == 'session-1'

    assert orchestrator.disconnect() is True
    state.check_invariants()
    assert state.phase == ConnectionPhase.DISCONNECTED
    assert engine.sessions == []
    assert changes == [
        ConnectionPhase.CONNECTING,
        ConnectionPhase.CONNECTED,
        ConnectionPhase.DISCONNECTING,
        ConnectionPhase.DISCONNECTED,
    ]


def test_disconnect_is_idempotent(orchestrator, state, engine):
    orchestrator.connect(make_server('Alpha'))
    assert orchestrator.disconnect() is True
    assert orchestrator.disconnect() is False
    assert engine.call_names().count('end_session') == 1


def test_engine_refusal_returns_to_disconnected(orchestrator, state, engine):
    engine.fail['begin_session'] = 'connection refused'
    errors = []
    orchestrator.register_callback('error', errors.append)

    with pytest.raises(EngineError, match='refused'):
        orchestrator.connect(make_server('Alpha'))

    state.check_invariants()
    assert state.phase == ConnectionPhase.DISCONNECTED
    assert errors


def test_connect_while_connected_is_rejected(orchestrator):
    orchestrator.connect(make_server('Alpha'))
    with pytest.raises(AlreadyInProgress):
        orchestrator.connect(make_server('Bravo'))


def test_second_connect_during_connecting_is_rejected(orchestrator, state, engine):
    engine.begin_delay = 0.3
    worker = threading.Thread(
        target=orchestrator.connect, args=(make_server('Alpha'),)
    )
    worker.start()
    assert engine.begin_started.wait(2)

    assert state.connecting
    with pytest.raises(AlreadyInProgress):
        orchestrator.connect(make_server('Bravo'))
    with pytest.raises(AlreadyInProgress):
        orchestrator.disconnect()

    worker.join(2)
    assert state.connected
    assert engine.call_names().count('begin_session') == 1


def test_connect_timeout_discards_late_session(state, engine, supervisor):
    routing = SystemRouting(engine, privilege_check=lambda: True)
    orchestrator = ConnectionOrchestrator(
        state, engine, supervisor, routing, connect_timeout=0.05
    )
    engine.begin_delay = 0.3

    with pytest.raises(EngineError, match='timed out'):
        orchestrator.connect(make_server('Alpha'))

    assert state.phase == ConnectionPhase.DISCONNECTED
    assert wait_for(lambda: 'end_session' in engine.call_names())
    assert wait_for(lambda: engine.sessions == [])
    assert state.session_handle is None
    state.check_invariants()


def test_failed_late_end_is_retried_on_next_connect(state, engine, supervisor):
    routing = SystemRouting(engine, privilege_check=lambda: True)
    orchestrator = ConnectionOrchestrator(
        state, engine, supervisor, routing, connect_timeout=0.05
    )
    engine.begin_delay = 0.3
    engine.fail['end_session'] = 'busy'

    with pytest.raises(EngineError):
        orchestrator.connect(make_server('Alpha'))
    assert wait_for(lambda: orchestrator.orphans == ['session-1'])

    del engine.fail['end_session']
    engine.begin_delay = 0
    orchestrator.connect_timeout = 2.0
    orchestrator.connect(make_server('Bravo'))

    assert orchestrator.orphans == []
    assert engine.sessions == ['session-2']


def test_system_wide_connect_enables_routing(orchestrator, state, engine):
    with state.lock:
        state.routing_mode = RoutingMode.SYSTEM_WIDE

    outcome = orchestrator.connect(make_server('Alpha', address='198.51.100.4'))

    assert outcome == RoutingOutcome.ENABLED
    assert state.routing_active
    assert ('install_routes', 'tun0', '198.51.100.4') in engine.calls
    names = engine.call_names()
    assert names.index('begin_session') < names.index('create_interface')

    orchestrator.disconnect()
    names = engine.call_names()
    assert names.index('close_interface') < names.index('end_session')


def test_routing_failure_keeps_proxy_session(orchestrator, state, engine):
    with state.lock:
        state.routing_mode = RoutingMode.SYSTEM_WIDE
    engine.fail['create_interface'] = 'no tun support'
    errors = []
    orchestrator.register_callback('error', errors.append)

    assert orchestrator.connect(make_server('Alpha')) is None

    assert state.connected
    assert not state.routing_active
    assert errors


def test_degraded_routing_is_reported(orchestrator, state, engine):
    with state.lock:
        state.routing_mode = RoutingMode.SYSTEM_WIDE
    engine.fail['install_routes'] = 'permission denied'
    errors = []
    orchestrator.register_callback('error', errors.append)

    assert orchestrator.connect(make_server('Alpha')) == RoutingOutcome.DEGRADED
    assert state.routing_active
    assert errors


def test_toggle_requires_privilege(orchestrator, state, root):
    root['value'] = False
    with pytest.raises(PermissionDenied):
        orchestrator.toggle_routing_mode()
    assert state.routing_mode == RoutingMode.DIRECT_PROXY


def test_toggle_round_trip(orchestrator, state, engine):
    modes = []
    orchestrator.register_callback('mode_change', lambda old, new: modes.append(new))

    assert orchestrator.toggle_routing_mode() == RoutingMode.SYSTEM_WIDE
    assert orchestrator.toggle_routing_mode() == RoutingMode.DIRECT_PROXY

    assert modes == [RoutingMode.SYSTEM_WIDE, RoutingMode.DIRECT_PROXY]
    assert 'close_all_interfaces' in engine.call_names()


def test_toggle_while_connected_is_rejected(orchestrator):
    orchestrator.connect(make_server('Alpha'))
    with pytest.raises(AlreadyInProgress):
        orchestrator.toggle_routing_mode()


def test_emergency_disconnect_from_any_phase(orchestrator, state, engine):
    with state.lock:
        state.routing_mode = RoutingMode.SYSTEM_WIDE
    orchestrator.connect(make_server('Alpha'))

    orchestrator.emergency_disconnect()

    state.check_invariants()
    assert state.phase == ConnectionPhase.DISCONNECTED
    assert engine.sessions == []
    assert 'close_all_interfaces' in engine.call_names()


def test_connect_during_mode_switch_is_rejected(orchestrator, state, engine):
    with state.lock:
        state.routing_mode = RoutingMode.SYSTEM_WIDE
    sweeping = threading.Event()
    sweep = engine.close_all_interfaces

    def slow_sweep():
        sweeping.set()
        time.sleep(0.3)
        sweep()

    engine.close_all_interfaces = slow_sweep
    worker = threading.Thread(target=orchestrator.toggle_routing_mode)
    worker.start()
    assert sweeping.wait(2)

    with pytest.raises(AlreadyInProgress):
        orchestrator.connect(make_server('Alpha'))
    worker.join(2)

    state.check_invariants()
    assert state.routing_mode == RoutingMode.DIRECT_PROXY
    assert state.phase == ConnectionPhase.DISCONNECTED
    assert engine.sessions == []


def test_failed_mode_switch_releases_the_claim(orchestrator, state, root):
    root['value'] = False
    with pytest.raises(PermissionDenied):
        orchestrator.toggle_routing_mode()

    root['value'] = True
    assert orchestrator.toggle_routing_mode() == RoutingMode.SYSTEM_WIDE
    orchestrator.connect(make_server('Alpha'))
    state.check_invariants()
    assert state.routing_active


def test_emergency_during_connecting_discards_the_session(orchestrator, state, engine):
    engine.begin_delay = 0.3
    results = []
    worker = threading.Thread(
        target=lambda: results.append(orchestrator.connect(make_server('Alpha')))
    )
    worker.start()
    assert engine.begin_started.wait(2)

    orchestrator.emergency_disconnect()
    worker.join(2)

    state.check_invariants()
    assert results == [None]
    assert state.phase == ConnectionPhase.DISCONNECTED
    assert state.session_handle is None
    assert wait_for(lambda: engine.sessions == [])


def test_emergency_then_reconnect_keeps_the_new_session(orchestrator, state, engine):
    engine.begin_delay = 0.3
    worker = threading.Thread(
        target=orchestrator.connect, args=(make_server('Alpha'),)
    )
    worker.start()
    assert engine.begin_started.wait(2)
    orchestrator.emergency_disconnect()

    engine.begin_delay = 0.0
    worker.join(2)
    orchestrator.connect(make_server('Bravo'))

    state.check_invariants()
    assert state.phase == ConnectionPhase.CONNECTED
    assert state.active_server.name == 'Bravo'
    assert engine.sessions == [state.session_handle]


def test_command_sequence_keeps_state_consistent(orchestrator, state, engine):
    steps = [
        lambda: orchestrator.connect(make_server('Alpha')),
        orchestrator.disconnect,
        orchestrator.toggle_routing_mode,
        lambda: orchestrator.connect(make_server('Bravo')),
        orchestrator.emergency_disconnect,
        orchestrator.toggle_routing_mode,
        lambda: orchestrator.connect(make_server('Charlie')),
        orchestrator.disconnect,
        orchestrator.disconnect,
    ]
    for step in steps:
        step()
        state.check_invariants()
        assert engine.sessions == (
            [state.session_handle] if state.session_handle else []
        )

    assert state.routing_mode == RoutingMode.DIRECT_PROXY
    assert state.phase == ConnectionPhase.DISCONNECTED


@pytest.mark.timeout(20)
def test_interleaved_commands_keep_state_consistent(orchestrator, state, engine):
    engine.begin_delay = 0.02
    servers = [make_server(n) for n in ('Alpha', 'Bravo', 'Charlie')]
    errors = []

    def issue(n):
        commands = [
            lambda: orchestrator.connect(servers[n % len(servers)]),
            orchestrator.toggle_routing_mode,
            orchestrator.disconnect,
            orchestrator.emergency_disconnect,
        ]
        for i in range(12):
            try:
                commands[(n + i) % len(commands)]()
            except (AlreadyInProgress, PermissionDenied, EngineError):
                pass
            try:
                state.check_invariants()
            except AssertionError as e:
                errors.append(e)

    workers = [threading.Thread(target=issue, args=(n,)) for n in range(4)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(10)

    assert errors == []
    state.check_invariants()
    orchestrator.emergency_disconnect()
    state.check_invariants()
    assert wait_for(lambda: engine.sessions == [])
    assert not orchestrator.routing.active
