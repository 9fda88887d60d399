import pytest

from superray_tui.core.errors import EngineError, PermissionDenied
from superray_tui.core.system_routing import RoutingOutcome, SystemRouting
from superray_tui.core.types import InterfaceSpec


@pytest.fixture
def routing(engine):
    return SystemRouting(engine, InterfaceSpec(name='tun9'),
                         privilege_check=lambda: True)


def test_enable_runs_steps_in_order(routing, engine):
    outcome = routing.enable('session-1', '203.0.113.7')

    assert outcome == RoutingOutcome.ENABLED
    assert routing.active
    assert routing.routes_installed
    assert engine.calls == [
        ('create_interface', 'tun9'),
        ('attach_interface', 'tun9', 'session-1', 'proxy'),
        ('install_routes', 'tun9', '203.0.113.7'),
    ]


def test_without_privilege_nothing_is_touched(engine):
    routing = SystemRouting(engine, privilege_check=lambda: False)
    with pytest.raises(PermissionDenied):
        routing.enable('session-1', '203.0.113.7')
    assert engine.calls == []
    assert not routing.active


def test_attach_failure_rolls_back_interface(routing, engine):
    engine.fail['attach_interface'] = 'stack failed'

    with pytest.raises(EngineError):
        routing.enable('session-1', '203.0.113.7')

    assert engine.call_names() == [
        'create_interface', 'attach_interface', 'close_interface'
    ]
    assert not routing.active


def test_create_failure_has_nothing_to_roll_back(routing, engine):
    engine.fail['create_interface'] = 'no tun'
    with pytest.raises(EngineError):
        routing.enable('session-1', '203.0.113.7')
    assert engine.call_names() == ['create_interface']


def test_route_failure_degrades(routing, engine):
    engine.fail['install_routes'] = 'ip route failed'

    outcome = routing.enable('session-1', '203.0.113.7')

    assert outcome == RoutingOutcome.DEGRADED
    assert routing.active
    assert not routing.routes_installed
    assert 'close_interface' not in engine.call_names()


def test_disable_reverses_and_is_idempotent(routing, engine):
    routing.enable('session-1', '203.0.113.7')
    engine.calls.clear()

    routing.disable()
    routing.disable()

    assert engine.calls == [('remove_routes', 'tun9'), ('close_interface', 'tun9')]
    assert not routing.active


def test_disable_continues_past_failures(routing, engine):
    routing.enable('session-1', '203.0.113.7')
    engine.fail['remove_routes'] = 'gone'

    routing.disable()

    assert 'close_interface' in engine.call_names()
    assert not routing.active


def test_enable_twice_resets_first(routing, engine):
    routing.enable('session-1', '203.0.113.7')
    routing.enable('session-2', '203.0.113.8')

    names = engine.call_names()
    assert names.count('create_interface') == 2
    assert names.index('close_interface') < names.index('create_interface', 1)


def test_cleanup_residual_sweeps_engine(routing, engine):
    engine.fail['close_all_interfaces'] = 'nothing open'
    routing.cleanup_residual()
    assert engine.call_names() == ['close_all_interfaces']
