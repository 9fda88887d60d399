"""
Shared fixtures: an in-memory engine and ready-made core objects
"""

import threading
import time
from typing import Dict, List, Optional, Tuple

import pytest

from superray_tui.core.client import ProxyClient
from superray_tui.core.errors import EngineError
from superray_tui.core.session_state import SessionState
from superray_tui.core.supervisor import TaskSupervisor
from superray_tui.core.types import (
    InterfaceSpec, Server, SessionRequest, TrafficCounters
)
from superray_tui.engine.base import ProxyEngine


def make_server(name: str, address: Optional[str] = None, port: int = 443,
                protocol: str = 'vless') -> Server:
    return Server(
        name=name,
        protocol=protocol,
        address=address or f"{name.lower()}.example.com",
        port=port,
        uuid='00000000-0000-0000-0000-000000000000',
    )


class FakeEngine(ProxyEngine):
    """
    Scriptable engine

    ``fail`` maps a method name to the EngineError message it raises.
    ``begin_delay`` makes begin_session block that many seconds.
    ``latencies`` maps (address, port) to a latency or an exception.
    """

    def __init__(self):
        self.calls: List[Tuple] = []
        self.fail: Dict[str, str] = {}
        self.begin_delay = 0.0
        self.begin_started = threading.Event()
        self.counters = TrafficCounters()
        self.latencies: Dict[Tuple[str, int], object] = {}
        self.catalog: List[Server] = []
        self.sessions: List[str] = []
        self._next = 0
        self._lock = threading.Lock()

    def _record(self, name: str, *args):
        with self._lock:
            self.calls.append((name,) + args)
        if name in self.fail:
            raise EngineError(self.fail[name])

    def call_names(self) -> List[str]:
        with self._lock:
            return [c[0] for c in self.calls]

    def version(self) -> str:
        return "SuperRay test (Xray-core test)"

    def begin_session(self, request: SessionRequest) -> str:
        self.begin_started.set()
        if self.begin_delay:
            time.sleep(self.begin_delay)
        self._record('begin_session', request.server.key, request.routing_mode)
        with self._lock:
            self._next += 1
            handle = f"session-{self._next}"
            self.sessions.append(handle)
        return handle

    def end_session(self, handle: str):
        self._record('end_session', handle)
        with self._lock:
            if handle in self.sessions:
                self.sessions.remove(handle)

    def query_counters(self, handle: Optional[str] = None) -> TrafficCounters:
        self._record('query_counters', handle)
        return self.counters

    def probe_reachability(self, address: str, port: int,
                           timeout: float) -> int:
        self._record('probe_reachability', address, port)
        value = self.latencies.get((address, port), 100)
        if isinstance(value, Exception):
            raise value
        return value

    def create_interface(self, spec: InterfaceSpec) -> str:
        self._record('create_interface', spec.name)
        return spec.name

    def attach_interface(self, interface: str, handle: str,
                         outbound_tag: str = 'proxy'):
        self._record('attach_interface', interface, handle, outbound_tag)

    def install_routes(self, interface: str, exclude_address: str):
        self._record('install_routes', interface, exclude_address)

    def remove_routes(self, interface: str):
        self._record('remove_routes', interface)

    def close_interface(self, interface: str):
        self._record('close_interface', interface)

    def close_all_interfaces(self):
        self._record('close_all_interfaces')

    def fetch_catalog(self, subscription_url: str) -> List[Server]:
        self._record('fetch_catalog', subscription_url)
        return [Server(**vars(s)) for s in self.catalog]

    def shutdown(self):
        self._record('shutdown')


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def servers():
    return [make_server(name) for name in ('Alpha', 'Bravo', 'Charlie')]


@pytest.fixture
def state(servers):
    state = SessionState(history_size=5)
    state.catalog.replace(servers)
    return state


@pytest.fixture
def supervisor():
    return TaskSupervisor()


@pytest.fixture
def root():
    """Mutable privilege flag for routing tests"""
    return {'value': True}


@pytest.fixture
def client(engine, servers, root):
    engine.catalog = servers
    client = ProxyClient(
        engine,
        subscription_url='https://sub.example.com/token',
        connect_timeout=2.0,
        telemetry_interval=0.05,
        history_size=5,
        privilege_check=lambda: root['value'],
    )
    client.state.catalog.replace([Server(**vars(s)) for s in servers])
    yield client
    client.telemetry.stop(timeout=1)
    client.supervisor.join(timeout=2)
