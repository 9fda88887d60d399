"""
Command surface: one context object wiring state, engine and workers

Commands return immediately. Requests that can be rejected up front
(an invalid index, a transition already running) are rejected in the
caller's thread; everything else runs through the task supervisor and is
observed through snapshots and redraw notifications.
"""

import threading
from typing import Callable, List, Optional

from .config_manager import ConfigManager
from .errors import (
    AlreadyInProgress, EngineError, InvalidSelection, PermissionDenied
)
from .latency_probe import LatencyProbe
from .orchestrator import ConnectionOrchestrator, DEFAULT_CONNECT_TIMEOUT
from .session_state import SessionState, DEFAULT_HISTORY_SIZE
from .supervisor import TaskSupervisor
from .system_routing import SystemRouting
from .telemetry import TelemetryPoller
from .types import (
    ConnectionPhase, InterfaceSpec, RoutingMode, Server, StateSnapshot
)
from ..engine.base import ProxyEngine
from ..utils.logging_setup import get_logger
from ..utils.network_tools import GeoIPLookup
from ..utils.system_check import is_root

logger = get_logger(__name__)


class ProxyClient:
    """Explicit context object behind every user command"""

    def __init__(self, engine: ProxyEngine,
                 subscription_url: str = '',
                 local_port: int = 10808,
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
                 telemetry_interval: float = 1.0,
                 history_size: int = DEFAULT_HISTORY_SIZE,
                 probe_concurrency: int = 10,
                 probe_timeout: float = 5.0,
                 interface_spec: Optional[InterfaceSpec] = None,
                 geoip: Optional[GeoIPLookup] = None,
                 privilege_check: Callable[[], bool] = is_root,
                 config: Optional[ConfigManager] = None):
        self.engine = engine
        self.config = config
        self.geoip = geoip

        self.state = SessionState(history_size=history_size)
        self.state.subscription_url = subscription_url
        self.state.local_port = local_port

        self.supervisor = TaskSupervisor()
        self.routing = SystemRouting(engine, interface_spec, privilege_check)
        self.orchestrator = ConnectionOrchestrator(
            self.state, engine, self.supervisor, self.routing,
            connect_timeout=connect_timeout
        )
        self.telemetry = TelemetryPoller(
            self.state, engine, self.supervisor, interval=telemetry_interval
        )
        self.probe = LatencyProbe(
            engine, concurrency=probe_concurrency, timeout=probe_timeout
        )

        self._probe_lock = threading.Lock()
        self._redraw_listeners: List[Callable[[], None]] = []

        self.orchestrator.register_callback('state_change', self._on_change)
        self.orchestrator.register_callback('mode_change', self._on_change)
        self.orchestrator.register_callback('error', self._on_change)
        self.telemetry.register_callback(self.request_redraw)
        self.supervisor.register_callback(self._on_change)

    @classmethod
    def from_config(cls, config: ConfigManager,
                    engine: Optional[ProxyEngine] = None) -> 'ProxyClient':
        """Build a client (and, unless given, the SuperRay engine) from settings"""
        if engine is None:
            from ..engine.superray import SuperRayEngine

            engine = SuperRayEngine(
                library_path=config.get('library_path') or None,
                local_port=config.get('local_port', 10808),
                geo_path=config.get('geo_path'),
                access_log=config.get('access_log', 'access.log'),
                error_log=config.get('error_log', 'error.log'),
                direct_countries=config.get('direct_countries', []),
            )

        geoip = None
        if config.get('geoip.enabled', True):
            geoip = GeoIPLookup(cache_ttl=config.get('geoip.cache_ttl', 1800))

        spec = InterfaceSpec(
            name=config.get('tun.name', 'tun0'),
            addresses=tuple(config.get('tun.addresses', ['10.255.0.1/24'])),
            mtu=config.get('tun.mtu', 1500),
        )

        return cls(
            engine,
            subscription_url=config.get('subscription_url', ''),
            local_port=config.get('local_port', 10808),
            connect_timeout=config.get('connect_timeout', DEFAULT_CONNECT_TIMEOUT),
            telemetry_interval=config.get('telemetry.interval', 1.0),
            history_size=config.get('telemetry.history_size', DEFAULT_HISTORY_SIZE),
            probe_concurrency=config.get('latency.concurrency', 10),
            probe_timeout=config.get('latency.timeout', 5.0),
            interface_spec=spec,
            geoip=geoip,
            config=config,
        )

    # Lifecycle of the client itself

    def start(self, load_catalog: bool = True):
        """Start telemetry and, if a subscription is configured, load it"""
        self.telemetry.start()
        if load_catalog and self.state.subscription_url:
            self.refresh_catalog()

    def shutdown(self):
        """Stop workers, close any live session and release the engine"""
        logger.info("Shutting down...")
        self.telemetry.stop(timeout=2)

        try:
            self.orchestrator.disconnect()
        except AlreadyInProgress:
            self.orchestrator.emergency_disconnect()

        self.routing.cleanup_residual()
        try:
            self.engine.shutdown()
        except EngineError as e:
            logger.error(f"Engine shutdown failed: {e}")

    def emergency_disconnect(self):
        """Signal-handler path: no phase checks, no waiting on transitions"""
        self.telemetry.stop(timeout=1)
        self.orchestrator.emergency_disconnect()
        try:
            self.engine.shutdown()
        except EngineError as e:
            logger.error(f"Engine shutdown failed: {e}")

    # Observation

    def snapshot(self) -> StateSnapshot:
        return self.state.snapshot()

    def add_redraw_listener(self, listener: Callable[[], None]):
        self._redraw_listeners.append(listener)

    def request_redraw(self):
        for listener in self._redraw_listeners:
            try:
                listener()
            except Exception as e:
                logger.error(f"Redraw listener error: {e}")

    def _on_change(self, *args):
        self.request_redraw()

    def version(self) -> str:
        return self.engine.version()

    # Commands

    def _run(self, name: str, fn: Callable, *args) -> threading.Thread:
        """Dispatch ``fn`` through the supervisor and report client errors"""
        def command():
            try:
                fn(*args)
            except (AlreadyInProgress, InvalidSelection, PermissionDenied) as e:
                logger.warning(str(e))
            except EngineError as e:
                logger.error(f"{name.capitalize()} failed: {e}")
            finally:
                self.request_redraw()

        return self.supervisor.spawn(name, command)

    def select_index(self, index: int) -> Optional[Server]:
        """Move the selection; never reconnects"""
        try:
            with self.state.lock:
                server = self.state.catalog.select(index)
                self.state.geo_info = None
        except InvalidSelection as e:
            logger.warning(str(e))
            return None

        self.lookup_geo(server)
        self.request_redraw()
        return server

    def connect(self, index: Optional[int] = None) -> Optional[threading.Thread]:
        """
        Connect to the server at ``index`` (default: the selection)

        A live session is closed first. Returns the worker thread, or None
        when the request was rejected.
        """
        with self.state.lock:
            phase = self.state.phase
            if index is None:
                index = self.state.catalog.selected_index
            try:
                server = self.state.catalog.get(index)
            except InvalidSelection as e:
                logger.warning(str(e))
                return None
            if phase in (ConnectionPhase.CONNECTING,
                         ConnectionPhase.DISCONNECTING):
                logger.warning(f"Already {phase.name.lower()}, please wait")
                return None
            self.state.catalog.select(index)

        self.request_redraw()
        return self._run('connect', self._connect, server)

    def _connect(self, server: Server):
        if self.state.connected:
            self.orchestrator.disconnect()
        self.orchestrator.connect(server)

    def disconnect(self) -> Optional[threading.Thread]:
        with self.state.lock:
            phase = self.state.phase
        if phase == ConnectionPhase.DISCONNECTED:
            logger.info("Not connected")
            return None
        if phase != ConnectionPhase.CONNECTED:
            logger.warning(f"Already {phase.name.lower()}, please wait")
            return None
        return self._run('disconnect', self.orchestrator.disconnect)

    def toggle_routing_mode(self) -> Optional[threading.Thread]:
        """Switch routing mode, closing a live session first"""
        with self.state.lock:
            phase = self.state.phase
        if phase in (ConnectionPhase.CONNECTING, ConnectionPhase.DISCONNECTING):
            logger.warning(f"Already {phase.name.lower()}, please wait")
            return None
        return self._run('toggle-mode', self._toggle_routing_mode)

    def _toggle_routing_mode(self):
        with self.state.lock:
            mode = self.state.routing_mode
        if mode == RoutingMode.DIRECT_PROXY and not self.routing.privilege_check():
            raise PermissionDenied(
                "System-wide mode requires root privileges "
                "(run with: sudo superray-tui)"
            )

        if self.state.connected:
            logger.info("Disconnecting before switching mode...")
            self.orchestrator.disconnect()
        self.orchestrator.toggle_routing_mode()

    def set_subscription(self, url: str) -> Optional[threading.Thread]:
        url = url.strip()
        with self.state.lock:
            self.state.subscription_url = url
        if self.config is not None:
            self.config.set('subscription_url', url)
        logger.info("Subscription URL updated")
        return self.refresh_catalog()

    def refresh_catalog(self) -> Optional[threading.Thread]:
        with self.state.lock:
            url = self.state.subscription_url
        if not url:
            logger.warning("No subscription URL configured (press 's' to set one)")
            return None
        return self._run('refresh', self._refresh_catalog, url)

    def _refresh_catalog(self, url: str):
        logger.info("Updating subscription...")
        servers = self.engine.fetch_catalog(url)

        with self.state.lock:
            self.state.catalog.replace(servers)
            selected = self.state.catalog.selected
            self.state.geo_info = None

        logger.info(f"Loaded {len(servers)} servers")
        if selected is not None:
            self.lookup_geo(selected)

    def run_latency_probe(self) -> Optional[threading.Thread]:
        if not self._probe_lock.acquire(blocking=False):
            logger.warning("Latency test already running")
            return None

        def probe():
            try:
                self.probe.probe_and_sort(self.state)
            finally:
                self._probe_lock.release()

        return self._run('latency-test', probe)

    def lookup_geo(self, server: Server) -> Optional[threading.Thread]:
        """Fetch GeoIP details for ``server`` in the background"""
        if self.geoip is None:
            return None

        def lookup():
            info = self.geoip.lookup(server.address)
            with self.state.lock:
                selected = self.state.catalog.selected
                if selected is not None and selected.key == server.key:
                    self.state.geo_info = info

        return self._run('geoip', lookup)

