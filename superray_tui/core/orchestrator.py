"""
Connection lifecycle: connect, disconnect and routing-mode switches
"""

import threading
from concurrent.futures import Future, TimeoutError as FutureTimeout
from typing import Optional, Dict, List, Callable

from .errors import AlreadyInProgress, EngineError, PermissionDenied
from .session_state import SessionState
from .supervisor import TaskSupervisor
from .system_routing import SystemRouting, RoutingOutcome
from .types import ConnectionPhase, RoutingMode, Server, SessionRequest
from ..engine.base import ProxyEngine
from ..utils.logging_setup import get_logger

logger = get_logger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30.0


class ConnectionOrchestrator:
    """
    Serialized lifecycle transitions against the shared session state

    Only one transition runs at a time: the phase is checked and advanced
    under the state lock, and a second request while one is in flight is
    rejected with AlreadyInProgress. Engine calls are made without the lock.
    """

    def __init__(self, state: SessionState, engine: ProxyEngine,
                 supervisor: TaskSupervisor, routing: SystemRouting,
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT):
        self.state = state
        self.engine = engine
        self.supervisor = supervisor
        self.routing = routing
        self.connect_timeout = connect_timeout

        # Sessions the engine may still hold although we gave up on them
        self._orphans: List[str] = []
        self._orphan_lock = threading.Lock()

        # Bumped by every connect and emergency stop, under the state lock
        self._attempt = 0
        self._switching_mode = False

        self._callbacks: Dict[str, List[Callable]] = {
            'state_change': [],
            'mode_change': [],
            'error': []
        }

    def register_callback(self, event: str, callback: Callable):
        """Register event callback"""
        if event in self._callbacks:
            self._callbacks[event].append(callback)

    def _notify_callbacks(self, event: str, *args, **kwargs):
        for callback in self._callbacks.get(event, []):
            try:
                callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"Callback error: {e}")

    def _change_phase(self, new_phase: ConnectionPhase) -> ConnectionPhase:
        """Set the phase; caller holds the state lock"""
        old_phase = self.state.phase
        self.state.phase = new_phase
        logger.debug(f"State change: {old_phase.name} -> {new_phase.name}")
        return old_phase

    @property
    def orphans(self) -> List[str]:
        with self._orphan_lock:
            return list(self._orphans)

    # Connect

    def connect(self, server: Server) -> Optional[RoutingOutcome]:
        """
        Open a session to ``server``

        Returns:
            The system routing outcome in system-wide mode, otherwise None

        Raises:
            AlreadyInProgress: not disconnected
            EngineError: the engine refused or did not answer in time
        """
        with self.state.lock:
            if self.state.phase != ConnectionPhase.DISCONNECTED:
                raise AlreadyInProgress(
                    f"Cannot connect while {self.state.phase.name.lower()}"
                )
            if self._switching_mode:
                raise AlreadyInProgress("Routing mode switch in progress")
            self._attempt += 1
            attempt = self._attempt
            routing_mode = self.state.routing_mode
            old_phase = self._change_phase(ConnectionPhase.CONNECTING)
        self._notify_callbacks('state_change', old_phase,
                               ConnectionPhase.CONNECTING, server.display_name())

        logger.info(f"Connecting to {server.display_name()}...")
        self._teardown_stale()

        request = SessionRequest(server=server, routing_mode=routing_mode)
        future = self.supervisor.submit(
            'begin-session', self.engine.begin_session, request
        )

        try:
            handle = future.result(timeout=self.connect_timeout)
        except FutureTimeout:
            future.add_done_callback(self._discard_late_result)
            message = f"Connection timed out after {self.connect_timeout:g}s"
            self._fail_connect(message, attempt)
            raise EngineError(message)
        except Exception as e:
            self._fail_connect(f"Failed to connect: {e}", attempt)
            raise

        if not self._still_connecting(attempt):
            self._abandon(handle, routed=False)
            return None

        outcome = None
        if routing_mode == RoutingMode.SYSTEM_WIDE:
            outcome = self._enable_routing(handle, server)

        with self.state.lock:
            adopted = self._still_connecting(attempt)
            if adopted:
                old_phase = self._change_phase(ConnectionPhase.CONNECTED)
                self.state.mark_connected(server, handle)
                self.state.routing_active = outcome is not None
        if not adopted:
            self._abandon(handle, routed=outcome is not None)
            return None
        self._notify_callbacks('state_change', old_phase,
                               ConnectionPhase.CONNECTED, server.display_name())

        logger.info(f"Connected to {server.display_name()}")
        return outcome

    def _enable_routing(self, handle: str,
                        server: Server) -> Optional[RoutingOutcome]:
        """Best-effort: the proxy session stays up if this fails"""
        try:
            outcome = self.routing.enable(handle, server.address)
        except Exception as e:
            message = f"System-wide routing failed: {e}"
            logger.error(message)
            self._notify_callbacks('error', message)
            return None

        if outcome == RoutingOutcome.DEGRADED:
            self._notify_callbacks(
                'error', "System-wide routing degraded: routes not installed"
            )
        return outcome

    def _still_connecting(self, attempt: int) -> bool:
        with self.state.lock:
            return (self._attempt == attempt and
                    self.state.phase == ConnectionPhase.CONNECTING)

    def _abandon(self, handle: str, routed: bool):
        """The attempt was cancelled underneath us; end what it started"""
        logger.warning(f"Connect cancelled, discarding session {handle}")
        if routed:
            self._release(handle)
            return
        try:
            self.engine.end_session(handle)
        except Exception as e:
            logger.warning(f"Failed to end cancelled session {handle}: {e}")
            with self._orphan_lock:
                self._orphans.append(handle)

    def _fail_connect(self, message: str, attempt: int):
        logger.debug(message)
        with self.state.lock:
            if not self._still_connecting(attempt):
                return
            old_phase = self._change_phase(ConnectionPhase.DISCONNECTED)
            self.state.mark_disconnected()
        self._notify_callbacks('state_change', old_phase,
                               ConnectionPhase.DISCONNECTED, message)
        self._notify_callbacks('error', message)

    def _discard_late_result(self, future: Future):
        """A session that started after we gave up is ended, never adopted"""
        if future.cancelled() or future.exception() is not None:
            return
        handle = future.result()
        logger.warning(f"Discarding late session {handle}")
        try:
            self.engine.end_session(handle)
        except Exception as e:
            logger.warning(f"Failed to end late session {handle}: {e}")
            with self._orphan_lock:
                self._orphans.append(handle)

    def _teardown_stale(self):
        with self._orphan_lock:
            stale, self._orphans = self._orphans, []

        for handle in stale:
            try:
                self.engine.end_session(handle)
                logger.debug(f"Ended stale session {handle}")
            except Exception as e:
                logger.debug(f"Stale session {handle} already gone: {e}")

    # Disconnect

    def disconnect(self) -> bool:
        """
        Close the live session

        Returns:
            False if there was nothing to disconnect

        Raises:
            AlreadyInProgress: a connect or disconnect is in flight
        """
        with self.state.lock:
            phase = self.state.phase
            if phase == ConnectionPhase.DISCONNECTED:
                return False
            if phase != ConnectionPhase.CONNECTED:
                raise AlreadyInProgress(
                    f"Cannot disconnect while {phase.name.lower()}"
                )
            handle = self.state.session_handle
            self.state.active_server = None
            self.state.session_handle = None
            self.state.routing_active = False
            old_phase = self._change_phase(ConnectionPhase.DISCONNECTING)
        self._notify_callbacks('state_change', old_phase,
                               ConnectionPhase.DISCONNECTING, '')

        logger.info("Disconnecting...")
        self._release(handle)

        with self.state.lock:
            # An emergency stop may already have finished the job
            if self.state.phase != ConnectionPhase.DISCONNECTING:
                return True
            old_phase = self._change_phase(ConnectionPhase.DISCONNECTED)
            self.state.mark_disconnected()
        self._notify_callbacks('state_change', old_phase,
                               ConnectionPhase.DISCONNECTED, '')

        logger.info("Disconnected")
        return True

    def _release(self, handle: Optional[str]):
        self.routing.disable()
        if handle is None:
            return
        try:
            self.engine.end_session(handle)
        except Exception as e:
            logger.error(f"Failed to end session: {e}")
            with self._orphan_lock:
                self._orphans.append(handle)

    def emergency_disconnect(self):
        """Drop everything regardless of the current phase"""
        logger.critical("Emergency disconnect triggered")

        with self.state.lock:
            self._attempt += 1
            handle = self.state.session_handle
            old_phase = self._change_phase(ConnectionPhase.DISCONNECTED)
            self.state.mark_disconnected()

        self.routing.cleanup_residual()
        if handle is not None:
            try:
                self.engine.end_session(handle)
            except Exception as e:
                logger.error(f"Failed to end session: {e}")
        self._teardown_stale()

        self._notify_callbacks('state_change', old_phase,
                               ConnectionPhase.DISCONNECTED, 'emergency')

    # Routing mode

    def toggle_routing_mode(self) -> RoutingMode:
        """
        Switch between direct proxy and system-wide routing

        Raises:
            AlreadyInProgress: a session is live or in transition
            PermissionDenied: system-wide routing needs root
        """
        with self.state.lock:
            if self.state.phase != ConnectionPhase.DISCONNECTED:
                raise AlreadyInProgress(
                    "Disconnect before switching routing mode"
                )
            if self._switching_mode:
                raise AlreadyInProgress("Routing mode switch in progress")
            self._switching_mode = True
            current = self.state.routing_mode

        new_mode = None
        try:
            if current == RoutingMode.DIRECT_PROXY:
                if not self.routing.privilege_check():
                    raise PermissionDenied(
                        "System-wide mode requires root privileges "
                        "(run with: sudo superray-tui)"
                    )
                new_mode = RoutingMode.SYSTEM_WIDE
            else:
                self.routing.cleanup_residual()
                new_mode = RoutingMode.DIRECT_PROXY
        finally:
            with self.state.lock:
                if new_mode is not None:
                    self.state.routing_mode = new_mode
                self._switching_mode = False

        logger.info(f"Routing mode: {new_mode.name}")
        self._notify_callbacks('mode_change', current, new_mode)
        return new_mode
