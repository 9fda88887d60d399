"""
Periodic traffic sampling and rate derivation
"""

import threading
import time
import logging
from typing import Callable, List, Optional

from .errors import EngineError
from .session_state import SessionState
from .supervisor import TaskSupervisor
from .types import ConnectionPhase, RateEstimate, TrafficSample
from ..engine.base import ProxyEngine

logger = logging.getLogger(__name__)


def compute_rate(previous: Optional[TrafficSample],
                 current: TrafficSample) -> RateEstimate:
    """
    Bytes per second between two cumulative samples

    Without a previous sample, or when time did not advance, the rate is
    zero. A counter that went backwards (engine restart) yields zero for
    that direction.
    """
    if previous is None:
        return RateEstimate()

    elapsed = current.timestamp - previous.timestamp
    if elapsed <= 0:
        return RateEstimate()

    up = max(0, current.upload_bytes - previous.upload_bytes)
    down = max(0, current.download_bytes - previous.download_bytes)
    return RateEstimate(upload_bps=up / elapsed, download_bps=down / elapsed)


class TelemetryPoller:
    """Sample engine counters on a fixed cadence while a session is live"""

    def __init__(self, state: SessionState, engine: ProxyEngine,
                 supervisor: TaskSupervisor, interval: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        self.state = state
        self.engine = engine
        self.supervisor = supervisor
        self.interval = interval
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._listeners: List[Callable[[], None]] = []

    def register_callback(self, callback: Callable[[], None]):
        """Invoked once per tick, sampled or not"""
        self._listeners.append(callback)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, daemon=True, name='telemetry'
        )
        self._thread.start()
        logger.debug(f"Telemetry poller started ({self.interval}s)")

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self):
        while not self._stop.wait(self.interval):
            self.supervisor.guard('telemetry-tick', self.tick)
            for listener in self._listeners:
                self.supervisor.guard('telemetry-listener', listener)

    def tick(self) -> bool:
        """
        Take one sample

        Returns:
            True if a sample was recorded
        """
        with self.state.lock:
            if self.state.phase not in (ConnectionPhase.CONNECTED,
                                        ConnectionPhase.CONNECTING):
                return False
            handle = self.state.session_handle
        if handle is None:
            return False

        # Engine call outside the lock
        try:
            counters = self.engine.query_counters(handle)
        except EngineError as e:
            logger.debug(f"Stats query failed: {e}")
            return False

        sample = TrafficSample(
            timestamp=self.clock(),
            upload_bytes=counters.upload_bytes,
            download_bytes=counters.download_bytes,
        )

        with self.state.lock:
            if self.state.session_handle != handle:
                logger.debug("Session changed during sampling, dropping sample")
                return False

            self.state.rate = compute_rate(self.state.history.latest, sample)
            self.state.history.append(sample)
            self.state.total_upload = sample.upload_bytes
            self.state.total_download = sample.download_bytes
            self.state.counters = counters
        return True
