"""
Shared session state guarded by a single lock
"""

import threading
from collections import deque
from typing import Optional, Deque, Dict, Any

from .catalog import ServerCatalog
from .types import (
    ConnectionPhase, RoutingMode, Server, RateEstimate, TrafficSample,
    TrafficCounters, StateSnapshot
)

DEFAULT_HISTORY_SIZE = 300


class TrafficHistory:
    """Bounded FIFO of traffic samples; the oldest sample is evicted first"""

    def __init__(self, capacity: int = DEFAULT_HISTORY_SIZE):
        if capacity <= 0:
            raise ValueError("History capacity must be positive")
        self.capacity = capacity
        self._samples: Deque[TrafficSample] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self):
        return iter(self._samples)

    @property
    def latest(self) -> Optional[TrafficSample]:
        return self._samples[-1] if self._samples else None

    def append(self, sample: TrafficSample):
        self._samples.append(sample)

    def clear(self):
        self._samples.clear()

    def snapshot(self):
        return tuple(self._samples)


class SessionState:
    """
    Single source of truth for the connection

    Every field below is read and written under ``lock``. Only the
    orchestrator changes the session fields; only the telemetry poller
    writes the traffic fields.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE,
                 routing_mode: RoutingMode = RoutingMode.DIRECT_PROXY):
        self.lock = threading.RLock()

        # Session
        self.phase = ConnectionPhase.DISCONNECTED
        self.routing_mode = routing_mode
        self.active_server: Optional[Server] = None
        self.session_handle: Optional[str] = None
        self.routing_active = False

        # Catalog
        self.catalog = ServerCatalog()
        self.subscription_url = ''
        self.local_port = 0
        self.geo_info: Optional[Dict[str, Any]] = None

        # Traffic
        self.history = TrafficHistory(history_size)
        self.rate = RateEstimate()
        self.total_upload = 0
        self.total_download = 0
        self.counters: Optional[TrafficCounters] = None

    @property
    def connected(self) -> bool:
        return self.phase == ConnectionPhase.CONNECTED

    @property
    def connecting(self) -> bool:
        return self.phase == ConnectionPhase.CONNECTING

    def reset_traffic(self):
        self.history.clear()
        self.rate = RateEstimate()
        self.total_upload = 0
        self.total_download = 0
        self.counters = None

    def mark_connected(self, server: Server, handle: str):
        self.phase = ConnectionPhase.CONNECTED
        self.active_server = server
        self.session_handle = handle
        self.reset_traffic()

    def mark_disconnected(self):
        self.phase = ConnectionPhase.DISCONNECTED
        self.active_server = None
        self.session_handle = None
        self.routing_active = False
        self.counters = None

    def check_invariants(self):
        """Raise AssertionError if the session fields are inconsistent"""
        with self.lock:
            connected = self.phase == ConnectionPhase.CONNECTED
            assert (self.active_server is not None) == connected
            assert (self.session_handle is not None) == connected
            assert not (self.connected and self.connecting)
            if self.routing_active:
                assert connected
                assert self.routing_mode == RoutingMode.SYSTEM_WIDE
            index = self.catalog.selected_index
            assert index == -1 or 0 <= index < len(self.catalog)

    def snapshot(self) -> StateSnapshot:
        with self.lock:
            return StateSnapshot(
                phase=self.phase,
                routing_mode=self.routing_mode,
                active_server=self.active_server,
                selected_server=self.catalog.selected,
                selected_index=self.catalog.selected_index,
                servers=tuple(self.catalog.servers),
                rate=self.rate,
                total_upload=self.total_upload,
                total_download=self.total_download,
                history=self.history.snapshot(),
                counters=self.counters,
                routing_active=self.routing_active,
                subscription_url=self.subscription_url,
                local_port=self.local_port,
                geo_info=self.geo_info,
            )
