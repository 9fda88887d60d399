"""
Bounded-concurrency latency probing of the server catalog
"""

import time
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Sequence

from .session_state import SessionState
from .types import Server, LatencyResult
from ..engine.base import ProxyEngine

logger = logging.getLogger(__name__)


class LatencyProbe:
    """Probe every server once, at most ``concurrency`` at a time"""

    def __init__(self, engine: ProxyEngine, concurrency: int = 10,
                 timeout: float = 5.0,
                 clock: Callable[[], float] = time.monotonic):
        if concurrency <= 0:
            raise ValueError("Probe concurrency must be positive")
        self.engine = engine
        self.concurrency = concurrency
        self.timeout = timeout
        self.clock = clock

    def probe_one(self, server: Server) -> LatencyResult:
        """Single attempt; failures come back as an unsuccessful result"""
        started = self.clock()
        try:
            latency = self.engine.probe_reachability(
                server.address, server.port, self.timeout
            )
        except Exception as e:
            return LatencyResult(
                address=server.address,
                port=server.port,
                name=server.name,
                succeeded=False,
                error=str(e),
            )

        if int(latency) <= 0:
            return LatencyResult(
                address=server.address,
                port=server.port,
                name=server.name,
                succeeded=False,
                error="no reply",
            )

        if self.clock() - started > self.timeout:
            return LatencyResult(
                address=server.address,
                port=server.port,
                name=server.name,
                succeeded=False,
                error=f"timed out after {self.timeout}s",
            )

        return LatencyResult(
            address=server.address,
            port=server.port,
            name=server.name,
            latency_ms=int(latency),
            succeeded=True,
        )

    def run(self, servers: Sequence[Server]) -> List[LatencyResult]:
        """Probe ``servers``; results come back in input order"""
        if not servers:
            return []

        workers = min(self.concurrency, len(servers))
        with ThreadPoolExecutor(max_workers=workers,
                                thread_name_prefix='latency') as pool:
            return list(pool.map(self.probe_one, servers))

    def probe_and_sort(self, state: SessionState) -> List[LatencyResult]:
        """
        Probe the whole catalog held by ``state``, fold the results back and
        re-rank it

        The state lock is held only while copying the list and while
        applying results, never during the probes themselves.
        """
        with state.lock:
            servers = list(state.catalog.servers)

        if not servers:
            logger.warning("No servers to test")
            return []

        logger.info(f"Testing latency for {len(servers)} servers...")
        results = self.run(servers)

        with state.lock:
            state.catalog.apply_latency(results)
            state.catalog.sort_by_latency()

        ok = sum(1 for r in results if r.succeeded)
        logger.info(f"Latency test complete: {ok}/{len(results)} reachable")
        return results
