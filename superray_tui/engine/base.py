"""
Proxy engine contract consumed by the client core

Every call is synchronous and may block or fail; failures are raised as
EngineError. The core owns all concurrency and timeouts around these calls.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..core.types import (
    Server, SessionRequest, TrafficCounters, InterfaceSpec
)


class ProxyEngine(ABC):
    """Request/response boundary to the proxy engine"""

    @abstractmethod
    def version(self) -> str:
        """Human readable engine version"""

    @abstractmethod
    def begin_session(self, request: SessionRequest) -> str:
        """Start a proxy session and return its opaque handle"""

    @abstractmethod
    def end_session(self, handle: str):
        """Stop and destroy a session"""

    @abstractmethod
    def query_counters(self, handle: Optional[str] = None) -> TrafficCounters:
        """Cumulative upload/download counters"""

    @abstractmethod
    def probe_reachability(self, address: str, port: int,
                           timeout: float) -> int:
        """Return round-trip latency in milliseconds"""

    @abstractmethod
    def create_interface(self, spec: InterfaceSpec) -> str:
        """Create the virtual interface and return its handle"""

    @abstractmethod
    def attach_interface(self, interface: str, handle: str,
                         outbound_tag: str = 'proxy'):
        """Feed the interface's packets into the session's outbound"""

    @abstractmethod
    def install_routes(self, interface: str, exclude_address: str):
        """Route all traffic through the interface except ``exclude_address``"""

    @abstractmethod
    def remove_routes(self, interface: str):
        """Undo install_routes"""

    @abstractmethod
    def close_interface(self, interface: str):
        """Detach and destroy the interface"""

    @abstractmethod
    def close_all_interfaces(self):
        """Idempotent cleanup of any interface the engine still holds"""

    @abstractmethod
    def fetch_catalog(self, subscription_url: str) -> List[Server]:
        """Fetch and parse the subscription"""

    def shutdown(self):
        """Release engine-wide resources on exit"""
        pass
