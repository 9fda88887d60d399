"""
Type definitions for the SuperRay client
"""

from dataclasses import dataclass, field, fields
from enum import Enum, auto
from typing import Optional, Dict, Tuple, Any


# Latency states: None = never probed, -1 = probe failed/timed out
LATENCY_UNTESTED: Optional[int] = None
LATENCY_TIMEOUT = -1


class RoutingMode(Enum):
    DIRECT_PROXY = auto()
    SYSTEM_WIDE = auto()


class ConnectionPhase(Enum):
    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    DISCONNECTING = auto()


# Engine JSON keys that differ from our attribute names
_SERVER_ALIASES = {
    'publicKey': 'public_key',
    'shortId': 'short_id',
    'alterId': 'alter_id',
    'headerType': 'header_type',
}


@dataclass
class Server:
    """Proxy server entry as delivered by a subscription"""
    name: str
    protocol: str
    address: str
    port: int
    uuid: str = ''
    password: str = ''
    method: str = ''
    network: str = ''
    tls: str = ''
    sni: str = ''
    path: str = ''
    host: str = ''
    flow: str = ''
    security: str = ''
    public_key: str = ''
    short_id: str = ''
    fingerprint: str = ''
    alter_id: int = 0
    alpn: str = ''
    header_type: str = ''
    link: str = ''
    latency_ms: Optional[int] = LATENCY_UNTESTED

    @property
    def key(self) -> Tuple[str, int]:
        """Identity used to match probe results and keep selection"""
        return (self.address, self.port)

    @property
    def latency_measured(self) -> bool:
        return self.latency_ms is not None and self.latency_ms > 0

    @property
    def latency_timed_out(self) -> bool:
        return self.latency_ms == LATENCY_TIMEOUT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Server':
        """
        Build a server from the engine's JSON representation

        Unknown keys are ignored. The engine reports ``latency_ms`` as
        ``-1``/``0`` for "nothing measured", which maps to untested here.
        """
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _SERVER_ALIASES.get(key, key)
            if name in known and value is not None:
                kwargs[name] = value

        latency = kwargs.pop('latency_ms', None)
        server = cls(
            name=str(kwargs.pop('name', '')),
            protocol=str(kwargs.pop('protocol', '')),
            address=str(kwargs.pop('address', '')),
            port=int(kwargs.pop('port', 0)),
            **kwargs
        )
        if isinstance(latency, int) and latency > 0:
            server.latency_ms = latency
        return server

    def display_name(self) -> str:
        return self.name or f"{self.address}:{self.port}"


@dataclass(frozen=True)
class SessionRequest:
    """What the orchestrator hands to the engine to open a session"""
    server: Server
    routing_mode: RoutingMode


@dataclass(frozen=True)
class InterfaceSpec:
    """Virtual network interface used for system-wide routing"""
    name: str = 'tun0'
    addresses: Tuple[str, ...] = ('10.255.0.1/24',)
    mtu: int = 1500
    outbound_tag: str = 'proxy'


@dataclass(frozen=True)
class TrafficSample:
    timestamp: float
    upload_bytes: int
    download_bytes: int


@dataclass(frozen=True)
class RateEstimate:
    upload_bps: float = 0.0
    download_bps: float = 0.0


@dataclass
class TrafficCounters:
    """Cumulative counters reported by the engine"""
    upload_bytes: int = 0
    download_bytes: int = 0
    inbounds: Dict[str, Tuple[int, int]] = field(default_factory=dict)
    outbounds: Dict[str, Tuple[int, int]] = field(default_factory=dict)


@dataclass(frozen=True)
class LatencyResult:
    address: str
    port: int
    name: Optional[str] = None
    latency_ms: Optional[int] = None
    succeeded: bool = False
    error: Optional[str] = None

    @property
    def key(self) -> Tuple[str, int]:
        return (self.address, self.port)


@dataclass(frozen=True)
class StateSnapshot:
    """Read-only copy of the shared state handed to renderers"""
    phase: ConnectionPhase
    routing_mode: RoutingMode
    active_server: Optional[Server]
    selected_server: Optional[Server]
    selected_index: int
    servers: Tuple[Server, ...]
    rate: RateEstimate
    total_upload: int
    total_download: int
    history: Tuple[TrafficSample, ...]
    counters: Optional[TrafficCounters]
    routing_active: bool
    subscription_url: str
    local_port: int
    geo_info: Optional[Dict[str, Any]] = None

    @property
    def connected(self) -> bool:
        return self.phase == ConnectionPhase.CONNECTED
