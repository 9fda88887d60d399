"""
Build Xray-core JSON configurations from a session request
"""

import json
import logging
from typing import Dict, List, Optional, Any

from ..core.errors import EngineError
from ..core.types import Server, SessionRequest, RoutingMode

logger = logging.getLogger(__name__)

PRIVATE_RANGES = [
    '10.0.0.0/8',
    '172.16.0.0/12',
    '192.168.0.0/16',
    '127.0.0.0/8',
    '100.64.0.0/10',
    '169.254.0.0/16',
    '224.0.0.0/4',
    '240.0.0.0/4',
    '255.255.255.255/32',
    '::1/128',
    'fc00::/7',
    'fe80::/10',
]


def build_stream_settings(server: Server) -> Dict[str, Any]:
    """Transport and TLS/REALITY settings for an outbound"""
    network = server.network or 'tcp'
    stream: Dict[str, Any] = {'network': network}

    if server.tls in ('tls', 'true'):
        stream['security'] = 'tls'
        tls_settings = {}
        if server.sni:
            tls_settings['serverName'] = server.sni
        if server.fingerprint:
            tls_settings['fingerprint'] = server.fingerprint
        if server.alpn:
            tls_settings['alpn'] = [p.strip() for p in server.alpn.split(',') if p.strip()]
        stream['tlsSettings'] = tls_settings
    elif server.security == 'reality':
        stream['security'] = 'reality'
        stream['realitySettings'] = {
            'serverName': server.sni,
            'fingerprint': server.fingerprint,
            'publicKey': server.public_key,
            'shortId': server.short_id,
        }

    if network == 'ws':
        ws_settings: Dict[str, Any] = {}
        if server.path:
            ws_settings['path'] = server.path
        if server.host:
            ws_settings['headers'] = {'Host': server.host}
        stream['wsSettings'] = ws_settings

    elif network == 'grpc':
        grpc_settings = {}
        if server.path:
            grpc_settings['serviceName'] = server.path
        stream['grpcSettings'] = grpc_settings

    elif network in ('h2', 'http'):
        http_settings: Dict[str, Any] = {}
        if server.path:
            http_settings['path'] = server.path
        if server.host:
            http_settings['host'] = [server.host]
        stream['httpSettings'] = http_settings

    elif network == 'tcp' and server.header_type and server.header_type != 'none':
        stream['tcpSettings'] = {'header': {'type': server.header_type}}

    return stream


def build_outbound(server: Server, tag: str = 'proxy') -> Dict[str, Any]:
    """
    Build the proxy outbound for a server

    Raises:
        EngineError: the protocol is not supported
    """
    protocol = server.protocol.lower()

    if protocol == 'vmess':
        return {
            'protocol': 'vmess',
            'tag': tag,
            'settings': {
                'vnext': [{
                    'address': server.address,
                    'port': server.port,
                    'users': [{
                        'id': server.uuid,
                        'alterId': server.alter_id,
                        'security': server.security or 'auto',
                    }],
                }],
            },
            'streamSettings': build_stream_settings(server),
        }

    if protocol == 'vless':
        return {
            'protocol': 'vless',
            'tag': tag,
            'settings': {
                'vnext': [{
                    'address': server.address,
                    'port': server.port,
                    'users': [{
                        'id': server.uuid,
                        'encryption': 'none',
                        'flow': server.flow,
                    }],
                }],
            },
            'streamSettings': build_stream_settings(server),
        }

    if protocol == 'trojan':
        return {
            'protocol': 'trojan',
            'tag': tag,
            'settings': {
                'servers': [{
                    'address': server.address,
                    'port': server.port,
                    'password': server.password,
                }],
            },
            'streamSettings': build_stream_settings(server),
        }

    if protocol in ('shadowsocks', 'ss'):
        return {
            'protocol': 'shadowsocks',
            'tag': tag,
            'settings': {
                'servers': [{
                    'address': server.address,
                    'port': server.port,
                    'method': server.method,
                    'password': server.password,
                }],
            },
        }

    raise EngineError(f"Unsupported protocol: {server.protocol}")


def build_routing_rules(direct_countries: Optional[List[str]] = None) -> List[Dict]:
    """Private ranges and chosen countries go direct, everything else via proxy"""
    rules: List[Dict[str, Any]] = [{
        'type': 'field',
        'ip': list(PRIVATE_RANGES),
        'outboundTag': 'direct',
    }]

    if direct_countries:
        rules.append({
            'type': 'field',
            'ip': [f"geoip:{country.lower()}" for country in direct_countries],
            'outboundTag': 'direct',
        })

    rules.append({
        'type': 'field',
        'network': 'tcp,udp',
        'outboundTag': 'proxy',
    })
    return rules


def build_inbounds(local_port: int, routing_mode: RoutingMode) -> List[Dict]:
    """SOCKS on ``local_port``, HTTP on the next port, plus a TUN feed"""
    inbounds: List[Dict[str, Any]] = []

    if routing_mode == RoutingMode.SYSTEM_WIDE:
        inbounds.append({
            'tag': 'tun-in',
            'protocol': 'dokodemo-door',
            'listen': '127.0.0.1',
            'port': local_port + 10,
            'settings': {
                'network': 'tcp,udp',
                'followRedirect': True,
            },
            'sniffing': {
                'enabled': True,
                'destOverride': ['http', 'tls', 'quic'],
            },
        })

    inbounds.append({
        'tag': 'socks-in',
        'protocol': 'socks',
        'listen': '127.0.0.1',
        'port': local_port,
        'settings': {'udp': True},
    })
    inbounds.append({
        'tag': 'http-in',
        'protocol': 'http',
        'listen': '127.0.0.1',
        'port': local_port + 1,
    })
    return inbounds


def build_config(request: SessionRequest,
                 local_port: int = 10808,
                 access_log: str = 'access.log',
                 error_log: str = 'error.log',
                 direct_countries: Optional[List[str]] = None,
                 log_level: str = 'warning') -> Dict[str, Any]:
    """Complete Xray configuration for one session"""
    outbound = build_outbound(request.server, 'proxy')
    logger.debug(
        f"Building {outbound['protocol']} config for "
        f"{request.server.address}:{request.server.port} ({request.routing_mode.name})"
    )

    return {
        'stats': {},
        'policy': {
            'system': {
                'statsInboundUplink': True,
                'statsInboundDownlink': True,
                'statsOutboundUplink': True,
                'statsOutboundDownlink': True,
            },
        },
        'log': {
            'loglevel': log_level,
            'access': access_log,
            'error': error_log,
        },
        'inbounds': build_inbounds(local_port, request.routing_mode),
        'outbounds': [
            outbound,
            {'tag': 'direct', 'protocol': 'freedom'},
            {'tag': 'block', 'protocol': 'blackhole'},
        ],
        'routing': {
            'domainStrategy': 'IPIfNonMatch',
            'rules': build_routing_rules(direct_countries),
        },
    }


def build_config_json(request: SessionRequest, **options) -> str:
    return json.dumps(build_config(request, **options))
