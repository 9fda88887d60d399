import json

import pytest

from superray_tui.core.errors import EngineError
from superray_tui.core.types import RoutingMode, Server, SessionRequest
from superray_tui.engine.xray_config import (
    build_config, build_config_json, build_outbound, build_routing_rules
)


def server(**kwargs):
    base = dict(name='s', protocol='vless', address='203.0.113.9', port=443,
                uuid='id-1')
    base.update(kwargs)
    return Server(**base)


def test_vless_reality_outbound():
    outbound = build_outbound(server(
        security='reality', sni='www.example.com', fingerprint='chrome',
        public_key='pk', short_id='ab', flow='xtls-rprx-vision'
    ))

    user = outbound['settings']['vnext'][0]['users'][0]
    assert outbound['tag'] == 'proxy'
    assert user == {'id': 'id-1', 'encryption': 'none', 'flow': 'xtls-rprx-vision'}
    reality = outbound['streamSettings']['realitySettings']
    assert reality['publicKey'] == 'pk'
    assert reality['shortId'] == 'ab'


def test_vmess_ws_tls_outbound():
    outbound = build_outbound(server(
        protocol='vmess', network='ws', tls='tls', sni='cdn.example.com',
        path='/ray', host='cdn.example.com', alpn='h2, http/1.1'
    ))

    stream = outbound['streamSettings']
    assert outbound['settings']['vnext'][0]['users'][0]['security'] == 'auto'
    assert stream['security'] == 'tls'
    assert stream['tlsSettings']['alpn'] == ['h2', 'http/1.1']
    assert stream['wsSettings'] == {'path': '/ray',
                                    'headers': {'Host': 'cdn.example.com'}}


def test_trojan_and_shadowsocks_outbounds():
    trojan = build_outbound(server(protocol='trojan', password='pw'))
    assert trojan['settings']['servers'][0]['password'] == 'pw'

    ss = build_outbound(server(protocol='ss', method='aes-256-gcm', password='pw'))
    assert ss['protocol'] == 'shadowsocks'
    assert ss['settings']['servers'][0]['method'] == 'aes-256-gcm'
    assert 'streamSettings' not in ss


def test_unknown_protocol_is_rejected():
    with pytest.raises(EngineError, match='Unsupported protocol'):
        build_outbound(server(protocol='hysteria'))


def test_direct_countries_become_geoip_rules():
    rules = build_routing_rules(['CN', 'ir'])
    assert rules[1]['ip'] == ['geoip:cn', 'geoip:ir']
    assert rules[-1]['outboundTag'] == 'proxy'


def test_inbounds_follow_local_port_and_mode():
    direct = build_config(SessionRequest(server(), RoutingMode.DIRECT_PROXY),
                          local_port=2000)
    assert [(i['tag'], i['port']) for i in direct['inbounds']] == [
        ('socks-in', 2000), ('http-in', 2001)
    ]

    tun = build_config(SessionRequest(server(), RoutingMode.SYSTEM_WIDE),
                       local_port=2000)
    assert tun['inbounds'][0]['tag'] == 'tun-in'


def test_config_json_is_valid():
    config = json.loads(build_config_json(
        SessionRequest(server(), RoutingMode.DIRECT_PROXY),
        access_log='a.log', error_log='e.log'
    ))
    assert config['log'] == {'loglevel': 'warning', 'access': 'a.log',
                             'error': 'e.log'}
    assert [o['tag'] for o in config['outbounds']] == ['proxy', 'direct', 'block']
