"""
Network utilities: GeoIP lookup for the selected server
"""

import ipaddress
import threading
import time
import logging
from typing import Callable, Dict, Optional, Tuple

import dns.exception
import dns.resolver
import requests

logger = logging.getLogger(__name__)

GEOIP_URL = 'http://ip-api.com/json/{ip}'
GEOIP_FIELDS = 'status,country,countryCode,region,regionName,city,isp,org,as,asname,query'


def unknown_geo(address: str) -> Dict:
    return {
        'status': 'fail',
        'query': address,
        'country': 'Unknown',
        'location': 'Unknown',
        'organization': '',
    }


def format_location(info: Dict) -> str:
    if info.get('status') != 'success':
        return 'Unknown'
    country = info.get('country', '')
    city = info.get('city', '')
    if city and city != country:
        return f"{country} {city}".strip()
    return country or 'Unknown'


def format_organization(info: Dict) -> str:
    return info.get('org') or info.get('isp') or info.get('asname') or ''


class GeoIPLookup:
    """Resolve a server address and look up where it is"""

    def __init__(self, timeout: float = 5.0, cache_ttl: float = 1800,
                 session: Optional[requests.Session] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.session = session or requests.Session()
        self.clock = clock
        self._cache: Dict[str, Tuple[float, Dict]] = {}
        self._lock = threading.Lock()

    def resolve(self, address: str) -> Optional[str]:
        """Return ``address`` if it is an IP, else its first A/AAAA record"""
        try:
            ipaddress.ip_address(address)
            return address
        except ValueError:
            pass

        resolver = dns.resolver.Resolver()
        resolver.timeout = self.timeout
        resolver.lifetime = self.timeout

        for record_type in ('A', 'AAAA'):
            try:
                answers = resolver.resolve(address, record_type)
            except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN,
                    dns.resolver.NoNameservers, dns.exception.Timeout):
                continue
            for answer in answers:
                return str(answer)
        return None

    def lookup(self, address: str) -> Dict:
        """
        GeoIP record for ``address``

        Never raises: resolution or HTTP failures produce an "Unknown"
        record. Successful and failed lookups are both cached.
        """
        ip = self.resolve(address)
        if ip is None:
            logger.debug(f"Could not resolve {address}")
            return unknown_geo(address)

        now = self.clock()
        with self._lock:
            cached = self._cache.get(ip)
            if cached and now - cached[0] < self.cache_ttl:
                return cached[1]

        info = self.query(ip)

        with self._lock:
            self._cache[ip] = (now, info)
        return info

    def query(self, ip: str) -> Dict:
        info = unknown_geo(ip)
        try:
            response = self.session.get(
                GEOIP_URL.format(ip=ip),
                params={'fields': GEOIP_FIELDS},
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.debug(f"GeoIP lookup for {ip} failed: {e}")
            return info

        if not isinstance(data, dict):
            return info

        info.update(data)
        info['location'] = format_location(info)
        info['organization'] = format_organization(info)
        return info
