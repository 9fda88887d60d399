"""
Display helpers: human-readable sizes and rates, address masking
"""

import ipaddress

KB = 1024
MB = KB * 1024
GB = MB * 1024


def format_speed(bytes_per_sec: float) -> str:
    if bytes_per_sec < KB:
        return f"{bytes_per_sec:.0f} B/s"
    if bytes_per_sec < MB:
        return f"{bytes_per_sec / KB:.1f} KB/s"
    if bytes_per_sec < GB:
        return f"{bytes_per_sec / MB:.2f} MB/s"
    return f"{bytes_per_sec / GB:.2f} GB/s"


def format_bytes(num_bytes: int) -> str:
    if num_bytes < KB:
        return f"{num_bytes} B"
    if num_bytes < MB:
        return f"{num_bytes / KB:.1f} KB"
    if num_bytes < GB:
        return f"{num_bytes / MB:.2f} MB"
    return f"{num_bytes / GB:.2f} GB"


def format_latency(latency_ms) -> str:
    """``-`` untested, ``timeout`` failed, otherwise milliseconds"""
    if latency_ms is None:
        return '-'
    if latency_ms < 0:
        return 'timeout'
    return f"{latency_ms}ms"


def mask_address(address: str) -> str:
    """
    Hide the tail of a server address

    IPv4 keeps the first two octets, IPv6 the first two groups, hostnames
    drop their last two labels.
    """
    parts = address.split('.')
    if len(parts) == 4 and all(p.isdigit() for p in parts):
        return f"{parts[0]}.{parts[1]}.*.*"

    if ':' in address:
        groups = address.split(':')
        if len(groups) > 2:
            return f"{groups[0]}:{groups[1]}:***"

    if len(parts) >= 3:
        return '.'.join(parts[:-2]) + '.***'
    if len(parts) == 2:
        return parts[0] + '.***'

    if len(address) > 6:
        return address[:-4] + '****'
    return address


def mask_ip_address(ip: str) -> str:
    """Mask the last two segments of an IPv4 or IPv6 address"""
    try:
        parsed = ipaddress.ip_address(ip)
    except ValueError:
        return ip

    if parsed.version == 4:
        octets = ip.split('.')
        return f"{octets[0]}.{octets[1]}.*.*"

    groups = ip.split(':')
    groups[-1] = '****'
    groups[-2] = '****'
    return ':'.join(groups)
