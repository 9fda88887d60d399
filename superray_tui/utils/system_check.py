"""
Platform and privilege checks
"""

import platform
import os
import sys
from typing import Dict, List, Tuple


def is_linux() -> bool:
    """Check if running on Linux"""
    return platform.system().lower() == 'linux'


def is_macos() -> bool:
    """Check if running on macOS"""
    return platform.system().lower() == 'darwin'


def is_windows() -> bool:
    """Check if running on Windows"""
    return platform.system().lower() == 'windows'


def is_root() -> bool:
    """Check if running with root privileges"""
    return os.geteuid() == 0 if hasattr(os, 'geteuid') else False


def tun_available() -> bool:
    """Whether the kernel exposes a TUN device for system-wide mode"""
    if is_linux():
        return os.path.exists('/dev/net/tun')
    # macOS creates utun devices on demand, Windows needs wintun
    return is_macos()


def get_system_info() -> Dict:
    """Platform summary for the version command"""
    return {
        'platform': platform.system(),
        'platform_release': platform.release(),
        'machine': platform.machine(),
        'python_version': platform.python_version(),
        'is_root': is_root(),
        'tun_available': tun_available(),
    }


def verify_system_requirements() -> Tuple[bool, List[str]]:
    """
    Verify the requirements for running the client

    Returns:
        Tuple of (requirements_met, error_messages)
    """
    errors = []

    if not (is_linux() or is_macos() or is_windows()):
        errors.append("Unsupported platform")

    py_version = sys.version_info
    if py_version < (3, 8):
        errors.append("Python 3.8 or higher required")

    return len(errors) == 0, errors
