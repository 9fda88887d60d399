"""
SuperRay engine: ctypes binding to the libsuperray shared library

Every exported function takes C strings/ints and returns a heap-allocated
JSON string ``{"success": bool, "data": ..., "error": str}`` that must be
released with ``SuperRay_Free``.
"""

import ctypes
import ctypes.util
import json
import os
import sys
import threading
import logging
from pathlib import Path
from typing import Optional, List, Dict, Any

from .base import ProxyEngine
from .xray_config import build_config_json
from ..core.errors import EngineError
from ..core.types import (
    Server, SessionRequest, TrafficCounters, InterfaceSpec
)

logger = logging.getLogger(__name__)

SUBSCRIPTION_NAME = 'default'

# Exported functions and their argument types
_SIGNATURES = {
    'SuperRay_Version': [],
    'SuperRay_XrayVersion': [],
    'SuperRay_SetAssetDir': [ctypes.c_char_p],
    'SuperRay_Run': [ctypes.c_char_p],
    'SuperRay_DestroyInstance': [ctypes.c_char_p],
    'SuperRay_StopAll': [],
    'SuperRay_GetXrayStats': [],
    'SuperRay_TCPPing': [ctypes.c_char_p, ctypes.c_int, ctypes.c_int],
    'SuperRay_AddSubscription': [ctypes.c_char_p, ctypes.c_char_p],
    'SuperRay_RemoveSubscription': [ctypes.c_char_p],
    'SuperRay_UpdateSubscription': [ctypes.c_char_p],
    'SuperRay_CreateSystemTUN': [ctypes.c_char_p],
    'SuperRay_StartSystemTUNStack': [ctypes.c_char_p, ctypes.c_char_p, ctypes.c_char_p],
    'SuperRay_SetupRoutes': [ctypes.c_char_p, ctypes.c_char_p],
    'SuperRay_CleanupRoutes': [ctypes.c_char_p],
    'SuperRay_CloseSystemTUN': [ctypes.c_char_p],
    'SuperRay_CloseAllSystemTUNs': [],
    'SuperRay_CloseAllCallbackTUNs': [],
    'SuperRay_CloseAllTUNDevices': [],
}


def default_library_name() -> str:
    if sys.platform == 'darwin':
        return 'libsuperray.dylib'
    if sys.platform == 'win32':
        return 'superray.dll'
    return 'libsuperray.so'


def parse_response(raw: str) -> Any:
    """
    Unwrap the JSON envelope returned by every call

    Raises:
        EngineError: malformed envelope or ``success`` is false
    """
    try:
        envelope = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise EngineError(f"Failed to parse engine response: {e}")

    if not isinstance(envelope, dict):
        raise EngineError("Failed to parse engine response: not an object")
    if not envelope.get('success'):
        raise EngineError(envelope.get('error') or 'Unknown engine error')
    return envelope.get('data')


def parse_counters(data: Dict[str, Any]) -> TrafficCounters:
    """Traffic stats payload -> TrafficCounters"""
    def per_tag(section) -> Dict[str, tuple]:
        return {
            tag: (int(v.get('uplink', 0)), int(v.get('downlink', 0)))
            for tag, v in (section or {}).items()
        }

    data = data or {}
    return TrafficCounters(
        upload_bytes=int(data.get('uplink', data.get('upload', 0)) or 0),
        download_bytes=int(data.get('downlink', data.get('download', 0)) or 0),
        inbounds=per_tag(data.get('inbounds')),
        outbounds=per_tag(data.get('outbounds')),
    )


class SuperRayEngine(ProxyEngine):
    """ProxyEngine backed by libsuperray"""

    def __init__(self, library_path: Optional[str] = None,
                 local_port: int = 10808,
                 geo_path: Optional[str] = None,
                 access_log: str = 'access.log',
                 error_log: str = 'error.log',
                 direct_countries: Optional[List[str]] = None):
        self.local_port = local_port
        self.access_log = access_log
        self.error_log = error_log
        self.direct_countries = list(direct_countries or [])
        self._lib = self._load_library(library_path)
        self._subscription_url: Optional[str] = None
        self._subscription_lock = threading.Lock()

        if geo_path:
            self.set_asset_dir(geo_path)

    @staticmethod
    def _load_library(library_path: Optional[str]) -> ctypes.CDLL:
        candidates = []
        if library_path:
            candidates.append(library_path)
        if os.environ.get('SUPERRAY_LIB'):
            candidates.append(os.environ['SUPERRAY_LIB'])
        found = ctypes.util.find_library('superray')
        if found:
            candidates.append(found)
        candidates.append(default_library_name())

        errors = []
        for candidate in candidates:
            try:
                lib = ctypes.CDLL(candidate)
            except OSError as e:
                errors.append(f"{candidate}: {e}")
                continue

            for name, argtypes in _SIGNATURES.items():
                func = getattr(lib, name)
                func.argtypes = argtypes
                # Keep the raw pointer so it can be freed
                func.restype = ctypes.c_void_p
            lib.SuperRay_Free.argtypes = [ctypes.c_void_p]
            lib.SuperRay_Free.restype = None

            logger.debug(f"Loaded SuperRay library: {candidate}")
            return lib

        raise EngineError(
            "SuperRay library not found (" + '; '.join(errors) + ")"
        )

    def _call(self, name: str, *args) -> Any:
        """Invoke an exported function and unwrap its response"""
        encoded = [
            a.encode('utf-8') if isinstance(a, str) else a
            for a in args
        ]
        ptr = getattr(self._lib, name)(*encoded)
        if not ptr:
            raise EngineError(f"{name} returned no response")

        try:
            raw = ctypes.string_at(ptr).decode('utf-8', errors='replace')
        finally:
            self._lib.SuperRay_Free(ptr)

        return parse_response(raw)

    def version(self) -> str:
        version = (self._call('SuperRay_Version') or {}).get('version', '?')
        try:
            xray = (self._call('SuperRay_XrayVersion') or {}).get('version', '?')
        except EngineError:
            xray = '?'
        return f"SuperRay {version} (Xray-core {xray})"

    def set_asset_dir(self, geo_path: str):
        path = Path(geo_path).expanduser()
        if not path.is_absolute():
            path = path.resolve()
        try:
            self._call('SuperRay_SetAssetDir', str(path))
        except EngineError as e:
            logger.warning(f"Failed to set geo asset directory {path}: {e}")

    def begin_session(self, request: SessionRequest) -> str:
        config = build_config_json(
            request,
            local_port=self.local_port,
            access_log=self.access_log,
            error_log=self.error_log,
            direct_countries=self.direct_countries,
        )
        data = self._call('SuperRay_Run', config) or {}
        instance_id = data.get('id')
        if not instance_id:
            raise EngineError("Engine did not return an instance id")
        return instance_id

    def end_session(self, handle: str):
        self._call('SuperRay_DestroyInstance', handle)

    def query_counters(self, handle: Optional[str] = None) -> TrafficCounters:
        return parse_counters(self._call('SuperRay_GetXrayStats'))

    def probe_reachability(self, address: str, port: int,
                           timeout: float) -> int:
        data = self._call(
            'SuperRay_TCPPing', address, int(port), int(timeout * 1000)
        ) or {}
        # 0 means the engine gave up waiting
        latency = int(data.get('latency_ms') or 0)
        if latency <= 0:
            raise EngineError(f"No reply from {address}:{port}")
        return latency

    def create_interface(self, spec: InterfaceSpec) -> str:
        config = json.dumps({
            'tag': spec.name,
            'mtu': spec.mtu,
            'addresses': list(spec.addresses),
        })
        data = self._call('SuperRay_CreateSystemTUN', config) or {}
        logger.info(f"TUN device created: {data.get('name', spec.name)}")
        return spec.name

    def attach_interface(self, interface: str, handle: str,
                         outbound_tag: str = 'proxy'):
        self._call('SuperRay_StartSystemTUNStack', interface, handle, outbound_tag)

    def install_routes(self, interface: str, exclude_address: str):
        self._call('SuperRay_SetupRoutes', interface, exclude_address)

    def remove_routes(self, interface: str):
        self._call('SuperRay_CleanupRoutes', interface)

    def close_interface(self, interface: str):
        try:
            self._call('SuperRay_CloseSystemTUN', interface)
        except EngineError as e:
            logger.debug(f"CloseSystemTUN failed, closing all: {e}")
            self._call('SuperRay_CloseAllSystemTUNs')

    def close_all_interfaces(self):
        for name in ('SuperRay_CloseAllSystemTUNs',
                     'SuperRay_CloseAllCallbackTUNs',
                     'SuperRay_CloseAllTUNDevices'):
            try:
                self._call(name)
            except EngineError as e:
                logger.debug(f"{name} failed: {e}")

    def fetch_catalog(self, subscription_url: str) -> List[Server]:
        with self._subscription_lock:
            if subscription_url != self._subscription_url:
                if self._subscription_url is not None:
                    try:
                        self._call('SuperRay_RemoveSubscription', SUBSCRIPTION_NAME)
                    except EngineError as e:
                        logger.debug(f"RemoveSubscription: {e}")
                try:
                    self._call('SuperRay_AddSubscription',
                               SUBSCRIPTION_NAME, subscription_url)
                except EngineError as e:
                    # Usually "already exists"; the update below decides
                    logger.debug(f"AddSubscription: {e}")
                self._subscription_url = subscription_url

            data = self._call('SuperRay_UpdateSubscription', SUBSCRIPTION_NAME) or {}

        return [Server.from_dict(item) for item in data.get('servers') or []]

    def shutdown(self):
        self.close_all_interfaces()
        try:
            self._call('SuperRay_StopAll')
        except EngineError as e:
            logger.debug(f"StopAll failed: {e}")
