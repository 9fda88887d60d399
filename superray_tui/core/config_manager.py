"""
Configuration Manager for client settings
"""

import copy
import os
import sys
import yaml
from pathlib import Path
from typing import Optional, Dict, List, Any, Mapping
import logging

from dotenv import dotenv_values

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / '.config' / 'superray-tui'

# Environment variable -> (setting key, converter)
ENV_OVERRIDES = {
    'SUPERRAY_SUB_URL': ('subscription_url', str),
    'SUPERRAY_LOCAL_PORT': ('local_port', int),
    'SUPERRAY_GEO_PATH': ('geo_path', str),
    'SUPERRAY_LIB': ('library_path', str),
    'ACCESS_LOG': ('access_log', str),
    'ERROR_LOG': ('error_log', str),
    'DIRECT_COUNTRIES': (
        'direct_countries',
        lambda v: [c.strip().lower() for c in v.split(',') if c.strip()]
    ),
}


def default_env_files() -> List[Path]:
    """``.env`` in the working directory first, then next to the launcher"""
    files = [Path.cwd() / '.env']
    launcher = Path(os.path.abspath(sys.argv[0])).parent / '.env'
    if launcher not in files:
        files.append(launcher)
    return files


class ConfigManager:
    """Manage client settings"""

    def __init__(self, config_file: Optional[Path] = None,
                 env: Optional[Mapping[str, str]] = None,
                 env_files: Optional[List[Path]] = None):
        """
        Initialize configuration manager

        Args:
            config_file: settings.yaml location
            env: environment to read overrides from (default: os.environ)
            env_files: candidate ``.env`` files, in lookup order
        """
        if config_file is None:
            self.settings_file = DEFAULT_CONFIG_DIR / 'settings.yaml'
        else:
            self.settings_file = Path(config_file).expanduser()
        self.config_dir = self.settings_file.parent

        self.default_settings = {
            'log_level': 'INFO',
            'log_file': str(self.config_dir / 'logs' / 'superray-tui.log'),
            'subscription_url': '',
            'local_port': 10808,
            'geo_path': './geoip',
            'access_log': 'access.log',
            'error_log': 'error.log',
            'direct_countries': ['cn'],
            'library_path': '',
            'connect_timeout': 30,
            'telemetry': {
                'interval': 1.0,
                'history_size': 300
            },
            'latency': {
                'concurrency': 10,
                'timeout': 5.0
            },
            'tun': {
                'name': 'tun0',
                'addresses': ['10.255.0.1/24'],
                'mtu': 1500
            },
            'geoip': {
                'enabled': True,
                'cache_ttl': 1800
            }
        }

        self.settings = self.load_settings()
        self.overrides = self.load_overrides(
            os.environ if env is None else env,
            default_env_files() if env_files is None else env_files
        )

    def load_settings(self) -> Dict:
        """Load settings from file or create default"""
        if self.settings_file.exists():
            try:
                with open(self.settings_file, 'r') as f:
                    settings = yaml.safe_load(f) or {}

                if not isinstance(settings, dict):
                    raise ConfigError(f"{self.settings_file} is not a mapping")

                merged = self._deep_merge(copy.deepcopy(self.default_settings), settings)
                logger.debug("Settings loaded successfully")
                return merged

            except (OSError, yaml.YAMLError, ConfigError) as e:
                logger.error(f"Failed to load settings: {e}")
                logger.info("Using default settings")
                return copy.deepcopy(self.default_settings)
        else:
            self.save_settings(copy.deepcopy(self.default_settings))
            return copy.deepcopy(self.default_settings)

    def save_settings(self, settings: Optional[Dict] = None):
        """Save settings to file"""
        if settings is None:
            settings = self.settings

        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, 'w') as f:
                yaml.dump(settings, f, default_flow_style=False, sort_keys=False)

            self.settings = settings
            logger.debug("Settings saved successfully")

        except OSError as e:
            logger.error(f"Failed to save settings: {e}")

    @staticmethod
    def load_overrides(env: Mapping[str, str],
                       env_files: List[Path]) -> Dict[str, Any]:
        """
        Collect overrides from ``.env`` files and the environment

        Only the first ``.env`` file that exists is read. The process
        environment wins over it. Values that fail to convert are
        logged and ignored.
        """
        raw: Dict[str, str] = {}
        for env_file in env_files:
            if Path(env_file).is_file():
                values = dotenv_values(env_file)
                raw.update({k: v for k, v in values.items() if v is not None})
                logger.debug(f"Loaded environment from {env_file}")
                break
        raw.update({k: v for k, v in env.items() if k in ENV_OVERRIDES and v})

        overrides = {}
        for name, (key, convert) in ENV_OVERRIDES.items():
            value = raw.get(name)
            if not value:
                continue
            try:
                overrides[key] = convert(value)
            except ValueError:
                logger.warning(f"Ignoring invalid {name}={value!r}")
        return overrides

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get setting value using dot notation

        Args:
            key: Setting key (e.g., 'telemetry.interval')
            default: Default value if key not found
        """
        if key in self.overrides:
            return self.overrides[key]

        keys = key.split('.')
        value = self.settings

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any):
        """
        Set setting value using dot notation and persist it

        An environment override for the same key is dropped so that the new
        value takes effect.
        """
        keys = key.split('.')
        settings = self.settings

        for k in keys[:-1]:
            if not isinstance(settings.get(k), dict):
                settings[k] = {}
            settings = settings[k]

        settings[keys[-1]] = value
        self.overrides.pop(key, None)
        self.save_settings()

    @staticmethod
    def _deep_merge(base: Dict, update: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ConfigManager._deep_merge(result[key], value)
            else:
                result[key] = value

        return result
