"""Configuration management for NonRAID array operations."""

import os
import json
import logging
from typing import Dict, Any, Optional, List
from pathlib import Path
from dataclasses import dataclass, asdict, field

from apscheduler.triggers.cron import CronTrigger


logger = logging.getLogger(__name__)


DEFAULT_SHARE_CATEGORIES = ['Media', 'Documents', 'Backups', 'Downloads', 'Photos', 'Projects']

SUPPORTED_FILESYSTEMS = {'xfs', 'ext4', 'btrfs'}

# Section names smb.conf gives a special meaning
RESERVED_SHARE_NAMES = {'global', 'homes', 'printers'}

# Characters that would end a section header or start a new line in smb.conf
INVALID_SHARE_NAME_CHARS = set('[]\r\n')


@dataclass
class NonRAIDConfig:
    """NonRAID array configuration."""
    descriptor_path: str = "/nonraid.dat"
    mount_prefix: str = "/mnt/disk"
    pool_path: str = "/mnt/storage"
    samba_config_path: str = "/etc/samba/smb.conf"
    samba_service: str = "smbd"
    samba_server_string: str = "HomePiNAS"
    filesystem: str = "xfs"
    use_sudo: bool = True
    command_timeout: int = 0  # seconds, 0 disables the timeout
    scan_schedule: str = ""  # crontab expression, empty disables
    share_categories: List[str] = field(default_factory=lambda: list(DEFAULT_SHARE_CATEGORIES))
    log_level: str = "INFO"

    def slot_mount_point(self, slot: int) -> str:
        """Conventional mount point of a 1-based data slot."""
        return f"{self.mount_prefix}{slot}"

    def slot_device(self, slot: int) -> str:
        """Block device the array exposes for a 1-based data slot."""
        return f"/dev/nmd{slot}p1"


class ConfigManager:
    """Loads configuration from defaults, an optional file, and the environment."""

    ENV_MAPPINGS = {
        'NONRAID_DESCRIPTOR_PATH': 'descriptor_path',
        'NONRAID_MOUNT_PREFIX': 'mount_prefix',
        'NONRAID_POOL_PATH': 'pool_path',
        'SAMBA_CONFIG_PATH': 'samba_config_path',
        'SAMBA_SERVICE': 'samba_service',
        'SAMBA_SERVER_STRING': 'samba_server_string',
        'NONRAID_FILESYSTEM': 'filesystem',
        'NONRAID_USE_SUDO': 'use_sudo',
        'NONRAID_COMMAND_TIMEOUT': 'command_timeout',
        'NONRAID_SCAN_SCHEDULE': 'scan_schedule',
        'SHARE_CATEGORIES': 'share_categories',
        'LOG_LEVEL': 'log_level',
    }

    def __init__(self, config_file_path: Optional[str] = None):
        """
        Initialize the ConfigManager.

        Args:
            config_file_path: Optional path to a JSON or env-style config file
        """
        self.config_file_path = config_file_path
        self._config: Optional[NonRAIDConfig] = None

    def load_config(self) -> NonRAIDConfig:
        """
        Load configuration, caching the result.

        Returns:
            Validated NonRAIDConfig

        Raises:
            ValueError: If a configured value is invalid
        """
        if self._config:
            return self._config

        config_dict = asdict(NonRAIDConfig())

        if self.config_file_path and os.path.exists(self.config_file_path):
            config_dict.update(self._load_config_file(self.config_file_path))

        config_dict.update(self._load_from_environment())

        config = NonRAIDConfig(**config_dict)
        self._validate_config(config)

        self._config = config
        logger.info("Configuration loaded successfully")
        return config

    def reload_config(self) -> NonRAIDConfig:
        """Drop the cached configuration and load it again."""
        self._config = None
        return self.load_config()

    def _load_config_file(self, file_path: str) -> Dict[str, Any]:
        try:
            if Path(file_path).suffix.lower() == '.json':
                with open(file_path, 'r') as f:
                    data = json.load(f)
                known = set(asdict(NonRAIDConfig()).keys())
                unknown = set(data) - known
                if unknown:
                    logger.warning(f"Ignoring unknown configuration keys: {', '.join(sorted(unknown))}")
                return {k: v for k, v in data.items() if k in known}
            return self._load_env_file(file_path)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config file {file_path}: {e}")
            return {}

    def _load_env_file(self, file_path: str) -> Dict[str, Any]:
        config = {}
        with open(file_path, 'r') as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#') or '=' not in line:
                    continue
                key, value = line.split('=', 1)
                key = key.strip()
                value = value.strip().strip('"\'')
                if key in self.ENV_MAPPINGS:
                    config[self.ENV_MAPPINGS[key]] = self._parse_env_value(key, value)
        return config

    def _load_from_environment(self) -> Dict[str, Any]:
        config = {}
        for env_key, config_key in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_key)
            if env_value is not None:
                config[config_key] = self._parse_env_value(env_key, env_value)
        return config

    def _parse_env_value(self, env_key: str, value: str) -> Any:
        """
        Parse an environment value to the type of its config field.

        Args:
            env_key: Environment variable key
            value: Raw string value

        Returns:
            Parsed value
        """
        if env_key == 'SHARE_CATEGORIES':
            return [item.strip() for item in value.split(',') if item.strip()]

        if env_key == 'NONRAID_USE_SUDO':
            return value.strip().lower() in {'true', '1', 'yes', 'on'}

        if env_key == 'NONRAID_COMMAND_TIMEOUT':
            try:
                return int(value)
            except ValueError:
                logger.warning(f"Invalid integer for {env_key}, using default")
                return 0

        return value

    def _validate_config(self, config: NonRAIDConfig) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if config.command_timeout < 0:
            raise ValueError("command_timeout must not be negative")

        valid_log_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if config.log_level.upper() not in valid_log_levels:
            raise ValueError(f"Invalid log level: {config.log_level}")

        if config.filesystem not in SUPPORTED_FILESYSTEMS:
            raise ValueError(f"Unsupported filesystem: {config.filesystem}")

        for path in (config.descriptor_path, config.mount_prefix,
                     config.pool_path, config.samba_config_path):
            if not os.path.isabs(path):
                raise ValueError(f"Path must be absolute: {path}")

        if config.scan_schedule:
            try:
                CronTrigger.from_crontab(config.scan_schedule)
            except ValueError as e:
                raise ValueError(f"Invalid scan schedule '{config.scan_schedule}': {e}")

        self._validate_share_categories(config.share_categories)

        if any(char in config.samba_server_string for char in '\r\n'):
            raise ValueError("samba_server_string must be a single line")

    @staticmethod
    def _validate_share_categories(categories) -> None:
        if not isinstance(categories, list):
            raise ValueError("share_categories must be a list of names")

        seen = set()
        for name in categories:
            if not isinstance(name, str) or not name.strip():
                raise ValueError(f"Invalid share category: {name!r}")
            if INVALID_SHARE_NAME_CHARS & set(name):
                raise ValueError(f"Share category contains a forbidden character: {name!r}")
            if name.lower() in RESERVED_SHARE_NAMES:
                raise ValueError(f"Share category uses a reserved section name: {name}")
            if name.lower() in seen:
                raise ValueError(f"Duplicate share category: {name}")
            seen.add(name.lower())
