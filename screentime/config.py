"""Configuration management for the screen time tracker.

Configuration lives in a YAML file and is loaded into dataclasses, one per
section. Missing keys take defaults, unknown keys are ignored so older and
newer config files both keep working.

Configuration Sections:
- tracking: tick cadence, focus estimate, idle detection
- storage: data directory and ledger storage key
- notifications: daily usage limit warning
- web: JSON API server

Example:
    >>> from screentime.config import ConfigManager
    >>> config_mgr = ConfigManager()
    >>> print(config_mgr.config.tracking.tick_interval_seconds)
    60
    >>> config_mgr.update('notifications', 'daily_limit_minutes', 90)
"""

import dataclasses
import logging
import math
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional
import yaml

logger = logging.getLogger(__name__)


@dataclass
class TrackingConfig:
    """Session tracking configuration.

    Attributes:
        tick_interval_seconds: Live estimate update cadence while active (default: 60)
        focus_fraction: Share of screen time reported as focus time (default: 0.3)
        idle_timeout_seconds: Seconds without input before a session ends (default: 180)
        idle_poll_seconds: How often idleness is checked (default: 5.0)
    """
    tick_interval_seconds: float = 60.0
    focus_fraction: float = 0.3
    idle_timeout_seconds: int = 180
    idle_poll_seconds: float = 5.0


@dataclass
class StorageConfig:
    """Data storage configuration.

    Attributes:
        data_dir: Directory holding the database (default: ~/screentime-data)
        storage_key: Key the usage ledger is stored under (default: screenTimeData)
    """
    data_dir: str = "~/screentime-data"
    storage_key: str = "screenTimeData"

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir).expanduser() / "screentime.db"


@dataclass
class NotificationConfig:
    """Daily limit notification configuration.

    Attributes:
        enabled: Warn when today's usage reaches the limit (default: True)
        daily_limit_minutes: Limit in minutes (default: 120)
    """
    enabled: bool = True
    daily_limit_minutes: float = 120.0


@dataclass
class WebConfig:
    """Web server configuration.

    Attributes:
        host: Host address to bind to (default: 127.0.0.1)
        port: Port number for the JSON API (default: 55556)
    """
    host: str = "127.0.0.1"
    port: int = 55556


@dataclass
class Config:
    """Top-level configuration container."""
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    web: WebConfig = field(default_factory=WebConfig)


SECTIONS = {
    'tracking': TrackingConfig,
    'storage': StorageConfig,
    'notifications': NotificationConfig,
    'web': WebConfig,
}

# (section, key) -> (check, description) for values with a valid range
RANGES = {
    ('tracking', 'tick_interval_seconds'): (lambda v: v > 0, "greater than 0"),
    ('tracking', 'focus_fraction'): (lambda v: 0.0 <= v <= 1.0, "between 0 and 1"),
    ('tracking', 'idle_timeout_seconds'): (lambda v: v > 0, "greater than 0"),
    ('tracking', 'idle_poll_seconds'): (lambda v: v > 0, "greater than 0"),
    ('notifications', 'daily_limit_minutes'): (lambda v: v > 0, "greater than 0"),
    ('web', 'port'): (lambda v: 0 < v < 65536, "between 1 and 65535"),
}


def coerce_value(section: str, key: str, value):
    """Convert value to the declared type of section.key and range-check it.

    Integral floats and numeric strings are accepted for numeric fields;
    bools are only accepted for bool fields.

    Raises:
        ValueError: If the value has the wrong type or is out of range.
    """
    field_type = {f.name: f.type for f in dataclasses.fields(SECTIONS[section])}[key]
    name = f"{section}.{key}"

    if field_type is bool:
        if not isinstance(value, bool):
            raise ValueError(f"{name} must be true or false, got {value!r}")
        return value

    if field_type is str:
        if not isinstance(value, str) or not value:
            raise ValueError(f"{name} must be a non-empty string, got {value!r}")
        return value

    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"{name} must be finite, got {value!r}")
    if field_type is int:
        if not number.is_integer():
            raise ValueError(f"{name} must be a whole number, got {value!r}")
        number = int(number)

    check = RANGES.get((section, key))
    if check and not check[0](number):
        raise ValueError(f"{name} must be {check[1]}, got {value!r}")
    return number


class ConfigManager:
    """Manages configuration loading, saving, and updates.

    Attributes:
        DEFAULT_PATH: Default configuration file location
        path: Actual configuration file path being used
        config: Current configuration object

    Example:
        >>> config_mgr = ConfigManager()
        >>> config_mgr.config.web.port = 8080
        >>> config_mgr.save()
    """

    DEFAULT_PATH = Path("~/.config/screentime/config.yaml").expanduser()

    def __init__(self, path: Optional[Path] = None):
        """
        Args:
            path: Custom config file path (uses DEFAULT_PATH if None)
        """
        self.path = Path(path).expanduser() if path else self.DEFAULT_PATH
        self.config = self._load()

    def _load(self) -> Config:
        """Load configuration from the YAML file.

        Invalid YAML or an unreadable file yields the default Config.
        """
        if not self.path.exists():
            logger.info(f"No config file at {self.path}, using defaults")
            return Config()

        try:
            with open(self.path) as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(f"Failed to load config from {self.path}: {e}")
            logger.info("Using default configuration")
            return Config()

        if not isinstance(data, dict):
            logger.warning(f"Config at {self.path} is not a mapping, using defaults")
            return Config()

        logger.info(f"Loaded configuration from {self.path}")
        return self._dict_to_config(data)

    @staticmethod
    def _dict_to_config(data: dict) -> Config:
        """Build Config from a dict, keeping defaults for missing or invalid keys."""
        def filter_known_fields(section, data_dict, dataclass_type) -> dict:
            if not isinstance(data_dict, dict):
                return {}
            known_fields = {f.name for f in dataclasses.fields(dataclass_type)}
            unknown = set(data_dict.keys()) - known_fields
            if unknown:
                logger.debug(f"Ignoring unknown config fields: {unknown}")

            values = {}
            for k, v in data_dict.items():
                if k not in known_fields:
                    continue
                try:
                    values[k] = coerce_value(section, k, v)
                except ValueError as e:
                    logger.warning(f"{e}, using default")
            return values

        return Config(**{
            name: section_type(**filter_known_fields(name, data.get(name, {}), section_type))
            for name, section_type in SECTIONS.items()
        })

    def save(self) -> None:
        """Save current configuration to the YAML file.

        Raises:
            OSError: If file write fails
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                yaml.dump(
                    asdict(self.config),
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    indent=2
                )
            logger.info(f"Saved configuration to {self.path}")
        except OSError as e:
            logger.error(f"Failed to save config to {self.path}: {e}")
            raise

    def update(self, section: str, key: str, value) -> bool:
        """Update a single configuration value and save.

        Returns:
            True if value was changed and saved, False if unchanged or the
            section/key does not exist

        Raises:
            ValueError: If the value has the wrong type or is out of range
        """
        if not self.has_key(section, key):
            logger.warning(f"Invalid config key: {section}.{key}")
            return False

        section_obj = getattr(self.config, section)
        value = coerce_value(section, key, value)
        old_value = getattr(section_obj, key)
        if old_value != value:
            setattr(section_obj, key, value)
            self.save()
            logger.info(f"Updated {section}.{key}: {old_value} -> {value}")
            return True

        logger.debug(f"No change for {section}.{key} (already {value})")
        return False

    @staticmethod
    def has_key(section, key) -> bool:
        if not isinstance(section, str) or not isinstance(key, str) or section not in SECTIONS:
            return False
        return key in {f.name for f in dataclasses.fields(SECTIONS[section])}

    def to_dict(self) -> dict:
        return asdict(self.config)

    def reload(self) -> None:
        """Reload configuration from file."""
        self.config = self._load()
        logger.info("Configuration reloaded")


_default_config_manager: Optional[ConfigManager] = None


def get_config_manager(path: Optional[Path] = None) -> ConfigManager:
    """Get or create the default ConfigManager instance.

    Args:
        path: Optional custom config path (only used on first call)
    """
    global _default_config_manager
    if _default_config_manager is None:
        _default_config_manager = ConfigManager(path)
    return _default_config_manager
