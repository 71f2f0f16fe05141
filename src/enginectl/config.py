"""
Configuration management for enginectl.

This module provides configuration file support with YAML format and
default settings.

Features:
- YAML configuration file at ~/.config/enginectl/config.yaml
- Default values with user overrides
- Engine endpoint (also overridable with ENGINECTL_ENDPOINT)
- Per-resource polling intervals (read by the Reconciler)
- Log tail/ring sizes and build simulation pacing
- Log location override

Architecture:
- ConfigManager: Main configuration interface
- Merges user config with defaults
- Provides typed access to settings
- Handles missing/invalid config gracefully
"""

import os
import yaml
import logging
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Dict, Any, Optional

from .transport import DEFAULT_ENDPOINT

logger = logging.getLogger(__name__)

ENDPOINT_ENV = "ENGINECTL_ENDPOINT"


@dataclass
class EngineConfig:
    """Engine connection settings."""
    endpoint: str = DEFAULT_ENDPOINT
    api_version: Optional[str] = None  # None: docker SDK default
    timeout: Optional[float] = None  # None: no timeout


@dataclass
class PollingConfig:
    """Reconciliation intervals in seconds, per resource kind."""
    containers: float = 3.0
    images: float = 5.0
    networks: float = 5.0
    volumes: float = 5.0
    logs: float = 2.0
    engine: float = 5.0


@dataclass
class LogsConfig:
    """Container log viewing."""
    tail: int = 200
    max_lines: int = 1000


@dataclass
class BuildConfig:
    """Build fallback settings."""
    simulation_delay: float = 0.15  # seconds between simulated lines


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None for default
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class AppConfig:
    """Main application configuration."""
    engine: EngineConfig = field(default_factory=EngineConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    logs: LogsConfig = field(default_factory=LogsConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    logging: LogConfig = field(default_factory=LogConfig)


class ConfigManager:
    """Configuration manager with YAML file support."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else Path.home() / ".config" / "enginectl"
        self.config_file = self.config_dir / "config.yaml"
        self._config: AppConfig = AppConfig()

        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create config directory {self.config_dir}: {e}")

        self.load_config()

    def load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r') as f:
                    user_config = yaml.safe_load(f) or {}
                if not isinstance(user_config, dict):
                    raise ValueError("top level must be a mapping")

                self._config = self._merge_configs(AppConfig(), user_config)
                logger.debug(f"Loaded configuration from {self.config_file}")
            else:
                self._config = AppConfig()
                self.save_config()
                logger.info(f"Created default configuration at {self.config_file}")
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.error(f"Failed to load config: {e}, using defaults")
            self._config = AppConfig()

        endpoint = os.environ.get(ENDPOINT_ENV, "").strip()
        if endpoint:
            self._config.engine.endpoint = endpoint

    def save_config(self) -> None:
        """Save current configuration to YAML file."""
        try:
            with open(self.config_file, 'w') as f:
                yaml.safe_dump(asdict(self._config), f, default_flow_style=False, indent=2)
            logger.debug(f"Saved configuration to {self.config_file}")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get_config(self) -> AppConfig:
        """Get current configuration."""
        return self._config

    def _merge_configs(self, default: AppConfig, user: Dict[str, Any]) -> AppConfig:
        """Merge user config with defaults."""
        for section in fields(default):
            if isinstance(user.get(section.name), dict):
                self._merge_dataclass(getattr(default, section.name), user[section.name])
        return default

    def _merge_dataclass(self, obj: Any, updates: Dict[str, Any]) -> None:
        """Merge updates into dataclass object."""
        for key, value in updates.items():
            if hasattr(obj, key):
                setattr(obj, key, value)
            else:
                logger.warning(f"Ignoring unknown config key '{key}'")

    def get_endpoint(self) -> str:
        return self._config.engine.endpoint

    def get_log_level(self) -> str:
        """Get configured log level."""
        return self._config.logging.level.upper()

    def get_custom_log_path(self) -> Optional[str]:
        """Get custom log file path if configured."""
        return self._config.logging.file_path


# Global config instance
config_manager = ConfigManager()
