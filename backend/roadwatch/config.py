"""
Configuration Management

Centralized configuration loaded from the YAML and JSON files of the
config directory. Supports dot-notation access and reloading.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

DEFAULT_CONFIG_DIR = Path(__file__).parent.parent / "config"


class ConfigManager:
    """
    Manage application configuration from YAML and JSON files

    Provides:
    - Load all config files on startup (file stem = section name)
    - Dot notation access: config.get('coordination.capacity.default')
    - Reload capability
    - Default values for missing keys
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize configuration manager

        Args:
            config_dir: Path to config directory
                (default: $ROADWATCH_CONFIG_DIR, then backend/config)
        """
        env_dir = os.getenv("ROADWATCH_CONFIG_DIR")
        if config_dir:
            self.config_dir = Path(config_dir)
        elif env_dir:
            self.config_dir = Path(env_dir)
        else:
            self.config_dir = DEFAULT_CONFIG_DIR

        self.configs: Dict[str, Any] = {}
        self._load_all_configs()

    def _load_all_configs(self):
        """Load all configuration files from the config directory"""
        if not self.config_dir.exists():
            logger.warning("[CONFIG] Config directory not found: %s", self.config_dir)
            return

        for yaml_file in sorted(self.config_dir.glob("*.yaml")):
            try:
                with open(yaml_file, 'r') as f:
                    self.configs[yaml_file.stem] = yaml.safe_load(f) or {}
                logger.debug("[CONFIG] Loaded: %s", yaml_file.name)
            except (OSError, yaml.YAMLError) as e:
                logger.warning("[CONFIG] Failed to load %s: %s", yaml_file.name, e)

        for json_file in sorted(self.config_dir.glob("*.json")):
            try:
                with open(json_file, 'r') as f:
                    self.configs[json_file.stem] = json.load(f)
                logger.debug("[CONFIG] Loaded: %s", json_file.name)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("[CONFIG] Failed to load %s: %s", json_file.name, e)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot notation key

        Examples:
            config.get('risk.alertWindowMinutes')
            config.get('coordination.capacity.default')

        Args:
            key: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self.configs
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def get_risk_config(self) -> Dict[str, Any]:
        """Get risk scoring configuration section"""
        return self.configs.get('risk', {})

    def get_coordination_config(self) -> Dict[str, Any]:
        """Get coordination configuration section"""
        return self.configs.get('coordination', {})

    def get_streaming_config(self) -> Dict[str, Any]:
        """Get streaming configuration section"""
        return self.configs.get('streaming', {})

    def reload(self):
        """Reload all configuration files"""
        logger.info("[CONFIG] Reloading configuration from %s", self.config_dir)
        self.configs.clear()
        self._load_all_configs()

    def set(self, key: str, value: Any):
        """
        Set a configuration value (runtime only, not persisted)

        Args:
            key: Dot-separated key path
            value: Value to set
        """
        keys = key.split('.')
        config = self.configs

        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value


_config: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """Get the process configuration instance (created on first use)"""
    global _config
    if _config is None:
        _config = ConfigManager()
    return _config
