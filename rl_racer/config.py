"""Configuration module for the racing trainer."""

import yaml
import os
from typing import Dict, Any


DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), '..', 'config', 'default.yaml')


class Config:
    """Configuration manager that loads settings from YAML files."""

    def __init__(self, config_path: str = None):
        """Initialize configuration with optional config file path."""
        self._config = {}
        if config_path:
            self.load_config(config_path)
        elif os.path.exists(DEFAULT_CONFIG_PATH):
            self.load_config(DEFAULT_CONFIG_PATH)

    def load_config(self, config_path: str):
        """Load configuration from a YAML file."""
        with open(config_path, 'r') as f:
            self._config = yaml.safe_load(f) or {}

    def get(self, key_path: str, default=None):
        """Get a configuration value using dot notation (e.g., 'environment.dt')."""
        value = self._config
        try:
            for key in key_path.split('.'):
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key_path: str, value: Any):
        """Set a configuration value using dot notation."""
        keys = key_path.split('.')
        section = self._config

        for key in keys[:-1]:
            if not isinstance(section.get(key), dict):
                section[key] = {}
            section = section[key]

        section[keys[-1]] = value

    def section(self, key_path: str) -> Dict[str, Any]:
        """Return a copy of a mapping section, or an empty dict if it is missing."""
        value = self.get(key_path, {})
        return dict(value) if isinstance(value, dict) else {}

    def to_dict(self) -> Dict[str, Any]:
        """Return the configuration as a dictionary."""
        return self._config.copy()


# Global configuration instance
config = Config()
