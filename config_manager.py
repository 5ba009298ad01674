#!/usr/bin/env python3
"""
Configuration management for the mail index sync system.
"""

import yaml
from typing import Dict, Any

from errors import ConfigError

DEFAULT_SETTINGS = {
    'progress_interval': 15,
    'progress_bar': True,
    'log_file': 'mail_index_sync.log',
    'batch_size': 100,
}


class ConfigManager:
    """Handles configuration loading and validation."""

    def __init__(self, config_file: str = "config.yaml"):
        self.config_file = config_file
        self.config = self.load_config()

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(self.config_file, 'r') as file:
                config = yaml.safe_load(file)
        except FileNotFoundError:
            raise ConfigError(f"Configuration file '{self.config_file}' not found")
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in configuration file: {e}")

        self.validate_config(config)
        config['settings'] = {**DEFAULT_SETTINGS, **(config.get('settings') or {})}
        return config

    def validate_config(self, config: Dict[str, Any]) -> None:
        """Validate configuration structure."""
        if not isinstance(config, dict):
            raise ConfigError(f"Configuration file '{self.config_file}' must contain a mapping")

        required_sections = ['index', 'sources']
        for section in required_sections:
            if section not in config:
                raise ConfigError(f"Missing required configuration section: {section}")

        # Validate index config
        index_config = config['index']
        if not isinstance(index_config, dict) or 'path' not in index_config:
            raise ConfigError("Missing 'path' in index configuration")

        # Validate sources
        sources = config['sources'] or []
        if not isinstance(sources, list):
            raise ConfigError("'sources' must be a list")
        seen = set()
        for position, source in enumerate(sources, start=1):
            if not isinstance(source, dict) or 'uri' not in source:
                raise ConfigError(f"Source entry {position} is missing 'uri'")
            if source['uri'] in seen:
                raise ConfigError(f"Source {source['uri']} is configured more than once")
            seen.add(source['uri'])

        settings = config.get('settings') or {}
        if not isinstance(settings, dict):
            raise ConfigError("'settings' must be a mapping")
