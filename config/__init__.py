"""Configuration module."""

from config.settings import Settings, load_settings, DEFAULT_CONFIG_YAML
from config.venue_config import VenueConfig

__all__ = ['Settings', 'load_settings', 'DEFAULT_CONFIG_YAML', 'VenueConfig']
