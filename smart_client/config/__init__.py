"""Configuration modules for the SMART client."""

from smart_client.config.logging import configure_logging, get_logger
from smart_client.config.settings import Settings, get_settings, reset_settings

__all__ = [
    "Settings",
    "get_settings",
    "reset_settings",
    "configure_logging",
    "get_logger",
]
