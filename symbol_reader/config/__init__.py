"""Configuration module for the symbol reader."""

from .settings import Settings, get_settings, reload_settings

__all__ = ["get_settings", "reload_settings", "Settings"]
