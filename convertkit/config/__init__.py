"""Configuration module for convertkit."""

from convertkit.config.settings import ConvertkitSettings, get_settings, reload_settings

__all__ = ["ConvertkitSettings", "get_settings", "reload_settings"]
