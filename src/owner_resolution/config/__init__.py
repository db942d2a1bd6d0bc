"""
Configuration for owner resolution
"""
from owner_resolution.config.settings import Settings, get_settings, settings

__all__ = ["Settings", "get_settings", "settings"]
