"""Configuration package for the event payments service."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
