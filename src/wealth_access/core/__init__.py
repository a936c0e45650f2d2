"""Core package - Configuration, exceptions, path helpers and access guards."""
from .config import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
