"""API v1 endpoints package."""

from . import admin, health, hierarchy

__all__ = [
    "admin",
    "health",
    "hierarchy",
]
