"""Unified configuration module.

Single source of truth for all configuration and settings.
"""

from .settings import (
    Settings,
    BudgetProfile,
    MODE_PROFILES,
    get_settings,
)

__all__ = [
    "Settings",
    "BudgetProfile",
    "MODE_PROFILES",
    "get_settings",
]
