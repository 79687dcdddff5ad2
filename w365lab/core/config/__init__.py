# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for w365lab.

Example:
    >>> from w365lab.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.lab.role_display_name)
    'Lab Intune Admin'
"""

from w365lab.core.config.settings import (
    GraphSettings,
    LabSettings,
    PropagationSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "clear_settings_cache",
    "GraphSettings",
    "PropagationSettings",
    "LabSettings",
]
