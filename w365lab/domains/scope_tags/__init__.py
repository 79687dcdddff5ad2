# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Scope tag stage: one Intune scope tag per student."""

from w365lab.domains.scope_tags.service import ScopeTagProvisioner

__all__ = ["ScopeTagProvisioner"]
