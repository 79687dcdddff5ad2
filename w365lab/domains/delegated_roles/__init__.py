# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delegated role stage: shared Intune role and per-student assignments."""

from w365lab.domains.delegated_roles.service import (
    LAB_ROLE_ALLOWED_ACTIONS,
    DelegatedRoleProvisioner,
)

__all__ = ["LAB_ROLE_ALLOWED_ACTIONS", "DelegatedRoleProvisioner"]
