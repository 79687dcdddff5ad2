# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Typed directory records."""

from w365lab.models.directory import (
    AdministrativeUnit,
    DirectoryObjectRef,
    DirectoryRole,
    DirectoryRoleTemplate,
    RoleAssignment,
    RoleDefinition,
    RoleMemberInfo,
    ScopedRoleGrant,
    ScopeTag,
    SecurityGroup,
    UserAccount,
    VerifiedDomain,
)

__all__ = [
    "AdministrativeUnit",
    "DirectoryObjectRef",
    "DirectoryRole",
    "DirectoryRoleTemplate",
    "RoleAssignment",
    "RoleDefinition",
    "RoleMemberInfo",
    "ScopedRoleGrant",
    "ScopeTag",
    "SecurityGroup",
    "UserAccount",
    "VerifiedDomain",
]
