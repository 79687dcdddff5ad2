# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Deterministic names of pod entities.

Every entity of a student's pod is found again by its name, never by a
remembered object id, so names must be pure functions of the student
index and the lab domain.

Example:
    >>> names = PodNames(3, "contoso.onmicrosoft.com")
    >>> names.admin_upn
    'admin3@contoso.onmicrosoft.com'
    >>> names.scope_tag
    'ST3'
"""

from dataclasses import dataclass
from enum import Enum

SHARED_ROLE_NAME = "Lab Intune Admin"


class GroupRole(str, Enum):
    """The three per-student security groups."""

    ADMINS = "Admins"
    USERS = "Users"
    DEVICES = "Devices"


class AccountRole(str, Enum):
    """The two per-student user accounts."""

    ADMIN = "admin"
    STUDENT = "student"


def validate_index(index: int) -> int:
    """Validate a student index.

    Raises:
        ValueError: If index is not a positive integer.
    """
    if isinstance(index, bool) or not isinstance(index, int) or index < 1:
        raise ValueError(f"Student index must be a positive integer, got {index!r}")
    return index


@dataclass(frozen=True)
class PodNames:
    """Names of every entity belonging to one student.

    Attributes:
        index: Student index (1-based).
        domain: Verified domain used for user principal names.
    """

    index: int
    domain: str

    def __post_init__(self) -> None:
        validate_index(self.index)
        if not self.domain:
            raise ValueError("Domain must not be empty")

    @property
    def admin_upn(self) -> str:
        return f"admin{self.index}@{self.domain}"

    @property
    def admin_display_name(self) -> str:
        return f"Lab Admin {self.index}"

    @property
    def admin_mail_nickname(self) -> str:
        return f"admin{self.index}"

    @property
    def student_upn(self) -> str:
        return f"W365Student{self.index}@{self.domain}"

    @property
    def student_display_name(self) -> str:
        return f"W365 Student {self.index}"

    @property
    def student_mail_nickname(self) -> str:
        return f"W365Student{self.index}"

    def upn(self, role: AccountRole) -> str:
        """User principal name for an account role."""
        return self.admin_upn if role is AccountRole.ADMIN else self.student_upn

    def group(self, role: GroupRole) -> str:
        """Display name of one of the student's security groups."""
        return f"SG-Student{self.index}-{role.value}"

    @property
    def admins_group(self) -> str:
        return self.group(GroupRole.ADMINS)

    @property
    def users_group(self) -> str:
        return self.group(GroupRole.USERS)

    @property
    def devices_group(self) -> str:
        return self.group(GroupRole.DEVICES)

    @property
    def scope_tag(self) -> str:
        return f"ST{self.index}"

    @property
    def administrative_unit(self) -> str:
        return f"AU-Student{self.index}"

    def role_assignment(self, role_name: str = SHARED_ROLE_NAME) -> str:
        # Informational only, assignments are matched by principal and role
        return f"{role_name} - Student{self.index}"


def group_mail_nickname(display_name: str) -> str:
    """Mail nickname for a security group (no spaces or @ allowed)."""
    return display_name.replace(" ", "").replace("@", "")
