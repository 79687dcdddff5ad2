# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Identity provisioning: per-student accounts and security groups.

For every student this stage ensures:
1. admin{N}@domain and W365Student{N}@domain user accounts
2. SG-Student{N}-Admins (role-assignable), -Users and -Devices groups
3. admin{N} in the Admins group, W365Student{N} in the Users group

New accounts get a random complex password and must change it at first
sign-in. The password is handed back once, in the student's outcome, and
is never read again. The Devices group starts empty; Cloud PCs are added
to it when Windows 365 provisions them.

Example:
    >>> provisioner = IdentityProvisioner(context)
    >>> result = provisioner.provision(range(1, 4))
    >>> [c.user_principal_name for c in result.credentials]
"""

import logging

from w365lab.core.context import ProvisioningContext
from w365lab.core.naming import AccountRole, GroupRole, PodNames, group_mail_nickname
from w365lab.core.outcome import Credential, Stage, StudentOutcome
from w365lab.domains.base import StageProvisioner
from w365lab.models.directory import SecurityGroup, UserAccount
from w365lab.utils.passwords import generate_password

logger = logging.getLogger(__name__)

GROUP_DESCRIPTIONS = {
    GroupRole.ADMINS: "Delegated administrators of lab student {index}",
    GroupRole.USERS: "Users of lab student {index}",
    GroupRole.DEVICES: "Cloud PCs of lab student {index}",
}


class IdentityProvisioner(StageProvisioner):
    """Creates the user accounts and security groups of each pod.

    Attributes:
        skip_user_creation: Assume accounts already exist; only ensure groups
            and memberships. Missing accounts skip the student.
    """

    stage = Stage.IDENTITIES

    def __init__(
        self,
        context: ProvisioningContext,
        skip_user_creation: bool = False,
    ) -> None:
        super().__init__(context)
        self.skip_user_creation = skip_user_creation

    def provision_student(self, names: PodNames, outcome: StudentOutcome) -> None:
        admin = self._ensure_user(names, AccountRole.ADMIN, outcome)
        student = self._ensure_user(names, AccountRole.STUDENT, outcome)

        groups = {role: self._ensure_group(names, role, outcome) for role in GroupRole}

        for role, user in ((GroupRole.ADMINS, admin), (GroupRole.USERS, student)):
            group = groups[role]
            self.ensure_member(
                container=group.display_name,
                member_ids=self._directory.list_group_member_ids(group.id),
                member_id=user.id,
                member=user.user_principal_name,
                add=lambda member_id, group_id=group.id: self._directory.add_group_member(
                    group_id, member_id
                ),
                outcome=outcome,
            )

    def _ensure_user(
        self,
        names: PodNames,
        role: AccountRole,
        outcome: StudentOutcome,
    ) -> UserAccount:
        upn = names.upn(role)
        if self.skip_user_creation:
            user = self.require("user", upn, self._directory.find_users, names.index)
            outcome.record(f"user {upn}", created=False)
            return user

        if role is AccountRole.ADMIN:
            display_name, nickname = names.admin_display_name, names.admin_mail_nickname
        else:
            display_name, nickname = names.student_display_name, names.student_mail_nickname

        def create() -> UserAccount:
            password = generate_password()
            user = self._directory.create_user(
                user_principal_name=upn,
                display_name=display_name,
                mail_nickname=nickname,
                password=password,
                usage_location=self._context.lab.usage_location or None,
            )
            # Record immediately: the password cannot be recovered later
            outcome.credentials.append(
                Credential(
                    student_index=names.index,
                    user_principal_name=user.user_principal_name,
                    password=password,
                )
            )
            return user

        return self.ensure("user", upn, self._directory.find_users, create, outcome)

    def _ensure_group(
        self,
        names: PodNames,
        role: GroupRole,
        outcome: StudentOutcome,
    ) -> SecurityGroup:
        name = names.group(role)
        role_assignable = role is GroupRole.ADMINS

        group = self.ensure(
            "group",
            name,
            self._directory.find_groups,
            lambda: self._directory.create_security_group(
                display_name=name,
                mail_nickname=group_mail_nickname(name),
                description=GROUP_DESCRIPTIONS[role].format(index=names.index),
                role_assignable=role_assignable,
            ),
            outcome,
        )
        if role_assignable and group.is_assignable_to_role is False:
            logger.warning(
                "Group %s is not role-assignable; administrative unit grants will fail",
                name,
            )
        return group
