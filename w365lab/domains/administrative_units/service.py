# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Administrative unit provisioning: per-student AU with a scoped role grant.

For every student this stage ensures:
1. AU-Student{N} exists with hidden membership
2. W365Student{N} and SG-Student{N}-Users are members of the AU
3. the delegated directory role is active in the tenant
4. SG-Student{N}-Admins holds that role scoped to AU-Student{N}

The student's admins can then manage their own users and groups without
seeing anyone else's. Users and groups come from the identity stage; when
they are missing (for instance because directory replication is lagging)
the student is skipped with a warning and the stage continues.

Directory roles exist as templates until activated. Activation is checked
before every attempt, and an "already active" answer from Graph counts as
success.
"""

import logging

from w365lab.core.context import ProvisioningContext
from w365lab.core.errors import FatalConfigurationError, RoleTemplateNotFoundError
from w365lab.core.naming import PodNames
from w365lab.core.outcome import Stage, StudentOutcome
from w365lab.domains.base import StageProvisioner
from w365lab.models.directory import AdministrativeUnit, DirectoryRole

logger = logging.getLogger(__name__)


class AdministrativeUnitProvisioner(StageProvisioner):
    """Creates the administrative unit of each pod and delegates it.

    Attributes:
        skip_au_creation: Assume the AUs already exist; only ensure membership
            and the role grant. A missing AU skips the student.
        role_template_name: Display name of the directory role template to grant.
    """

    stage = Stage.ADMIN_UNITS

    def __init__(
        self,
        context: ProvisioningContext,
        skip_au_creation: bool = False,
    ) -> None:
        super().__init__(context)
        self.skip_au_creation = skip_au_creation
        self.role_template_name = context.lab.directory_role_template
        self._role_template_id: str | None = None
        self._role: DirectoryRole | None = None

    def prepare(self) -> None:
        """Resolve the role template and make sure the role is active.

        Raises:
            RoleTemplateNotFoundError: If the template does not exist.
        """
        templates = [
            t for t in self._directory.list_directory_role_templates()
            if t.display_name == self.role_template_name
        ]
        if not templates:
            raise RoleTemplateNotFoundError(self.role_template_name)
        self._role_template_id = templates[0].id
        self._role = None
        self.ensure_role_active()

    def ensure_role_active(self) -> DirectoryRole:
        """Return the active directory role, activating the template if needed.

        Raises:
            FatalConfigurationError: If the activated role never became visible.
        """
        if self._role is not None:
            return self._role
        if self._role_template_id is None:
            raise RuntimeError("prepare() must run before roles are resolved")

        template_id = self._role_template_id
        role = self._directory.find_directory_role(template_id)
        if role is None:
            logger.info("Activating directory role %s", self.role_template_name)
            self._directory.activate_directory_role(template_id)
            role = self._context.propagation.wait_until_visible(
                lambda: self._directory.find_directory_role(template_id),
                f"directory role {self.role_template_name}",
            )
            if role is None:
                raise FatalConfigurationError(
                    f"Directory role '{self.role_template_name}' not active after activation",
                    {"template": self.role_template_name},
                )
        else:
            logger.debug("Directory role %s already active", self.role_template_name)

        self._role = role
        return role

    def provision_student(self, names: PodNames, outcome: StudentOutcome) -> None:
        index = names.index
        student = self.require("user", names.student_upn, self._directory.find_users, index)
        users_group = self.require(
            "group", names.users_group, self._directory.find_groups, index
        )
        admins_group = self.require(
            "group", names.admins_group, self._directory.find_groups, index
        )

        unit = self._ensure_unit(names, outcome)

        member_ids = self._directory.list_administrative_unit_member_ids(unit.id)
        for member_id, member in (
            (student.id, student.user_principal_name),
            (users_group.id, users_group.display_name),
        ):
            self.ensure_member(
                container=unit.display_name,
                member_ids=member_ids,
                member_id=member_id,
                member=member,
                add=lambda object_id: self._directory.add_administrative_unit_member(
                    unit.id, object_id
                ),
                outcome=outcome,
            )

        role = self.ensure_role_active()
        description = (
            f"scoped role grant {role.display_name or self.role_template_name} "
            f"-> {admins_group.display_name} on {unit.display_name}"
        )
        grants = self._directory.list_scoped_role_grants(unit.id)
        if any(g.role_id == role.id and g.principal_id == admins_group.id for g in grants):
            outcome.record(description, created=False)
            return

        created = self._directory.add_scoped_role_grant(unit.id, role.id, admins_group.id)
        outcome.record(description, created=created is not None)

    def _ensure_unit(self, names: PodNames, outcome: StudentOutcome) -> AdministrativeUnit:
        name = names.administrative_unit
        finder = self._directory.find_administrative_units
        if self.skip_au_creation:
            unit = self.require("administrative unit", name, finder, names.index)
            outcome.record(f"administrative unit {name}", created=False)
            return unit

        return self.ensure(
            "administrative unit",
            name,
            finder,
            lambda: self._directory.create_administrative_unit(
                name, f"Administrative unit of lab student {names.index}"
            ),
            outcome,
        )
