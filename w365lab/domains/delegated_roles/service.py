# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delegated role provisioning: one shared Intune role, one assignment per pod.

The custom role "Lab Intune Admin" grants an explicit allow-list of Intune
actions. Each student gets an assignment of that role with:

- members: SG-Student{N}-Admins (who receives the role)
- scope members: SG-Student{N}-Users and SG-Student{N}-Devices (who and
  what they manage)
- scope tags: ST{N} (which Intune objects they see)

Assignments are matched by role and principal, never by display name.
"""

import logging

from w365lab.core.context import ProvisioningContext
from w365lab.core.errors import FatalConfigurationError, PropagationTimeoutError
from w365lab.core.naming import PodNames
from w365lab.core.outcome import Stage, StudentOutcome
from w365lab.domains.base import StageProvisioner
from w365lab.models.directory import RoleAssignment, RoleDefinition

logger = logging.getLogger(__name__)

LAB_ROLE_ALLOWED_ACTIONS: tuple[str, ...] = (
    # Mobile apps
    "Microsoft.Intune_MobileApps_Create",
    "Microsoft.Intune_MobileApps_Read",
    "Microsoft.Intune_MobileApps_Update",
    "Microsoft.Intune_MobileApps_Delete",
    "Microsoft.Intune_MobileApps_Assign",
    # Device configurations
    "Microsoft.Intune_DeviceConfigurations_Create",
    "Microsoft.Intune_DeviceConfigurations_Read",
    "Microsoft.Intune_DeviceConfigurations_Update",
    "Microsoft.Intune_DeviceConfigurations_Delete",
    "Microsoft.Intune_DeviceConfigurations_Assign",
    # Compliance policies (Intune spells it "Polices")
    "Microsoft.Intune_DeviceCompliancePolices_Read",
    "Microsoft.Intune_DeviceCompliancePolices_Assign",
    # Managed devices
    "Microsoft.Intune_ManagedDevices_Read",
    # Remote tasks
    "Microsoft.Intune_RemoteTasks_Retire",
    "Microsoft.Intune_RemoteTasks_Wipe",
    "Microsoft.Intune_RemoteTasks_RebootNow",
    "Microsoft.Intune_RemoteTasks_SyncDevice",
)

LAB_ROLE_DESCRIPTION = (
    "Delegated Intune administration for lab students, limited by scope tag"
)


class DelegatedRoleProvisioner(StageProvisioner):
    """Creates the shared lab role and assigns it to each pod.

    Attributes:
        skip_role_creation: The role definition must already exist; its
            absence aborts the stage.
        role_display_name: Display name of the shared custom role.
    """

    stage = Stage.DELEGATED_ROLES

    def __init__(
        self,
        context: ProvisioningContext,
        skip_role_creation: bool = False,
    ) -> None:
        super().__init__(context)
        self.skip_role_creation = skip_role_creation
        self.role_display_name = context.lab.role_display_name
        self._role: RoleDefinition | None = None

    @property
    def role(self) -> RoleDefinition:
        if self._role is None:
            raise RuntimeError("prepare() must run before the role is used")
        return self._role

    def prepare(self) -> None:
        """Ensure exactly one shared role definition exists.

        Raises:
            FatalConfigurationError: If several roles share the name, or the
                role is absent while role creation is skipped or never
                becomes visible.
        """
        self._role = self._ensure_role_definition()

    def _find_role(self) -> RoleDefinition | None:
        found = self._directory.find_role_definitions(self.role_display_name)
        if len(found) > 1:
            raise FatalConfigurationError(
                f"Found {len(found)} role definitions named '{self.role_display_name}'",
                {"role": self.role_display_name, "count": len(found)},
            )
        return found[0] if found else None

    def _ensure_role_definition(self) -> RoleDefinition:
        role = self._find_role()
        if role is not None:
            missing = set(LAB_ROLE_ALLOWED_ACTIONS) - role.allowed_resource_actions
            if missing:
                logger.warning(
                    "Role %s lacks %d expected actions: %s",
                    self.role_display_name,
                    len(missing),
                    ", ".join(sorted(missing)),
                )
            logger.info("Using existing role definition %s", self.role_display_name)
            return role

        if self.skip_role_creation:
            raise FatalConfigurationError(
                f"Role definition '{self.role_display_name}' not found "
                "and role creation is skipped",
                {"role": self.role_display_name},
            )

        logger.info("Creating role definition %s", self.role_display_name)
        self._directory.create_role_definition(
            self.role_display_name,
            LAB_ROLE_DESCRIPTION,
            list(LAB_ROLE_ALLOWED_ACTIONS),
        )
        role = self._context.propagation.wait_until_visible(
            self._find_role, f"role definition {self.role_display_name}"
        )
        if role is None:
            raise FatalConfigurationError(
                f"Role definition '{self.role_display_name}' not visible after creation",
                {"role": self.role_display_name},
            )
        return role

    def find_assignment(self, principal_id: str) -> RoleAssignment | None:
        """Find the assignment of the shared role to a principal.

        Assignments listed without member data are re-read one by one.
        """
        for assignment in self._directory.list_role_assignments(self.role.id):
            if not assignment.has_member_data:
                assignment = self._directory.get_role_assignment(assignment.id)
            if principal_id in (assignment.members or []):
                return assignment
        return None

    def provision_student(self, names: PodNames, outcome: StudentOutcome) -> None:
        index = names.index
        finder = self._directory.find_groups
        admins = self.require("group", names.admins_group, finder, index)
        users = self.require("group", names.users_group, finder, index)
        devices = self.require("group", names.devices_group, finder, index)
        tag = self.require(
            "scope tag", names.scope_tag, self._directory.find_scope_tags, index
        )

        description = f"role assignment {self.role.display_name} -> {admins.display_name}"
        existing = self.find_assignment(admins.id)
        if existing is not None:
            tag_ids = existing.role_scope_tag_ids
            if tag_ids is not None and tag_ids != [tag.id]:
                logger.warning(
                    "Assignment %s of %s carries scope tags %s, expected %s",
                    existing.id,
                    admins.display_name,
                    tag_ids,
                    tag.id,
                )
            outcome.record(description, created=False)
            return

        self._directory.create_role_assignment(
            role_definition_id=self.role.id,
            display_name=names.role_assignment(self.role_display_name),
            description=f"Delegated Intune administration for lab student {index}",
            members=[admins.id],
            scope_members=[users.id, devices.id],
            role_scope_tag_ids=[tag.id],
        )
        visible = self._context.propagation.wait_until_visible(
            lambda: self.find_assignment(admins.id), description
        )
        if visible is None:
            raise PropagationTimeoutError(
                "role assignment", admins.display_name, student_index=index
            )
        outcome.record(description, created=True)
