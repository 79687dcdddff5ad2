# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Stage orchestration and read-only pod audit.

The pipeline runs the selected stages in their fixed order:
1. identities
2. scope-tags
3. admin-units
4. delegated-roles

Each stage is a full pass over all students before the next one starts.
A fatal error stops the run; results of the stages that completed are
kept in the returned RunSummary.

Example:
    >>> pipeline = ProvisioningPipeline(context)
    >>> summary = pipeline.run(range(1, 4))
    >>> summary.exit_code
    0
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from w365lab.core.context import ProvisioningContext
from w365lab.core.errors import DirectoryUnavailableError, FatalConfigurationError
from w365lab.core.naming import PodNames
from w365lab.core.outcome import RunSummary, Stage
from w365lab.domains.administrative_units import AdministrativeUnitProvisioner
from w365lab.domains.base import StageProvisioner, normalize_indices
from w365lab.domains.delegated_roles import DelegatedRoleProvisioner
from w365lab.domains.identity import IdentityProvisioner
from w365lab.domains.scope_tags import ScopeTagProvisioner
from w365lab.services.graph.exceptions import (
    GraphAPIError,
    GraphAuthError,
    GraphConnectionError,
)

logger = logging.getLogger(__name__)


class ProvisioningPipeline:
    """Runs provisioning stages in order.

    Attributes:
        context: Provisioning context shared by all stages.
        skip_user_creation: Passed to the identity stage.
        skip_tag_creation: Passed to the scope tag stage.
        skip_au_creation: Passed to the administrative unit stage.
        skip_role_creation: Passed to the delegated role stage.
    """

    def __init__(
        self,
        context: ProvisioningContext,
        skip_user_creation: bool = False,
        skip_tag_creation: bool = False,
        skip_au_creation: bool = False,
        skip_role_creation: bool = False,
    ) -> None:
        self.context = context
        self.skip_user_creation = skip_user_creation
        self.skip_tag_creation = skip_tag_creation
        self.skip_au_creation = skip_au_creation
        self.skip_role_creation = skip_role_creation

    def provisioner(self, stage: Stage) -> StageProvisioner:
        """Build the provisioner of one stage."""
        if stage is Stage.IDENTITIES:
            return IdentityProvisioner(self.context, self.skip_user_creation)
        if stage is Stage.SCOPE_TAGS:
            return ScopeTagProvisioner(self.context, self.skip_tag_creation)
        if stage is Stage.ADMIN_UNITS:
            return AdministrativeUnitProvisioner(self.context, self.skip_au_creation)
        return DelegatedRoleProvisioner(self.context, self.skip_role_creation)

    def run(
        self,
        indices: Iterable[int],
        stages: Iterable[Stage] | None = None,
    ) -> RunSummary:
        """Run the selected stages (all by default) for the given students.

        Stages are always executed in pipeline order, whatever order they
        are passed in.
        """
        ordered = normalize_indices(indices)
        selected = set(stages) if stages is not None else set(Stage)
        summary = RunSummary()

        for stage in Stage.ordered():
            if stage not in selected:
                continue
            try:
                summary.stages.append(self.provisioner(stage).provision(ordered))
            except FatalConfigurationError as e:
                logger.error("Run aborted during stage %s: %s", stage.value, e)
                if e.partial_result is not None:
                    summary.stages.append(e.partial_result)
                summary.fatal_error = str(e)
                break

        return summary


# =============================================================================
# Audit
# =============================================================================


@dataclass
class PodAudit:
    """Result of auditing one student's pod.

    Attributes:
        index: Student index.
        problems: Human-readable findings; empty when the pod is complete
            and isolated.
    """

    index: int
    problems: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.problems


class PodAuditor:
    """Read-only check that every pod is complete and isolated.

    Never creates or changes anything in the tenant.
    """

    def __init__(self, context: ProvisioningContext) -> None:
        self._context = context
        self._directory = context.directory
        self._directory_role_id: str | None = None
        self._role_definition_id: str | None = None

    def audit(self, indices: Iterable[int]) -> list[PodAudit]:
        """Audit every student's pod.

        Raises:
            DirectoryUnavailableError: If the directory cannot be reached.
        """
        ordered = normalize_indices(indices)
        try:
            self._resolve_shared_roles()
            return [self.audit_student(self._context.names(i)) for i in ordered]
        except (GraphAuthError, GraphConnectionError) as e:
            raise DirectoryUnavailableError(f"Directory unavailable: {e}") from e

    def _resolve_shared_roles(self) -> None:
        lab = self._context.lab
        templates = [
            t for t in self._directory.list_directory_role_templates()
            if t.display_name == lab.directory_role_template
        ]
        role = self._directory.find_directory_role(templates[0].id) if templates else None
        self._directory_role_id = role.id if role else None

        definitions = self._directory.find_role_definitions(lab.role_display_name)
        self._role_definition_id = definitions[0].id if len(definitions) == 1 else None

    def audit_student(self, names: PodNames) -> PodAudit:
        result = PodAudit(index=names.index)
        try:
            self._audit(names, result.problems)
        except GraphAuthError:
            raise
        except GraphAPIError as e:
            result.problems.append(f"lookup failed: {e}")
        if result.complete:
            logger.info("Student %d: pod complete", names.index)
        else:
            logger.warning(
                "Student %d: %d problems: %s",
                names.index,
                len(result.problems),
                "; ".join(result.problems),
            )
        return result

    def _single(self, kind: str, name: str, found: list, problems: list[str]):
        if len(found) != 1:
            problems.append(f"expected 1 {kind} '{name}', found {len(found)}")
            return None
        return found[0]

    def _audit(self, names: PodNames, problems: list[str]) -> None:
        d = self._directory
        admin = self._single("user", names.admin_upn, d.find_users(names.admin_upn), problems)
        student = self._single(
            "user", names.student_upn, d.find_users(names.student_upn), problems
        )
        admins = self._single(
            "group", names.admins_group, d.find_groups(names.admins_group), problems
        )
        users = self._single(
            "group", names.users_group, d.find_groups(names.users_group), problems
        )
        devices = self._single(
            "group", names.devices_group, d.find_groups(names.devices_group), problems
        )
        tag = self._single(
            "scope tag", names.scope_tag, d.find_scope_tags(names.scope_tag), problems
        )
        unit = self._single(
            "administrative unit",
            names.administrative_unit,
            d.find_administrative_units(names.administrative_unit),
            problems,
        )

        if admins and admin and admin.id not in d.list_group_member_ids(admins.id):
            problems.append(f"{admin.user_principal_name} not in {admins.display_name}")
        if users and student and student.id not in d.list_group_member_ids(users.id):
            problems.append(f"{student.user_principal_name} not in {users.display_name}")

        if unit and student and users:
            members = d.list_administrative_unit_member_ids(unit.id)
            expected = {student.id, users.id}
            if members != expected:
                problems.append(
                    f"{unit.display_name} has {len(members)} members, expected "
                    f"exactly {student.user_principal_name} and {users.display_name}"
                )

        if unit and admins:
            if self._directory_role_id is None:
                problems.append("delegated directory role is not active")
            else:
                grants = [
                    g for g in d.list_scoped_role_grants(unit.id)
                    if g.role_id == self._directory_role_id
                ]
                if [g.principal_id for g in grants] != [admins.id]:
                    problems.append(
                        f"{unit.display_name} must grant the role only to "
                        f"{admins.display_name}, found {len(grants)} grants"
                    )

        if admins and users and devices and tag:
            self._audit_assignment(admins.id, {users.id, devices.id}, tag.id, problems)

    def _audit_assignment(
        self,
        admins_id: str,
        scope_ids: set[str],
        tag_id: str,
        problems: list[str],
    ) -> None:
        if self._role_definition_id is None:
            problems.append("shared Intune role definition missing or duplicated")
            return

        matches = []
        for assignment in self._directory.list_role_assignments(self._role_definition_id):
            if not assignment.has_member_data:
                assignment = self._directory.get_role_assignment(assignment.id)
            if admins_id in (assignment.members or []):
                matches.append(assignment)

        if len(matches) != 1:
            problems.append(f"expected 1 role assignment, found {len(matches)}")
            return
        assignment = matches[0]
        if assignment.members != [admins_id]:
            problems.append("role assignment has foreign members")
        if set(assignment.scope_members or []) != scope_ids:
            problems.append("role assignment scope members are not Users and Devices")
        if assignment.role_scope_tag_ids != [tag_id]:
            problems.append("role assignment scope tags are not exactly the student's tag")
