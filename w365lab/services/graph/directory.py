# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Typed directory operations over Microsoft Graph.

DirectoryService is the only place that knows Graph URLs and payload
shapes. Every response is parsed into a record from
w365lab.models.directory; a malformed response raises
UnexpectedResponseError.

Lookups by name return lists so callers can detect duplicates. Directory
objects (users, groups, administrative units) are filtered server-side;
Intune RBAC collections (scope tags, role definitions) are small and are
filtered client-side. In both cases the final comparison is an exact,
case-sensitive match on the name.

"Add member" operations return False instead of raising when the member
is already present.
"""

import logging
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from w365lab.models.directory import (
    AdministrativeUnit,
    DirectoryObjectRef,
    DirectoryRole,
    DirectoryRoleTemplate,
    RoleAssignment,
    RoleDefinition,
    ScopedRoleGrant,
    ScopeTag,
    SecurityGroup,
    UserAccount,
    VerifiedDomain,
)
from w365lab.services.graph.client import GraphClient, odata_quote
from w365lab.services.graph.exceptions import (
    GraphConflictError,
    UnexpectedResponseError,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Sentinel resource scope covering every scope-tag-partitioned resource
ALL_TAGGED_RESOURCES = "/"

ADMIN_UNIT_HIDDEN_MEMBERSHIP = "HiddenMembership"


def parse_record(model: type[ModelT], data: Any, path: str) -> ModelT:
    """Validate a Graph JSON object into a typed record.

    Raises:
        UnexpectedResponseError: If the data does not match the model.
    """
    if not isinstance(data, dict):
        raise UnexpectedResponseError(
            f"Expected a JSON object for {model.__name__}", path=path
        )
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise UnexpectedResponseError(
            f"Malformed {model.__name__} in response",
            path=path,
            details={"errors": e.errors(include_url=False, include_input=False)},
        ) from e


def parse_records(model: type[ModelT], items: list[Any], path: str) -> list[ModelT]:
    """Validate a list of Graph JSON objects."""
    return [parse_record(model, item, path) for item in items]


class DirectoryService:
    """Entra ID and Intune operations needed to provision lab pods.

    Attributes:
        client: Underlying Graph HTTP client.
    """

    def __init__(self, client: GraphClient) -> None:
        self.client = client

    def _object_ref(self, object_id: str) -> dict[str, str]:
        return {"@odata.id": f"{self.client.base_url}/directoryObjects/{object_id}"}

    def _created(self, model: type[ModelT], body: dict[str, Any] | None, path: str) -> ModelT:
        if body is None:
            raise UnexpectedResponseError("Create returned no body", path=path)
        return parse_record(model, body, path)

    def _add_reference(self, path: str, object_id: str) -> bool:
        try:
            self.client.post(path, self._object_ref(object_id))
        except GraphConflictError:
            logger.debug("Reference %s already present at %s", object_id, path)
            return False
        return True

    # =========================================================================
    # Domains
    # =========================================================================

    def list_domains(self) -> list[VerifiedDomain]:
        path = "/domains"
        return parse_records(VerifiedDomain, self.client.list_all(path), path)

    # =========================================================================
    # Users
    # =========================================================================

    def find_users(self, user_principal_name: str) -> list[UserAccount]:
        """Find users by exact user principal name."""
        path = "/users"
        items = self.client.list_all(
            path,
            params={
                "$filter": f"userPrincipalName eq {odata_quote(user_principal_name)}",
                "$select": "id,userPrincipalName,displayName,accountEnabled",
            },
        )
        users = parse_records(UserAccount, items, path)
        return [
            u for u in users
            if u.user_principal_name.lower() == user_principal_name.lower()
        ]

    def create_user(
        self,
        user_principal_name: str,
        display_name: str,
        mail_nickname: str,
        password: str,
        usage_location: str | None = None,
    ) -> UserAccount:
        """Create an enabled user that must change password at next sign-in."""
        path = "/users"
        payload: dict[str, Any] = {
            "accountEnabled": True,
            "displayName": display_name,
            "mailNickname": mail_nickname,
            "userPrincipalName": user_principal_name,
            "passwordProfile": {
                "forceChangePasswordNextSignIn": True,
                "password": password,
            },
        }
        if usage_location:
            payload["usageLocation"] = usage_location
        return self._created(UserAccount, self.client.post(path, payload), path)

    # =========================================================================
    # Groups
    # =========================================================================

    def find_groups(self, display_name: str) -> list[SecurityGroup]:
        """Find groups by exact display name."""
        path = "/groups"
        items = self.client.list_all(
            path,
            params={
                "$filter": f"displayName eq {odata_quote(display_name)}",
                "$select": "id,displayName,securityEnabled,isAssignableToRole",
            },
        )
        groups = parse_records(SecurityGroup, items, path)
        return [g for g in groups if g.display_name == display_name]

    def create_security_group(
        self,
        display_name: str,
        mail_nickname: str,
        description: str,
        role_assignable: bool = False,
    ) -> SecurityGroup:
        """Create an assigned-membership security group.

        Args:
            role_assignable: Create the group with isAssignableToRole so it can
                hold directory role grants. Cannot be changed after creation.
        """
        path = "/groups"
        payload: dict[str, Any] = {
            "displayName": display_name,
            "description": description,
            "mailEnabled": False,
            "mailNickname": mail_nickname,
            "securityEnabled": True,
        }
        if role_assignable:
            payload["isAssignableToRole"] = True
        return self._created(SecurityGroup, self.client.post(path, payload), path)

    def list_group_member_ids(self, group_id: str) -> set[str]:
        path = f"/groups/{group_id}/members"
        items = self.client.list_all(path, params={"$select": "id"})
        return {ref.id for ref in parse_records(DirectoryObjectRef, items, path)}

    def add_group_member(self, group_id: str, object_id: str) -> bool:
        """Add a member to a group.

        Returns:
            True if added, False if it was already a member.
        """
        return self._add_reference(f"/groups/{group_id}/members/$ref", object_id)

    # =========================================================================
    # Administrative units
    # =========================================================================

    def find_administrative_units(self, display_name: str) -> list[AdministrativeUnit]:
        path = "/directory/administrativeUnits"
        items = self.client.list_all(
            path,
            params={"$filter": f"displayName eq {odata_quote(display_name)}"},
        )
        units = parse_records(AdministrativeUnit, items, path)
        return [u for u in units if u.display_name == display_name]

    def create_administrative_unit(
        self,
        display_name: str,
        description: str,
        hidden_membership: bool = True,
    ) -> AdministrativeUnit:
        path = "/directory/administrativeUnits"
        payload: dict[str, Any] = {
            "displayName": display_name,
            "description": description,
        }
        if hidden_membership:
            payload["visibility"] = ADMIN_UNIT_HIDDEN_MEMBERSHIP
        return self._created(AdministrativeUnit, self.client.post(path, payload), path)

    def list_administrative_unit_member_ids(self, unit_id: str) -> set[str]:
        path = f"/directory/administrativeUnits/{unit_id}/members"
        items = self.client.list_all(path, params={"$select": "id"})
        return {ref.id for ref in parse_records(DirectoryObjectRef, items, path)}

    def add_administrative_unit_member(self, unit_id: str, object_id: str) -> bool:
        """Add a user or group to an administrative unit.

        Returns:
            True if added, False if it was already a member.
        """
        return self._add_reference(
            f"/directory/administrativeUnits/{unit_id}/members/$ref", object_id
        )

    def list_scoped_role_grants(self, unit_id: str) -> list[ScopedRoleGrant]:
        path = f"/directory/administrativeUnits/{unit_id}/scopedRoleMembers"
        return parse_records(ScopedRoleGrant, self.client.list_all(path), path)

    def add_scoped_role_grant(
        self,
        unit_id: str,
        role_id: str,
        principal_id: str,
    ) -> ScopedRoleGrant | None:
        """Grant an activated directory role to a principal within an AU.

        Returns:
            The new grant, or None if Graph reports it already exists.
        """
        path = f"/directory/administrativeUnits/{unit_id}/scopedRoleMembers"
        payload = {"roleId": role_id, "roleMemberInfo": {"id": principal_id}}
        try:
            body = self.client.post(path, payload)
        except GraphConflictError:
            logger.debug("Scoped role grant already present on %s", unit_id)
            return None
        return self._created(ScopedRoleGrant, body, path)

    # =========================================================================
    # Directory roles
    # =========================================================================

    def list_directory_role_templates(self) -> list[DirectoryRoleTemplate]:
        path = "/directoryRoleTemplates"
        return parse_records(DirectoryRoleTemplate, self.client.list_all(path), path)

    def find_directory_role(self, role_template_id: str) -> DirectoryRole | None:
        """Find the activated role for a template, if any."""
        path = "/directoryRoles"
        items = self.client.list_all(
            path,
            params={"$filter": f"roleTemplateId eq {odata_quote(role_template_id)}"},
        )
        roles = [
            r for r in parse_records(DirectoryRole, items, path)
            if r.role_template_id == role_template_id
        ]
        return roles[0] if roles else None

    def activate_directory_role(self, role_template_id: str) -> DirectoryRole | None:
        """Activate a directory role from its template.

        Returns:
            The activated role, or None if Graph reports it is already active.
        """
        path = "/directoryRoles"
        try:
            body = self.client.post(path, {"roleTemplateId": role_template_id})
        except GraphConflictError:
            logger.debug("Directory role %s already active", role_template_id)
            return None
        return self._created(DirectoryRole, body, path)

    # =========================================================================
    # Intune scope tags
    # =========================================================================

    def find_scope_tags(self, display_name: str) -> list[ScopeTag]:
        path = "/deviceManagement/roleScopeTags"
        tags = parse_records(ScopeTag, self.client.list_all(path, beta=True), path)
        return [t for t in tags if t.display_name == display_name]

    def create_scope_tag(self, display_name: str, description: str) -> ScopeTag:
        path = "/deviceManagement/roleScopeTags"
        payload = {"displayName": display_name, "description": description}
        return self._created(ScopeTag, self.client.post(path, payload, beta=True), path)

    # =========================================================================
    # Intune role definitions and assignments
    # =========================================================================

    def find_role_definitions(self, display_name: str) -> list[RoleDefinition]:
        path = "/deviceManagement/roleDefinitions"
        definitions = parse_records(
            RoleDefinition, self.client.list_all(path, beta=True), path
        )
        return [d for d in definitions if d.display_name == display_name]

    def create_role_definition(
        self,
        display_name: str,
        description: str,
        allowed_resource_actions: list[str],
    ) -> RoleDefinition:
        """Create a custom Intune role with an explicit allow-list."""
        path = "/deviceManagement/roleDefinitions"
        payload = {
            "@odata.type": "#microsoft.graph.deviceAndAppManagementRoleDefinition",
            "displayName": display_name,
            "description": description,
            "isBuiltIn": False,
            "rolePermissions": [
                {
                    "resourceActions": [
                        {
                            "allowedResourceActions": list(allowed_resource_actions),
                            "notAllowedResourceActions": [],
                        }
                    ]
                }
            ],
        }
        return self._created(
            RoleDefinition, self.client.post(path, payload, beta=True), path
        )

    def list_role_assignments(self, role_definition_id: str) -> list[RoleAssignment]:
        """List assignments of one role definition."""
        path = f"/deviceManagement/roleDefinitions/{role_definition_id}/roleAssignments"
        return parse_records(RoleAssignment, self.client.list_all(path, beta=True), path)

    def get_role_assignment(self, assignment_id: str) -> RoleAssignment:
        path = f"/deviceManagement/roleAssignments/{assignment_id}"
        return parse_record(RoleAssignment, self.client.get(path, beta=True), path)

    def create_role_assignment(
        self,
        role_definition_id: str,
        display_name: str,
        description: str,
        members: list[str],
        scope_members: list[str],
        role_scope_tag_ids: list[str],
        resource_scopes: list[str] | None = None,
    ) -> RoleAssignment:
        """Create an Intune role assignment.

        Args:
            role_definition_id: Role being assigned.
            members: Principals (groups) receiving the role.
            scope_members: Groups whose users and devices the principals manage.
            role_scope_tag_ids: Scope tags limiting what the principals see.
            resource_scopes: Resource scopes, defaults to ALL_TAGGED_RESOURCES.
        """
        path = "/deviceManagement/roleAssignments"
        payload = {
            "@odata.type": "#microsoft.graph.deviceAndAppManagementRoleAssignment",
            "displayName": display_name,
            "description": description,
            "members": list(members),
            "scopeMembers": list(scope_members),
            "resourceScopes": list(resource_scopes or [ALL_TAGGED_RESOURCES]),
            "scopeType": "resourceScope",
            "roleScopeTagIds": list(role_scope_tag_ids),
            "roleDefinition@odata.bind": (
                f"{self.client.beta_url}/deviceManagement/roleDefinitions"
                f"('{role_definition_id}')"
            ),
        }
        return self._created(
            RoleAssignment, self.client.post(path, payload, beta=True), path
        )
