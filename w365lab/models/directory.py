# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Typed records for directory entities.

Graph responses are parsed into these models at the client boundary.
Required fields are required: a response without them fails validation
instead of being checked field by field later on.
"""

from pydantic import BaseModel, ConfigDict, Field


class DirectoryRecord(BaseModel):
    """Base for records parsed from Graph JSON (camelCase aliases)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str = Field(min_length=1)


class VerifiedDomain(DirectoryRecord):
    """A domain registered in the tenant."""

    is_verified: bool = Field(alias="isVerified")
    is_default: bool = Field(default=False, alias="isDefault")


class UserAccount(DirectoryRecord):
    """An Entra ID user."""

    user_principal_name: str = Field(alias="userPrincipalName")
    display_name: str | None = Field(default=None, alias="displayName")
    account_enabled: bool | None = Field(default=None, alias="accountEnabled")


class SecurityGroup(DirectoryRecord):
    """An Entra ID security group."""

    display_name: str = Field(alias="displayName")
    security_enabled: bool | None = Field(default=None, alias="securityEnabled")
    is_assignable_to_role: bool | None = Field(default=None, alias="isAssignableToRole")


class DirectoryObjectRef(DirectoryRecord):
    """A member reference returned by membership listings."""

    odata_type: str | None = Field(default=None, alias="@odata.type")


class AdministrativeUnit(DirectoryRecord):
    """An administrative unit."""

    display_name: str = Field(alias="displayName")
    description: str | None = None
    visibility: str | None = None


class RoleMemberInfo(BaseModel):
    """Principal of a scoped role membership."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str = Field(min_length=1)
    display_name: str | None = Field(default=None, alias="displayName")


class ScopedRoleGrant(DirectoryRecord):
    """A directory role granted to a principal within one administrative unit."""

    role_id: str = Field(alias="roleId")
    administrative_unit_id: str = Field(alias="administrativeUnitId")
    role_member_info: RoleMemberInfo = Field(alias="roleMemberInfo")

    @property
    def principal_id(self) -> str:
        return self.role_member_info.id


class DirectoryRoleTemplate(DirectoryRecord):
    """A directory role template (not yet assignable until activated)."""

    display_name: str = Field(alias="displayName")


class DirectoryRole(DirectoryRecord):
    """An activated directory role."""

    display_name: str | None = Field(default=None, alias="displayName")
    role_template_id: str = Field(alias="roleTemplateId")


class ScopeTag(DirectoryRecord):
    """An Intune role scope tag."""

    display_name: str = Field(alias="displayName")
    description: str | None = None


class ResourceAction(BaseModel):
    """Allowed and denied actions of an Intune role permission."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    allowed_resource_actions: list[str] = Field(
        default_factory=list, alias="allowedResourceActions"
    )
    not_allowed_resource_actions: list[str] = Field(
        default_factory=list, alias="notAllowedResourceActions"
    )


class RolePermission(BaseModel):
    """One permission block of an Intune role definition."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    resource_actions: list[ResourceAction] = Field(
        default_factory=list, alias="resourceActions"
    )


class RoleDefinition(DirectoryRecord):
    """An Intune (device and app management) role definition."""

    display_name: str = Field(alias="displayName")
    description: str | None = None
    is_built_in: bool = Field(default=False, alias="isBuiltIn")
    role_permissions: list[RolePermission] = Field(
        default_factory=list, alias="rolePermissions"
    )

    @property
    def allowed_resource_actions(self) -> set[str]:
        return {
            action
            for permission in self.role_permissions
            for resource_action in permission.resource_actions
            for action in resource_action.allowed_resource_actions
        }


class RoleAssignment(DirectoryRecord):
    """An Intune role assignment.

    members and role_scope_tag_ids are None when the listing that produced
    the record did not include them; callers must re-read the assignment
    before relying on them.
    """

    display_name: str | None = Field(default=None, alias="displayName")
    description: str | None = None
    members: list[str] | None = None
    scope_members: list[str] | None = Field(default=None, alias="scopeMembers")
    resource_scopes: list[str] | None = Field(default=None, alias="resourceScopes")
    role_scope_tag_ids: list[str] | None = Field(default=None, alias="roleScopeTagIds")

    @property
    def has_member_data(self) -> bool:
        return self.members is not None
