# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

Microsoft Graph is replaced by FakeGraph, an in-memory directory served
through httpx.MockTransport. The real GraphClient, DirectoryService and
provisioners run against it unchanged, so the tests exercise URL building,
paging, error mapping and response parsing as well as stage logic.
"""

import itertools
import json
import logging
import os
import re
from collections.abc import Iterator
from typing import Any

import httpx
import pytest
from pydantic import SecretStr

from w365lab.core.config import GraphSettings, LabSettings, clear_settings_cache
from w365lab.core.context import ProvisioningContext
from w365lab.services.graph import DirectoryService, GraphClient, StaticTokenProvider
from w365lab.utils.logging import clear_context
from w365lab.utils.propagation import PropagationPolicy

LAB_DOMAIN = "contoso.onmicrosoft.com"
USER_ADMIN_TEMPLATE_ID = "fe930be7-5e62-47db-91af-98c3a49a38b1"

CONFLICT_MESSAGE = (
    "A conflicting object with one or more of the specified property values "
    "is present in the directory."
)
REF_EXISTS_MESSAGE = (
    "One or more added object references already exist for the following "
    "modified properties: 'members'."
)

FILTER_PATTERN = re.compile(r"^(\w+) eq '(.*)'$")


class FakeGraph:
    """In-memory Entra ID / Intune tenant speaking Graph over HTTP.

    Attributes:
        page_size: Collection page size; larger collections are paged with
            @odata.nextLink.
        create_lag: Number of listings during which a newly created object
            stays invisible (simulates replication delay).
        omit_assignment_members: List role assignments without member data.
        requests: (method, path) of every request received.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.page_size = 100
        self.create_lag = 0
        self.omit_assignment_members = False
        self.requests: list[tuple[str, str]] = []
        self._failures: list[dict[str, Any]] = []
        self._hidden: dict[str, int] = {}

        self.domains: list[dict[str, Any]] = [
            {"id": LAB_DOMAIN, "isVerified": True, "isDefault": True},
            {"id": "lab.contoso.com", "isVerified": False, "isDefault": False},
        ]
        self.users: dict[str, dict[str, Any]] = {}
        self.passwords: dict[str, str] = {}
        self.groups: dict[str, dict[str, Any]] = {}
        self.group_members: dict[str, list[str]] = {}
        self.admin_units: dict[str, dict[str, Any]] = {}
        self.unit_members: dict[str, list[str]] = {}
        self.scoped_grants: dict[str, list[dict[str, Any]]] = {}
        self.role_templates: list[dict[str, Any]] = [
            {"id": USER_ADMIN_TEMPLATE_ID, "displayName": "User Administrator"},
            {"id": "729827e3-9c14-49f7-bb1b-9608f156bbb8", "displayName": "Helpdesk Administrator"},
        ]
        self.directory_roles: list[dict[str, Any]] = []
        self.scope_tags: dict[str, dict[str, Any]] = {
            "0": {"id": "0", "displayName": "Default", "description": "Default scope tag"},
        }
        self.role_definitions: dict[str, dict[str, Any]] = {
            "builtin-1": {
                "id": "builtin-1",
                "displayName": "Policy and Profile manager",
                "description": "Built-in role",
                "isBuiltIn": True,
                "rolePermissions": [],
            },
        }
        self.role_assignments: dict[str, dict[str, Any]] = {}

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def fail(
        self,
        method: str,
        fragment: str,
        status: int = 500,
        message: str = "Internal server error",
        times: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Answer matching requests with an error.

        fragment is matched against the path, decoded query values and body.
        times limits how many requests fail (None: all of them).
        """
        self._failures.append(
            {
                "method": method,
                "fragment": fragment,
                "status": status,
                "message": message,
                "times": times,
                "headers": headers or {},
            }
        )

    def find_by_name(self, store: dict[str, dict[str, Any]], name: str) -> list[dict[str, Any]]:
        return [item for item in store.values() if item["displayName"] == name]

    def user_by_upn(self, upn: str) -> dict[str, Any]:
        return next(u for u in self.users.values() if u["userPrincipalName"] == upn)

    def group_by_name(self, name: str) -> dict[str, Any]:
        return self.find_by_name(self.groups, name)[0]

    def unit_by_name(self, name: str) -> dict[str, Any]:
        return self.find_by_name(self.admin_units, name)[0]

    def tag_by_name(self, name: str) -> dict[str, Any]:
        return self.find_by_name(self.scope_tags, name)[0]

    def requests_for(self, method: str, path: str) -> int:
        return sum(1 for m, p in self.requests if m == method and p == path)

    def hide(self, item: dict[str, Any], lookups: int) -> None:
        """Leave item out of the next lookups, like replication lag does."""
        self._hidden[item["id"]] = lookups

    def add_user(self, upn: str) -> dict[str, Any]:
        user = {
            "id": self.new_id("user"),
            "userPrincipalName": upn,
            "displayName": upn.split("@")[0],
            "accountEnabled": True,
        }
        self.users[user["id"]] = user
        return user

    def add_group(self, name: str, role_assignable: bool = False) -> dict[str, Any]:
        group = {
            "id": self.new_id("group"),
            "displayName": name,
            "securityEnabled": True,
            "isAssignableToRole": role_assignable,
        }
        self.groups[group["id"]] = group
        self.group_members[group["id"]] = []
        return group

    def add_scope_tag(self, name: str) -> dict[str, Any]:
        tag = {"id": str(next(self._ids)), "displayName": name, "description": ""}
        self.scope_tags[tag["id"]] = tag
        return tag

    def add_admin_unit(self, name: str) -> dict[str, Any]:
        unit = {"id": self.new_id("au"), "displayName": name, "visibility": None}
        self.admin_units[unit["id"]] = unit
        self.unit_members[unit["id"]] = []
        self.scoped_grants[unit["id"]] = []
        return unit

    def assignments_for(self, principal_id: str) -> list[dict[str, Any]]:
        return [a for a in self.role_assignments.values() if principal_id in a["members"]]

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        version, _, rest = request.url.path.lstrip("/").partition("/")
        path = "/" + rest
        self.requests.append((request.method, path))

        body = json.loads(request.content) if request.content else None
        failure = self._match_failure(request, path)
        if failure is not None:
            return self._error(
                failure["status"], "InjectedFailure", failure["message"], failure["headers"]
            )

        params = request.url.params
        try:
            if version == "beta":
                return self._beta(request, path, params, body)
            return self._v1(request, path, params, body)
        except LookupError:
            return self._error(404, "Request_ResourceNotFound", f"{path} does not exist")

    def _match_failure(self, request: httpx.Request, path: str) -> dict[str, Any] | None:
        haystack = " ".join(
            [path, *request.url.params.values(), request.content.decode() or ""]
        )
        for failure in self._failures:
            if failure["method"] != request.method or failure["fragment"] not in haystack:
                continue
            if failure["times"] is not None:
                if failure["times"] <= 0:
                    continue
                failure["times"] -= 1
            return failure
        return None

    def _error(
        self,
        status: int,
        code: str,
        message: str,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        return httpx.Response(
            status,
            json={"error": {"code": code, "message": message}},
            headers={"request-id": "req-123", **(headers or {})},
        )

    def _visible(self, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        visible = []
        for item in items:
            remaining = self._hidden.get(item["id"], 0)
            if remaining > 0:
                self._hidden[item["id"]] = remaining - 1
                continue
            visible.append(item)
        return visible

    def _created(self, item: dict[str, Any]) -> httpx.Response:
        if self.create_lag:
            self._hidden[item["id"]] = self.create_lag
        return httpx.Response(201, json=self._public(item))

    def _public(self, item: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in item.items() if not k.startswith("_")}

    def _page(self, request: httpx.Request, items: list[dict[str, Any]]) -> httpx.Response:
        offset = int(request.url.params.get("$skiptoken", "0"))
        page = items[offset:offset + self.page_size]
        payload: dict[str, Any] = {"value": [self._public(i) for i in page]}
        if offset + self.page_size < len(items):
            payload["@odata.nextLink"] = str(
                request.url.copy_merge_params({"$skiptoken": str(offset + self.page_size)})
            )
        return httpx.Response(200, json=payload)

    def _filtered(self, items: list[dict[str, Any]], params: httpx.QueryParams) -> list[dict[str, Any]]:
        expression = params.get("$filter")
        if not expression:
            return items
        match = FILTER_PATTERN.match(expression)
        if match is None:
            raise AssertionError(f"Unsupported filter {expression}")
        field_name, value = match.group(1), match.group(2).replace("''", "'")
        if field_name == "userPrincipalName":
            return [i for i in items if i[field_name].lower() == value.lower()]
        return [i for i in items if i.get(field_name) == value]

    def _ref_id(self, body: dict[str, Any]) -> str:
        object_id = body["@odata.id"].rsplit("/", 1)[-1]
        if object_id not in self.users and object_id not in self.groups:
            raise LookupError(object_id)
        return object_id

    def _v1(
        self,
        request: httpx.Request,
        path: str,
        params: httpx.QueryParams,
        body: dict[str, Any] | None,
    ) -> httpx.Response:
        method = request.method
        parts = path.strip("/").split("/")

        if path == "/domains" and method == "GET":
            return self._page(request, self.domains)

        if path == "/users":
            if method == "GET":
                items = self._visible(self._filtered(list(self.users.values()), params))
                return self._page(request, items)
            upn = body["userPrincipalName"]
            if any(u["userPrincipalName"].lower() == upn.lower() for u in self.users.values()):
                return self._error(
                    400,
                    "Request_BadRequest",
                    "Another object with the same value for property "
                    "userPrincipalName already exists.",
                )
            user = {
                "id": self.new_id("user"),
                "userPrincipalName": upn,
                "displayName": body["displayName"],
                "accountEnabled": body["accountEnabled"],
                "_mailNickname": body["mailNickname"],
                "_forceChange": body["passwordProfile"]["forceChangePasswordNextSignIn"],
                "_usageLocation": body.get("usageLocation"),
            }
            self.users[user["id"]] = user
            self.passwords[upn] = body["passwordProfile"]["password"]
            return self._created(user)

        if path == "/groups":
            if method == "GET":
                items = self._visible(self._filtered(list(self.groups.values()), params))
                return self._page(request, items)
            group = {
                "id": self.new_id("group"),
                "displayName": body["displayName"],
                "description": body["description"],
                "securityEnabled": body["securityEnabled"],
                "isAssignableToRole": body.get("isAssignableToRole", False),
                "_mailNickname": body["mailNickname"],
            }
            self.groups[group["id"]] = group
            self.group_members[group["id"]] = []
            return self._created(group)

        if parts[0] == "groups" and len(parts) >= 3 and parts[2] == "members":
            members = self.group_members[parts[1]]
            if method == "GET":
                return self._page(request, [{"id": m} for m in members])
            object_id = self._ref_id(body)
            if object_id in members:
                return self._error(400, "Request_BadRequest", REF_EXISTS_MESSAGE)
            members.append(object_id)
            return httpx.Response(204)

        if path == "/directory/administrativeUnits":
            if method == "GET":
                items = self._visible(self._filtered(list(self.admin_units.values()), params))
                return self._page(request, items)
            unit = {
                "id": self.new_id("au"),
                "displayName": body["displayName"],
                "description": body["description"],
                "visibility": body.get("visibility"),
            }
            self.admin_units[unit["id"]] = unit
            self.unit_members[unit["id"]] = []
            self.scoped_grants[unit["id"]] = []
            return self._created(unit)

        if parts[:2] == ["directory", "administrativeUnits"] and len(parts) >= 4:
            unit_id = parts[2]
            if unit_id not in self.admin_units:
                raise LookupError(unit_id)
            if parts[3] == "members":
                members = self.unit_members[unit_id]
                if method == "GET":
                    return self._page(request, [{"id": m} for m in members])
                object_id = self._ref_id(body)
                if object_id in members:
                    return self._error(400, "Request_BadRequest", REF_EXISTS_MESSAGE)
                members.append(object_id)
                return httpx.Response(204)
            if parts[3] == "scopedRoleMembers":
                grants = self.scoped_grants[unit_id]
                if method == "GET":
                    return self._page(request, grants)
                role_id = body["roleId"]
                principal_id = body["roleMemberInfo"]["id"]
                if not any(r["id"] == role_id for r in self.directory_roles):
                    raise LookupError(role_id)
                if principal_id not in self.groups and principal_id not in self.users:
                    raise LookupError(principal_id)
                if any(
                    g["roleId"] == role_id and g["roleMemberInfo"]["id"] == principal_id
                    for g in grants
                ):
                    return self._error(400, "Request_BadRequest", CONFLICT_MESSAGE)
                grant = {
                    "id": self.new_id("grant"),
                    "roleId": role_id,
                    "administrativeUnitId": unit_id,
                    "roleMemberInfo": {"id": principal_id},
                }
                grants.append(grant)
                return httpx.Response(201, json=grant)

        if path == "/directoryRoleTemplates" and method == "GET":
            return self._page(request, self.role_templates)

        if path == "/directoryRoles":
            if method == "GET":
                return self._page(request, self._filtered(self.directory_roles, params))
            template_id = body["roleTemplateId"]
            template = next((t for t in self.role_templates if t["id"] == template_id), None)
            if template is None:
                raise LookupError(template_id)
            if any(r["roleTemplateId"] == template_id for r in self.directory_roles):
                return self._error(400, "Request_BadRequest", CONFLICT_MESSAGE)
            role = {
                "id": self.new_id("role"),
                "displayName": template["displayName"],
                "roleTemplateId": template_id,
            }
            self.directory_roles.append(role)
            return httpx.Response(201, json=role)

        raise LookupError(path)

    def _beta(
        self,
        request: httpx.Request,
        path: str,
        params: httpx.QueryParams,
        body: dict[str, Any] | None,
    ) -> httpx.Response:
        method = request.method
        parts = path.strip("/").split("/")

        if path == "/deviceManagement/roleScopeTags":
            if method == "GET":
                return self._page(request, self._visible(list(self.scope_tags.values())))
            tag = {
                "id": str(next(self._ids)),
                "displayName": body["displayName"],
                "description": body["description"],
            }
            self.scope_tags[tag["id"]] = tag
            return self._created(tag)

        if path == "/deviceManagement/roleDefinitions":
            if method == "GET":
                return self._page(request, self._visible(list(self.role_definitions.values())))
            definition = {
                "id": self.new_id("roledef"),
                "displayName": body["displayName"],
                "description": body["description"],
                "isBuiltIn": False,
                "rolePermissions": body["rolePermissions"],
            }
            self.role_definitions[definition["id"]] = definition
            return self._created(definition)

        if parts[:2] == ["deviceManagement", "roleDefinitions"] and len(parts) == 4:
            definition_id = parts[2]
            if definition_id not in self.role_definitions or parts[3] != "roleAssignments":
                raise LookupError(path)
            items = [
                a for a in self.role_assignments.values()
                if a["_roleDefinitionId"] == definition_id
            ]
            if self.omit_assignment_members:
                items = [
                    {"id": a["id"], "displayName": a["displayName"]} for a in items
                ]
            return self._page(request, self._visible(items))

        if path == "/deviceManagement/roleAssignments" and method == "POST":
            bind = body["roleDefinition@odata.bind"]
            definition_id = re.search(r"roleDefinitions\('([^']+)'\)", bind).group(1)
            if definition_id not in self.role_definitions:
                raise LookupError(definition_id)
            assignment = {
                "id": self.new_id("assignment"),
                "displayName": body["displayName"],
                "description": body["description"],
                "members": body["members"],
                "scopeMembers": body["scopeMembers"],
                "resourceScopes": body["resourceScopes"],
                "scopeType": body["scopeType"],
                "roleScopeTagIds": body["roleScopeTagIds"],
                "_roleDefinitionId": definition_id,
            }
            self.role_assignments[assignment["id"]] = assignment
            return self._created(assignment)

        if parts[:2] == ["deviceManagement", "roleAssignments"] and len(parts) == 3:
            assignment = self.role_assignments[parts[2]]
            return httpx.Response(200, json=self._public(assignment))

        raise LookupError(path)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep tests independent of the caller's environment and .env file."""
    for prefix in ("GRAPH_", "PROPAGATION_", "LAB_"):
        for name in list(os.environ):
            if name.startswith(prefix):
                monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()
    clear_context()


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    """Undo the handlers setup_logging installs on the root logger."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def fake_graph() -> FakeGraph:
    """Provide an empty in-memory tenant."""
    return FakeGraph()


@pytest.fixture
def sleeps() -> list[float]:
    """Collect the delays the code under test asked to sleep."""
    return []


@pytest.fixture
def graph_settings() -> GraphSettings:
    return GraphSettings(
        tenant_id="tenant-1",
        client_id="client-1",
        client_secret=SecretStr("secret"),
        max_retries=2,
    )


@pytest.fixture
def graph_client(
    fake_graph: FakeGraph,
    graph_settings: GraphSettings,
    sleeps: list[float],
) -> Iterator[GraphClient]:
    client = GraphClient(
        graph_settings,
        StaticTokenProvider("test-token"),
        transport=fake_graph.transport,
        sleep=sleeps.append,
    )
    yield client
    client.close()


@pytest.fixture
def directory(graph_client: GraphClient) -> DirectoryService:
    return DirectoryService(graph_client)


@pytest.fixture
def propagation(sleeps: list[float]) -> PropagationPolicy:
    """Zero-delay propagation policy with three lookups."""
    return PropagationPolicy(initial_delay=0, max_attempts=3, sleep=sleeps.append)


@pytest.fixture
def context(directory: DirectoryService, propagation: PropagationPolicy) -> ProvisioningContext:
    return ProvisioningContext(
        directory=directory,
        tenant_id="tenant-1",
        domain=LAB_DOMAIN,
        lab=LabSettings(),
        propagation=propagation,
    )
