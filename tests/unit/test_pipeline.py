# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the provisioning pipeline and the pod auditor."""

import pytest

from w365lab.core.context import ProvisioningContext
from w365lab.core.errors import DirectoryUnavailableError
from w365lab.core.outcome import OutcomeStatus, Stage
from w365lab.domains.pipeline import PodAuditor, ProvisioningPipeline

DOMAIN = "contoso.onmicrosoft.com"


def pod_entity_ids(fake_graph, index: int) -> set[str]:
    """Ids of every entity that belongs to one student's pod."""
    ids = {
        fake_graph.user_by_upn(f"admin{index}@{DOMAIN}")["id"],
        fake_graph.user_by_upn(f"W365Student{index}@{DOMAIN}")["id"],
        fake_graph.tag_by_name(f"ST{index}")["id"],
        fake_graph.unit_by_name(f"AU-Student{index}")["id"],
    }
    for suffix in ("Admins", "Users", "Devices"):
        ids.add(fake_graph.group_by_name(f"SG-Student{index}-{suffix}")["id"])
    return ids


class TestProvisioningPipeline:
    """Tests for ProvisioningPipeline."""

    def test_three_student_lab(self, context: ProvisioningContext, fake_graph) -> None:
        """Test the full pipeline for three students."""
        summary = ProvisioningPipeline(context).run(range(1, 4))

        assert summary.succeeded
        assert summary.exit_code == 0
        assert [s.stage for s in summary.stages] == Stage.ordered()
        assert len(fake_graph.users) == 6
        assert len(fake_graph.groups) == 9
        assert len(fake_graph.find_by_name(fake_graph.scope_tags, "ST1")) == 1
        assert len(fake_graph.admin_units) == 3
        assert len(fake_graph.role_assignments) == 3
        assert len(summary.credentials) == 6

    def test_stages_run_as_full_passes(self, context: ProvisioningContext, fake_graph) -> None:
        """Test that every student finishes a stage before the next stage starts."""
        ProvisioningPipeline(context).run([1, 2])

        creates = [p for m, p in fake_graph.requests if m == "POST"]
        last_user = max(i for i, p in enumerate(creates) if p == "/users")
        first_tag = creates.index("/deviceManagement/roleScopeTags")
        last_tag = max(i for i, p in enumerate(creates) if p == "/deviceManagement/roleScopeTags")
        first_unit = creates.index("/directory/administrativeUnits")

        assert last_user < first_tag
        assert last_tag < first_unit

    def test_rerun_creates_nothing(self, context: ProvisioningContext, fake_graph) -> None:
        """Test that re-running a completed lab is a no-op."""
        ProvisioningPipeline(context).run(range(1, 4))
        posts_before = sum(1 for m, _ in fake_graph.requests if m == "POST")

        summary = ProvisioningPipeline(context).run(range(1, 4))

        assert summary.exit_code == 0
        assert summary.credentials == []
        assert all(s.exists_count == 3 for s in summary.stages)
        assert sum(1 for m, _ in fake_graph.requests if m == "POST") == posts_before

    def test_pods_are_isolated(self, context: ProvisioningContext, fake_graph) -> None:
        """Test that no entity of one pod references another pod's entities."""
        ProvisioningPipeline(context).run(range(1, 4))

        for index in (1, 2, 3):
            own = pod_entity_ids(fake_graph, index)
            foreign = set().union(
                *(pod_entity_ids(fake_graph, other) for other in (1, 2, 3) if other != index)
            )
            admins = fake_graph.group_by_name(f"SG-Student{index}-Admins")
            unit = fake_graph.unit_by_name(f"AU-Student{index}")
            assignment = fake_graph.assignments_for(admins["id"])[0]

            referenced = {
                *fake_graph.unit_members[unit["id"]],
                *(g["roleMemberInfo"]["id"] for g in fake_graph.scoped_grants[unit["id"]]),
                *assignment["members"],
                *assignment["scopeMembers"],
                *assignment["roleScopeTagIds"],
            }
            for suffix in ("Admins", "Users", "Devices"):
                group = fake_graph.group_by_name(f"SG-Student{index}-{suffix}")
                referenced.update(fake_graph.group_members[group["id"]])

            assert referenced <= own
            assert referenced.isdisjoint(foreign)

    def test_partial_failure_then_rerun(self, context: ProvisioningContext, fake_graph) -> None:
        """Test that a failed student is skipped downstream and completed on re-run."""
        fake_graph.fail("POST", f"W365Student2@{DOMAIN}", status=500, times=1)

        first = ProvisioningPipeline(context).run(range(1, 4))

        assert first.exit_code == 1
        identities = first.stages[0]
        assert identities.outcome_for(2).status is OutcomeStatus.FAILED
        admin_units = first.stages[2]
        assert admin_units.outcome_for(2).status is OutcomeStatus.SKIPPED
        assert admin_units.outcome_for(1).status is OutcomeStatus.SUCCESS
        assert admin_units.outcome_for(3).status is OutcomeStatus.SUCCESS

        second = ProvisioningPipeline(context).run(range(1, 4))

        assert second.exit_code == 0
        assert [c.user_principal_name for c in second.credentials] == [
            f"W365Student2@{DOMAIN}"
        ]
        assert len(fake_graph.users) == 6
        assert len(fake_graph.role_assignments) == 3

    def test_selected_stages_run_in_order(self, context: ProvisioningContext) -> None:
        """Test that stage selection keeps pipeline order."""
        summary = ProvisioningPipeline(context).run(
            [1], [Stage.SCOPE_TAGS, Stage.IDENTITIES]
        )

        assert [s.stage for s in summary.stages] == [Stage.IDENTITIES, Stage.SCOPE_TAGS]

    def test_fatal_error_stops_run(self, context: ProvisioningContext, fake_graph) -> None:
        """Test that a fatal error keeps completed results and skips later stages."""
        fake_graph.role_templates.clear()

        summary = ProvisioningPipeline(context).run([1, 2])

        assert summary.exit_code == 2
        assert "User Administrator" in summary.fatal_error
        assert [s.stage for s in summary.stages] == [Stage.IDENTITIES, Stage.SCOPE_TAGS]
        assert len(summary.credentials) == 4
        assert fake_graph.role_assignments == {}

    def test_abort_mid_stage_keeps_partial_results(
        self, context: ProvisioningContext, fake_graph
    ) -> None:
        """Test that outcomes and credentials before a mid-stage abort are kept."""
        fake_graph.fail("POST", f"W365Student2@{DOMAIN}", status=403)

        summary = ProvisioningPipeline(context).run([1, 2, 3])

        assert summary.exit_code == 2
        assert "Directory unavailable" in summary.fatal_error
        assert [s.stage for s in summary.stages] == [Stage.IDENTITIES]
        assert [o.index for o in summary.stages[0].outcomes] == [1, 2]
        assert len(summary.credentials) == 3
        assert fake_graph.scope_tags.keys() == {"0"}

    def test_skip_flags_passed_to_stages(self, context: ProvisioningContext, fake_graph) -> None:
        """Test that skip flags reach the stage provisioners."""
        summary = ProvisioningPipeline(context, skip_user_creation=True).run(
            [1], [Stage.IDENTITIES]
        )

        assert summary.stages[0].outcome_for(1).status is OutcomeStatus.SKIPPED
        assert fake_graph.users == {}


class TestPodAuditor:
    """Tests for PodAuditor."""

    def test_complete_lab(self, context: ProvisioningContext, fake_graph) -> None:
        """Test that a fully provisioned lab audits clean without writes."""
        ProvisioningPipeline(context).run(range(1, 4))
        posts_before = sum(1 for m, _ in fake_graph.requests if m == "POST")

        audits = PodAuditor(context).audit(range(1, 4))

        assert [a.index for a in audits] == [1, 2, 3]
        assert all(a.complete for a in audits), [a.problems for a in audits]
        assert sum(1 for m, _ in fake_graph.requests if m == "POST") == posts_before

    def test_empty_tenant(self, context: ProvisioningContext) -> None:
        """Test that a missing pod reports every missing entity."""
        audit = PodAuditor(context).audit([1])[0]

        assert not audit.complete
        assert any("user" in p for p in audit.problems)
        assert any("scope tag" in p for p in audit.problems)

    def test_detects_foreign_member(self, context: ProvisioningContext, fake_graph) -> None:
        """Test that a cross-pod AU member is reported."""
        ProvisioningPipeline(context).run([1, 2])
        unit = fake_graph.unit_by_name("AU-Student1")
        intruder = fake_graph.user_by_upn(f"W365Student2@{DOMAIN}")
        fake_graph.unit_members[unit["id"]].append(intruder["id"])

        audits = PodAuditor(context).audit([1, 2])

        assert not audits[0].complete
        assert "AU-Student1" in audits[0].problems[0]
        assert audits[1].complete

    def test_detects_wrong_scope_tag(self, context: ProvisioningContext, fake_graph) -> None:
        """Test that an assignment bound to another pod's tag is reported."""
        ProvisioningPipeline(context).run([1, 2])
        admins = fake_graph.group_by_name("SG-Student1-Admins")
        assignment = fake_graph.assignments_for(admins["id"])[0]
        assignment["roleScopeTagIds"] = [fake_graph.tag_by_name("ST2")["id"]]

        audit = PodAuditor(context).audit([1])[0]

        assert audit.problems == [
            "role assignment scope tags are not exactly the student's tag"
        ]

    def test_inactive_role_reported(self, context: ProvisioningContext, fake_graph) -> None:
        """Test that a deactivated directory role is reported."""
        ProvisioningPipeline(context).run([1])
        fake_graph.directory_roles.clear()

        audit = PodAuditor(context).audit([1])[0]

        assert audit.problems == ["delegated directory role is not active"]

    def test_lookup_failure_reported(self, context: ProvisioningContext, fake_graph) -> None:
        """Test that a failed lookup is reported as a problem, not raised."""
        ProvisioningPipeline(context).run([1])
        fake_graph.fail("GET", f"W365Student1@{DOMAIN}", status=500)

        audit = PodAuditor(context).audit([1])[0]

        assert not audit.complete
        assert audit.problems[0].startswith("lookup failed")

    def test_unauthorized_directory(self, context: ProvisioningContext, fake_graph) -> None:
        """Test that an authorization failure aborts the audit."""
        fake_graph.fail("GET", "/users", status=403, message="Insufficient privileges")

        with pytest.raises(DirectoryUnavailableError):
            PodAuditor(context).audit([1])
