# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Scope tag provisioning: one Intune scope tag per student.

Scope tags partition which Intune objects a delegated administrator can
see. The tag ST{N} is later bound to student N's role assignment.
"""

import logging

from w365lab.core.context import ProvisioningContext
from w365lab.core.naming import PodNames
from w365lab.core.outcome import Stage, StudentOutcome
from w365lab.domains.base import StageProvisioner

logger = logging.getLogger(__name__)


class ScopeTagProvisioner(StageProvisioner):
    """Creates the scope tag of each pod.

    Attributes:
        skip_tag_creation: Only verify the tags exist; an absent tag skips
            the student.
    """

    stage = Stage.SCOPE_TAGS

    def __init__(
        self,
        context: ProvisioningContext,
        skip_tag_creation: bool = False,
    ) -> None:
        super().__init__(context)
        self.skip_tag_creation = skip_tag_creation

    def provision_student(self, names: PodNames, outcome: StudentOutcome) -> None:
        name = names.scope_tag
        if self.skip_tag_creation:
            self.require("scope tag", name, self._directory.find_scope_tags, names.index)
            outcome.record(f"scope tag {name}", created=False)
            return

        self.ensure(
            "scope tag",
            name,
            self._directory.find_scope_tags,
            lambda: self._directory.create_scope_tag(
                name, f"Scope tag for lab student {names.index}"
            ),
            outcome,
        )
