# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Per-student outcomes and run summaries.

Each stage returns one StudentOutcome per student instead of raising, so
that the caller can print a summary telling the operator exactly which
students need a re-run.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from w365lab.utils.datetime import seconds_between


class OutcomeStatus(str, Enum):
    """Result of one stage for one student."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class Stage(str, Enum):
    """Pipeline stages in execution order."""

    IDENTITIES = "identities"
    SCOPE_TAGS = "scope-tags"
    ADMIN_UNITS = "admin-units"
    DELEGATED_ROLES = "delegated-roles"

    @classmethod
    def ordered(cls) -> list["Stage"]:
        return [cls.IDENTITIES, cls.SCOPE_TAGS, cls.ADMIN_UNITS, cls.DELEGATED_ROLES]


@dataclass(frozen=True)
class Credential:
    """Initial credential of a newly created account.

    Only ever produced at creation time; the password is not recoverable
    afterwards.
    """

    student_index: int
    user_principal_name: str
    password: str = field(repr=False)


@dataclass
class StudentOutcome:
    """Outcome of one stage for one student.

    Attributes:
        index: Student index.
        status: Success, skipped (prerequisite missing) or failed.
        created: Descriptions of entities or links created in this run.
        existing: Descriptions of entities or links that were already there.
        credentials: Initial credentials of accounts created in this run.
        reason: Human-readable cause for skipped or failed outcomes.
    """

    index: int
    status: OutcomeStatus = OutcomeStatus.SUCCESS
    created: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    credentials: list[Credential] = field(default_factory=list)
    reason: str | None = None

    def record(self, description: str, created: bool) -> None:
        """Record an ensured entity as created or already existing."""
        (self.created if created else self.existing).append(description)

    @property
    def already_existed(self) -> bool:
        """True when the stage succeeded without creating anything."""
        return self.status is OutcomeStatus.SUCCESS and not self.created

    def skip(self, reason: str) -> "StudentOutcome":
        self.status = OutcomeStatus.SKIPPED
        self.reason = reason
        return self

    def fail(self, reason: str) -> "StudentOutcome":
        self.status = OutcomeStatus.FAILED
        self.reason = reason
        return self


@dataclass
class StageResult:
    """Outcomes of one stage across all students.

    Attributes:
        stage: Stage that produced the outcomes.
        outcomes: One outcome per processed student, in index order.
        started_at: When the stage started.
        completed_at: When the stage completed.
    """

    stage: Stage
    outcomes: list[StudentOutcome] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @property
    def created_count(self) -> int:
        return sum(
            1 for o in self.outcomes if o.status is OutcomeStatus.SUCCESS and o.created
        )

    @property
    def exists_count(self) -> int:
        return sum(1 for o in self.outcomes if o.already_existed)

    @property
    def skipped_count(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def failed_count(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def succeeded(self) -> bool:
        return all(o.status is OutcomeStatus.SUCCESS for o in self.outcomes)

    @property
    def incomplete_indices(self) -> list[int]:
        """Students that need a re-run of this stage."""
        return [o.index for o in self.outcomes if o.status is not OutcomeStatus.SUCCESS]

    @property
    def credentials(self) -> list[Credential]:
        return [c for o in self.outcomes for c in o.credentials]

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return seconds_between(self.started_at, self.completed_at)
        return None

    def outcome_for(self, index: int) -> StudentOutcome | None:
        return next((o for o in self.outcomes if o.index == index), None)


@dataclass
class RunSummary:
    """Everything a run produced.

    Attributes:
        stages: Results of the stages that ran, in execution order.
        fatal_error: Message of the fatal error that aborted the run, if any.
    """

    stages: list[StageResult] = field(default_factory=list)
    fatal_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.fatal_error is None and all(s.succeeded for s in self.stages)

    @property
    def credentials(self) -> list[Credential]:
        return [c for s in self.stages for c in s.credentials]

    @property
    def exit_code(self) -> int:
        """0 on full success, 1 if any student needs a re-run, 2 on fatal error."""
        if self.fatal_error is not None:
            return 2
        return 0 if self.succeeded else 1
