# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Shared machinery of the provisioning stages.

A stage is a full pass over all students in ascending index order.
StageProvisioner.provision() runs the stage's one-time preparation, then
calls provision_student() for every index and turns per-student errors
into outcomes:

- PrerequisiteMissingError -> skipped (re-run an earlier stage)
- other StudentProvisioningError and Graph API errors -> failed
- Graph authentication/connection errors -> DirectoryUnavailableError,
  which aborts the run

The ensure helpers implement the lookup-before-create pattern every stage
relies on for idempotency.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import TypeVar

from w365lab.core.context import ProvisioningContext
from w365lab.core.errors import (
    DirectoryUnavailableError,
    DuplicateEntityError,
    FatalConfigurationError,
    PrerequisiteMissingError,
    PropagationTimeoutError,
    StudentProvisioningError,
    TransientDirectoryError,
)
from w365lab.core.naming import PodNames, validate_index
from w365lab.core.outcome import Stage, StageResult, StudentOutcome
from w365lab.services.graph.exceptions import (
    GraphAPIError,
    GraphAuthError,
    GraphConflictError,
    GraphConnectionError,
    GraphThrottledError,
    GraphTimeoutError,
    UnexpectedResponseError,
)
from w365lab.utils.datetime import utc_now
from w365lab.utils.logging import bind_context, unbind_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


def normalize_indices(indices: Iterable[int]) -> list[int]:
    """Validate, de-duplicate and sort student indices."""
    return sorted({validate_index(i) for i in indices})


class StageProvisioner(ABC):
    """Base class of the four provisioning stages.

    Attributes:
        stage: Which pipeline stage this provisioner implements.
    """

    stage: Stage

    def __init__(self, context: ProvisioningContext) -> None:
        self._context = context
        self._directory = context.directory

    def prepare(self) -> None:
        """One-time work before the first student (may raise fatal errors)."""

    @abstractmethod
    def provision_student(self, names: PodNames, outcome: StudentOutcome) -> None:
        """Ensure this stage's entities for one student."""

    def provision(self, indices: Iterable[int]) -> StageResult:
        """Run the stage for every student.

        Args:
            indices: Student indices to process.

        Returns:
            StageResult with one outcome per student.

        Raises:
            FatalConfigurationError: If the stage cannot run at all.
        """
        ordered = normalize_indices(indices)
        result = StageResult(stage=self.stage, started_at=utc_now())
        logger.info("Stage %s started for %d students", self.stage.value, len(ordered))

        try:
            self.prepare()
        except (GraphAuthError, GraphConnectionError) as e:
            raise DirectoryUnavailableError(f"Directory unavailable: {e}") from e
        except (GraphAPIError, GraphTimeoutError, UnexpectedResponseError) as e:
            raise FatalConfigurationError(
                f"Stage {self.stage.value} preparation failed: {e}"
            ) from e

        try:
            for index in ordered:
                outcome = StudentOutcome(index=index)
                result.outcomes.append(outcome)
                self._provision_one(outcome)
        except FatalConfigurationError as e:
            result.completed_at = utc_now()
            e.partial_result = result
            raise

        result.completed_at = utc_now()
        logger.info(
            "Stage %s completed: created=%d exists=%d skipped=%d failed=%d",
            self.stage.value,
            result.created_count,
            result.exists_count,
            result.skipped_count,
            result.failed_count,
        )
        return result

    def _provision_one(self, outcome: StudentOutcome) -> None:
        index = outcome.index
        bind_context(stage=self.stage.value, student=index)
        try:
            self.provision_student(self._context.names(index), outcome)
        except PrerequisiteMissingError as e:
            logger.warning("Student %d skipped: %s", index, e)
            outcome.skip(str(e))
        except StudentProvisioningError as e:
            logger.error("Student %d failed: %s", index, e)
            outcome.fail(str(e))
        except (GraphAuthError, GraphConnectionError) as e:
            outcome.fail(f"Directory unavailable: {e}")
            raise DirectoryUnavailableError(f"Directory unavailable: {e}") from e
        except FatalConfigurationError as e:
            outcome.fail(str(e))
            raise
        except (GraphThrottledError, GraphTimeoutError) as e:
            error = TransientDirectoryError(
                f"Transient directory error: {e}", student_index=index
            )
            logger.error("Student %d failed: %s", index, error)
            outcome.fail(str(error))
        except (GraphAPIError, UnexpectedResponseError) as e:
            logger.error("Student %d failed: %s", index, e)
            outcome.fail(str(e))
        finally:
            unbind_context("stage", "student")

        if outcome.created:
            logger.info("Student %d: created %s", index, ", ".join(outcome.created))
        elif outcome.already_existed:
            logger.info("Student %d: already provisioned", index)

    # =========================================================================
    # Lookup / ensure helpers
    # =========================================================================

    def find_one(
        self,
        kind: str,
        name: str,
        finder: Callable[[str], list[T]],
        index: int | None = None,
    ) -> T | None:
        """Look up an entity by deterministic name.

        Raises:
            DuplicateEntityError: If the name resolves to several entities.
        """
        found = finder(name)
        if len(found) > 1:
            raise DuplicateEntityError(kind, name, len(found), student_index=index)
        return found[0] if found else None

    def require(
        self,
        kind: str,
        name: str,
        finder: Callable[[str], list[T]],
        index: int | None = None,
    ) -> T:
        """Look up an entity produced by an earlier stage.

        Raises:
            PrerequisiteMissingError: If it does not exist.
        """
        entity = self.find_one(kind, name, finder, index)
        if entity is None:
            raise PrerequisiteMissingError(kind, name, student_index=index)
        return entity

    def ensure(
        self,
        kind: str,
        name: str,
        finder: Callable[[str], list[T]],
        creator: Callable[[], T],
        outcome: StudentOutcome | None = None,
    ) -> T:
        """Return the entity named name, creating it if absent.

        After a create, waits until the entity is visible to lookups so that
        dependent reads (in this or a later stage) find it. A create rejected
        as a conflict means a lookup missed an entity that already exists; it
        is awaited the same way and recorded as existing.

        Raises:
            DuplicateEntityError: If the name resolves to several entities.
            PropagationTimeoutError: If the new entity never became visible.
        """
        index = outcome.index if outcome else None
        existing = self.find_one(kind, name, finder, index)
        if existing is not None:
            if outcome:
                outcome.record(f"{kind} {name}", created=False)
            return existing

        try:
            creator()
            created = True
            logger.debug("Created %s %s", kind, name)
        except GraphConflictError as e:
            # Exists but not yet visible to lookups
            logger.info("%s %s already exists: %s", kind.capitalize(), name, e.message)
            created = False

        visible = self._context.propagation.wait_until_visible(
            lambda: self.find_one(kind, name, finder, index),
            f"{kind} {name}",
        )
        if visible is None:
            raise PropagationTimeoutError(kind, name, student_index=index)
        if outcome:
            outcome.record(f"{kind} {name}", created=created)
        return visible

    def ensure_member(
        self,
        container: str,
        member_ids: set[str],
        member_id: str,
        member: str,
        add: Callable[[str], bool],
        outcome: StudentOutcome,
    ) -> None:
        """Add member_id to a container unless it is already in member_ids."""
        description = f"membership {member} -> {container}"
        if member_id in member_ids:
            outcome.record(description, created=False)
            return
        added = add(member_id)
        outcome.record(description, created=added)
