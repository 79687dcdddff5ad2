# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Provisioning error taxonomy.

Two families matter to the pipeline:

- FatalConfigurationError: the run cannot continue for anyone (unverified
  domain, missing role template, directory unreachable). Propagates to the
  CLI, which exits non-zero.
- StudentProvisioningError: only the current student's processing for the
  current stage is aborted. The stage runner records the student as
  skipped or failed and moves on; re-running the stage retries it.

"Already exists" situations are not errors at all; services report them
as existing entities.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from w365lab.core.outcome import StageResult


class ProvisioningError(Exception):
    """Base exception for all provisioning errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class FatalConfigurationError(ProvisioningError):
    """Raised when the run cannot proceed for any student.

    Attributes:
        partial_result: Outcomes of the stage that was running when the run
            aborted, attached by the stage runner. Carries the credentials of
            accounts created before the abort.
    """

    partial_result: "StageResult | None" = None


class DomainNotVerifiedError(FatalConfigurationError):
    """Raised when the target domain is unknown or not verified in the tenant.

    Attributes:
        domain: The domain that failed verification.
    """

    def __init__(self, domain: str) -> None:
        super().__init__(
            f"Domain '{domain}' is not a verified domain of the tenant",
            details={"domain": domain},
        )
        self.domain = domain


class RoleTemplateNotFoundError(FatalConfigurationError):
    """Raised when a required directory role template does not exist."""

    def __init__(self, template_name: str) -> None:
        super().__init__(
            f"Directory role template '{template_name}' not found",
            details={"template": template_name},
        )
        self.template_name = template_name


class DirectoryUnavailableError(FatalConfigurationError):
    """Raised when the directory cannot be reached or rejects our credentials."""

    pass


class StudentProvisioningError(ProvisioningError):
    """Base class for per-student, recoverable errors.

    Attributes:
        student_index: Index of the affected student, when known.
    """

    def __init__(
        self,
        message: str,
        student_index: int | None = None,
        details: dict | None = None,
    ) -> None:
        super().__init__(message, details)
        self.student_index = student_index


class PrerequisiteMissingError(StudentProvisioningError):
    """Raised when an entity from an earlier stage cannot be found.

    Attributes:
        entity_kind: Kind of missing entity (group, user, scope tag, ...).
        name: Deterministic name that was looked up.
    """

    def __init__(
        self,
        entity_kind: str,
        name: str,
        student_index: int | None = None,
    ) -> None:
        super().__init__(
            f"Missing prerequisite {entity_kind} '{name}'",
            student_index=student_index,
            details={"kind": entity_kind, "name": name},
        )
        self.entity_kind = entity_kind
        self.name = name


class DuplicateEntityError(StudentProvisioningError):
    """Raised when a deterministic name resolves to more than one entity."""

    def __init__(
        self,
        entity_kind: str,
        name: str,
        count: int,
        student_index: int | None = None,
    ) -> None:
        super().__init__(
            f"Found {count} {entity_kind} entities named '{name}'",
            student_index=student_index,
            details={"kind": entity_kind, "name": name, "count": count},
        )
        self.entity_kind = entity_kind
        self.name = name
        self.count = count


class PropagationTimeoutError(StudentProvisioningError):
    """Raised when a created entity never became visible to lookups."""

    def __init__(
        self,
        entity_kind: str,
        name: str,
        student_index: int | None = None,
    ) -> None:
        super().__init__(
            f"Created {entity_kind} '{name}' did not become visible in time",
            student_index=student_index,
            details={"kind": entity_kind, "name": name},
        )
        self.entity_kind = entity_kind
        self.name = name


class TransientDirectoryError(StudentProvisioningError):
    """Raised for throttling, timeouts and other retryable service errors."""

    pass
