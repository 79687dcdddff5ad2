# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Provisioning context passed to every stage.

The context carries the authenticated directory service, the target
tenant and the verified lab domain. Nothing in the package reads an
ambient session; whatever a stage needs comes from its context.
"""

import logging
from dataclasses import dataclass, field

from w365lab.core.config.settings import LabSettings
from w365lab.core.errors import DomainNotVerifiedError, FatalConfigurationError
from w365lab.core.naming import PodNames
from w365lab.services.graph.directory import DirectoryService
from w365lab.utils.propagation import PropagationPolicy

logger = logging.getLogger(__name__)


@dataclass
class ProvisioningContext:
    """Everything a stage needs to talk to the tenant.

    Attributes:
        directory: Directory service bound to an authenticated Graph client.
        tenant_id: Target tenant identifier.
        domain: Verified domain used for lab account names.
        lab: Lab conventions (role names, usage location, ...).
        propagation: Read-after-write policy applied after creates.
    """

    directory: DirectoryService
    tenant_id: str
    domain: str
    lab: LabSettings = field(default_factory=LabSettings)
    propagation: PropagationPolicy = field(default_factory=PropagationPolicy)

    def names(self, index: int) -> PodNames:
        """Deterministic names of a student's pod in this lab."""
        return PodNames(index, self.domain)

    @classmethod
    def create(
        cls,
        directory: DirectoryService,
        tenant_id: str,
        lab: LabSettings,
        propagation: PropagationPolicy,
        domain: str | None = None,
    ) -> "ProvisioningContext":
        """Build a context, resolving and verifying the lab domain.

        Raises:
            DomainNotVerifiedError: If the domain is not verified in the tenant.
            FatalConfigurationError: If no domain was given and the tenant
                reports no default domain.
        """
        resolved = resolve_lab_domain(directory, domain or lab.domain or None)
        return cls(
            directory=directory,
            tenant_id=tenant_id,
            domain=resolved,
            lab=lab,
            propagation=propagation,
        )


def resolve_lab_domain(directory: DirectoryService, requested: str | None) -> str:
    """Return the domain lab accounts are created in.

    Args:
        directory: Directory service.
        requested: Explicit domain, or None for the tenant default domain.

    Returns:
        The verified domain name.

    Raises:
        DomainNotVerifiedError: If the requested domain is unknown or unverified.
        FatalConfigurationError: If no default verified domain exists.
    """
    domains = directory.list_domains()

    if requested:
        match = next((d for d in domains if d.id.lower() == requested.lower()), None)
        if match is None or not match.is_verified:
            logger.error("Domain %s is not verified in the tenant", requested)
            raise DomainNotVerifiedError(requested)
        return match.id

    default = next((d for d in domains if d.is_default and d.is_verified), None)
    if default is None:
        raise FatalConfigurationError("Tenant has no verified default domain")
    logger.info("Using tenant default domain %s", default.id)
    return default.id
