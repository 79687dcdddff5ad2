# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Administrative unit stage: per-student AU with a scoped directory role grant."""

from w365lab.domains.administrative_units.service import AdministrativeUnitProvisioner

__all__ = ["AdministrativeUnitProvisioner"]
