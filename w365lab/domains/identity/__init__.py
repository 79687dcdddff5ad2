# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Identity stage: per-student user accounts and security groups."""

from w365lab.domains.identity.service import IdentityProvisioner

__all__ = ["IdentityProvisioner"]
