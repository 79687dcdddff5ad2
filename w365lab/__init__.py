"""w365lab.

Provisioning of isolated per-student "pods" (accounts, groups, scope tags,
administrative units and delegated Intune roles) for Windows 365 training
labs on Microsoft Entra ID.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
