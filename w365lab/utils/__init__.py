# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Utility functions and helpers for w365lab.

This package contains cross-cutting utilities:
- logging: Structured logging with structlog
- datetime: Timezone-aware timestamps and file stamps
- passwords: Initial password generation
- propagation: Read-after-write wait policy
- reporting: Credential/outcome CSVs and the run summary table
"""

from w365lab.utils.datetime import file_stamp, seconds_between, utc_now
from w365lab.utils.logging import (
    bind_context,
    clear_context,
    get_logger,
    setup_logging,
    unbind_context,
)
from w365lab.utils.passwords import generate_password, meets_complexity
from w365lab.utils.propagation import PropagationPolicy

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    # Datetime
    "utc_now",
    "file_stamp",
    "seconds_between",
    # Passwords
    "generate_password",
    "meets_complexity",
    # Propagation
    "PropagationPolicy",
]
