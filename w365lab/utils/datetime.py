# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for w365lab.

All datetimes are timezone-aware UTC. File-name stamps use a compact,
sortable format so that log and CSV artifacts of successive runs line up.
"""

from datetime import datetime, timezone

FILE_STAMP_FORMAT = "%Y%m%d-%H%M%S"


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def file_stamp(dt: datetime | None = None) -> str:
    """Format a datetime for use in artifact file names.

    Args:
        dt: Datetime to format. Defaults to now.

    Returns:
        String like "20250114-093012".

    Example:
        >>> file_stamp(datetime(2025, 1, 14, 9, 30, 12, tzinfo=timezone.utc))
        '20250114-093012'
    """
    return (dt or utc_now()).strftime(FILE_STAMP_FORMAT)


def seconds_between(start: datetime, end: datetime) -> float:
    """Return the elapsed seconds between two datetimes."""
    return (end - start).total_seconds()
