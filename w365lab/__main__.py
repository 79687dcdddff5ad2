# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Allow running w365lab as a module: python -m w365lab."""

from w365lab.cli import run

if __name__ == "__main__":
    run()
