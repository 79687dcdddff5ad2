# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Provisioning stages of a lab pod.

Each stage is a StageProvisioner that makes a full pass over all students.

Domains:
    identity: Admin and student accounts, the three security groups.
    scope_tags: One Intune scope tag per student.
    administrative_units: Per-student AU with a scoped directory role grant.
    delegated_roles: Shared Intune role and per-student role assignments.
    pipeline: Stage ordering and the read-only pod audit.
"""
