# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain services layer for CohortSync.

This package contains domain services that encapsulate business logic.

Domains:
    program_sync: Reconciles program participants into the course, meeting
        and chat systems.
"""
