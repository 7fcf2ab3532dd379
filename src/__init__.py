"""CohortSync.

Keeps the course, meeting and chat memberships of program participants in
line with the CRM, one program at a time, across a fleet of workers.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
