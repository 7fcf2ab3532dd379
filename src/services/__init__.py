# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""REST clients for the downstream systems kept in sync with the CRM.

- canvas: Learning-management course enrollments
- zoom: Meeting registrations
- discord: Chat server roles
"""
