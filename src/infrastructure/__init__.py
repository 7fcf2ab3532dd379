# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Infrastructure layer for external service integrations.

This package contains clients and managers for:
- Database connections (PostgreSQL mirror of the CRM)
- Cache and lock storage (Redis)
- Distributed sync locks
- Background task processing (Dramatiq)
- Notifications (sync report email)
- Telemetry (Prometheus metrics)
"""
