# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

Dramatiq runs on the StubBroker and the sync stack on in-process stores for
every test. Test doubles live in tests/fakes.py.
"""

import os

os.environ.setdefault("DRAMATIQ_TEST_MODE", "true")

from collections.abc import Generator

import pytest
from prometheus_client import CollectorRegistry

from src.core.config.settings import clear_settings_cache
from src.domains.program_sync.models import LinkedCourse, Program
from src.infrastructure.telemetry.metrics import SyncMetrics
from tests.fakes import FakeClock, make_course, make_program


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (requires services)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# =============================================================================
# Environment Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_settings() -> Generator[None, None, None]:
    """Reload settings from the environment for every test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Helper Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Provide a clock that only moves when told to."""
    return FakeClock()


@pytest.fixture
def metrics() -> SyncMetrics:
    """Provide sync metrics on a private registry."""
    return SyncMetrics(registry=CollectorRegistry())


@pytest.fixture
def program() -> Program:
    """Provide a program linked to course 1234."""
    return make_program()


@pytest.fixture
def linked_course() -> LinkedCourse:
    """Provide the local course linked to the program."""
    return make_course()
