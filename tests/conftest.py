"""Pytest configuration and shared fixtures."""

import pytest

# Loaded here rather than through an entry point so that the
# zwave2mqtt import chain happens after ``pytest-cov`` starts tracing.
pytest_plugins = ["zwave2mqtt.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (gateway wired end to end)"
    )
