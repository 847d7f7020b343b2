"""Pytest configuration shared by the backend tests."""

import logging

import pytest


@pytest.fixture(autouse=True)
def quote_logs(caplog):
    """Capture quote subsystem logs at DEBUG so a failing test shows the broker's transitions."""
    caplog.set_level(logging.DEBUG, logger="app.quotes")
    return caplog
