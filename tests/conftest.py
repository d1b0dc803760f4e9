"""Shared fixtures for the control loop tests."""

import matplotlib

matplotlib.use("Agg")

import pytest  # noqa: E402

from stubs import StubSolver  # noqa: E402


@pytest.fixture
def stub_solver():
    return StubSolver()


@pytest.fixture
def telemetry_data():
    """Straight road along the map x-axis, vehicle at the origin."""
    return {
        "ptsx": [10.0, 20.0, 30.0, 40.0, 50.0, 60.0],
        "ptsy": [0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        "x": 0.0,
        "y": 0.0,
        "psi": 0.0,
        "speed": 20.0,
    }
