"""Shared fixtures for the trajectory controller tests."""

import pytest

from trajectory_stack.controllers.trajectory_types import (
    AccelerationBound,
    ControllerConfig,
    CostCoefficients,
    CostFieldOptions,
    Path,
    RobotState,
)


def make_config(**overrides) -> ControllerConfig:
    """Small, fast configuration; keyword arguments override fields."""
    params = dict(
        timestep=0.1,
        horizon=15,
        num_samples=64,
        velocity_limit=1.0,
        angular_velocity_limit=2.0,
        axle_length=0.5,
        acceleration_bound=AccelerationBound(lower=-2.0, upper=1.5),
        cost_coefficients=CostCoefficients(
            path=1.0, velocity=1.0, acceleration=0.01, angular_acceleration=0.01),
        cost_field=CostFieldOptions(width=20.0, height=20.0, resolution=0.1),
        v_std=0.2,
        w_std=0.8,
        nominal_velocity=0.5,
        seed=11,
    )
    params.update(overrides)
    return ControllerConfig(**params)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def straight_path():
    """Straight line from (0, 0) to (10, 0)"""
    return Path([[0.0, 0.0], [10.0, 0.0]])


@pytest.fixture
def offset_state():
    """Two metres to the right of the straight path, facing along it"""
    return RobotState(x=0.0, y=-2.0, theta=0.0, v=0.5, w=0.0)
