"""Tests for a single control cycle."""

import math

import numpy as np
import pytest
import torch

from conftest import make_config
from trajectory_stack.controllers.trajectory_controller import TrajectoryController
from trajectory_stack.controllers.trajectory_noise import make_generator
from trajectory_stack.controllers.trajectory_types import (
    AccelerationBound,
    CostCoefficients,
    Path,
    RobotState,
)
from trajectory_stack.robot.differential_drive import DifferentialDriveModel


def test_single_sample_selects_nominal(straight_path, offset_state):
    config = make_config(num_samples=1, debug=True)
    controller = TrajectoryController(config)

    result = controller.get_controls(straight_path, offset_state)

    assert result.optimization_result.best_particle == 0
    # Nominal: forward at 0.5 m/s (already reached), no turning
    assert result.command.linear == pytest.approx(0.5)
    assert result.command.angular == pytest.approx(0.0)


def test_fixed_seed_is_reproducible(config, straight_path, offset_state):
    first = TrajectoryController(config).get_controls(straight_path, offset_state)
    second = TrajectoryController(config).get_controls(straight_path, offset_state)

    assert first.command == second.command
    assert torch.equal(first.best_particle.states, second.best_particle.states)


def test_same_generator_seed_repeats_without_warm_start(straight_path, offset_state):
    controller = TrajectoryController(make_config(warm_start=False))

    first = controller.get_controls(straight_path, offset_state, make_generator(3))
    second = controller.get_controls(straight_path, offset_state, make_generator(3))

    assert first.command == second.command
    assert torch.equal(first.best_particle.controls, second.best_particle.controls)


def test_scenario_a_steers_toward_path(straight_path, offset_state):
    config = make_config(
        horizon=5,
        num_samples=256,
        seed=0,
        cost_coefficients=CostCoefficients(
            path=1.0, velocity=1.0, acceleration=0.0, angular_acceleration=0.0),
    )
    result = TrajectoryController(config).get_controls(straight_path, offset_state)

    assert result.command.angular > 0.0
    # The chosen trajectory ends closer to the path than it started
    assert result.best_particle.states[-1, 1].item() > -2.0


def test_scenario_c_command_never_exceeds_velocity_limit(straight_path):
    config = make_config(
        velocity_limit=1.0,
        nominal_velocity=3.0,
        v_std=1.0,
        acceleration_bound=AccelerationBound(lower=-10.0, upper=10.0),
        cost_coefficients=CostCoefficients(
            path=0.1, velocity=100.0, acceleration=0.0, angular_acceleration=0.0),
        debug=True,
    )
    controller = TrajectoryController(config)
    state = RobotState(0.0, 0.0, 0.0, 0.9, 0.0)

    for _ in range(5):
        result = controller.get_controls(straight_path, state)
        assert abs(result.command.linear) <= 1.0
        controls = torch.stack([p.controls for p in result.optimization_result.particles])
        assert controls[:, :, 0].abs().max().item() <= 1.0
        state = RobotState(state.x + 0.1, 0.0, 0.0, result.command.linear, result.command.angular)


def test_debug_bundle_contents(straight_path, offset_state):
    config = make_config(debug=True)
    result = TrajectoryController(config).get_controls(straight_path, offset_state)
    bundle = result.optimization_result

    assert len(bundle.particles) == config.num_samples
    assert bundle.costs.shape == (config.num_samples,)
    assert bundle.best_particle == int(torch.argmin(bundle.costs))
    assert bundle.best.cost == pytest.approx(bundle.costs.min().item())
    assert bundle.cost_field is result.cost_field
    assert all(p.states.shape == (config.horizon + 1, 5) for p in bundle.particles)


def test_debug_bundle_absent_by_default(config, straight_path, offset_state):
    result = TrajectoryController(config).get_controls(straight_path, offset_state)
    assert result.optimization_result is None


def test_ties_break_to_lowest_index(straight_path, offset_state):
    config = make_config(
        cost_coefficients=CostCoefficients(0.0, 0.0, 0.0, 0.0),
        debug=True,
    )
    result = TrajectoryController(config).get_controls(straight_path, offset_state)
    assert result.optimization_result.best_particle == 0


def test_cost_field_reused_until_path_changes(config, straight_path, offset_state):
    controller = TrajectoryController(config)

    for _ in range(3):
        controller.get_controls(straight_path, offset_state)
    assert controller.signed_distance_field.build_count == 1

    controller.get_controls(Path([[0.0, 0.0], [0.0, 10.0]]), offset_state)
    assert controller.signed_distance_field.build_count == 2


def test_warm_start_shifts_winner(config, straight_path, offset_state):
    controller = TrajectoryController(config)
    result = controller.get_controls(straight_path, offset_state)

    winner = result.best_particle.controls
    torch.testing.assert_close(controller.control_sequence.vx[:-1], winner[1:, 0])
    torch.testing.assert_close(controller.control_sequence.wz[:-1], winner[1:, 1])

    controller.reset()
    assert torch.all(controller.control_sequence.vx == config.nominal_velocity)


def test_degenerate_inputs_rejected(config, straight_path, offset_state):
    controller = TrajectoryController(config)

    with pytest.raises(ValueError):
        controller.get_controls(Path([[1.0, 1.0]]), offset_state)
    with pytest.raises(ValueError):
        controller.get_controls(straight_path, RobotState(float("nan"), 0.0, 0.0))


class CountingModel(DifferentialDriveModel):
    """Motion model stand-in that records how often it is stepped"""
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.steps = 0

    def predict_batch(self, states, v, w, dt):
        self.steps += 1
        return super().predict_batch(states, v, w, dt)


def test_custom_motion_model_is_used(config, straight_path, offset_state):
    model = CountingModel(config.axle_length, config.acceleration_bound)
    controller = TrajectoryController(config, model=model)

    controller.get_controls(straight_path, offset_state)

    assert model.steps == config.horizon


def test_obstacle_layer_changes_selected_particle(straight_path):
    config = make_config(acceleration_bound=AccelerationBound(-10.0, 10.0), debug=True)
    state = RobotState(0.0, 0.0, 0.0, 0.5, 0.0)

    clear = TrajectoryController(config).get_controls(straight_path, state)

    # Cover every cell the clear winner touches, including its bilinear neighbours
    field = clear.cost_field
    layer = np.zeros_like(field.grid)
    for x, y in clear.best_particle.states[:, :2].tolist():
        col, row = field.world_to_grid(x, y)
        c0, r0 = int(math.floor(col)), int(math.floor(row))
        layer[r0 - 1:r0 + 3, c0 - 1:c0 + 3] = 100.0

    controller = TrajectoryController(config)
    controller.set_obstacle_cost(layer)
    blocked = controller.get_controls(straight_path, state)

    # Same seed and nominal, so the candidates are identical; only the costs moved
    assert blocked.optimization_result.best_particle != clear.optimization_result.best_particle
    assert blocked.best_particle.cost < clear.best_particle.cost + 100.0
    assert blocked.cost_field.query(0.0, 0.0) == pytest.approx(100.0)
