"""Tests for the trajectory critics and their combination."""

import math

import pytest
import torch

from conftest import make_config
from trajectory_stack.controllers.trajectory_critic_manager import (
    NON_FINITE_COST,
    CriticManager,
    score,
)
from trajectory_stack.controllers.trajectory_types import CostCoefficients, Particle
from trajectory_stack.perception.signed_distance_field import SignedDistanceField


def make_particle(xs, ys, vs, ws=None):
    """Particle from per-state columns (len T+1); controls are states[1:]"""
    n = len(xs)
    ws = ws if ws is not None else [0.0] * n
    states = torch.tensor(
        [[x, y, 0.0, v, w] for x, y, v, w in zip(xs, ys, vs, ws)], dtype=torch.float32)
    return Particle(states=states, controls=states[1:, 3:5].clone())


@pytest.fixture
def field(config, straight_path):
    return SignedDistanceField(config.cost_field).build(straight_path)


def only(**coefficients):
    values = dict(path=0.0, velocity=0.0, acceleration=0.0, angular_acceleration=0.0)
    values.update(coefficients)
    return make_config(cost_coefficients=CostCoefficients(**values))


def test_particle_on_path_at_constant_speed_costs_nothing(config, field):
    particle = make_particle([0.0, 0.5, 1.0, 1.5], [0.0] * 4, [0.5] * 4)
    assert score(particle, field, config) == pytest.approx(0.0, abs=1e-4)


def test_path_term_is_mean_distance(field):
    particle = make_particle([1.0, 2.0, 3.0], [1.0, 1.0, 2.5], [0.0] * 3)
    expected = 2.0 * (1.0 + 1.0 + 2.5) / 3.0
    assert score(particle, field, only(path=2.0)) == pytest.approx(expected, abs=1e-3)


def test_velocity_term_is_quadratic_beyond_limit(field):
    # limit 1.0, controls 1.5, 0.5, -1.2 -> 0.25 + 0 + 0.04
    particle = make_particle([0.0] * 4, [0.0] * 4, [0.0, 1.5, 0.5, -1.2])
    assert score(particle, field, only(velocity=3.0)) == pytest.approx(3.0 * 0.29, abs=1e-4)


def test_acceleration_terms(field):
    particle = make_particle([0.0] * 4, [0.0] * 4, [0.0, 0.1, 0.3, 0.2], ws=[0.0, -0.2, 0.0, 0.0])
    # |dv|/dt = 1 + 2 + 1, |dw|/dt = 2 + 2 + 0
    assert score(particle, field, only(acceleration=0.5)) == pytest.approx(2.0, abs=1e-4)
    assert score(particle, field, only(angular_acceleration=0.25)) == pytest.approx(1.0, abs=1e-4)


def test_out_of_field_particle_is_finite(field):
    particle = make_particle([100.0, 101.0, 102.0], [100.0] * 3, [1.0] * 3)
    value = score(particle, field, only(path=1.0))
    assert math.isfinite(value)
    assert value == pytest.approx(field.max_cost, rel=1e-5)


def test_nan_particle_does_not_produce_nan(config, field):
    particle = make_particle([0.0, float("nan"), 1.0], [0.0, 0.0, 0.0], [0.0, float("nan"), 0.5])
    value = score(particle, field, config)
    assert math.isfinite(value)
    assert value == pytest.approx(NON_FINITE_COST, rel=1e-6)


def test_batch_matches_single_scores(config, field):
    manager = CriticManager.from_config(config)
    particles = [
        make_particle([0.0, 0.1, 0.2], [0.0, 0.5, 1.0], [0.0, 1.0, 1.4], ws=[0.0, 0.3, 0.1]),
        make_particle([0.0, -0.1, -0.3], [-2.0, -2.0, -1.9], [0.0, -0.5, -1.5]),
    ]
    trajectories = torch.stack([p.states for p in particles])
    v = torch.stack([p.controls[:, 0] for p in particles])
    w = torch.stack([p.controls[:, 1] for p in particles])

    batch = manager.evaluate_trajectories(manager.prepare_critic_data(trajectories, v, w, field))

    for k, particle in enumerate(particles):
        assert batch[k].item() == pytest.approx(manager.score(particle, field), rel=1e-5)
    assert (batch >= 0).all()


def test_zero_weight_critics_are_skipped():
    manager = CriticManager.from_config(only(path=1.0, angular_acceleration=0.3))
    assert manager.get_weights_summary() == {
        "PathCostCritic": 1.0,
        "AngularAccelerationCritic": 0.3,
    }


def test_statistics_tracking(config, field):
    manager = CriticManager.from_config(config, publish_stats=True)
    particle = make_particle([0.0, 0.5], [0.0, 0.0], [0.0, 0.5])

    manager.score(particle, field)
    manager.score(particle, field)

    assert len(manager.stats_history) == 2
    assert manager.stats_history[0]['critics'] == manager.critic_names

    manager.reset_statistics()
    assert manager.stats_history == []


def test_control_critics_read_the_commanded_controls(config, field):
    manager = CriticManager.from_config(only(velocity=1.0))
    # State velocities stay inside the limit, the commanded ones do not
    trajectories = torch.zeros((1, 3, 5))
    v = torch.tensor([[1.5, 1.5]])
    w = torch.tensor([[0.0, 0.4]])

    data = manager.prepare_critic_data(trajectories, v, w, field)
    assert manager.evaluate_trajectories(data)[0].item() == pytest.approx(2 * 0.25, abs=1e-5)

    manager = CriticManager.from_config(only(acceleration=1.0, angular_acceleration=1.0))
    # |dv|/dt = 15 + 0, |dw|/dt = 0 + 4
    assert manager.evaluate_trajectories(data)[0].item() == pytest.approx(19.0, abs=1e-4)
