# In: trajectory_stack/controllers/trajectory_controller.py

import threading
from typing import Optional

import numpy as np
import torch

from trajectory_stack.perception.signed_distance_field import SignedDistanceField
from trajectory_stack.robot.differential_drive import DifferentialDriveModel, MotionModel
from .trajectory_critic_manager import CriticManager
from .trajectory_noise import make_generator
from .trajectory_rollout import RolloutSampler
from .trajectory_types import (
    ControllerConfig,
    ControllerResult,
    ControlSequence,
    OptimizationResult,
    Particle,
    Path,
    RobotState,
    VelocityCommand,
)


class TrajectoryController:
    """
    Sampling trajectory controller, one call = one control cycle.

    Every cycle:
    1. Reuse the distance field, or rebuild it if the path changed
    2. Draw num_samples control sequences around the nominal
    3. Roll out and score every sequence
    4. Select the cheapest (ties -> lowest sample index)
    5. Return its first control, warm start the nominal from it
    """

    def __init__(
        self,
        config: ControllerConfig,
        model: Optional[MotionModel] = None,
    ):
        """
        Args:
            config: validated controller configuration
            model: motion model, defaults to a DifferentialDriveModel built
                   from the config
        """
        self.config = config
        self.device = config.device
        self._debug_counter = 0

        self.model = model if model is not None else DifferentialDriveModel.from_config(config)

        self.signed_distance_field = SignedDistanceField(config.cost_field, verbose=config.verbose)
        self.sampler = RolloutSampler(config, self.model)
        self.critic_manager = CriticManager.from_config(config)

        # Guards the warm start nominal only
        self._lock = threading.Lock()
        self.control_sequence = ControlSequence(config.horizon, self.device)
        self.control_sequence.initialize_with_forward_motion(v=config.nominal_velocity)

        if config.verbose:
            print("TrajectoryController initialized")
            print(f"   Device: {self.device}")
            print(f"   Samples: {config.num_samples}")
            print(f"   Horizon: {config.horizon} steps ({config.planning_horizon_seconds:.2f}s)")

    def get_controls(
        self,
        path: Path,
        state: RobotState,
        generator: Optional[torch.Generator] = None,
    ) -> ControllerResult:
        """
        Run one control cycle.

        Args:
            path: reference path, at least two distinct waypoints
            state: current robot state, all fields finite
            generator: private random source for this cycle; a fresh one is
                       made from config.seed when omitted

        Returns:
            ControllerResult with the command, the winning particle and,
            when config.debug is set, the full OptimizationResult
        """
        if path.is_degenerate():
            raise ValueError(f"Degenerate path: {path}")
        if not state.is_finite():
            raise ValueError(f"Non-finite robot state: {state}")

        if generator is None:
            generator = make_generator(self.config.seed, self.device)

        cost_field = self.signed_distance_field.get_field(path)

        with self._lock:
            nominal = self.control_sequence.clone()

        # Generate the v/w samples [K, T]
        v_samples, w_samples = self.sampler.sample(state, nominal, generator)

        # Rollout trajectories [K, T+1, 5]
        trajectories = self.sampler.rollout_batch(
            initial_state=state.to_tensor(self.device),
            v_samples=v_samples,
            w_samples=w_samples,
        )

        data = self.critic_manager.prepare_critic_data(
            trajectories=trajectories,
            v_samples=v_samples,
            w_samples=w_samples,
            cost_field=cost_field,
        )
        total_costs = self.critic_manager.evaluate_trajectories(data)

        # argmin returns the first minimal index
        best = int(torch.argmin(total_costs).item())

        best_particle = Particle(
            states=trajectories[best],
            controls=torch.stack([v_samples[best], w_samples[best]], dim=1),
            cost=total_costs[best].item(),
        )
        v, w = best_particle.first_control
        command = VelocityCommand(linear=v, angular=w)

        if self.config.warm_start:
            winner = ControlSequence(self.config.horizon, self.device)
            winner.copy_from(v_samples[best], w_samples[best])
            winner.shift()  # warm start for next iteration
            with self._lock:
                self.control_sequence = winner

        optimization_result = None
        if self.config.debug:
            optimization_result = OptimizationResult(
                particles=self.sampler.to_particles(trajectories, v_samples, w_samples, total_costs),
                best_particle=best,
                costs=total_costs,
                cost_field=cost_field,
            )

        if self.config.verbose and self._debug_counter % 50 == 0:
            print(f"\nTrajectory Control (Cycle {self._debug_counter}):")
            print(f"   Command: v={v:.3f} m/s, w={w:.3f} rad/s")
            print(f"   Cost range: [{total_costs.min().item():.3f}, "
                  f"{total_costs.max().item():.3f}], best index {best}")
        self._debug_counter += 1

        return ControllerResult(
            command=command,
            best_particle=best_particle,
            cost_field=cost_field,
            optimization_result=optimization_result,
        )

    def set_obstacle_cost(self, obstacle_cost: Optional[np.ndarray]):
        """Extra cost layer added to the distance field from the next cycle on (None clears it)"""
        self.signed_distance_field.set_obstacle_cost(obstacle_cost)

    def reset(self):
        """Drop the warm start, the cached field and the obstacle layer"""
        with self._lock:
            self.control_sequence = ControlSequence(self.config.horizon, self.device)
            self.control_sequence.initialize_with_forward_motion(v=self.config.nominal_velocity)
        self.signed_distance_field.reset()
        self._debug_counter = 0

        if self.config.verbose:
            print(" TrajectoryController reset")
