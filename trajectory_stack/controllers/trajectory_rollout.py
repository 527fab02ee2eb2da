# In: trajectory_stack/controllers/trajectory_rollout.py
from typing import List, Optional, Tuple

import torch

from trajectory_stack.robot.differential_drive import MotionModel
from .trajectory_noise import NoiseGenerator
from .trajectory_types import ControllerConfig, ControlSequence, Particle, RobotState


class RolloutSampler:
    """
    Draws K control sequences around a nominal and forward simulates them.

    sample():  stochastic, randomness only from the generator argument
    rollout(): deterministic, one model step per control
    """
    def __init__(self, config: ControllerConfig, model: MotionModel):
        self.config = config
        self.model = model
        self.device = config.device
        self.noise_generator = NoiseGenerator(config)

    def sample(
        self,
        state: RobotState,
        nominal: ControlSequence,
        generator: Optional[torch.Generator] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Generate the v/w samples [K, T], already within velocity and
        acceleration limits.
        """
        v_raw, w_raw = self.noise_generator.generate_noisy_controls(nominal, generator)
        return self.apply_limits(state, v_raw, w_raw)

    def apply_limits(
        self,
        state: RobotState,
        v_raw: torch.Tensor,  # [K, T]
        w_raw: torch.Tensor,  # [K, T]
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Walk the horizon clamping each step against the previous one.
        Step 0 is clamped against the measured velocities of the state.
        """
        K, T = v_raw.shape
        dt = self.config.timestep

        v_out = torch.empty_like(v_raw)
        w_out = torch.empty_like(w_raw)

        prev_v = torch.full((K,), float(state.v), device=v_raw.device)
        prev_w = torch.full((K,), float(state.w), device=w_raw.device)

        for t in range(T):
            desired_v, desired_w = self.model.clamp_velocity_batch(v_raw[:, t], w_raw[:, t])
            v_t, w_t = self.model.clamp_acceleration_batch(prev_v, prev_w, desired_v, desired_w, dt)
            # Only bites when the measured state is already beyond the limit
            v_t, w_t = self.model.clamp_velocity_batch(v_t, w_t)

            v_out[:, t] = v_t
            w_out[:, t] = w_t
            prev_v, prev_w = v_t, w_t

        return v_out, w_out

    def rollout_batch(
        self,
        initial_state: torch.Tensor,  # [5] - x, y, theta, v, w
        v_samples: torch.Tensor,      # [K, T]
        w_samples: torch.Tensor,      # [K, T]
    ) -> torch.Tensor:
        """
        Rollout trajectories.

        Returns:
            states: [K, T+1, 5], states[:, 0] is the initial state
        """
        K, T = v_samples.shape
        dt = self.config.timestep

        states = torch.empty((K, T + 1, 5), dtype=torch.float32, device=v_samples.device)
        states[:, 0] = initial_state.to(v_samples.device)

        current = states[:, 0]
        for t in range(T):
            current = self.model.predict_batch(current, v_samples[:, t], w_samples[:, t], dt)
            states[:, t + 1] = current

        return states

    def rollout(self, state: RobotState, control_sequence: ControlSequence) -> Particle:
        """Forward simulate a single control sequence"""
        v = control_sequence.vx.to(self.device).unsqueeze(0)
        w = control_sequence.wz.to(self.device).unsqueeze(0)
        states = self.rollout_batch(state.to_tensor(self.device), v, w)
        return Particle(
            states=states[0],
            controls=torch.stack([v[0], w[0]], dim=1),
        )

    def to_particles(
        self,
        states: torch.Tensor,
        v_samples: torch.Tensor,
        w_samples: torch.Tensor,
        costs: torch.Tensor,
    ) -> List[Particle]:
        controls = torch.stack([v_samples, w_samples], dim=2)  # [K, T, 2]
        costs_list = costs.tolist()
        return [
            Particle(states=states[k], controls=controls[k], cost=costs_list[k])
            for k in range(states.shape[0])
        ]
