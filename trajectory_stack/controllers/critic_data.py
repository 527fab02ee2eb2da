from dataclasses import dataclass

import torch

from trajectory_stack.perception.signed_distance_field import CostField


@dataclass
class CriticData:
    """
    Unified data structure for all trajectory critics.
    Built once per cycle and shared by every critic.
    """

    # Trajectories
    trajectories: torch.Tensor      # [K, T+1, 5] - x, y, theta, v, w (index 0 = current state)
    v_samples: torch.Tensor         # [K, T] - Linear velocity controls
    w_samples: torch.Tensor         # [K, T] - Angular velocity controls

    # Perception
    cost_field: CostField           # distance-to-path field

    # Time & Constraints
    dt: float                       # Timestep duration (seconds)
    velocity_limit: float           # Max |v| (m/s)

    @property
    def num_samples(self) -> int:
        return self.trajectories.shape[0]
