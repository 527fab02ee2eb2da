# In: trajectory_stack/controllers/trajectory_costs.py
import torch


class PathCostCritic:
    """
    Mean distance-field cost along the trajectory.

    - Looks up every state (including the current one) in the cost field
    - Out of field points get the field's max_cost sentinel, never an error
    - Averaged over the number of states so horizon length does not scale it
    """
    def __init__(self, weight: float = 1.0, verbose: bool = False):
        self.weight = weight
        self.verbose = verbose
        self._debug_counter = 0

    def compute(self, data: 'CriticData') -> torch.Tensor:
        """
        Args:
            data: CriticData containing all necessary information

        Returns:
            costs: [K] - Cost for each trajectory
        """
        positions = data.trajectories[:, :, :2]               # [K, T+1, 2]
        pose_costs = data.cost_field.query_batch(positions)   # [K, T+1]
        traj_costs = pose_costs.mean(dim=1)                   # [K]

        if self.verbose and self._debug_counter % 200 == 0:
            outside = (pose_costs >= data.cost_field.max_cost).any(dim=1).sum().item()
            print("PathCostCritic:")
            print(f"   Out of field: {outside}/{data.num_samples} trajectories")
            print(f"   Avg cost: {traj_costs.mean().item():.3f}")
        self._debug_counter += 1

        return traj_costs * self.weight


class VelocityCritic:
    """
    Soft velocity limit: zero while |v| <= limit, quadratic beyond it
    """
    def __init__(self, weight: float = 1.0, verbose: bool = False):
        self.weight = weight
        self.verbose = verbose
        self._debug_counter = 0

    def compute(self, data: 'CriticData') -> torch.Tensor:
        velocities = data.v_samples  # [K, T]
        excess = torch.clamp(torch.abs(velocities) - data.velocity_limit, min=0.0)
        violations = torch.sum(excess * excess, dim=1)  # [K]

        if self.verbose and self._debug_counter % 200 == 0:
            count = (excess > 0).any(dim=1).sum().item()
            print(f"VelocityCritic: {count}/{data.num_samples} trajectories over limit")
        self._debug_counter += 1

        return violations * self.weight


class AccelerationCritic:
    """
    Sum of |dv/dt| over the horizon.
    The first step is measured against the current velocity.
    """
    state_index = 3

    @staticmethod
    def _controls(data: 'CriticData') -> torch.Tensor:
        return data.v_samples

    def __init__(self, weight: float = 0.1, verbose: bool = False):
        self.weight = weight
        self.verbose = verbose
        self._debug_counter = 0

    def compute(self, data: 'CriticData') -> torch.Tensor:
        # Current velocity followed by the commanded ones, [K, T+1]
        series = torch.cat([data.trajectories[:, :1, self.state_index], self._controls(data)], dim=1)
        rates = torch.abs(series[:, 1:] - series[:, :-1]) / data.dt  # [K, T]
        total = torch.sum(rates, dim=1)

        if self.verbose and self._debug_counter % 200 == 0:
            print(f"{type(self).__name__}: "
                  f"range [{total.min().item():.2f}, {total.max().item():.2f}]")
        self._debug_counter += 1

        return total * self.weight


class AngularAccelerationCritic(AccelerationCritic):
    """Sum of |dw/dt| over the horizon"""
    state_index = 4

    @staticmethod
    def _controls(data: 'CriticData') -> torch.Tensor:
        return data.w_samples
