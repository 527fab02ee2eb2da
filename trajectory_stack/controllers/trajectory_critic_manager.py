# trajectory_stack/controllers/trajectory_critic_manager.py

from typing import Dict, List

import torch

from trajectory_stack.perception.signed_distance_field import CostField
from .critic_data import CriticData
from .trajectory_costs import (
    AccelerationCritic,
    AngularAccelerationCritic,
    PathCostCritic,
    VelocityCritic,
)
from .trajectory_types import ControllerConfig, CostCoefficients, Particle

# Stand-in for non-finite totals so selection always compares real numbers
NON_FINITE_COST = 1e12


class CriticManager:
    """
    Manages the trajectory critics and combines their costs.

        cost = path * mean(field(x_t, y_t))
             + velocity * sum(max(|v_t| - limit, 0)^2)
             + acceleration * sum(|dv_t / dt|)
             + angular_acceleration * sum(|dw_t / dt|)

    Usage:
        manager = CriticManager.from_config(config)

        # Every cycle:
        data = manager.prepare_critic_data(trajectories, v, w, cost_field)
        total_costs = manager.evaluate_trajectories(data)
    """
    def __init__(
        self,
        coefficients: CostCoefficients,
        dt: float,
        velocity_limit: float,
        publish_stats: bool = False,
        verbose: bool = False,
    ):
        self.coefficients = coefficients
        self.dt = dt
        self.velocity_limit = velocity_limit
        self.publish_stats = publish_stats
        self.verbose = verbose

        # Statistics tracking
        self.stats_history: List[Dict] = []
        self._cycle_count = 0

        self.critics = []       # List of active critics
        self.critic_names = []  # Names for debugging

        # Zero weight critics are skipped entirely
        if coefficients.path > 0:
            self.critics.append(PathCostCritic(weight=coefficients.path, verbose=verbose))
            self.critic_names.append("PathCostCritic")

        if coefficients.velocity > 0:
            self.critics.append(VelocityCritic(weight=coefficients.velocity, verbose=verbose))
            self.critic_names.append("VelocityCritic")

        if coefficients.acceleration > 0:
            self.critics.append(AccelerationCritic(weight=coefficients.acceleration, verbose=verbose))
            self.critic_names.append("AccelerationCritic")

        if coefficients.angular_acceleration > 0:
            self.critics.append(AngularAccelerationCritic(
                weight=coefficients.angular_acceleration, verbose=verbose))
            self.critic_names.append("AngularAccelerationCritic")

        if verbose:
            print(f" CriticManager initialized with {len(self.critics)} critics:")
            for name in self.critic_names:
                print(f"   - {name}")

    @classmethod
    def from_config(cls, config: ControllerConfig, publish_stats: bool = False) -> "CriticManager":
        return cls(
            coefficients=config.cost_coefficients,
            dt=config.timestep,
            velocity_limit=config.velocity_limit,
            publish_stats=publish_stats,
            verbose=config.verbose,
        )

    def prepare_critic_data(
        self,
        trajectories: torch.Tensor,
        v_samples: torch.Tensor,
        w_samples: torch.Tensor,
        cost_field: CostField,
    ) -> CriticData:
        """Bundle one cycle's rollouts for the critics"""
        return CriticData(
            trajectories=trajectories,
            v_samples=v_samples,
            w_samples=w_samples,
            cost_field=cost_field,
            dt=self.dt,
            velocity_limit=self.velocity_limit,
        )

    def evaluate_trajectories(self, data: CriticData) -> torch.Tensor:
        """
        Evaluate all critics and return total cost.

        Returns:
            total_costs: [K] Total cost for each trajectory, always finite
        """
        K = data.num_samples
        total_costs = torch.zeros(K, device=data.trajectories.device)

        stats = {}
        if self.publish_stats:
            stats['cycle'] = self._cycle_count
            stats['critics'] = []
            stats['costs_added'] = []

        for critic, name in zip(self.critics, self.critic_names):
            critic_cost = critic.compute(data)
            total_costs += critic_cost

            if self.publish_stats:
                stats['critics'].append(name)
                stats['costs_added'].append(critic_cost.sum().item())

        total_costs = torch.nan_to_num(
            total_costs, nan=NON_FINITE_COST, posinf=NON_FINITE_COST, neginf=NON_FINITE_COST)

        if self.publish_stats:
            self.stats_history.append(stats)
            if self.verbose and self._cycle_count % 50 == 0:
                self.print_statistics(stats)

        self._cycle_count += 1
        return total_costs

    def score(self, particle: Particle, cost_field: CostField) -> float:
        """Cost of a single particle"""
        data = self.prepare_critic_data(
            trajectories=particle.states.unsqueeze(0),
            v_samples=particle.controls[:, 0].unsqueeze(0),
            w_samples=particle.controls[:, 1].unsqueeze(0),
            cost_field=cost_field,
        )
        return self.evaluate_trajectories(data)[0].item()

    def print_statistics(self, stats: Dict):
        """Print per critic contribution for one cycle"""
        print(f"\nCritic Statistics (Cycle {stats['cycle']}):")
        print(f"{'Critic':<28} {'Cost Added':>15}")
        print("-" * 45)
        for name, cost_added in zip(stats['critics'], stats['costs_added']):
            print(f"{name:<28} {cost_added:>15.2f}")
        print("-" * 45)

    def get_weights_summary(self) -> Dict[str, float]:
        """Get current critic weights for debugging/tuning."""
        return {name: critic.weight for critic, name in zip(self.critics, self.critic_names)}

    def reset_statistics(self):
        """Reset statistics tracking."""
        self.stats_history.clear()
        self._cycle_count = 0


def score(particle: Particle, cost_field: CostField, config: ControllerConfig) -> float:
    """Score one particle with the coefficients of a config"""
    return CriticManager.from_config(config).score(particle, cost_field)
