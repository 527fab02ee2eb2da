# In: trajectory_stack/robot/differential_drive.py
import math
from typing import Protocol, Tuple

import torch

from trajectory_stack.controllers.trajectory_types import (
    AccelerationBound,
    ControllerConfig,
    RobotState,
)

Control = Tuple[float, float]  # (v, w)


class MotionModel(Protocol):
    """
    Anything the sampler and controller can drive.
    DifferentialDriveModel is the default implementation.
    """
    def predict(self, state: RobotState, control: Control, dt: float) -> RobotState: ...

    def predict_batch(
        self, states: torch.Tensor, v: torch.Tensor, w: torch.Tensor, dt: float
    ) -> torch.Tensor: ...

    def clamp_acceleration(self, prev_control: Control, desired_control: Control, dt: float) -> Control: ...

    def clamp_acceleration_batch(
        self,
        prev_v: torch.Tensor,
        prev_w: torch.Tensor,
        desired_v: torch.Tensor,
        desired_w: torch.Tensor,
        dt: float,
    ) -> Tuple[torch.Tensor, torch.Tensor]: ...

    def clamp_velocity(self, control: Control) -> Control: ...

    def clamp_velocity_batch(
        self, v: torch.Tensor, w: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor]: ...


class DifferentialDriveModel:
    """
    Unicycle reduction of a two wheel differential drive.

    State layout (tensor form): [x, y, theta, v, w]
    Control: (v, w) body frame linear / yaw rate.

    Heading is integrated first and the position step uses the new heading:
        theta' = theta + w*dt
        x'     = x + v*cos(theta')*dt
        y'     = y + v*sin(theta')*dt
    """
    def __init__(
        self,
        axle_length: float,
        acceleration_bound: AccelerationBound,
        angular_acceleration_bound: AccelerationBound = None,
        velocity_limit: float = math.inf,
        angular_velocity_limit: float = math.inf,
    ):
        if not axle_length > 0:
            raise ValueError(f"axle_length must be > 0, got {axle_length}")
        self.axle_length = axle_length
        self.acceleration_bound = acceleration_bound
        self.angular_acceleration_bound = angular_acceleration_bound or acceleration_bound
        self.velocity_limit = velocity_limit
        self.angular_velocity_limit = angular_velocity_limit

    @classmethod
    def from_config(cls, config: ControllerConfig) -> "DifferentialDriveModel":
        return cls(
            axle_length=config.axle_length,
            acceleration_bound=config.acceleration_bound,
            angular_acceleration_bound=config.angular_bound,
            velocity_limit=config.velocity_limit,
            angular_velocity_limit=config.angular_velocity_limit,
        )

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------
    def predict(self, state: RobotState, control: Control, dt: float) -> RobotState:
        """Advance one step. Pure, the input state is not modified."""
        v, w = control
        theta = state.theta + w * dt
        x = state.x + v * math.cos(theta) * dt
        y = state.y + v * math.sin(theta) * dt
        return RobotState(x, y, theta, v, w, state.stamp)

    def predict_batch(
        self,
        states: torch.Tensor,  # [K, 5]
        v: torch.Tensor,       # [K]
        w: torch.Tensor,       # [K]
        dt: float,
    ) -> torch.Tensor:
        """Vectorized predict over K states, returns a new [K, 5] tensor"""
        theta = states[:, 2] + w * dt
        x = states[:, 0] + v * torch.cos(theta) * dt
        y = states[:, 1] + v * torch.sin(theta) * dt
        return torch.stack([x, y, theta, v, w], dim=1)

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------
    def clamp_acceleration(self, prev_control: Control, desired_control: Control, dt: float) -> Control:
        """
        Limit the per step change so that dv/dt stays in
        [acceleration_bound.lower, acceleration_bound.upper] and dw/dt in the
        angular bound.
        """
        prev_v, prev_w = prev_control
        desired_v, desired_w = desired_control
        lin, ang = self.acceleration_bound, self.angular_acceleration_bound

        dv = min(max(desired_v - prev_v, lin.lower * dt), lin.upper * dt)
        dw = min(max(desired_w - prev_w, ang.lower * dt), ang.upper * dt)
        return prev_v + dv, prev_w + dw

    def clamp_acceleration_batch(
        self,
        prev_v: torch.Tensor,
        prev_w: torch.Tensor,
        desired_v: torch.Tensor,
        desired_w: torch.Tensor,
        dt: float,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        lin, ang = self.acceleration_bound, self.angular_acceleration_bound
        dv = torch.clamp(desired_v - prev_v, lin.lower * dt, lin.upper * dt)
        dw = torch.clamp(desired_w - prev_w, ang.lower * dt, ang.upper * dt)
        return prev_v + dv, prev_w + dw

    def clamp_velocity(self, control: Control) -> Control:
        v, w = control
        v = min(max(v, -self.velocity_limit), self.velocity_limit)
        w = min(max(w, -self.angular_velocity_limit), self.angular_velocity_limit)
        return v, w

    def clamp_velocity_batch(
        self, v: torch.Tensor, w: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """Enforce Control Limits"""
        v = torch.clamp(v, -self.velocity_limit, self.velocity_limit)
        w = torch.clamp(w, -self.angular_velocity_limit, self.angular_velocity_limit)
        return v, w

    # ------------------------------------------------------------------
    # Wheel conversions
    # ------------------------------------------------------------------
    def to_wheel_velocities(self, v: float, w: float) -> Tuple[float, float]:
        """(left, right) wheel speeds for a body twist"""
        half = 0.5 * self.axle_length * w
        return v - half, v + half

    def from_wheel_velocities(self, left: float, right: float) -> Control:
        """Body twist (v, w) from wheel speeds"""
        return 0.5 * (left + right), (right - left) / self.axle_length

    def __repr__(self) -> str:
        return (f"DifferentialDriveModel(axle_length={self.axle_length}, "
                f"accel=[{self.acceleration_bound.lower}, {self.acceleration_bound.upper}], "
                f"v_limit={self.velocity_limit})")
