# In: trajectory_stack/controllers/trajectory_types.py
import itertools
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union

import numpy as np
import torch


class ConfigurationError(ValueError):
    """Raised when a controller configuration value is out of range"""


# =========================================================================
# CONFIGURATION
# =========================================================================

@dataclass(frozen=True)
class CostCoefficients:
    """Weights of the four cost terms"""
    path: float = 1.0
    velocity: float = 1.0
    acceleration: float = 0.1
    angular_acceleration: float = 0.1

    def __post_init__(self):
        for name in ("path", "velocity", "acceleration", "angular_acceleration"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ConfigurationError(
                    f"cost coefficient '{name}' must be >= 0, got {value}")


@dataclass(frozen=True)
class AccelerationBound:
    """
    Allowed change of velocity per second.
    lower: most negative rate (braking), upper: most positive rate.
    Asymmetric bounds are used exactly as given.
    """
    lower: float = -1.0
    upper: float = 1.0

    def __post_init__(self):
        if not (math.isfinite(self.lower) and math.isfinite(self.upper)):
            raise ConfigurationError(
                f"acceleration bound must be finite, got [{self.lower}, {self.upper}]")
        if self.lower > 0 or self.upper < 0:
            raise ConfigurationError(
                f"acceleration bound must satisfy lower <= 0 <= upper, "
                f"got [{self.lower}, {self.upper}]")


@dataclass(frozen=True)
class CostFieldOptions:
    """Extent of the distance field in metres"""
    width: float = 20.0
    height: float = 20.0
    resolution: float = 0.1

    def __post_init__(self):
        if not self.resolution > 0:
            raise ConfigurationError(f"cost field resolution must be > 0, got {self.resolution}")
        if not self.width > 0 or not self.height > 0:
            raise ConfigurationError(
                f"cost field extent must be > 0, got {self.width} x {self.height}")

    @property
    def shape(self) -> Tuple[int, int]:
        """(rows, cols), both odd so a cell centre sits on the anchor point"""
        cols = max(1, int(round(self.width / self.resolution)))
        rows = max(1, int(round(self.height / self.resolution)))
        if cols % 2 == 0:
            cols += 1
        if rows % 2 == 0:
            rows += 1
        return rows, cols


@dataclass(frozen=True)
class ControllerConfig:
    """All hyperparameters in one place"""
    # Sampling
    timestep: float = 0.1          # dt: seconds per step
    horizon: int = 20              # T: steps per rollout
    num_samples: int = 500         # K: rollouts per cycle

    # Robot limits
    velocity_limit: float = 1.0
    angular_velocity_limit: float = 2.0
    axle_length: float = 0.5
    acceleration_bound: AccelerationBound = field(default_factory=AccelerationBound)
    # None -> same as acceleration_bound
    angular_acceleration_bound: Optional[AccelerationBound] = None

    # Cost
    cost_coefficients: CostCoefficients = field(default_factory=CostCoefficients)
    cost_field: CostFieldOptions = field(default_factory=CostFieldOptions)

    # Noise (exploration)
    v_std: float = 0.2
    w_std: float = 0.5
    nominal_velocity: float = 0.5  # forward speed of the first nominal sequence

    # Determinism / warm start
    seed: Optional[int] = None
    warm_start: bool = True

    # Device
    device: str = "cpu"

    # Introspection
    debug: bool = False
    verbose: bool = False

    def __post_init__(self):
        if not self.timestep > 0:
            raise ConfigurationError(f"timestep must be > 0, got {self.timestep}")
        if isinstance(self.horizon, bool) or not isinstance(self.horizon, int) or self.horizon <= 0:
            raise ConfigurationError(f"horizon must be a positive int, got {self.horizon}")
        if (isinstance(self.num_samples, bool) or not isinstance(self.num_samples, int)
                or self.num_samples <= 0):
            raise ConfigurationError(f"num_samples must be a positive int, got {self.num_samples}")
        if not self.velocity_limit > 0:
            raise ConfigurationError(f"velocity_limit must be > 0, got {self.velocity_limit}")
        if not self.angular_velocity_limit > 0:
            raise ConfigurationError(
                f"angular_velocity_limit must be > 0, got {self.angular_velocity_limit}")
        if not self.axle_length > 0:
            raise ConfigurationError(f"axle_length must be > 0, got {self.axle_length}")
        if not self.v_std > 0 or not self.w_std > 0:
            raise ConfigurationError("Noise std devs must be positive!")
        if not math.isfinite(self.nominal_velocity):
            raise ConfigurationError(f"nominal_velocity must be finite, got {self.nominal_velocity}")
        if self.seed is not None and (isinstance(self.seed, bool) or not isinstance(self.seed, int)):
            raise ConfigurationError(f"seed must be an int or None, got {self.seed!r}")

    @property
    def angular_bound(self) -> AccelerationBound:
        if self.angular_acceleration_bound is None:
            return self.acceleration_bound
        return self.angular_acceleration_bound

    @property
    def planning_horizon_seconds(self) -> float:
        """Total planning time in seconds"""
        return self.horizon * self.timestep


# =========================================================================
# ROBOT STATE / PATH
# =========================================================================

@dataclass
class RobotState:
    """Robot state at one instant"""

    x: float
    y: float
    theta: float
    v: float = 0.0   # Current Velocity
    w: float = 0.0   # Current Angular Velocity
    stamp: Optional[float] = None

    @classmethod
    def from_wheel_velocities(
        cls,
        x: float,
        y: float,
        theta: float,
        left: float,
        right: float,
        axle_length: float,
        stamp: Optional[float] = None,
    ) -> "RobotState":
        """Build a state from a left/right wheel velocity pair"""
        v = 0.5 * (left + right)
        w = (right - left) / axle_length
        return cls(x, y, theta, v, w, stamp)

    @classmethod
    def from_odometry(
        cls,
        position: Tuple[float, float],
        orientation: Tuple[float, float, float, float],
        linear: float = 0.0,
        angular: float = 0.0,
        stamp: Optional[float] = None,
    ) -> "RobotState":
        """
        Build a state from an odometry style pose.

        Args:
            position: (x, y)
            orientation: quaternion (qx, qy, qz, qw)
            linear: forward twist (m/s)
            angular: yaw rate (rad/s)
        """
        qx, qy, qz, qw = orientation
        yaw = math.atan2(2.0 * (qw * qz + qx * qy), 1.0 - 2.0 * (qy * qy + qz * qz))
        return cls(position[0], position[1], yaw, linear, angular, stamp)

    def is_finite(self) -> bool:
        return all(math.isfinite(value) for value in (self.x, self.y, self.theta, self.v, self.w))

    def to_tensor(self, device: str) -> torch.Tensor:
        """Convert to Pytorch tensor [x, y, theta, v, w]"""
        return torch.tensor(
            [self.x, self.y, self.theta, self.v, self.w],
            dtype=torch.float32,
            device=device
        )


_path_versions = itertools.count(1)


class Path:
    """
    Ordered reference path [N, 2] or [N, 3] (x, y[, theta]).

    Every instance gets a fresh version number, so a delivered path is never
    mistaken for the previous one even if the array is reused.
    """
    def __init__(
        self,
        waypoints: Union[np.ndarray, List, Tuple],
        stamp: Optional[float] = None,
    ):
        waypoints = np.asarray(waypoints, dtype=np.float64)
        if waypoints.size == 0:
            waypoints = np.zeros((0, 2), dtype=np.float64)

        if waypoints.ndim != 2:
            raise ValueError(f"Path must be 2D, got shape {waypoints.shape}")
        if waypoints.shape[1] not in [2, 3]:
            raise ValueError(f"Path must be [N, 2] or [N, 3], got {waypoints.shape}")

        self.waypoints = waypoints
        self.stamp = stamp
        self.version = next(_path_versions)

    def __len__(self) -> int:
        return len(self.waypoints)

    @property
    def xy(self) -> np.ndarray:
        return self.waypoints[:, :2]

    def length(self) -> float:
        """Total polyline length"""
        if len(self.waypoints) < 2:
            return 0.0
        diffs = self.xy[1:] - self.xy[:-1]
        return float(np.sum(np.linalg.norm(diffs, axis=1)))

    def is_degenerate(self) -> bool:
        """Fewer than two points, non-finite values or zero length"""
        if len(self.waypoints) < 2:
            return True
        if not np.all(np.isfinite(self.waypoints)):
            return True
        return self.length() <= 0.0

    def __repr__(self) -> str:
        return f"Path(points={len(self)}, version={self.version}, length={self.length():.2f})"


# =========================================================================
# CONTROLS
# =========================================================================

class ControlSequence:
    """
    A Sequence of controls over the planning horizon.
    Each timestep has a linear velocity (vx) and angular velocity (wz).
    """
    def __init__(self, T: int, device: str):
        """
        T : Number of timesteps (horizon length)
        device : Pytorch device
        """
        self.T = T
        self.device = device

        # Init with Zeros
        self.vx = torch.zeros(T, device=device)  # Linear vel
        self.wz = torch.zeros(T, device=device)  # Angular vel

    def shift(self):
        """Warm start: shift left and repeat the last control"""
        if self.T < 2:
            return

        self.vx = torch.roll(self.vx, shifts=-1, dims=0)
        self.wz = torch.roll(self.wz, shifts=-1, dims=0)

        # Repeat last control dont let it zero
        self.vx[-1] = self.vx[-2]
        self.wz[-1] = self.wz[-2]

    def initialize_with_forward_motion(self, v: float = 0.2):
        """Initialize sequence with constant forward motion"""
        self.vx[:] = v
        self.wz[:] = 0.0

    def copy_from(self, vx: torch.Tensor, wz: torch.Tensor):
        self.vx = vx.detach().clone().to(self.device)
        self.wz = wz.detach().clone().to(self.device)

    def clone(self) -> "ControlSequence":
        other = ControlSequence(self.T, self.device)
        other.copy_from(self.vx, self.wz)
        return other

    def get_first_command(self) -> Tuple[float, float]:
        """
        Extract first control command to send to robot.
        Returns: (v,w) as Python Floats
        """
        return self.vx[0].item(), self.wz[0].item()

    def __repr__(self) -> str:
        return (f"ControlSequence(T={self.T}, "
                f"v_range=[{self.vx.min():.2f}, {self.vx.max():.2f}], "
                f"w_range=[{self.wz.min():.2f}, {self.wz.max():.2f}])")


@dataclass(frozen=True)
class VelocityCommand:
    """Command sent to the drive once per cycle"""
    linear: float
    angular: float

    def to_wheel_pair(self, axle_length: float) -> Tuple[float, float]:
        """(left, right) wheel velocities for the given axle length"""
        half = 0.5 * axle_length * self.angular
        return self.linear - half, self.linear + half

    def is_finite(self) -> bool:
        return math.isfinite(self.linear) and math.isfinite(self.angular)


# =========================================================================
# ROLLOUT RESULTS
# =========================================================================

@dataclass
class Particle:
    """One candidate trajectory"""
    states: torch.Tensor     # [T+1, 5] - x, y, theta, v, w
    controls: torch.Tensor   # [T, 2]   - v, w
    cost: float = 0.0

    @property
    def horizon(self) -> int:
        return self.controls.shape[0]

    @property
    def first_control(self) -> Tuple[float, float]:
        return self.controls[0, 0].item(), self.controls[0, 1].item()


@dataclass
class OptimizationResult:
    """All particles of one cycle and the index of the selected one"""
    particles: List[Particle]
    best_particle: int
    costs: torch.Tensor               # [K]
    cost_field: "CostField"           # snapshot used this cycle

    def __post_init__(self):
        if not 0 <= self.best_particle < len(self.particles):
            raise IndexError(
                f"best_particle {self.best_particle} out of range for "
                f"{len(self.particles)} particles")

    @property
    def best(self) -> Particle:
        return self.particles[self.best_particle]


@dataclass
class ControllerResult:
    """Output of one control cycle"""
    command: VelocityCommand
    best_particle: Particle
    cost_field: "CostField"
    optimization_result: Optional[OptimizationResult] = None


class ControllerFault(Enum):
    """Reasons for skipping a cycle"""
    INVALID_STATE = "state contains non-finite values"
    DEGENERATE_PATH = "path has fewer than two distinct waypoints"
    NON_FINITE_COMMAND = "optimization produced a non-finite command"
