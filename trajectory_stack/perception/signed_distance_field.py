# trajectory_stack/perception/signed_distance_field.py
import math
import threading
from typing import Dict, Optional, Tuple

import numpy as np
import torch

from trajectory_stack.controllers.trajectory_types import CostFieldOptions, Path
from .sdf_kernel import compute_distance_grid

# Slack on the covered index range so points that sit on the outer cell
# centres are not rejected by floating point round off.
_EDGE_EPS = 1e-9


class CostField:
    """
    Dense distance-to-path grid.

    grid[r, c] is the distance from the cell centre
        (origin[0] + c * resolution, origin[1] + r * resolution)
    to the reference path. Queries use bilinear interpolation between
    cell centres; anything outside the covered centres returns max_cost.
    """
    def __init__(
        self,
        grid: np.ndarray,
        resolution: float,
        origin: Tuple[float, float],
        max_cost: float,
        path_version: Optional[int] = None,
    ):
        if grid.ndim != 2:
            raise ValueError(f"Cost grid must be 2D, got shape {grid.shape}")
        self.grid = grid
        self.resolution = float(resolution)
        self.origin = (float(origin[0]), float(origin[1]))
        self.height, self.width = grid.shape  # rows, cols
        self.max_cost = float(max_cost)
        self.path_version = path_version

        # Lazily created torch copies, keyed by device
        self._tensors: Dict[str, torch.Tensor] = {}

    # ------------------------------------------------------------------
    # Geometry helpers
    # ------------------------------------------------------------------
    def world_to_grid(self, x: float, y: float) -> Tuple[float, float]:
        """Continuous (col, row) index of a world point"""
        return (x - self.origin[0]) / self.resolution, (y - self.origin[1]) / self.resolution

    def contains(self, x: float, y: float) -> bool:
        fx, fy = self.world_to_grid(x, y)
        return (-_EDGE_EPS <= fx <= self.width - 1 + _EDGE_EPS and
                -_EDGE_EPS <= fy <= self.height - 1 + _EDGE_EPS)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def query(self, x: float, y: float) -> float:
        """Bilinear cost at (x, y), max_cost outside the field"""
        if not (math.isfinite(x) and math.isfinite(y)) or not self.contains(x, y):
            return self.max_cost

        fx, fy = self.world_to_grid(x, y)
        fx = min(max(fx, 0.0), self.width - 1.0)
        fy = min(max(fy, 0.0), self.height - 1.0)

        c0 = min(int(math.floor(fx)), max(self.width - 2, 0))
        r0 = min(int(math.floor(fy)), max(self.height - 2, 0))
        c1 = min(c0 + 1, self.width - 1)
        r1 = min(r0 + 1, self.height - 1)
        tx = fx - c0
        ty = fy - r0

        g = self.grid
        top = g[r0, c0] * (1.0 - tx) + g[r0, c1] * tx
        bottom = g[r1, c0] * (1.0 - tx) + g[r1, c1] * tx
        return float(top * (1.0 - ty) + bottom * ty)

    def as_tensor(self, device: str) -> torch.Tensor:
        key = str(device)
        if key not in self._tensors:
            self._tensors[key] = torch.as_tensor(self.grid, dtype=torch.float32, device=device)
        return self._tensors[key]

    def query_batch(self, xy: torch.Tensor) -> torch.Tensor:
        """
        Vectorized bilinear lookup.

        Args:
            xy: [..., 2] world positions

        Returns:
            costs: [...] with max_cost outside the field
        """
        grid = self.as_tensor(xy.device)
        fx = (xy[..., 0] - self.origin[0]) / self.resolution
        fy = (xy[..., 1] - self.origin[1]) / self.resolution

        inside = (
            (fx >= -_EDGE_EPS) & (fx <= self.width - 1 + _EDGE_EPS) &
            (fy >= -_EDGE_EPS) & (fy <= self.height - 1 + _EDGE_EPS)
        )  # NaN compares False -> outside

        fx = torch.nan_to_num(fx).clamp(0.0, self.width - 1.0)
        fy = torch.nan_to_num(fy).clamp(0.0, self.height - 1.0)

        c0 = torch.floor(fx).long().clamp(max=max(self.width - 2, 0))
        r0 = torch.floor(fy).long().clamp(max=max(self.height - 2, 0))
        c1 = (c0 + 1).clamp(max=self.width - 1)
        r1 = (r0 + 1).clamp(max=self.height - 1)
        tx = fx - c0.to(fx.dtype)
        ty = fy - r0.to(fy.dtype)

        top = grid[r0, c0] * (1.0 - tx) + grid[r0, c1] * tx
        bottom = grid[r1, c0] * (1.0 - tx) + grid[r1, c1] * tx
        costs = top * (1.0 - ty) + bottom * ty

        return torch.where(inside, costs, torch.full_like(costs, self.max_cost))

    # ------------------------------------------------------------------
    # Collaborator hooks
    # ------------------------------------------------------------------
    def with_obstacle_cost(self, obstacle_cost: np.ndarray) -> "CostField":
        """
        Return a new field with an extra non-negative cost layer added,
        e.g. inflated obstacles from a mapping pipeline.
        """
        obstacle_cost = np.asarray(obstacle_cost, dtype=np.float64)
        if obstacle_cost.shape != self.grid.shape:
            raise ValueError(
                f"Obstacle layer shape {obstacle_cost.shape} != field shape {self.grid.shape}")
        if not np.all(np.isfinite(obstacle_cost)) or np.any(obstacle_cost < 0):
            raise ValueError("Obstacle layer must be finite and non-negative")

        grid = self.grid + obstacle_cost
        max_cost = max(self.max_cost, float(grid.max()))
        return CostField(grid, self.resolution, self.origin, max_cost, self.path_version)

    def to_points(self) -> np.ndarray:
        """[rows*cols, 3] array of (x, y, cost) for external debug display"""
        cols = self.origin[0] + np.arange(self.width) * self.resolution
        rows = self.origin[1] + np.arange(self.height) * self.resolution
        xx, yy = np.meshgrid(cols, rows)
        return np.stack([xx.ravel(), yy.ravel(), self.grid.ravel()], axis=1)

    def __repr__(self) -> str:
        return (f"CostField({self.width}x{self.height} @ {self.resolution}m, "
                f"origin=({self.origin[0]:.2f}, {self.origin[1]:.2f}), "
                f"path_version={self.path_version})")


class SignedDistanceField:
    """
    Builds and caches the path distance field.

    The grid is centred on the first waypoint of the path and has an odd
    number of cells on each axis, so that waypoint lands exactly on a cell
    centre. The field is rebuilt only when a different path arrives.

    An optional obstacle layer ([rows, cols], same cell frame as the field)
    is added on top of the distance grid before any query. The combined
    field is cached until either the path or the layer changes.
    """
    def __init__(self, options: CostFieldOptions, verbose: bool = False):
        self.options = options
        self.verbose = verbose

        self._path: Optional[Path] = None
        self._field: Optional[CostField] = None
        self._obstacle_cost: Optional[np.ndarray] = None
        self._combined: Optional[CostField] = None
        self._lock = threading.Lock()
        self.build_count = 0

    @property
    def max_cost(self) -> float:
        """Sentinel for queries outside the field: the extent diagonal"""
        rows, cols = self.options.shape
        res = self.options.resolution
        return math.hypot(cols * res, rows * res)

    @property
    def obstacle_cost(self) -> Optional[np.ndarray]:
        return self._obstacle_cost

    def build(self, path: Path) -> CostField:
        """Compute a fresh field for the path (no caching)"""
        if len(path) == 0:
            raise ValueError("Cannot build a cost field from an empty path")

        rows, cols = self.options.shape
        res = self.options.resolution
        anchor = path.xy[0]
        origin = (anchor[0] - (cols // 2) * res, anchor[1] - (rows // 2) * res)

        grid = compute_distance_grid(path.xy, (rows, cols), origin, res)
        field = CostField(grid, res, origin, self.max_cost, path.version)

        self.build_count += 1
        if self.verbose:
            print(f"Cost field rebuilt: {cols}x{rows} cells, "
                  f"{len(path)} waypoints, path version {path.version}")
        return field

    def set_obstacle_cost(self, obstacle_cost: Optional[np.ndarray]):
        """
        Replace the obstacle layer, or clear it with None.

        Args:
            obstacle_cost: [rows, cols] non-negative costs, indexed like the
                           distance grid (row = y, col = x)
        """
        if obstacle_cost is not None:
            obstacle_cost = np.array(obstacle_cost, dtype=np.float64)
            if obstacle_cost.shape != self.options.shape:
                raise ValueError(
                    f"Obstacle layer shape {obstacle_cost.shape} != field shape {self.options.shape}")
            if not np.all(np.isfinite(obstacle_cost)) or np.any(obstacle_cost < 0):
                raise ValueError("Obstacle layer must be finite and non-negative")

        with self._lock:
            self._obstacle_cost = obstacle_cost
            self._combined = None

        if self.verbose:
            state = "cleared" if obstacle_cost is None else f"set, max {obstacle_cost.max():.2f}"
            print(f"Obstacle layer {state}")

    def get_field(self, path: Path) -> CostField:
        """Cached field for this path, rebuilding only when the path or obstacle layer changed"""
        with self._lock:
            if self._field is None or not (
                    path is self._path or path.version == self._field.path_version):
                self._field = self.build(path)
                self._path = path
                self._combined = None

            if self._obstacle_cost is None:
                return self._field

            if self._combined is None:
                self._combined = self._field.with_obstacle_cost(self._obstacle_cost)
            return self._combined

    def query(self, field: CostField, x: float, y: float) -> float:
        return field.query(x, y)

    def reset(self):
        """Drop the cached field and the obstacle layer"""
        with self._lock:
            self._path = None
            self._field = None
            self._obstacle_cost = None
            self._combined = None
