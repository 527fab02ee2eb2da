# trajectory_stack/perception/sdf_kernel.py
import math

import numpy as np
from numba import njit, prange


@njit(parallel=True)
def nearest_segment_distance_kernel(grid,
                                    seg_start,
                                    seg_end,
                                    origin_x,
                                    origin_y,
                                    resolution):
    """
    A Numba kernel computing, for every grid cell centre, the distance to the
    closest segment of a polyline.

    Rows are processed in parallel (one prange iteration per row). For each
    cell centre the point is projected onto every segment, the projection
    parameter is clamped to [0, 1] and the smallest Euclidean distance is kept.
    Zero length segments reduce to point distance.

    Args:
        grid: [rows, cols] float64 output, overwritten.
        seg_start: [S, 2] segment start points (x, y).
        seg_end: [S, 2] segment end points (x, y).
        origin_x, origin_y: world position of the centre of cell (0, 0).
        resolution: cell size in metres.
    """
    rows = grid.shape[0]
    cols = grid.shape[1]
    num_segments = seg_start.shape[0]

    for r in prange(rows):
        py = origin_y + r * resolution
        for c in range(cols):
            px = origin_x + c * resolution

            best = np.inf
            for s in range(num_segments):
                ax = seg_start[s, 0]
                ay = seg_start[s, 1]
                dx = seg_end[s, 0] - ax
                dy = seg_end[s, 1] - ay

                length_sq = dx * dx + dy * dy
                if length_sq > 0.0:
                    t = ((px - ax) * dx + (py - ay) * dy) / length_sq
                    if t < 0.0:
                        t = 0.0
                    elif t > 1.0:
                        t = 1.0
                else:
                    t = 0.0

                ex = ax + t * dx - px
                ey = ay + t * dy - py
                dist_sq = ex * ex + ey * ey
                if dist_sq < best:
                    best = dist_sq

            grid[r, c] = math.sqrt(best)


def compute_distance_grid(waypoints: np.ndarray,
                          shape,
                          origin,
                          resolution: float) -> np.ndarray:
    """
    A Python "launcher" function that prepares the segment arrays and runs
    the Numba kernel.

    Args:
        waypoints: [N, 2] polyline vertices (N >= 1).
        shape: (rows, cols) of the output grid.
        origin: (x, y) world position of the centre of cell (0, 0).
        resolution: cell size in metres.

    Returns:
        [rows, cols] float64 distance grid.
    """
    points = np.ascontiguousarray(waypoints[:, :2], dtype=np.float64)
    if len(points) == 1:
        # A single vertex is a zero length segment
        seg_start = points
        seg_end = points
    else:
        seg_start = np.ascontiguousarray(points[:-1])
        seg_end = np.ascontiguousarray(points[1:])

    grid = np.empty(shape, dtype=np.float64)
    nearest_segment_distance_kernel(
        grid,
        seg_start,
        seg_end,
        float(origin[0]),
        float(origin[1]),
        float(resolution)
    )
    return grid
