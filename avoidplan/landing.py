"""Height-map grid and the safe landing area decision."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


def compute_online_mean_variance(prev_mean: float, prev_variance: float, new_value: float, seq: float):
    """Update a running mean and population variance with one new sample (Welford)."""
    mean = (prev_mean * (seq - 1) + new_value) / seq
    delta = new_value - prev_mean
    delta2 = new_value - mean
    prev_m2 = prev_variance * (seq - 1) if (seq - 1) >= 0 else 0.0
    m2 = prev_m2 + delta * delta2
    variance = m2 / seq if seq > 0 else math.nan
    return mean, variance


class Grid:
    """Square grid of cells holding height mean, variance, point count and landability."""

    def __init__(self, grid_size: float = 10.0, cell_size: float = 1.0):
        self.position = np.zeros(3)
        self.resize(grid_size, cell_size)

    @property
    def row_col_size(self) -> int:
        return int(round(self.grid_size / self.cell_size))

    def resize(self, grid_size: float, cell_size: float) -> None:
        self.grid_size = float(grid_size)
        self.cell_size = float(cell_size)
        n = self.row_col_size
        self.mean = np.zeros((n, n))
        self.variance = np.zeros((n, n))
        self.counter = np.zeros((n, n), dtype=int)
        self.land = np.zeros((n, n), dtype=int)

    def reset(self) -> None:
        self.mean.fill(0.0)
        self.variance.fill(0.0)
        self.counter.fill(0)
        self.land.fill(0)

    def set_filter_limits(self, position) -> None:
        self.position = np.asarray(position, dtype=float).reshape(3).copy()

    def grid_limits(self):
        """Return the (min, max) xy corners of the grid around the filter position."""
        half = self.grid_size / 2.0
        centre = self.position[:2]
        return centre - half, centre + half

    def combine(self, other: "Grid", alpha: float) -> None:
        """Low-pass filter mean and variance against ``other``."""
        if other.mean.shape != self.mean.shape:
            return
        self.mean = alpha * self.mean + (1.0 - alpha) * other.mean
        self.variance = alpha * self.variance + (1.0 - alpha) * other.variance

    def copy(self) -> "Grid":
        clone = Grid(self.grid_size, self.cell_size)
        clone.position = self.position.copy()
        clone.mean = self.mean.copy()
        clone.variance = self.variance.copy()
        clone.counter = self.counter.copy()
        clone.land = self.land.copy()
        return clone


@dataclass
class LandingParams:
    """Tunable parameters of the landing planner."""

    n_points_thr: float = 20.0
    std_dev_thr: float = 0.1
    smoothing_size: int = 2
    mean_diff_thr: float = 0.15
    max_n_mean_diff_cells: int = 2
    grid_size: float = 10.0
    cell_size: float = 1.0
    alpha: float = 0.9
    timeout_critical: float = 0.5
    timeout_termination: float = 1.0
    min_n_land_cells: int = 8


class SafeLandingPlanner:
    """Bins a point cloud into a grid and decides which cells are safe to land on."""

    def __init__(self, params: LandingParams | None = None):
        self.params = params or LandingParams()
        self.grid = Grid(self.params.grid_size, self.params.cell_size)
        self.previous_grid = Grid(self.params.grid_size, self.params.cell_size)
        self.n_lines_padding = self.params.smoothing_size
        self.size_update = False
        self.play_rosbag = False
        self.position = np.zeros(3)
        self.cloud: list = []
        self.raw_grid = None
        self.visualization_cloud: list[tuple[float, float, float, float]] = []
        self.grid_seq = 0
        self.pos_index = (0, 0)

    def run(self) -> None:
        if self.size_update:
            self.grid.resize(self.params.grid_size, self.params.cell_size)
            self.previous_grid.resize(self.params.grid_size, self.params.cell_size)
            self.n_lines_padding = self.params.smoothing_size
            self.size_update = False
        if self.play_rosbag:
            self.process_raw_grid()
        else:
            self.process_pointcloud()
        self.grid.combine(self.previous_grid, self.params.alpha)
        self.is_landing_possible()

    def process_pointcloud(self) -> None:
        self.previous_grid, self.grid = self.grid, self.previous_grid
        self.grid.set_filter_limits(self.position)
        self.grid_seq += 1
        self.grid.reset()
        self.visualization_cloud = []
        cells_per_row = self.params.grid_size / self.params.cell_size
        for x, y, z in self.cloud:
            if math.isnan(x) or math.isnan(y) or math.isnan(z):
                continue
            if not self.is_inside_grid(x, y):
                continue
            i, j = self.compute_grid_indexes(x, y)
            self.grid.counter[i, j] += 1
            mean, variance = compute_online_mean_variance(
                self.grid.mean[i, j], self.grid.variance[i, j], z, float(self.grid.counter[i, j])
            )
            self.grid.mean[i, j] = mean
            self.grid.variance[i, j] = variance
            self.visualization_cloud.append((x, y, z, i * cells_per_row + j))

    def process_raw_grid(self) -> None:
        raw = self.raw_grid
        self.grid_seq = raw.seq
        self.previous_grid, self.grid = self.grid, self.previous_grid
        self.grid.reset()
        self.grid.set_filter_limits(self.position)
        if self.grid.grid_size != raw.grid_size or self.grid.cell_size != raw.cell_size:
            self.grid.resize(raw.grid_size, raw.cell_size)
        mean = np.asarray(raw.mean, dtype=float)
        rows, cols = mean.shape
        self.grid.mean[:rows, :cols] = mean
        self.grid.variance[:rows, :cols] = np.asarray(raw.std_dev, dtype=float) ** 2
        self.grid.counter[:rows, :cols] = np.asarray(raw.counter, dtype=int)

    def is_landing_possible(self) -> None:
        grid = self.grid
        p = self.params
        with np.errstate(invalid="ignore"):
            unsafe = (grid.counter < p.n_points_thr) | (np.sqrt(grid.variance) > p.std_dev_thr)
        grid.land = np.where(unsafe, 0, 1)

        pad = self.n_lines_padding
        if pad > 0:
            n = grid.row_col_size
            land_padded = np.pad(grid.land, pad)
            mean_padded = np.pad(grid.mean, pad)
            centre = mean_padded[pad : pad + n, pad : pad + n]
            land_acc = np.zeros((n, n), dtype=int)
            mean_acc = np.zeros((n, n), dtype=int)
            for k in range(-pad, pad + 1):
                for t in range(-pad, pad + 1):
                    window = (slice(pad + k, pad + k + n), slice(pad + t, pad + t + n))
                    land_acc += land_padded[window]
                    mean_acc += np.abs(centre - mean_padded[window]) > p.mean_diff_thr
            land_acc = np.where(land_acc <= p.min_n_land_cells, 0, land_acc)
            land_acc = np.where(land_acc > p.min_n_land_cells, 1, land_acc)
            mean_acc = np.where(mean_acc <= p.max_n_mean_diff_cells, 1, mean_acc)
            mean_acc = np.where(mean_acc > p.max_n_mean_diff_cells, 0, mean_acc)
            grid.land = mean_acc * land_acc
        self.pos_index = self.compute_grid_indexes(self.position[0], self.position[1])

    def set_pose(self, position) -> None:
        self.position = np.asarray(position, dtype=float).reshape(3).copy()

    def is_inside_grid(self, x: float, y: float) -> bool:
        grid_min, grid_max = self.grid.grid_limits()
        return grid_min[0] < x < grid_max[0] and grid_min[1] < y < grid_max[1]

    def compute_grid_indexes(self, x: float, y: float) -> tuple[int, int]:
        grid_min, _ = self.grid.grid_limits()
        return (
            int(math.floor((x - grid_min[0]) / self.grid.cell_size)),
            int(math.floor((y - grid_min[1]) / self.grid.cell_size)),
        )

    def set_params(self, params: LandingParams) -> None:
        self.params = params
        self.size_update = (
            self.grid.grid_size != params.grid_size
            or self.grid.cell_size != params.cell_size
            or self.n_lines_padding != params.smoothing_size
        )