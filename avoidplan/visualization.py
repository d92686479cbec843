"""Marker descriptions for displaying the landing grid."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

FRAME_ID = "local_origin"


@dataclass
class Marker:
    """A display marker: a cube per cell or a line strip for the path."""

    id: int
    kind: str = "cube"
    position: tuple[float, float, float] = (0.0, 0.0, 0.0)
    scale: tuple[float, float, float] = (0.0, 0.0, 0.0)
    color: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    points: list = field(default_factory=list)
    frame_id: str = FRAME_ID


def hsv_to_rgb(h: float, s: float, v: float) -> tuple[float, float, float]:
    """Convert a hue in degrees with saturation and value to RGB."""
    chroma = v * s
    h_prime = math.fmod(h / 60.0, 6)
    x = chroma * (1 - abs(math.fmod(h_prime, 2) - 1))
    m = v - chroma
    if 0 <= h_prime < 1:
        rgb = (chroma, x, 0.0)
    elif 1 <= h_prime < 2:
        rgb = (x, chroma, 0.0)
    elif 2 <= h_prime < 3:
        rgb = (0.0, chroma, x)
    elif 3 <= h_prime < 4:
        rgb = (0.0, x, chroma)
    elif 4 <= h_prime < 5:
        rgb = (x, 0.0, chroma)
    elif 5 <= h_prime < 6:
        rgb = (chroma, 0.0, x)
    else:
        rgb = (0.0, 0.0, 0.0)
    return tuple(c + m for c in rgb)


def _cells(grid):
    cell_size = grid.cell_size
    grid_min, _ = grid.grid_limits()
    n = grid.row_col_size
    for i in range(n):
        for j in range(n):
            x = i * cell_size + grid_min[0] + cell_size / 2.0
            y = j * cell_size + grid_min[1] + cell_size / 2.0
            yield i, j, x, y


def mean_std_dev_markers(grid, std_dev_threshold: float) -> list[Marker]:
    """Cubes at each cell's mean height, coloured by standard deviation."""
    markers = []
    for index, (i, j, x, y) in enumerate(_cells(grid)):
        std_dev = math.sqrt(grid.variance[i, j])
        h = 360.0 * std_dev / std_dev_threshold
        r, g, b = hsv_to_rgb(h, 1.0, 1.0)
        if std_dev > std_dev_threshold:
            r, g, b = 0.0, 0.0, 0.0
        markers.append(
            Marker(index, position=(x, y, float(grid.mean[i, j])),
                   scale=(grid.cell_size, grid.cell_size, 0.1), color=(r, g, b, 0.5))
        )
    return markers


def counter_markers(grid, n_points_threshold: float) -> list[Marker]:
    """Cubes coloured by the number of points in each cell."""
    markers = []
    counter_max = 400.0
    for index, (i, j, x, y) in enumerate(_cells(grid)):
        h = 360.0 * (float(grid.counter[i, j]) - n_points_threshold) / (counter_max - n_points_threshold)
        r, g, b = hsv_to_rgb(h, 1.0, 1.0)
        markers.append(
            Marker(index, position=(x, y, 0.0), scale=(grid.cell_size, grid.cell_size, 0.1), color=(r, g, b, 0.5))
        )
    return markers


def grid_markers(grid, smoothing_size: float) -> list[Marker]:
    """Green cubes for landable cells, red otherwise; centre cells drawn taller."""
    markers = []
    offset = grid.land.shape[0] // 2
    for index, (i, j, x, y) in enumerate(_cells(grid)):
        color = (0.0, 1.0, 0.0, 0.5) if grid.land[i, j] else (1.0, 0.0, 0.0, 0.5)
        centre = (offset - smoothing_size <= i < offset + smoothing_size
                  and offset - smoothing_size <= j < offset + smoothing_size)
        markers.append(
            Marker(index, position=(x, y, 0.0),
                   scale=(grid.cell_size, grid.cell_size, 0.8 if centre else 0.1), color=color)
        )
    return markers


def path_marker(pos, last_pos, marker_id: int) -> Marker:
    """A green line segment from the previous to the current position."""
    return Marker(
        marker_id, kind="line_strip", scale=(0.03, 0.0, 0.0), color=(0.0, 1.0, 0.0, 1.0),
        points=[tuple(last_pos), tuple(pos)],
    )