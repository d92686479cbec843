"""Node wrapping the landing waypoint generator: message handling and setpoint building."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Sequence

import numpy as np

from avoidplan.status import GridMessage
from avoidplan.visualization import Marker
from avoidplan.waypoint import LandingWaypointGenerator

log = logging.getLogger(__name__)

FRAME_ID = "local_origin"
MAV_CMD_NAV_LAND = 21


def _nan3() -> np.ndarray:
    return np.full(3, math.nan)


@dataclass
class TrajectoryPoint:
    """One point of a trajectory message; unused fields are NaN."""

    position: np.ndarray = field(default_factory=_nan3)
    velocity: np.ndarray = field(default_factory=_nan3)
    acceleration_or_force: np.ndarray = field(default_factory=_nan3)
    yaw: float = math.nan
    yaw_rate: float = math.nan

    def __post_init__(self) -> None:
        self.position = np.asarray(self.position, dtype=float).reshape(3).copy()
        self.velocity = np.asarray(self.velocity, dtype=float).reshape(3).copy()
        self.acceleration_or_force = np.asarray(self.acceleration_or_force, dtype=float).reshape(3).copy()
        self.yaw = float(self.yaw)
        self.yaw_rate = float(self.yaw_rate)


@dataclass
class TrajectorySetpoint:
    """Waypoint trajectory sent to the flight controller."""

    points: list[TrajectoryPoint]
    point_valid: list[bool]
    time_horizon: list[float] = field(default_factory=lambda: [math.nan] * 5)
    representation: int = 0
    frame_id: str = FRAME_ID


def build_trajectory_setpoint(position, velocity, yaw: float, yaw_speed: float) -> TrajectorySetpoint:
    """Build a setpoint whose first point is valid when an xy position or velocity is finite."""
    point_1 = TrajectoryPoint(position=position, velocity=velocity, yaw=yaw, yaw_rate=yaw_speed)
    xy_pos_valid = bool(np.isfinite(point_1.position[:2]).all())
    xy_vel_valid = bool(np.isfinite(point_1.velocity[:2]).all())
    # The z component is not checked: a vertical setpoint may be left unset.
    first_valid = xy_pos_valid or xy_vel_valid
    points = [point_1] + [TrajectoryPoint() for _ in range(4)]
    return TrajectorySetpoint(points=points, point_valid=[first_valid, False, False, False, False])


def yaw_from_quaternion(x: float, y: float, z: float, w: float) -> float:
    """Yaw angle in radians of the rotation given by a quaternion."""
    d = x * x + y * y + z * z + w * w
    s = 2.0 / d
    m00 = 1.0 - (y * y + z * z) * s
    m10 = (x * y + w * z) * s
    m20 = (x * z - w * y) * s
    if abs(m20) >= 1.0:
        return 0.0
    return math.atan2(m10, m00)


TrajectoryCallback = Callable[[TrajectorySetpoint], None]
MarkerCallback = Callable[[str, list], None]


class WaypointGeneratorNode:
    """Feeds vehicle, mission and grid data into the landing waypoint generator."""

    def __init__(
        self,
        generator: LandingWaypointGenerator | None = None,
        *,
        publish_trajectory: TrajectoryCallback | None = None,
        publish_markers: MarkerCallback | None = None,
    ):
        self.generator = generator or LandingWaypointGenerator()
        self.generator.publish_trajectory_setpoints = self._publish_setpoints
        self.publish_trajectory = publish_trajectory
        self.publish_markers = publish_markers
        self.goal_visualization = _nan3()
        self.grid_received = False
        self.last_setpoint: TrajectorySetpoint | None = None
        self._goal_marker_id = 0

    def _publish_setpoints(self, position, velocity, yaw, yaw_speed) -> None:
        setpoint = build_trajectory_setpoint(position, velocity, yaw, yaw_speed)
        self.last_setpoint = setpoint
        if self.publish_trajectory is not None:
            self.publish_trajectory(setpoint)

    def configure(
        self,
        beta: float,
        can_land_thr: float,
        loiter_height: float,
        smoothing_land_cell: int,
        vertical_range_error: float,
        spiral_width: float,
    ) -> None:
        """Apply new tuning parameters to the generator."""
        wg = self.generator
        wg.beta = float(beta)
        wg.can_land_thr = float(can_land_thr)
        wg.loiter_height = float(loiter_height)
        wg.smoothing_land_cell = int(smoothing_land_cell)
        wg.vertical_range_error = float(vertical_range_error)
        wg.spiral_width = float(spiral_width)
        if wg.mask.shape[0] != 2 * wg.smoothing_land_cell + 1:
            wg.update_smoothing_size = True

    def on_position(self, position, orientation) -> None:
        """Update position and yaw from a pose; ``orientation`` is (x, y, z, w)."""
        self.generator.position = np.asarray(position, dtype=float).reshape(3).copy()
        self.generator.yaw = yaw_from_quaternion(*orientation)

    def on_trajectory(
        self,
        point_1: TrajectoryPoint,
        point_2: TrajectoryPoint,
        point_valid: Sequence[bool],
        command: Sequence[int],
    ) -> None:
        """Take a new goal from the flight controller's desired trajectory."""
        wg = self.generator
        distance = float(np.linalg.norm(point_2.position - self.goal_visualization))
        update = distance > 0.01 or bool(np.isnan(wg.goal[:2]).any())
        if update and point_valid[0]:
            wg.goal = point_1.position.copy()
            wg.velocity_setpoint = point_1.velocity.copy()
            wg.is_land_waypoint = command[1] == MAV_CMD_NAV_LAND
            log.info("[WGN] Set new goal from FCU %s", wg.goal)
        if point_valid[1]:
            self.goal_visualization = point_2.position.copy()
            wg.yaw_setpoint = point_2.yaw
            wg.yaw_speed_setpoint = point_2.yaw_rate

    def on_state(self, mode: str, armed: bool) -> None:
        """React to a flight mode or arming change."""
        wg = self.generator
        if mode == "AUTO.LAND":
            wg.is_land_waypoint = True
        elif mode != "AUTO.MISSION":
            wg.is_land_waypoint = False
            wg.trigger_reset = True
        if not armed:
            wg.is_land_waypoint = False
            wg.trigger_reset = True

    def on_grid(self, message: GridMessage) -> None:
        """Copy a received landing grid into the generator."""
        wg = self.generator
        grid = wg.grid_slp
        wg.grid_slp_seq = message.seq
        if grid.grid_size != message.grid_size or grid.cell_size != message.cell_size:
            grid.resize(message.grid_size, message.cell_size)
        rows, cols = message.mean.shape
        grid.mean[:rows, :cols] = message.mean
        grid.land[:rows, :cols] = message.land
        wg.pos_index = (int(message.curr_pos_index[0]), int(message.curr_pos_index[1]))
        grid.set_filter_limits(wg.position)
        self.grid_received = True

    def run_cycle(self) -> TrajectorySetpoint | None:
        """Run the generator once a grid has arrived; return the setpoint it produced."""
        if not self.grid_received:
            return None
        self.last_setpoint = None
        self.generator.calculate_waypoint()
        if self.publish_markers is not None:
            self.publish_markers("land_hysteresis", self._landing_area_markers())
            self.publish_markers("goal_position", [self._goal_marker()])
        self.grid_received = False
        return self.last_setpoint

    def _landing_area_markers(self) -> list[Marker]:
        wg = self.generator
        grid = wg.grid_slp
        cell_size = grid.cell_size
        grid_min, _ = grid.grid_limits()
        offset = grid.land.shape[0] // 2
        slc = wg.smoothing_land_cell

        result = wg.can_land_hysteresis_result
        kernel = np.zeros_like(result)
        height, width = wg.mask.shape
        kernel[offset - slc : offset - slc + height, offset - slc : offset - slc + width] = wg.mask
        masked = result * kernel

        markers = []
        for k in range(offset - slc, offset + slc + 1):
            for l in range(offset - slc, offset + slc + 1):
                color = (0.0, 1.0, 0.0, 0.5) if masked[k, l] else (1.0, 0.0, 0.0, 0.5)
                markers.append(
                    Marker(
                        len(markers),
                        position=(grid_min[0] + cell_size * k, grid_min[1] + cell_size * l, 1.0),
                        scale=(cell_size, cell_size, 0.1),
                        color=color,
                    )
                )
        return markers

    def _goal_marker(self) -> Marker:
        marker = Marker(
            self._goal_marker_id,
            kind="sphere",
            position=tuple(float(v) for v in self.generator.goal),
            scale=(0.5, 0.5, 0.5),
            color=(1.0, 1.0, 0.0, 1.0),
        )
        self._goal_marker_id += 1
        return marker