"""Landing planner node: feeds data to the planner, publishes the grid and health status."""

from __future__ import annotations

import enum
import math
import threading
from dataclasses import dataclass
from typing import Callable, Iterable

import numpy as np

from avoidplan.landing import Grid, SafeLandingPlanner
from avoidplan.visualization import (
    counter_markers,
    grid_markers,
    mean_std_dev_markers,
    path_marker,
)

FRAME_ID = "local_origin"
AVOIDANCE_COMPONENT_ID = 196
STATUS_PERIOD = 0.2


class MavState(enum.IntEnum):
    """Health states reported to the flight controller."""

    UNINIT = 0
    BOOT = 1
    CALIBRATING = 2
    STANDBY = 3
    ACTIVE = 4
    CRITICAL = 5
    EMERGENCY = 6
    POWEROFF = 7
    FLIGHT_TERMINATION = 8


def check_failsafe(
    state: MavState,
    since_last_algo: float,
    since_start: float,
    timeout_critical: float,
    timeout_termination: float,
) -> MavState:
    """Escalate ``state`` when the planner has not run for too long."""
    if since_last_algo > timeout_termination and since_start > timeout_termination:
        return MavState.FLIGHT_TERMINATION
    if since_last_algo > timeout_critical and since_start > timeout_critical:
        return MavState.CRITICAL
    return state


@dataclass
class GridMessage:
    """Serialised landing grid as exchanged between the planner and the waypoint generator."""

    seq: int
    grid_size: float
    cell_size: float
    mean: np.ndarray
    land: np.ndarray
    std_dev: np.ndarray
    counter: np.ndarray
    curr_pos_index: tuple[float, float] = (0.0, 0.0)
    frame_id: str = FRAME_ID

    def __post_init__(self) -> None:
        self.mean = np.asarray(self.mean, dtype=float)
        self.land = np.asarray(self.land, dtype=int)
        self.std_dev = np.asarray(self.std_dev, dtype=float)
        self.counter = np.asarray(self.counter, dtype=int)


def grid_to_message(grid: Grid, seq: int, position_index) -> GridMessage:
    """Build a grid message from ``grid``; variance is sent as standard deviation."""
    i, j = position_index
    return GridMessage(
        seq=seq,
        grid_size=grid.grid_size,
        cell_size=grid.cell_size,
        mean=grid.mean.copy(),
        land=grid.land.copy(),
        std_dev=np.sqrt(grid.variance),
        counter=grid.counter.copy(),
        curr_pos_index=(float(i), float(j)),
    )


StatusCallback = Callable[[MavState, float], None]
GridCallback = Callable[[GridMessage], None]
MarkerCallback = Callable[[str, list], None]


class LandingPlannerNode:
    """Runs the safe landing planner once per cycle and reports its health."""

    def __init__(
        self,
        planner: SafeLandingPlanner | None = None,
        *,
        start_time: float = 0.0,
        play_rosbag: bool = False,
        publish_status: StatusCallback | None = None,
        publish_grid: GridCallback | None = None,
        publish_markers: MarkerCallback | None = None,
    ):
        self.planner = planner or SafeLandingPlanner()
        self.planner.play_rosbag = play_rosbag
        self.publish_status = publish_status
        self.publish_grid = publish_grid
        self.publish_markers = publish_markers

        self.status = MavState.UNINIT
        self.start_time = start_time
        self.last_algo_time = 0.0
        self.status_sent_time = 0.0
        self.position_received = False
        self.current_position = np.zeros(3)
        self.previous_position = np.zeros(3)

        self._lock = threading.Lock()
        self._data_ready = False
        self._waiting_since: float | None = None
        self._grid_seq = 0
        self._path_length = 0

    def update_pose(self, position) -> None:
        """Record a new vehicle position."""
        self.previous_position = self.current_position
        self.current_position = np.asarray(position, dtype=float).reshape(3).copy()
        self.position_received = True

    def submit_cloud(self, points: Iterable) -> None:
        """Hand over a point cloud already expressed in the local frame."""
        cloud = [
            (float(x), float(y), float(z))
            for x, y, z in points
            if not (math.isnan(x) or math.isnan(y) or math.isnan(z))
        ]
        with self._lock:
            self.planner.cloud = cloud
            self._data_ready = True

    def submit_raw_grid(self, message: GridMessage) -> None:
        """Hand over a recorded grid instead of a point cloud."""
        with self._lock:
            self.planner.raw_grid = message
            self._data_ready = True

    def run_cycle(self, now: float) -> GridMessage | None:
        """Run one planning cycle at time ``now``; return the published grid, if any."""
        params = self.planner.params
        self.status = MavState.ACTIVE

        with self._lock:
            ready = self._data_ready
        if not ready:
            if self._waiting_since is None:
                self._waiting_since = now
            if now - self._waiting_since > params.timeout_termination:
                self.status = MavState.FLIGHT_TERMINATION
                self._send_status(now)
            return None
        self._waiting_since = None

        self.status = check_failsafe(
            self.status,
            now - self.last_algo_time,
            now - self.start_time,
            params.timeout_critical,
            params.timeout_termination,
        )

        self.planner.set_pose(self.current_position)
        with self._lock:
            self.planner.run()
            self._data_ready = False

        self._send_markers()
        message = grid_to_message(self.planner.previous_grid, self._grid_seq, self.planner.pos_index)
        self._grid_seq += 1
        if self.publish_grid is not None:
            self.publish_grid(message)
        self.last_algo_time = now

        if now - self.status_sent_time > STATUS_PERIOD:
            self._send_status(now)
        return message

    def _send_status(self, now: float) -> None:
        if self.publish_status is not None:
            self.publish_status(self.status, now)
        self.status_sent_time = now

    def _send_markers(self) -> None:
        if self.publish_markers is None:
            return
        grid = self.planner.grid
        params = self.planner.params
        self.publish_markers("grid", grid_markers(grid, params.smoothing_size))
        self.publish_markers("grid_mean_std_dev", mean_std_dev_markers(grid, params.std_dev_thr))
        self.publish_markers("grid_counter", counter_markers(grid, params.n_points_thr))
        self.publish_markers(
            "path_actual",
            [path_marker(tuple(self.current_position), tuple(self.previous_position), self._path_length)],
        )
        self._path_length += 1