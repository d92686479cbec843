"""State machine that guides a vehicle to a safe landing spot on the landing grid."""

from __future__ import annotations

import enum
import logging
import math
from typing import Callable

import numpy as np

from avoidplan.landing import Grid

log = logging.getLogger(__name__)

LAND_SPEED = 0.7

EXPLORATION_PATTERN: tuple[tuple[int, int], ...] = (
    (1, -1),
    (1, 0),
    (1, 1),
    (0, 1),
    (-1, 1),
    (-1, 0),
    (-1, -1),
    (0, -1),
)

PublishCallback = Callable[[np.ndarray, np.ndarray, float, float], None]


class SLPState(enum.Enum):
    """States of the landing waypoint generator."""

    GOTO = enum.auto()
    ALTITUDE_CHANGE = enum.auto()
    LOITER = enum.auto()
    LAND = enum.auto()
    EVALUATE_GRID = enum.auto()
    GOTO_LAND = enum.auto()


class Transition(enum.Enum):
    """Outcome of running one state."""

    REPEAT = enum.auto()
    NEXT1 = enum.auto()
    NEXT2 = enum.auto()
    NEXT3 = enum.auto()
    ERROR = enum.auto()


_STATE_NAMES = {
    SLPState.GOTO: "GOTO",
    SLPState.ALTITUDE_CHANGE: "ALTITUDE CHANGE",
    SLPState.LOITER: "LOITER",
    SLPState.LAND: "LAND",
    SLPState.EVALUATE_GRID: "EVALUATE_GRID",
    SLPState.GOTO_LAND: "GOTO_LAND",
}

_TRANSITIONS = {
    SLPState.GOTO: {Transition.NEXT1: SLPState.ALTITUDE_CHANGE},
    SLPState.ALTITUDE_CHANGE: {Transition.NEXT1: SLPState.LOITER},
    SLPState.LOITER: {Transition.NEXT1: SLPState.EVALUATE_GRID},
    SLPState.EVALUATE_GRID: {Transition.NEXT1: SLPState.GOTO, Transition.NEXT2: SLPState.GOTO_LAND},
    SLPState.GOTO_LAND: {Transition.NEXT1: SLPState.LAND},
    SLPState.LAND: {},
}


def state_name(state: SLPState) -> str:
    """Human readable name of a state."""
    return _STATE_NAMES.get(state, "unknown")


def next_state(state: SLPState, transition: Transition) -> SLPState:
    """Return the state that follows ``state`` after ``transition``."""
    if transition is Transition.ERROR:
        return SLPState.GOTO
    return _TRANSITIONS[state].get(transition, state)


def _nan3() -> np.ndarray:
    return np.full(3, math.nan)


def _next_yaw(u: np.ndarray, v: np.ndarray) -> float:
    return math.atan2(float(v[1] - u[1]), float(v[0] - u[0]))


def _c_div(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


class LandingWaypointGenerator:
    """Decides where to fly and when to descend, based on the landing grid."""

    def __init__(
        self,
        publish: PublishCallback | None = None,
        *,
        beta: float = 0.9,
        can_land_thr: float = 0.4,
        loiter_height: float = 4.0,
        smoothing_land_cell: int = 2,
        vertical_range_error: float = 1.0,
        spiral_width: float = 2.0,
        stride: int = 1,
    ):
        self.last_setpoint: tuple[np.ndarray, np.ndarray, float, float] | None = None
        self.publish_trajectory_setpoints: PublishCallback = publish or self._record_setpoint

        self.beta = beta
        self.can_land_thr = can_land_thr
        self.loiter_height = loiter_height
        self.smoothing_land_cell = smoothing_land_cell
        self.vertical_range_error = vertical_range_error
        self.spiral_width = spiral_width
        self.stride = stride
        self.update_smoothing_size = False

        self.grid_slp = Grid()
        self.grid_slp_seq = 0
        self.pos_index = (0, 0)

        self.position = np.zeros(3)
        self.yaw = 0.0
        self.goal = _nan3()
        self.velocity_setpoint = _nan3()
        self.yaw_setpoint = math.nan
        self.yaw_speed_setpoint = math.nan
        self.is_land_waypoint = False
        self.trigger_reset = False

        self.loiter_position = _nan3()
        self.loiter_yaw = math.nan
        self.exploration_anchor = _nan3()
        self.exploration_is_active = False
        self.n_explored_pattern = -1
        self.factor_exploration = 1.0
        self.landing_radius = 2.0
        self.decision_taken = False
        self.can_land = True
        self.altitude_landing_area_percentile = math.nan
        self.start_seq_landing_decision = 0

        self.can_land_hysteresis_matrix = np.zeros((0, 0))
        self.can_land_hysteresis_result = np.zeros((0, 0), dtype=int)

        size = 2 * smoothing_land_cell + 1
        self.mask = np.zeros((size, size), dtype=int)
        self.initialize_mask()

        self._state = SLPState.GOTO
        self.prev_slp_state = SLPState.GOTO
        self.state_changed = False

    @property
    def state(self) -> SLPState:
        return self._state

    def _record_setpoint(self, position, velocity, yaw, yaw_speed) -> None:
        """Keep the latest setpoint when no publisher is attached."""
        self.last_setpoint = (np.array(position, dtype=float), np.array(velocity, dtype=float), yaw, yaw_speed)
        log.error("publish_trajectory_setpoints not set in LandingWaypointGenerator")

    def initialize_mask(self) -> None:
        """Fill the mask with a disc of radius ``smoothing_land_cell`` cells."""
        slc = self.smoothing_land_cell
        rows, cols = self.mask.shape
        i, j = np.meshgrid(np.arange(rows), np.arange(cols), indexing="ij")
        self.mask = (np.hypot(i - slc, j - slc) < slc + 0.5).astype(int)

    def calculate_waypoint(self) -> None:
        """Run one cycle of the state machine."""
        self.update_state()
        self.iterate_once()
        if self._state != self.prev_slp_state:
            log.info("[WGN] Update to %s state", state_name(self._state))

    def update_state(self) -> None:
        """Keep the mask and hysteresis matrices sized, and reset when not landing."""
        size = 2 * self.smoothing_land_cell + 1
        if self.update_smoothing_size or self.mask.shape[0] != size:
            self.mask = np.zeros((size, size), dtype=int)
            self.initialize_mask()
            self.update_smoothing_size = False

        land_shape = self.grid_slp.land.shape
        if land_shape[0] != self.can_land_hysteresis_matrix.shape[0]:
            self.can_land_hysteresis_matrix = np.zeros(land_shape)
            self.can_land_hysteresis_result = np.zeros(land_shape, dtype=int)

        if not self.is_land_waypoint:
            self.decision_taken = False
            self.can_land = True
            self.can_land_hysteresis_matrix.fill(0.0)
            self.exploration_is_active = False
            self.n_explored_pattern = -1
            self.factor_exploration = 1.0
            self.landing_radius = 2.0
            log.info("[WGN] Not a land waypoint")

    def iterate_once(self) -> None:
        """Run the current state and apply the resulting transition."""
        transition = self._run_current_state()
        if transition is not Transition.REPEAT:
            self.prev_slp_state = self._state
            self.state_changed = True
            self._state = next_state(self._state, transition)

    def _run_current_state(self) -> Transition:
        if self.trigger_reset:
            self.trigger_reset = False
            return Transition.ERROR
        handlers = {
            SLPState.GOTO: self._run_goto,
            SLPState.ALTITUDE_CHANGE: self._run_altitude_change,
            SLPState.LOITER: self._run_loiter,
            SLPState.LAND: self._run_land,
            SLPState.EVALUATE_GRID: self._run_evaluate_grid,
            SLPState.GOTO_LAND: self._run_goto_land,
        }
        transition = handlers[self._state]()
        self.state_changed = False
        return transition

    def _run_goto(self) -> Transition:
        if self.exploration_is_active:
            self.landing_radius = 0.5
            self.yaw_setpoint = _next_yaw(self.position, self.goal)

        self.publish_trajectory_setpoints(
            self.goal.copy(), self.velocity_setpoint.copy(), self.yaw_setpoint, self.yaw_speed_setpoint
        )
        self.altitude_landing_area_percentile = self.landing_area_height_percentile(80.0)
        self.can_land_hysteresis_matrix.fill(0.0)

        within = self.within_landing_radius()
        if within and self.is_land_waypoint and not self.decision_taken:
            return Transition.NEXT1

        if within and self.is_land_waypoint and self.decision_taken and not self.can_land:
            if not self.exploration_is_active:
                self.exploration_anchor = self.loiter_position.copy()
                self.exploration_is_active = True
            self.n_explored_pattern += 1
            if self.n_explored_pattern == len(EXPLORATION_PATTERN):
                self.n_explored_pattern = 0
                self.factor_exploration += 1.0
            offset = (
                self.spiral_width
                * self.factor_exploration
                * 2.0
                * float(self.smoothing_land_cell)
                * self.grid_slp.cell_size
            )
            dx, dy = EXPLORATION_PATTERN[self.n_explored_pattern]
            anchor = self.exploration_anchor
            self.goal = np.array([anchor[0] + offset * dx, anchor[1] + offset * dy, anchor[2]])
            self.velocity_setpoint = _nan3()
            self.decision_taken = False
        return Transition.REPEAT

    def _run_goto_land(self) -> Transition:
        self.publish_trajectory_setpoints(
            self.goal.copy(),
            self.velocity_setpoint.copy(),
            _next_yaw(self.position, self.goal),
            self.yaw_speed_setpoint,
        )
        if self.within_landing_radius():
            return Transition.NEXT1
        return Transition.REPEAT

    def _run_altitude_change(self) -> Transition:
        if self.state_changed:
            self.loiter_yaw = self.yaw
        self.goal = self.goal.copy()
        self.goal[2] = math.nan
        self.altitude_landing_area_percentile = self.landing_area_height_percentile(80.0)
        height = abs(self.position[2] - self.altitude_landing_area_percentile)
        direction = 1.0 if height - self.loiter_height < 0.0 else -1.0
        self.velocity_setpoint = self.velocity_setpoint.copy()
        self.velocity_setpoint[2] = direction * LAND_SPEED
        self.publish_trajectory_setpoints(
            self.goal.copy(), self.velocity_setpoint.copy(), self.loiter_yaw, self.yaw_speed_setpoint
        )
        if self.in_vertical_range():
            self.start_seq_landing_decision = self.grid_slp_seq
            return Transition.NEXT1
        return Transition.REPEAT

    def _run_loiter(self) -> Transition:
        if self.state_changed:
            self.loiter_position = self.position.copy()
            self.goal = self.loiter_position.copy()

        self.publish_trajectory_setpoints(self.loiter_position.copy(), _nan3(), self.loiter_yaw, math.nan)

        if abs(self.grid_slp_seq - self.start_seq_landing_decision) <= 20:
            land = self.grid_slp.land.astype(float)
            self.can_land_hysteresis_matrix = (
                self.beta * self.can_land_hysteresis_matrix + (1.0 - self.beta) * land
            )
            return Transition.REPEAT

        matrix = self.can_land_hysteresis_matrix
        matrix = np.where(matrix <= self.can_land_thr, 0.0, matrix)
        matrix = np.where(matrix > self.can_land_thr, 1.0, matrix)
        self.can_land_hysteresis_matrix = matrix
        self.can_land_hysteresis_result = matrix.astype(int)
        return Transition.NEXT1

    def _run_land(self) -> Transition:
        if self.state_changed:
            self.loiter_position = self.position.copy()
            self.loiter_yaw = self.yaw
        self.loiter_position = self.loiter_position.copy()
        self.loiter_position[2] = math.nan
        vel_sp = _nan3()
        vel_sp[2] = -LAND_SPEED
        self.publish_trajectory_setpoints(self.loiter_position.copy(), vel_sp, self.loiter_yaw, math.nan)
        return Transition.REPEAT

    def _run_evaluate_grid(self) -> Transition:
        self.publish_trajectory_setpoints(self.loiter_position.copy(), _nan3(), self.loiter_yaw, math.nan)
        self.landing_radius = 0.5

        rows, cols = self.grid_slp.land.shape
        slc = self.smoothing_land_cell
        center = (rows // 2, cols // 2)

        self.can_land = self.evaluate_patch((center[0] - slc, center[1] - slc))
        if self.can_land:
            self.decision_taken = True
            return Transition.NEXT2

        n_iterations = _c_div(1 + _c_div(rows - (2 * slc + 1), self.stride), 2)
        cell_size = self.grid_slp.cell_size
        for i in range(1, n_iterations):
            for dx, dy in EXPLORATION_PATTERN:
                offset = (
                    center[0] + dx * i * self.stride - slc,
                    center[1] + dy * i * self.stride - slc,
                )
                self.can_land = self.evaluate_patch(offset)
                if self.can_land:
                    self.decision_taken = True
                    self.goal = np.array(
                        [
                            self.position[0] + (offset[0] + slc - rows // 2) * cell_size,
                            self.position[1] + (offset[1] + slc - cols // 2) * cell_size,
                            self.position[2],
                        ]
                    )
                    self.velocity_setpoint = self.velocity_setpoint.copy()
                    self.velocity_setpoint[2] = math.nan
                    log.info("[WGN] Found landing area in grid at %s", self.goal)
                    return Transition.NEXT2
        self.decision_taken = True
        return Transition.NEXT1

    def evaluate_patch(self, left_upper_corner) -> bool:
        """True if every masked cell of the patch at ``left_upper_corner`` is landable."""
        row, col = (int(v) for v in left_upper_corner)
        height, width = self.mask.shape
        result = self.can_land_hysteresis_result
        if row < 0 or col < 0 or row + height > result.shape[0] or col + width > result.shape[1]:
            raise IndexError(f"patch at {(row, col)} does not fit in a grid of shape {result.shape}")
        block = result[row : row + height, col : col + width]
        return int((block * self.mask).sum()) == int(self.mask.sum())

    def within_landing_radius(self) -> bool:
        """True if the goal is horizontally within the landing radius."""
        return bool(np.linalg.norm(self.goal[:2] - self.position[:2]) < self.landing_radius)

    def in_vertical_range(self) -> bool:
        """True if the height above the landing area is close to the loiter height."""
        height = abs(self.position[2] - self.altitude_landing_area_percentile)
        return bool(abs(height - self.loiter_height) < self.vertical_range_error)

    def landing_area_height_percentile(self, percentile: float) -> float:
        """Height percentile of the cell means in the central landing area."""
        slc = self.smoothing_land_cell
        center = self.grid_slp.land.shape[0] // 2
        block = self.grid_slp.mean[center - slc : center + slc + 1, center - slc : center + slc + 1]
        values = sorted(float(v) for v in block.ravel())
        index = int(math.floor(percentile / 100.0 * len(values) + 0.5))
        return values[index]