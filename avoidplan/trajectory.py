"""Jerk-limited trajectory simulation toward a goal direction."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

FLT_EPSILON = 1.1920929e-07


def _vec(values) -> np.ndarray:
    return np.asarray(values, dtype=float).reshape(3)


def _normalized(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm > 0.0:
        return vector / norm
    return np.zeros_like(vector, dtype=float)


def norm_clamp(vector, max_norm: float) -> np.ndarray:
    """Return ``vector`` scaled down so that its norm does not exceed ``max_norm``."""
    vector = np.asarray(vector, dtype=float)
    norm = float(np.linalg.norm(vector))
    if norm > max_norm:
        return vector * (max_norm / norm)
    return vector.copy()


def _xy_norm_z_clamp(value: np.ndarray, max_xy_norm: float, min_z: float, max_z: float) -> np.ndarray:
    result = np.empty(3)
    result[:2] = norm_clamp(value[:2], max_xy_norm)
    result[2] = min(max_z, max(min_z, float(value[2])))
    return result


@dataclass
class SimulationLimits:
    """Kinematic limits used by the simulator."""

    max_z_velocity: float = math.nan
    min_z_velocity: float = math.nan
    max_xy_velocity_norm: float = math.nan
    max_acceleration_norm: float = math.nan
    max_jerk_norm: float = math.nan


@dataclass
class SimulationState:
    """Time, position, velocity and acceleration of the simulated vehicle."""

    time: float = 0.0
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    acceleration: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.position = _vec(self.position)
        self.velocity = _vec(self.velocity)
        self.acceleration = _vec(self.acceleration)
        self.time = np.float32(self.time)


class TrajectorySimulator:
    """Simulates a vehicle accelerating toward a velocity setpoint under jerk limits."""

    def __init__(self, config: SimulationLimits, start: SimulationState, step_time: float = 0.1):
        self.config = config
        self.start = start
        self.step_time = np.float32(step_time)

    def generate_trajectory(self, goal_direction, simulation_duration: float) -> list[SimulationState]:
        """Return the simulated states for ``simulation_duration`` seconds."""
        cfg = self.config
        num_steps = int(math.ceil(np.float32(simulation_duration) / self.step_time))
        timepoints: list[SimulationState] = []
        if num_steps <= 0:
            return timepoints

        unit_goal = _normalized(_vec(goal_direction))
        z_limit = cfg.max_z_velocity if unit_goal[2] > 0 else cfg.min_z_velocity
        desired_velocity = _xy_norm_z_clamp(
            unit_goal * math.hypot(cfg.max_xy_velocity_norm, z_limit),
            cfg.max_xy_velocity_norm,
            cfg.min_z_velocity,
            cfg.max_z_velocity,
        )

        max_accel_norm = min(2 * math.sqrt(cfg.max_jerk_norm), cfg.max_acceleration_norm)
        desired_norm = float(np.linalg.norm(desired_velocity))
        with np.errstate(divide="ignore", invalid="ignore"):
            numerator = math.sqrt(max_accel_norm**2 + cfg.max_jerk_norm * desired_norm) - max_accel_norm
            p_constant = float(np.float64(numerator) / np.float64(desired_norm) * 10)
        d_constant = 2 * math.sqrt(p_constant) if p_constant >= 0 else math.nan

        run_state = self.start
        for _ in range(num_steps):
            single_step_time = self.step_time
            damped_jerk = self.jerk_for_velocity_setpoint(
                p_constant, d_constant, cfg.max_jerk_norm, desired_velocity, run_state
            )
            requested_accel = run_state.acceleration + float(single_step_time) * damped_jerk
            jerk = damped_jerk
            if float(requested_accel @ requested_accel) > max_accel_norm**2:
                jerk_norm = float(np.linalg.norm(damped_jerk))
                with np.errstate(divide="ignore", invalid="ignore"):
                    single_step_time = np.float32(
                        np.float64(max_accel_norm - float(np.linalg.norm(run_state.acceleration)))
                        / np.float64(jerk_norm)
                    )
                if not single_step_time > FLT_EPSILON or single_step_time > self.step_time:
                    jerk = np.zeros(3)
                    single_step_time = self.step_time
            run_state = self.simulate_step_constant_jerk(run_state, jerk, single_step_time)
            timepoints.append(run_state)
        return timepoints

    @staticmethod
    def simulate_step_constant_jerk(state: SimulationState, jerk, step_time: float) -> SimulationState:
        """Advance ``state`` by ``step_time`` seconds under constant ``jerk``."""
        jerk = _vec(jerk)
        t = float(step_time)
        position = (
            state.position + t * state.velocity + 0.5 * t * t * state.acceleration + (1.0 / 6.0) * t**3 * jerk
        )
        velocity = state.velocity + state.acceleration * t + 0.5 * t * t * jerk
        acceleration = state.acceleration + t * jerk
        time = np.float32(state.time) + np.float32(step_time)
        return SimulationState(time=time, position=position, velocity=velocity, acceleration=acceleration)

    @staticmethod
    def jerk_for_velocity_setpoint(
        p_constant: float, d_constant: float, max_jerk_norm: float, desired_velocity, state: SimulationState
    ) -> np.ndarray:
        """PD controller on velocity, giving a jerk clamped to ``max_jerk_norm``."""
        accel_diff = -state.acceleration
        velocity_diff = _vec(desired_velocity) - state.velocity
        return norm_clamp(velocity_diff * p_constant + accel_diff * d_constant, max_jerk_norm)