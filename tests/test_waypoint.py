import math

import numpy as np
import pytest

from avoidplan.waypoint import (
    EXPLORATION_PATTERN,
    LAND_SPEED,
    LandingWaypointGenerator,
    SLPState,
    Transition,
    next_state,
    state_name,
)


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, position, velocity, yaw, yaw_speed):
        self.calls.append((np.array(position), np.array(velocity), yaw, yaw_speed))


def make_generator():
    recorder = Recorder()
    gen = LandingWaypointGenerator(
        recorder,
        beta=0.9,
        can_land_thr=0.4,
        loiter_height=4.0,
        smoothing_land_cell=2,
        vertical_range_error=1.0,
        spiral_width=1.0,
    )
    gen.position = np.array([0.0, 0.0, 4.0])
    gen.goal = np.array([0.3, 0.0, 10.0])
    gen.is_land_waypoint = True
    return gen, recorder


def drive_to_loiter(gen):
    gen.calculate_waypoint()
    assert gen.state is SLPState.ALTITUDE_CHANGE
    gen.calculate_waypoint()
    assert gen.state is SLPState.LOITER


def loiter_and_decide(gen, n=10):
    for _ in range(n):
        gen.calculate_waypoint()
        assert gen.state is SLPState.LOITER
    gen.grid_slp_seq = gen.start_seq_landing_decision + 21
    gen.calculate_waypoint()
    assert gen.state is SLPState.EVALUATE_GRID


def test_state_names():
    assert state_name(SLPState.GOTO) == "GOTO"
    assert state_name(SLPState.ALTITUDE_CHANGE) == "ALTITUDE CHANGE"
    assert state_name(SLPState.EVALUATE_GRID) == "EVALUATE_GRID"
    assert state_name(SLPState.GOTO_LAND) == "GOTO_LAND"


@pytest.mark.parametrize(
    "state, transition, expected",
    [
        (SLPState.GOTO, Transition.NEXT1, SLPState.ALTITUDE_CHANGE),
        (SLPState.ALTITUDE_CHANGE, Transition.NEXT1, SLPState.LOITER),
        (SLPState.LOITER, Transition.NEXT1, SLPState.EVALUATE_GRID),
        (SLPState.EVALUATE_GRID, Transition.NEXT1, SLPState.GOTO),
        (SLPState.EVALUATE_GRID, Transition.NEXT2, SLPState.GOTO_LAND),
        (SLPState.GOTO_LAND, Transition.NEXT1, SLPState.LAND),
        (SLPState.LAND, Transition.NEXT1, SLPState.LAND),
        (SLPState.LAND, Transition.ERROR, SLPState.GOTO),
        (SLPState.LOITER, Transition.REPEAT, SLPState.LOITER),
    ],
)
def test_next_state_table(state, transition, expected):
    assert next_state(state, transition) is expected


def test_mask_is_symmetric_disc():
    gen, _ = make_generator()
    mask = gen.mask
    assert mask.shape == (5, 5)
    assert mask[2, 2] == 1
    assert mask[0, 2] == 1
    assert mask[0, 0] == 0 and mask[4, 4] == 0
    assert np.array_equal(mask, mask.T)
    assert np.array_equal(mask, mask[::-1, ::-1])


def test_update_state_resizes_mask_and_hysteresis():
    gen, _ = make_generator()
    gen.smoothing_land_cell = 3
    gen.update_state()
    assert gen.mask.shape == (7, 7)
    assert gen.can_land_hysteresis_matrix.shape == gen.grid_slp.land.shape
    assert gen.can_land_hysteresis_result.shape == gen.grid_slp.land.shape


def test_update_state_resets_when_not_landing():
    gen, _ = make_generator()
    gen.is_land_waypoint = False
    gen.landing_radius = 0.5
    gen.decision_taken = True
    gen.can_land = False
    gen.n_explored_pattern = 4
    gen.exploration_is_active = True
    gen.update_state()
    assert gen.landing_radius == 2.0
    assert gen.decision_taken is False
    assert gen.can_land is True
    assert gen.n_explored_pattern == -1
    assert gen.exploration_is_active is False


def test_height_percentile():
    gen, _ = make_generator()
    gen.grid_slp.mean[3:8, 3:8] = np.arange(25, dtype=float).reshape(5, 5)[::-1]
    assert gen.landing_area_height_percentile(80.0) == 20.0
    assert gen.landing_area_height_percentile(0.0) == 0.0


def test_within_landing_radius():
    gen, _ = make_generator()
    gen.landing_radius = 1.0
    gen.goal = np.array([0.5, 0.5, 100.0])
    assert gen.within_landing_radius()
    gen.goal = np.array([3.0, 0.0, 4.0])
    assert not gen.within_landing_radius()
    gen.goal = np.array([math.nan, math.nan, 4.0])
    assert not gen.within_landing_radius()


def test_in_vertical_range():
    gen, _ = make_generator()
    gen.altitude_landing_area_percentile = 0.0
    gen.position = np.array([0.0, 0.0, 4.5])
    assert gen.in_vertical_range()
    gen.position = np.array([0.0, 0.0, 8.0])
    assert not gen.in_vertical_range()


def test_evaluate_patch():
    gen, _ = make_generator()
    gen.update_state()
    gen.can_land_hysteresis_result = np.ones((10, 10), dtype=int)
    assert gen.evaluate_patch((3, 3))
    gen.can_land_hysteresis_result[3, 3] = 0  # corner, outside the disc
    assert gen.evaluate_patch((3, 3))
    gen.can_land_hysteresis_result[5, 5] = 0
    assert not gen.evaluate_patch((3, 3))
    with pytest.raises(IndexError):
        gen.evaluate_patch((8, 8))


def test_full_landing_sequence():
    gen, recorder = make_generator()
    gen.grid_slp.land[:] = 1
    drive_to_loiter(gen)
    assert recorder.calls[-1][1][2] == pytest.approx(-LAND_SPEED)
    loiter_and_decide(gen)
    assert np.all(gen.can_land_hysteresis_result == 1)

    gen.calculate_waypoint()
    assert gen.state is SLPState.GOTO_LAND
    assert gen.can_land is True
    assert gen.decision_taken is True

    gen.calculate_waypoint()
    assert gen.state is SLPState.LAND

    gen.calculate_waypoint()
    position, velocity, _, _ = recorder.calls[-1]
    assert gen.state is SLPState.LAND
    assert math.isnan(position[2])
    assert position[0] == pytest.approx(0.0)
    assert velocity[2] == pytest.approx(-LAND_SPEED)
    assert math.isnan(velocity[0])


def test_loiter_hysteresis_moves_toward_land_values():
    gen, _ = make_generator()
    gen.grid_slp.land[:] = 1
    drive_to_loiter(gen)
    previous = gen.can_land_hysteresis_matrix.copy()
    for _ in range(3):
        gen.calculate_waypoint()
        current = gen.can_land_hysteresis_matrix
        assert np.all(current > previous)
        assert np.all(current < 1.0)
        previous = current.copy()


def test_no_landing_area_starts_exploration():
    gen, _ = make_generator()
    drive_to_loiter(gen)
    loiter_and_decide(gen)
    gen.calculate_waypoint()
    assert gen.state is SLPState.GOTO
    assert gen.can_land is False
    assert gen.decision_taken is True

    anchor = gen.loiter_position.copy()
    gen.calculate_waypoint()
    assert gen.state is SLPState.GOTO
    assert gen.exploration_is_active is True
    assert gen.n_explored_pattern == 0
    assert gen.decision_taken is False
    assert gen.goal[2] == anchor[2]
    dx, dy = EXPLORATION_PATTERN[0]
    step = gen.goal[:2] - anchor[:2]
    assert np.sign(step[0]) == np.sign(dx)
    assert np.sign(step[1]) == np.sign(dy)
    assert np.all(np.isnan(gen.velocity_setpoint))


def test_off_centre_landing_area_found():
    gen, _ = make_generator()
    gen.grid_slp.land[:6, :] = 1
    drive_to_loiter(gen)
    loiter_and_decide(gen)
    gen.calculate_waypoint()
    assert gen.state is SLPState.GOTO_LAND
    assert gen.can_land is True
    row = int(round(gen.goal[0] - gen.position[0])) + 5
    col = int(round(gen.goal[1] - gen.position[1])) + 5
    patch = gen.grid_slp.land[row - 2 : row + 3, col - 2 : col + 3]
    assert np.all(patch * gen.mask == gen.mask)
    assert math.isnan(gen.velocity_setpoint[2])


def test_trigger_reset_returns_to_goto():
    gen, _ = make_generator()
    drive_to_loiter(gen)
    gen.trigger_reset = True
    gen.calculate_waypoint()
    assert gen.state is SLPState.GOTO
    assert gen.trigger_reset is False
    assert gen.prev_slp_state is SLPState.LOITER


def test_goto_without_land_waypoint_repeats():
    gen, recorder = make_generator()
    gen.is_land_waypoint = False
    gen.calculate_waypoint()
    assert gen.state is SLPState.GOTO
    assert len(recorder.calls) == 1
    assert np.allclose(recorder.calls[0][0], gen.goal)