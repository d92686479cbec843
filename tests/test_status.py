import math

import numpy as np
import pytest

from avoidplan.landing import Grid
from avoidplan.status import (
    GridMessage,
    LandingPlannerNode,
    MavState,
    check_failsafe,
    grid_to_message,
)


@pytest.mark.parametrize(
    "since_last, since_start, expected",
    [
        (0.2, 0.2, MavState.ACTIVE),
        (0.7, 0.7, MavState.CRITICAL),
        (1.2, 1.2, MavState.FLIGHT_TERMINATION),
        (1.2, 0.3, MavState.ACTIVE),
    ],
)
def test_check_failsafe(since_last, since_start, expected):
    assert check_failsafe(MavState.ACTIVE, since_last, since_start, 0.5, 1.0) == expected


def test_check_failsafe_escalates_monotonically():
    states = [
        check_failsafe(MavState.ACTIVE, t * 0.2, t * 0.2 + 5.0, 0.5, 1.0) for t in range(10)
    ]
    assert states == sorted(states)
    assert states[0] == MavState.ACTIVE
    assert states[-1] == MavState.FLIGHT_TERMINATION


def test_grid_to_message_converts_variance():
    grid = Grid(4.0, 1.0)
    grid.variance.fill(4.0)
    grid.mean[1, 2] = 3.5
    grid.counter[0, 0] = 7
    message = grid_to_message(grid, 9, (1, 3))
    assert message.seq == 9
    assert message.frame_id == "local_origin"
    assert np.allclose(message.std_dev, 2.0)
    assert message.mean[1, 2] == 3.5
    assert message.counter[0, 0] == 7
    assert message.curr_pos_index == (1.0, 3.0)


def test_run_cycle_without_data_returns_none():
    grids = []
    node = LandingPlannerNode(publish_grid=grids.append)
    assert node.run_cycle(0.1) is None
    assert grids == []


def test_waiting_too_long_terminates():
    statuses = []
    node = LandingPlannerNode(publish_status=lambda s, t: statuses.append(s))
    node.run_cycle(0.0)
    node.run_cycle(1.5)
    assert statuses[-1] == MavState.FLIGHT_TERMINATION


def test_cycles_publish_previous_grid_with_counts():
    grids = []
    statuses = []
    node = LandingPlannerNode(
        publish_grid=grids.append, publish_status=lambda s, t: statuses.append(s)
    )
    node.update_pose([0.0, 0.0, 0.0])
    cloud = [(0.5, 0.5, 0.0)] * 30 + [(math.nan, 0.0, 0.0)]

    node.submit_cloud(cloud)
    first = node.run_cycle(0.3)
    node.submit_cloud(cloud)
    second = node.run_cycle(0.4)

    assert [g.seq for g in grids] == [0, 1]
    assert first.counter.sum() == 0
    assert second.counter.sum() == 30
    i, j = node.planner.compute_grid_indexes(0.5, 0.5)
    assert second.counter[i, j] == 30
    assert second.curr_pos_index == tuple(float(v) for v in node.planner.pos_index)
    assert statuses == [MavState.ACTIVE]


def test_late_cycle_reports_critical():
    node = LandingPlannerNode()
    node.submit_cloud([])
    node.run_cycle(0.1)
    node.submit_cloud([])
    node.run_cycle(0.8)
    assert node.status == MavState.CRITICAL


def test_raw_grid_replay():
    node = LandingPlannerNode(play_rosbag=True)
    source = Grid(10.0, 1.0)
    source.counter.fill(3)
    source.variance.fill(0.25)
    message = grid_to_message(source, 42, (5, 5))
    node.submit_raw_grid(message)
    node.run_cycle(0.1)
    assert node.planner.grid_seq == 42
    assert np.array_equal(node.planner.grid.counter, message.counter)


def test_grid_message_coerces_arrays():
    message = GridMessage(1, 2.0, 1.0, [[1, 2], [3, 4]], [[0, 1], [1, 0]], [[0, 0], [0, 0]], [[1, 1], [1, 1]])
    assert message.mean.dtype == float
    assert message.land.shape == (2, 2)
    assert message.mean[1, 1] == 4.0