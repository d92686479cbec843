# avoidplan

Planning building blocks for multicopters that need to fly and land on their own.
Everything is plain Python on top of NumPy. Data comes in as method calls and goes out
as return values or callbacks, so the planners can be driven from a simulator, a log
replay or a test.

## Modules

- **`avoidplan.trajectory`**: `TrajectorySimulator` rolls a vehicle state
  (`SimulationState`: time, position, velocity, acceleration) forward in fixed steps
  under the jerk, acceleration and velocity limits in `SimulationLimits`, steering
  toward a goal direction with a PD controller on velocity. `norm_clamp` limits the
  length of a vector while keeping its direction.
- **`avoidplan.landing`**: `SafeLandingPlanner` bins a point cloud into a square `Grid`
  of cells around the vehicle, keeps a running mean and variance of the height in every
  cell (`compute_online_mean_variance`), low-pass filters them against the previous
  grid and marks each cell as landable or not. Point count, standard deviation and
  neighbourhood smoothing thresholds are set through `LandingParams`. With
  `play_rosbag` set, it reads a recorded grid (`raw_grid`) instead of a point cloud.
- **`avoidplan.waypoint`**: `LandingWaypointGenerator` is a state machine
  (`SLPState`, `Transition`, `next_state`, `state_name`) that flies to a land waypoint,
  climbs or descends to loiter height above the landing area, accumulates the grid's
  landability over time, evaluates it with a circular mask, searches outward for a
  landable patch, explores around the loiter point in a growing pattern when none is
  found, and finally descends. Setpoints go to the `publish_trajectory_setpoints`
  callable.
- **`avoidplan.status`**: `LandingPlannerNode` feeds poses (`update_pose`), point
  clouds (`submit_cloud`) or recorded grids (`submit_raw_grid`) to a
  `SafeLandingPlanner`, runs one cycle per `run_cycle(now)` call, returns the grid as a
  `GridMessage` (`grid_to_message`), and reports a health state (`MavState`,
  escalated by `check_failsafe` when the planner stalls).
- **`avoidplan.waypoint_node`**: `WaypointGeneratorNode` takes poses (`on_position`),
  desired trajectories (`on_trajectory`), flight mode and arming changes (`on_state`)
  and grid messages (`on_grid`), applies tuning (`configure`), and on `run_cycle`
  returns the `TrajectorySetpoint` the generator produced
  (`build_trajectory_setpoint`, `TrajectoryPoint`). `yaw_from_quaternion` extracts
  yaw from an orientation.
- **`avoidplan.visualization`**: plain `Marker` records for the landable grid
  (`grid_markers`), mean/standard-deviation and point-count heat maps
  (`mean_std_dev_markers`, `counter_markers`) and the flown path (`path_marker`),
  coloured with `hsv_to_rgb`.

## Examples

Clamp a vector to a maximum length:

```python
import numpy as np
from avoidplan.trajectory import norm_clamp

clamped = norm_clamp(np.array([5.0, 6.0, 7.0]), 5.0)
print(np.linalg.norm(clamped))  # 5.0, same direction as the input
```

Simulate a vehicle turning toward a new direction:

```python
from avoidplan.trajectory import SimulationLimits, SimulationState, TrajectorySimulator

limits = SimulationLimits(
    max_z_velocity=1.0,
    min_z_velocity=-0.5,
    max_xy_velocity_norm=3.0,
    max_acceleration_norm=4.0,
    max_jerk_norm=20.0,
)
start = SimulationState(velocity=[3.0, 0.0, 0.0])
states = TrajectorySimulator(limits, start).generate_trajectory([0.0, 1.0, 0.0], 10.0)
print(states[-1].velocity)  # close to [0, 3, 0]
```

Keep a running mean and variance as points arrive in a cell:

```python
from avoidplan.landing import compute_online_mean_variance

mean, variance = 0.0, 0.0
for count, height in enumerate([1.0, 1.2, 0.8], start=1):
    mean, variance = compute_online_mean_variance(mean, variance, height, count)
```

Decide which cells are landable from a point cloud:

```python
from avoidplan.landing import SafeLandingPlanner

planner = SafeLandingPlanner()
planner.set_pose([0.0, 0.0, 5.0])
planner.cloud = [(0.1 * i - 4.0, 0.1 * j - 4.0, 0.0) for i in range(80) for j in range(80)]
planner.run()
print(planner.grid.land)  # 1 for landable cells, 0 otherwise
```

Colour a cell by hue, and name a landing state:

```python
from avoidplan.visualization import hsv_to_rgb
from avoidplan.waypoint import SLPState, state_name

print(hsv_to_rgb(0.0, 1.0, 1.0))           # (1.0, 0.0, 0.0)
print(state_name(SLPState.EVALUATE_GRID))  # "EVALUATE_GRID"
```

## What the package does not do

- It has no messaging layer and no command-line program. The nodes do not subscribe,
  publish or run timers on their own: the caller delivers data through their methods,
  calls `run_cycle` at the desired rate and receives output through return values and
  the optional callbacks.
- `LandingPlannerNode.submit_cloud` expects points already expressed in the local
  frame; no coordinate-frame transformation of sensor data is done.
- There is no obstacle-avoidance path search. `TrajectorySimulator` only simulates
  how a vehicle would follow a direction under its limits.
- Markers are plain records; nothing is drawn.

## Tests

The test suite uses pytest and lives in `tests/`:

```
pip install -e ".[test]"
pytest
```