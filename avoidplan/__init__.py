"""Trajectory simulation, safe-landing grids, landing waypoints and their nodes for multicopters."""

__version__ = "0.1.0"

__all__ = [
    "landing",
    "status",
    "trajectory",
    "visualization",
    "waypoint",
    "waypoint_node",
]