from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from ..core.clock import Clock
from .pose import Pose


class Trajectory:
    """Base interface for platform motion."""

    def sample(self, t: float) -> Pose:
        raise NotImplementedError


@dataclass
class StaticTrajectory(Trajectory):
    """A trajectory with a single, fixed pose."""

    pose: Pose

    def sample(self, t: float) -> Pose:
        return self.pose


class PolylineTrajectory(Trajectory):
    """Piecewise-linear motion through waypoints at constant speed.

    The sensor keeps a fixed orientation along the whole path.
    """

    def __init__(
        self,
        waypoints: Sequence[Sequence[float]],
        speed_mps: float,
        rpy_deg: tuple[float, float, float] = (0.0, 0.0, 0.0),
        start_time_s: float = 0.0,
    ) -> None:
        if len(waypoints) < 2:
            raise ValueError("PolylineTrajectory requires at least two waypoints.")
        if speed_mps <= 0.0:
            raise ValueError("speed_mps must be positive.")

        self._points = np.asarray(waypoints, dtype=np.float64)
        self._speed = float(speed_mps)
        self._start_time = float(start_time_s)
        self._R = Pose.from_xyz_rpy((0.0, 0.0, 0.0), rpy_deg).R

        seg_lengths = np.linalg.norm(np.diff(self._points, axis=0), axis=1)
        if np.any(seg_lengths == 0):
            raise ValueError("Consecutive waypoints must be distinct.")

        times = np.concatenate([[0.0], np.cumsum(seg_lengths / self._speed)])
        self._times = self._start_time + times
        self._poses: List[Pose] = [Pose(t=p.copy(), R=self._R) for p in self._points]

    def sample(self, t: float) -> Pose:
        if t <= self._times[0]:
            return self._poses[0]
        if t >= self._times[-1]:
            return self._poses[-1]

        idx = np.searchsorted(self._times, t, side="right") - 1
        t0, t1 = self._times[idx], self._times[idx + 1]
        alpha = (t - t0) / max(t1 - t0, 1e-9)
        pos = (1.0 - alpha) * self._points[idx] + alpha * self._points[idx + 1]
        return Pose(t=pos, R=self._R)


class TrajectoryPoseSource:
    """Reads a trajectory at the clock's current time."""

    def __init__(self, trajectory: Trajectory, clock: Clock) -> None:
        self.trajectory = trajectory
        self.clock = clock

    def current_pose(self) -> Pose:
        return self.trajectory.sample(self.clock.now())

    def world_position(self) -> np.ndarray:
        return self.current_pose().world_position()

    def world_orientation(self) -> np.ndarray:
        return self.current_pose().world_orientation()
