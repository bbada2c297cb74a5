import numpy as np
import pytest

from lidarsim.config.schema import LidarConfig
from lidarsim.core.clock import SimulatedClock
from lidarsim.motion.pose import Pose
from lidarsim.motion.trajectory import PolylineTrajectory, StaticTrajectory, TrajectoryPoseSource
from lidarsim.sensors.patterns import (
    SweepPattern,
    scan_angles,
    sweep_left_to_right,
    traversal_indices,
)


def test_static_trajectory_holds_pose() -> None:
    pose = Pose.from_xyz_rpy((0, 0, 10), (0, 0, 0))
    traj = StaticTrajectory(pose)
    assert traj.sample(0.0) is pose
    assert traj.sample(123.0) is pose


def test_polyline_trajectory_interpolates_midpoint() -> None:
    waypoints = [(0.0, 0.0, 0.0), (10.0, 0.0, 0.0)]
    traj = PolylineTrajectory(waypoints, speed_mps=2.0, start_time_s=0.0)
    pose_mid = traj.sample(2.5)
    np.testing.assert_allclose(pose_mid.t, np.array([5.0, 0.0, 0.0]))
    np.testing.assert_allclose(traj.sample(100.0).t, np.array([10.0, 0.0, 0.0]))


def test_polyline_trajectory_rejects_bad_input() -> None:
    with pytest.raises(ValueError):
        PolylineTrajectory([(0.0, 0.0, 0.0)], speed_mps=1.0)
    with pytest.raises(ValueError):
        PolylineTrajectory([(0.0, 0.0, 0.0), (1.0, 0.0, 0.0)], speed_mps=0.0)
    with pytest.raises(ValueError):
        PolylineTrajectory([(0.0, 0.0, 0.0), (0.0, 0.0, 0.0)], speed_mps=1.0)


def test_trajectory_pose_source_follows_clock() -> None:
    clock = SimulatedClock()
    traj = PolylineTrajectory([(0.0, 0.0, 0.0), (0.0, 0.0, 4.0)], speed_mps=1.0)
    source = TrajectoryPoseSource(traj, clock)
    np.testing.assert_allclose(source.world_position(), [0.0, 0.0, 0.0])
    clock.advance(1.0)
    np.testing.assert_allclose(source.world_position(), [0.0, 0.0, 1.0])
    np.testing.assert_allclose(source.world_orientation(), np.eye(3), atol=1e-12)


@pytest.mark.parametrize("line_count", [1, 2, 5, 64])
def test_sweep_direction_alternates_by_parity(line_count: int) -> None:
    cfg = LidarConfig(line_count=line_count, points_per_line=4)
    pattern = SweepPattern()
    for line in range(line_count):
        sample = pattern.sample(line, cfg)
        assert sample.left_to_right == (line % 2 == 0)
        assert sweep_left_to_right(line) == (line % 2 == 0)


def test_right_to_left_visits_same_angles_reversed() -> None:
    cfg = LidarConfig(line_count=2, points_per_line=6, horizontal_fov_deg=90.0)
    pattern = SweepPattern()
    forward = pattern.sample(0, cfg)
    backward = pattern.sample(1, cfg)
    np.testing.assert_allclose(backward.horizontal_deg, forward.horizontal_deg[::-1])
    assert list(traversal_indices(4, False)) == [3, 2, 1, 0]


def test_zero_fisheye_matches_linear_tessellation() -> None:
    cfg = LidarConfig(line_count=5, points_per_line=9, vertical_fov_deg=40.0, horizontal_fov_deg=120.0)
    for line in range(cfg.line_count):
        for point in range(cfg.points_per_line):
            v, h = scan_angles(line, point, cfg)
            assert v == -20.0 + line * 10.0
            assert h == -60.0 + point * 15.0


def test_fisheye_magnifies_edges_only() -> None:
    cfg = LidarConfig(line_count=3, points_per_line=3, vertical_fov_deg=20.0,
                      horizontal_fov_deg=20.0, fisheye_strength=0.5)
    v, h = scan_angles(0, 0, cfg)
    # normalised corner is (-1, -1): scale = 1 + 0.5 * 2
    assert v == pytest.approx(-20.0)
    assert h == pytest.approx(-20.0)
    v_c, h_c = scan_angles(1, 1, cfg)
    assert (v_c, h_c) == (0.0, 0.0)


def test_single_line_single_point_does_not_divide_by_zero() -> None:
    cfg = LidarConfig(line_count=1, points_per_line=1, fisheye_strength=1.0)
    v, h = scan_angles(0, 0, cfg)
    assert np.isfinite(v) and np.isfinite(h)
    sample = SweepPattern().sample(0, cfg)
    assert sample.directions.shape == (1, 3)
    assert np.all(np.isfinite(sample.directions))


def test_scalar_and_vectorised_directions_agree() -> None:
    cfg = LidarConfig(line_count=4, points_per_line=7, vertical_fov_deg=30.0,
                      horizontal_fov_deg=200.0, fisheye_strength=0.2)
    pattern = SweepPattern()
    for line in range(cfg.line_count):
        sample = pattern.sample(line, cfg)
        for row, idx in enumerate(sample.point_index):
            d = pattern.direction(line, int(idx), sample.left_to_right, cfg)
            np.testing.assert_allclose(sample.directions[row], d, atol=1e-12)
            assert np.linalg.norm(d) == pytest.approx(1.0)


def test_center_ray_points_forward_and_rotates_with_sensor() -> None:
    cfg = LidarConfig(line_count=3, points_per_line=3)
    pattern = SweepPattern()
    np.testing.assert_allclose(pattern.direction(1, 1, True, cfg), [0.0, 0.0, 1.0], atol=1e-12)

    about_y = Pose.from_xyz_rpy((0, 0, 0), (0.0, 90.0, 0.0)).R
    sample = pattern.sample(1, cfg, rotation=about_y)
    np.testing.assert_allclose(sample.directions[1], about_y @ np.array([0.0, 0.0, 1.0]), atol=1e-12)


def test_positive_vertical_angle_tilts_down() -> None:
    cfg = LidarConfig(line_count=2, points_per_line=1, vertical_fov_deg=30.0, horizontal_fov_deg=0.0)
    pattern = SweepPattern()
    assert pattern.direction(0, 0, True, cfg)[1] > 0.0
    assert pattern.direction(1, 0, False, cfg)[1] < 0.0
