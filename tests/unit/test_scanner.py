from __future__ import annotations

import asyncio
from typing import List

import numpy as np
import pytest

from lidarsim.config.schema import LidarConfig
from lidarsim.core.clock import SimulatedClock
from lidarsim.core.exporter import format_frame_ply
from lidarsim.core.pointcloud import Frame, Packet
from lidarsim.core.scanner import ScanState, ScanStateMachine
from lidarsim.core.scene import CompositeScene, QuadObject
from lidarsim.motion.pose import Pose
from lidarsim.motion.trajectory import PolylineTrajectory, TrajectoryPoseSource

ROUND_TRIP = LidarConfig(
    line_count=4,
    points_per_line=8,
    vertical_fov_deg=30.0,
    horizontal_fov_deg=90.0,
    noise_std_dev=0.0,
    fisheye_strength=0.0,
    packet_delay_ms=10.0,
    frame_end_delay_ms=100.0,
)


def _plane_scene() -> CompositeScene:
    return CompositeScene([QuadObject(center=(0.0, 0.0, 10.0), size=(40.0, 40.0))])


def _machine(cfg: LidarConfig = ROUND_TRIP, clock: SimulatedClock | None = None) -> ScanStateMachine:
    return ScanStateMachine(
        cfg,
        _plane_scene(),
        Pose.from_xyz_rpy((0.0, 0.0, 0.0), (0.0, 0.0, 0.0)),
        clock=clock or SimulatedClock(),
        rng=np.random.default_rng(0),
    )


def test_round_trip_frame_against_plane() -> None:
    machine = _machine()
    frames: List[Frame] = []
    machine.add_frame_listener(frames.append)

    frame = asyncio.run(machine.scan_frame())

    assert frame is not None
    assert frames == [frame]
    assert machine.state is ScanState.IDLE
    assert [p.line_index for p in frame.packets] == [0, 1, 2, 3]
    assert [p.left_to_right for p in frame.packets] == [True, False, True, False]
    assert all(len(p.points) == 8 for p in frame.packets)
    assert frame.total_points == 32
    for packet in frame.packets:
        for point in packet.points:
            assert point.position[2] == pytest.approx(10.0, abs=1e-9)

    assert [p.timestamp for p in frame.packets] == pytest.approx([0.0, 0.01, 0.02, 0.03])
    assert frame.frame_start_time == 0.0
    assert frame.frame_end_time == pytest.approx(0.14)
    assert machine.last_point_cloud == frame.point_cloud()
    assert machine.is_data_ready()

    text = format_frame_ply(frame)
    assert text is not None
    lines = text.splitlines()
    declared = int(next(l for l in lines if l.startswith("element vertex")).split()[-1])
    body = lines[lines.index("end_header") + 1:]
    assert declared == len(body) == 32


def test_right_to_left_packets_emit_points_in_reverse_x() -> None:
    frame = asyncio.run(_machine().scan_frame())
    assert frame is not None
    xs_forward = [p.position[0] for p in frame.packets[0].points]
    xs_backward = [p.position[0] for p in frame.packets[1].points]
    # +h turns towards +X, so a left-to-right sweep runs from -X to +X
    assert xs_forward == sorted(xs_forward)
    assert xs_backward == sorted(xs_backward, reverse=True)


def test_total_points_invariant_after_every_packet() -> None:
    cfg = ROUND_TRIP.with_updates(vertical_fov_deg=170.0, horizontal_fov_deg=170.0, line_count=6)
    machine = _machine(cfg)
    checks: List[bool] = []

    def on_packet(packet: Packet) -> None:
        frame = machine.current_frame
        assert frame is not None
        checks.append(frame.total_points == sum(len(p.points) for p in frame.packets))

    machine.add_packet_listener(on_packet)
    frame = asyncio.run(machine.scan_frame())
    assert frame is not None
    assert len(checks) == 6 and all(checks)
    # wide field of view: some rays miss the finite plane and are skipped
    assert frame.total_points < 6 * 8


def test_empty_lines_are_still_recorded() -> None:
    machine = ScanStateMachine(
        ROUND_TRIP,
        CompositeScene(),
        Pose.from_xyz_rpy((0.0, 0.0, 0.0), (0.0, 0.0, 0.0)),
        clock=SimulatedClock(),
    )
    frame = asyncio.run(machine.scan_frame())
    assert frame is not None
    assert len(frame.packets) == 4
    assert frame.total_points == 0
    assert format_frame_ply(frame) is None


def test_cancel_from_packet_listener() -> None:
    machine = _machine()
    completed: List[Frame] = []
    machine.add_frame_listener(completed.append)

    def on_packet(packet: Packet) -> None:
        if packet.line_index == 1:
            machine.cancel()

    machine.add_packet_listener(on_packet)
    result = asyncio.run(machine.scan_frame())

    assert result is None
    assert completed == []
    assert machine.state is ScanState.IDLE
    frame = machine.current_frame
    assert frame is not None
    assert [p.line_index for p in frame.packets] == [0, 1]
    assert frame.frame_end_time is None
    assert frame.total_points == 16


def test_cancel_from_frame_listener_keeps_completed_frame() -> None:
    machine = _machine()
    cancel_results: List[bool] = []
    machine.add_frame_listener(lambda frame: cancel_results.append(machine.cancel()))

    frame = asyncio.run(machine.scan_frame())

    assert cancel_results == [False]
    assert frame is not None
    assert frame.is_complete
    assert machine.state is ScanState.IDLE
    assert len(machine.last_point_cloud) == frame.total_points
    assert machine.is_data_ready()


def test_cancel_from_listener_without_delays() -> None:
    machine = _machine(ROUND_TRIP.with_updates(enable_delays=False))
    machine.add_packet_listener(lambda p: machine.cancel() if p.line_index == 0 else None)
    assert asyncio.run(machine.scan_frame()) is None
    assert machine.current_frame is not None
    assert len(machine.current_frame.packets) == 1
    assert not machine.is_scanning


def test_cancel_interrupts_pending_delay() -> None:
    clock = SimulatedClock()
    machine = _machine(clock=clock)
    completed: List[Frame] = []
    machine.add_frame_listener(completed.append)

    async def scenario() -> asyncio.Task:
        task = machine.start()
        assert task is not None
        while machine.current_frame is None or len(machine.current_frame.packets) < 2:
            await asyncio.sleep(0)
        assert machine.is_scanning
        assert machine.cancel()
        await asyncio.wait({task})
        return task

    task = asyncio.run(scenario())
    assert task.cancelled()
    assert completed == []
    assert machine.state is ScanState.IDLE
    frame = machine.current_frame
    assert frame is not None
    assert len(frame.packets) == 2
    assert frame.frame_end_time is None
    assert machine.last_point_cloud == ()


def test_machine_restarts_after_cancel() -> None:
    machine = _machine()

    async def scenario() -> Frame | None:
        task = machine.start()
        assert task is not None
        await asyncio.sleep(0)
        machine.cancel()
        await machine.wait()
        return await machine.scan_frame()

    frame = asyncio.run(scenario())
    assert frame is not None
    assert frame.is_complete
    assert len(frame.packets) == 4


def test_second_request_while_scanning_is_ignored() -> None:
    machine = _machine()
    completed: List[Frame] = []
    machine.add_frame_listener(completed.append)

    async def scenario() -> None:
        first = machine.start()
        assert first is not None
        assert machine.start() is None
        await asyncio.sleep(0)
        assert machine.is_scanning
        assert not machine.is_data_ready()
        assert await machine.scan_frame() is None
        await machine.wait()

    asyncio.run(scenario())
    assert len(completed) == 1
    assert machine.state is ScanState.IDLE


def test_listener_failure_does_not_abort_scan() -> None:
    machine = _machine()

    def broken(packet: Packet) -> None:
        raise RuntimeError("listener bug")

    seen: List[int] = []
    machine.add_packet_listener(broken)
    machine.add_packet_listener(lambda p: seen.append(p.line_index))
    frame = asyncio.run(machine.scan_frame())
    assert frame is not None and frame.is_complete
    assert seen == [0, 1, 2, 3]

    machine.remove_packet_listener(broken)
    machine.remove_packet_listener(broken)
    assert asyncio.run(machine.scan_frame()) is not None


def test_disabled_delays_do_not_advance_clock() -> None:
    clock = SimulatedClock()
    machine = _machine(ROUND_TRIP.with_updates(enable_delays=False), clock=clock)
    frame = asyncio.run(machine.scan_frame())
    assert frame is not None
    assert [p.timestamp for p in frame.packets] == [0.0, 0.0, 0.0, 0.0]
    assert frame.duration == 0.0


def test_config_snapshot_taken_per_frame() -> None:
    current = {"cfg": ROUND_TRIP}
    machine = ScanStateMachine(
        lambda: current["cfg"],
        _plane_scene(),
        Pose.from_xyz_rpy((0.0, 0.0, 0.0), (0.0, 0.0, 0.0)),
        clock=SimulatedClock(),
        rng=np.random.default_rng(0),
    )

    def on_packet(packet: Packet) -> None:
        current["cfg"] = ROUND_TRIP.with_updates(line_count=2)

    machine.add_packet_listener(on_packet)
    first = asyncio.run(machine.scan_frame())
    second = asyncio.run(machine.scan_frame())
    assert first is not None and len(first.packets) == 4
    assert second is not None and len(second.packets) == 2


def test_pose_read_per_packet_for_moving_sensor() -> None:
    clock = SimulatedClock()
    traj = PolylineTrajectory([(0.0, 0.0, 0.0), (0.0, 0.0, 5.0)], speed_mps=10.0)
    machine = ScanStateMachine(
        ROUND_TRIP,
        _plane_scene(),
        TrajectoryPoseSource(traj, clock),
        clock=clock,
        rng=np.random.default_rng(0),
    )
    frame = asyncio.run(machine.scan_frame())
    assert frame is not None
    zs = [p.sensor_position[2] for p in frame.packets]
    assert zs == pytest.approx([0.0, 0.1, 0.2, 0.3])
    # the plane is still at z=10 whatever the sensor position
    assert frame.packets[3].points[0].position[2] == pytest.approx(10.0)
