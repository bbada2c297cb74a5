from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from ..config.schema import LidarConfig
from ..motion.pose import PoseSource
from ..sensors.patterns import SweepPattern
from .clock import Clock, MonotonicClock
from .pointcloud import Frame, Packet, Point
from .sampler import RangeSampler
from .scene import SceneOracle
from .utils import get_logger

_log = get_logger()

PacketListener = Callable[[Packet], None]
FrameListener = Callable[[Frame], None]
ConfigSource = Union[LidarConfig, Callable[[], LidarConfig]]


class ScanState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"


class ScanStateMachine:
    """Cooperative Idle → Scanning → Idle frame scanner.

    A frame runs as an asyncio task. Packet and frame listeners are called
    synchronously from inside that task, in line order. While a frame is in
    flight further scan requests are ignored, not queued. ``cancel`` aborts
    any pending delay, leaves the partial frame without an end time and
    skips the frame listeners. Once the frame listeners are running the frame
    counts as delivered and ``cancel`` does nothing.
    """

    def __init__(
        self,
        config: ConfigSource,
        scene: SceneOracle,
        pose_source: PoseSource,
        clock: Optional[Clock] = None,
        rng: Optional[np.random.Generator] = None,
        pattern: Optional[SweepPattern] = None,
        sampler: Optional[RangeSampler] = None,
    ) -> None:
        self._config_source = config
        self.scene = scene
        self.pose_source = pose_source
        self.clock: Clock = clock or MonotonicClock()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.pattern = pattern or SweepPattern()
        self.sampler = sampler or RangeSampler()

        self._state = ScanState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._abort = False
        self._delivering = False
        self._current_frame: Optional[Frame] = None
        self._last_point_cloud: Tuple[Point, ...] = ()
        self._packet_listeners: List[PacketListener] = []
        self._frame_listeners: List[FrameListener] = []

    # -- listeners --
    def add_packet_listener(self, listener: PacketListener) -> None:
        self._packet_listeners.append(listener)

    def remove_packet_listener(self, listener: PacketListener) -> None:
        if listener in self._packet_listeners:
            self._packet_listeners.remove(listener)

    def add_frame_listener(self, listener: FrameListener) -> None:
        self._frame_listeners.append(listener)

    def remove_frame_listener(self, listener: FrameListener) -> None:
        if listener in self._frame_listeners:
            self._frame_listeners.remove(listener)

    # -- state --
    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def is_scanning(self) -> bool:
        return self._state is ScanState.SCANNING

    @property
    def current_frame(self) -> Optional[Frame]:
        return self._current_frame

    @property
    def last_point_cloud(self) -> Tuple[Point, ...]:
        return self._last_point_cloud

    def is_data_ready(self) -> bool:
        frame = self._current_frame
        return not self.is_scanning and frame is not None and len(frame.packets) > 0

    def config(self) -> LidarConfig:
        src = self._config_source
        return src() if callable(src) else src

    # -- control --
    def start(self) -> Optional[asyncio.Task]:
        """Begin a frame on the running loop; ``None`` if one is in flight."""
        if self.is_scanning:
            _log.info("Scan request ignored: a frame is already being scanned.")
            return None
        cfg = self.config()
        self._state = ScanState.SCANNING
        self._abort = False
        self._delivering = False
        task = asyncio.get_running_loop().create_task(self._run(cfg))
        # Covers a task cancelled before its first step, where _run never executes.
        task.add_done_callback(self._release)
        self._task = task
        return task

    async def scan_frame(self) -> Optional[Frame]:
        """Scan one frame and return it, or ``None`` if rejected or cancelled."""
        task = self.start()
        if task is None:
            return None
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task.cancelled():
            return None
        return task.result()

    def cancel(self) -> bool:
        """Abort the frame in flight; the machine is Idle once the task unwinds.

        Returns ``False`` when there is nothing left to abort, including while
        the completed frame is being handed to the frame listeners.
        """
        task = self._task
        if task is None or task.done() or self._delivering:
            return False
        self._abort = True
        return task.cancel()

    def _release(self, task: asyncio.Task) -> None:
        if self._task is task:
            self._state = ScanState.IDLE
            self._task = None

    async def wait(self) -> None:
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    # -- scanning --
    def scan_line(self, line_index: int, cfg: LidarConfig) -> Packet:
        position = np.asarray(self.pose_source.world_position(), dtype=np.float64).reshape(3)
        rotation = np.asarray(self.pose_source.world_orientation(), dtype=np.float64).reshape(3, 3)
        timestamp = self.clock.now()

        line = self.pattern.sample(line_index, cfg, rotation=rotation)
        points: List[Point] = []
        for direction in line.directions:
            point = self.sampler.sample(position, direction, cfg, self.rng, self.scene)
            if point is not None:
                points.append(point)

        return Packet(
            line_index=line_index,
            left_to_right=line.left_to_right,
            points=tuple(points),
            timestamp=timestamp,
            sensor_position=(float(position[0]), float(position[1]), float(position[2])),
            sensor_rotation=rotation,
        )

    async def _run(self, cfg: LidarConfig) -> Frame:
        frame = Frame(frame_start_time=self.clock.now())
        self._current_frame = frame
        _log.info(
            "Starting LiDAR frame scan: %d lines, %d points per line",
            cfg.line_count,
            cfg.points_per_line,
        )
        try:
            for line_index in range(cfg.line_count):
                packet = self.scan_line(line_index, cfg)
                frame.append(packet)
                _log.debug(
                    "Packet %d/%d: %d points, direction: %s, time: %.3fs",
                    line_index + 1,
                    cfg.line_count,
                    len(packet),
                    "L->R" if packet.left_to_right else "R->L",
                    packet.timestamp,
                )
                self._dispatch(self._packet_listeners, packet)
                if self._abort:
                    # cancel() came from a listener inside this task.
                    raise asyncio.CancelledError()
                if cfg.packet_delay_s > 0.0:
                    await self.clock.sleep(cfg.packet_delay_s)

            if cfg.frame_end_delay_s > 0.0:
                await self.clock.sleep(cfg.frame_end_delay_s)

            frame.complete(self.clock.now())
            _log.info(
                "Frame completed: %d points, %d packets, duration: %.3fs",
                frame.total_points,
                len(frame.packets),
                frame.duration,
            )
            self._last_point_cloud = frame.point_cloud()
            # the frame is complete; cancel() from a frame listener is a no-op
            self._delivering = True
            self._dispatch(self._frame_listeners, frame)
            return frame
        except asyncio.CancelledError:
            _log.info("Frame scan cancelled after %d/%d packets.", len(frame.packets), cfg.line_count)
            raise
        finally:
            task = asyncio.current_task()
            if task is not None:
                self._release(task)

    @staticmethod
    def _dispatch(listeners: List[Callable], payload: object) -> None:
        for listener in list(listeners):
            try:
                listener(payload)
            except Exception:
                _log.exception("Listener %r failed", listener)
