from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, Field

from ..config.schema import ConfigError, LidarConfig
from ..core.clock import Clock, MonotonicClock
from ..core.exporter import PACKET_INFO_TITLE, PointCloudExporter
from ..core.pointcloud import Frame, Point
from ..core.scanner import FrameListener, PacketListener, ScanStateMachine
from ..core.scene import SceneOracle
from ..core.utils import get_logger
from ..motion.pose import Pose, PoseSource

_log = get_logger()


class AutoSaveConfig(BaseModel):
    """Which files to write each time a frame completes."""

    directory: Path = Path("SensorData/LidarPLY")
    save_ply: bool = True
    save_stats: bool = True
    save_las: bool = False
    save_npz: bool = False
    save_metadata: bool = False
    include_packet_info: bool = True


class LidarParams(BaseModel):
    scan_radius: float
    vertical_fov_deg: float
    horizontal_fov_deg: float
    channel_count: int
    points_per_channel: int
    point_delay_ms: float


class SensorMetadata(BaseModel):
    """Per-frame sidecar: sensor pose (row-major 4x4) and scan parameters."""

    frame_index: int
    timestamp: float
    lidar_pose: List[float] = Field(min_length=16, max_length=16)
    lidar_params: LidarParams


class ExternalLidarSensor:
    """Scanning LiDAR mounted in a scene.

    Wraps a :class:`ScanStateMachine` with typed configuration mutators,
    pose/parameter accessors and optional auto-save of every completed
    frame. Configuration changes take effect from the next frame.
    """

    def __init__(
        self,
        scene: SceneOracle,
        pose_source: PoseSource,
        config: Optional[LidarConfig] = None,
        clock: Optional[Clock] = None,
        rng: Optional[np.random.Generator] = None,
        autosave: Optional[AutoSaveConfig] = None,
        exporter: Optional[PointCloudExporter] = None,
    ) -> None:
        self._config = config or LidarConfig()
        self.pose_source = pose_source
        self.clock: Clock = clock or MonotonicClock()
        self.autosave = autosave
        self.exporter = exporter or PointCloudExporter()
        self.saved_files: List[Path] = []
        self._frame_counter = 0

        self.scanner = ScanStateMachine(
            lambda: self._config,
            scene,
            pose_source,
            clock=self.clock,
            rng=rng,
        )
        self.scanner.add_frame_listener(self._on_frame_completed)

    # -- configuration --
    @property
    def config(self) -> LidarConfig:
        return self._config

    def update_config(self, **changes: Any) -> LidarConfig:
        try:
            self._config = self._config.with_updates(**changes)
        except ConfigError as exc:
            _log.error("Invalid LiDAR setting: %s", exc)
            raise
        return self._config

    def set_scan_radius(self, radius: float) -> None:
        self.update_config(scan_radius=radius)

    def set_vertical_fov(self, fov_deg: float) -> None:
        self.update_config(vertical_fov_deg=fov_deg)

    def set_horizontal_fov(self, fov_deg: float) -> None:
        self.update_config(horizontal_fov_deg=fov_deg)

    def set_channel_count(self, count: int) -> None:
        self.update_config(line_count=count)

    def set_points_per_channel(self, count: int) -> None:
        self.update_config(points_per_line=count)

    def set_noise_std_dev(self, std_dev: float) -> None:
        self.update_config(noise_std_dev=std_dev)

    def set_fisheye_strength(self, strength: float) -> None:
        self.update_config(fisheye_strength=strength)

    def set_point_delay_ms(self, delay: float) -> None:
        self.update_config(point_delay_ms=delay)

    def set_line_delay_ms(self, delay: float) -> None:
        self.update_config(packet_delay_ms=delay)

    def set_frame_delay_ms(self, delay: float) -> None:
        self.update_config(frame_end_delay_ms=delay)

    def set_enable_delays(self, enabled: bool) -> None:
        self.update_config(enable_delays=enabled)

    # -- accessors --
    @property
    def scan_radius(self) -> float:
        return self._config.scan_radius

    @property
    def vertical_fov_deg(self) -> float:
        return self._config.vertical_fov_deg

    @property
    def horizontal_fov_deg(self) -> float:
        return self._config.horizontal_fov_deg

    @property
    def channel_count(self) -> int:
        return self._config.line_count

    @property
    def current_frame(self) -> Optional[Frame]:
        return self.scanner.current_frame

    @property
    def is_scanning(self) -> bool:
        return self.scanner.is_scanning

    def is_data_ready(self) -> bool:
        return self.scanner.is_data_ready()

    def point_cloud(self) -> Tuple[Point, ...]:
        """Points of the last completed frame."""
        return self.scanner.last_point_cloud

    def pose_matrix(self) -> np.ndarray:
        pose = Pose(
            t=np.asarray(self.pose_source.world_position(), dtype=np.float64).reshape(3),
            R=np.asarray(self.pose_source.world_orientation(), dtype=np.float64).reshape(3, 3),
        )
        return pose.matrix()

    def metadata(self, frame_index: int) -> SensorMetadata:
        cfg = self._config
        return SensorMetadata(
            frame_index=frame_index,
            timestamp=self.clock.now(),
            lidar_pose=[float(v) for v in self.pose_matrix().reshape(-1)],
            lidar_params=LidarParams(
                scan_radius=cfg.scan_radius,
                vertical_fov_deg=cfg.vertical_fov_deg,
                horizontal_fov_deg=cfg.horizontal_fov_deg,
                channel_count=cfg.line_count,
                points_per_channel=cfg.points_per_line,
                point_delay_ms=cfg.point_delay_ms,
            ),
        )

    # -- listeners --
    def add_packet_listener(self, listener: PacketListener) -> None:
        self.scanner.add_packet_listener(listener)

    def remove_packet_listener(self, listener: PacketListener) -> None:
        self.scanner.remove_packet_listener(listener)

    def add_frame_listener(self, listener: FrameListener) -> None:
        self.scanner.add_frame_listener(listener)

    def remove_frame_listener(self, listener: FrameListener) -> None:
        self.scanner.remove_frame_listener(listener)

    # -- control --
    def update(self) -> Optional[asyncio.Task]:
        """Host tick: start a new frame unless one is in flight."""
        return self.scanner.start()

    start = update

    async def capture_frame(self) -> Optional[Frame]:
        return await self.scanner.scan_frame()

    def stop(self) -> bool:
        return self.scanner.cancel()

    # -- auto-save --
    def _on_frame_completed(self, frame: Frame) -> None:
        index = self._frame_counter
        self._frame_counter += 1
        if self.autosave is None:
            return
        self.saved_files.extend(self.save_frame(frame, index, self.autosave))

    def save_frame(self, frame: Frame, index: int, opts: AutoSaveConfig) -> List[Path]:
        """Write the selected outputs for one frame; returns the files written."""
        out = Path(opts.directory)
        tag = f"{index:04d}"
        written: List[Optional[Path]] = []
        if opts.save_ply:
            written.append(self.exporter.save_frame_ply(
                frame, out / f"lidar_frame_{tag}.ply", include_packet_info=opts.include_packet_info
            ))
        if opts.save_stats:
            written.append(self.exporter.save_frame_stats(
                frame, out / f"packet_info_{tag}.txt", title=PACKET_INFO_TITLE
            ))
        if opts.save_las:
            written.append(self.exporter.save_frame_las(frame, out / f"lidar_frame_{tag}.las"))
        if opts.save_npz:
            written.append(self.exporter.save_frame_npz(frame, out / f"lidar_frame_{tag}.npz"))
        if opts.save_metadata:
            written.append(self.exporter.save_metadata(self.metadata(index), out / f"sensor_metadata_{tag}.json"))
        return [p for p in written if p is not None]
