from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import numpy as np

Vec3 = Tuple[float, float, float]
WHITE: Vec3 = (1.0, 1.0, 1.0)


@dataclass(frozen=True)
class Point:
    """A single sampled surface return."""
    position: Vec3
    intensity: float = 1.0
    color: Vec3 = WHITE


@dataclass(frozen=True, eq=False)
class Packet:
    """One scan line of points plus the sensor pose at capture time.

    ``points`` keeps scan order along the line, so a right-to-left packet
    lists its points in decreasing horizontal angle. An empty packet is a
    valid record of a line that hit nothing.
    """
    line_index: int
    left_to_right: bool
    points: Tuple[Point, ...]
    timestamp: float
    sensor_position: Vec3
    sensor_rotation: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self) -> None:
        rot = np.array(self.sensor_rotation, dtype=np.float64).reshape(3, 3)
        rot.setflags(write=False)
        object.__setattr__(self, "sensor_rotation", rot)
        object.__setattr__(self, "points", tuple(self.points))

    def __len__(self) -> int:
        return len(self.points)

    @property
    def direction_label(self) -> str:
        return "Left to Right" if self.left_to_right else "Right to Left"

    def xyz(self) -> np.ndarray:
        return _xyz(self.points)

    def intensities(self) -> np.ndarray:
        return np.asarray([p.intensity for p in self.points], dtype=np.float32)


@dataclass
class Frame:
    """One full sweep of packets.

    Only the scan state machine mutates a frame; ``frame_end_time`` stays
    ``None`` until the sweep completes.
    """
    frame_start_time: float
    packets: List[Packet] = field(default_factory=list)
    frame_end_time: Optional[float] = None
    total_points: int = 0

    def append(self, packet: Packet) -> None:
        self.packets.append(packet)
        self.total_points += len(packet.points)

    def complete(self, end_time: float) -> None:
        self.frame_end_time = float(end_time)

    @property
    def is_complete(self) -> bool:
        return self.frame_end_time is not None

    @property
    def duration(self) -> Optional[float]:
        if self.frame_end_time is None:
            return None
        return self.frame_end_time - self.frame_start_time

    def point_cloud(self) -> Tuple[Point, ...]:
        """Flatten all packets in temporal order."""
        return tuple(p for packet in self.packets for p in packet.points)

    def xyz(self) -> np.ndarray:
        return _xyz(self.point_cloud())


def _xyz(points: Sequence[Point]) -> np.ndarray:
    if not points:
        return np.zeros((0, 3), dtype=np.float64)
    return np.asarray([p.position for p in points], dtype=np.float64)


def color_to_uint8(color: Sequence[float]) -> Tuple[int, int, int]:
    """Map [0,1] channels to bytes, rounding half to even and clamping."""
    return tuple(min(255, max(0, int(round(float(c) * 255.0)))) for c in color[:3])  # type: ignore[return-value]
