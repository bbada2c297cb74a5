from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence
import numpy as np
import pathlib

import laspy  # type: ignore
from pydantic import BaseModel

from ..motion.pose import euler_rpy_deg
from .pointcloud import Frame, Packet, Point, color_to_uint8
from .utils import get_logger

_log = get_logger()

PLY_PROPERTIES = (
    "property float x",
    "property float y",
    "property float z",
    "property float intensity",
    "property uchar red",
    "property uchar green",
    "property uchar blue",
)

FRAME_STATS_TITLE = "LiDAR Frame Statistics"
PACKET_INFO_TITLE = "LiDAR Packet Information"


def _f3(v: float) -> str:
    # round() first so tiny negatives do not print as -0.000
    return f"{round(float(v), 3) + 0.0:.3f}"


def _vec3(v: Sequence[float]) -> str:
    return f"({_f3(v[0])}, {_f3(v[1])}, {_f3(v[2])})"


def _time(t: Optional[float]) -> str:
    return "n/a" if t is None else f"{t:.6f}s"


def _vertex_line(p: Point) -> str:
    r, g, b = color_to_uint8(p.color)
    x, y, z = p.position
    return f"{x:.6f} {y:.6f} {z:.6f} {p.intensity:.6f} {r} {g} {b}"


def _ply_header(vertex_count: int) -> List[str]:
    return ["ply", "format ascii 1.0", f"element vertex {vertex_count}", *PLY_PROPERTIES]


def _has_points(frame: Optional[Frame]) -> bool:
    return frame is not None and bool(frame.packets) and frame.total_points > 0


def format_frame_ply(frame: Optional[Frame], include_packet_info: bool = True) -> Optional[str]:
    """ASCII PLY for a whole frame, or ``None`` (with a warning) when empty.

    Vertices are written packet by packet in scan order; the declared vertex
    count is ``frame.total_points``.
    """
    if not _has_points(frame):
        _log.warning("Cannot save empty LiDAR frame to PLY")
        return None
    assert frame is not None
    lines = _ply_header(frame.total_points)
    if include_packet_info:
        lines += [
            "comment LiDAR Frame Information:",
            f"comment Frame Start Time: {_time(frame.frame_start_time)}",
            f"comment Frame End Time: {_time(frame.frame_end_time)}",
            f"comment Frame Duration: {_time(frame.duration)}",
            f"comment Total Packets: {len(frame.packets)}",
            f"comment Total Points: {frame.total_points}",
            "comment Packet Information:",
        ]
        for i, packet in enumerate(frame.packets):
            lines.append(
                f"comment Packet {i}: Line {packet.line_index}, "
                f"Direction: {'L->R' if packet.left_to_right else 'R->L'}, "
                f"Points: {len(packet.points)}, "
                f"Time: {packet.timestamp:.6f}s, "
                f"Position: {_vec3(packet.sensor_position)}"
            )
    lines.append("end_header")
    for packet in frame.packets:
        lines.extend(_vertex_line(p) for p in packet.points)
    return "\n".join(lines) + "\n"


def format_packet_ply(packet: Optional[Packet]) -> Optional[str]:
    if packet is None or not packet.points:
        _log.warning("Cannot save empty packet to PLY")
        return None
    lines = _ply_header(len(packet.points))
    lines += [
        "comment LiDAR Packet Information:",
        f"comment Line Index: {packet.line_index}",
        f"comment Direction: {packet.direction_label}",
        f"comment Points Count: {len(packet.points)}",
        f"comment Timestamp: {packet.timestamp:.6f}s",
        f"comment Sensor Position: {_vec3(packet.sensor_position)}",
        f"comment Sensor Rotation: {_vec3(euler_rpy_deg(packet.sensor_rotation))}",
        "end_header",
    ]
    lines.extend(_vertex_line(p) for p in packet.points)
    return "\n".join(lines) + "\n"


def format_frame_stats(frame: Optional[Frame], title: str = FRAME_STATS_TITLE) -> Optional[str]:
    """Human-readable timing and per-packet pose report.

    The auto-saved ``packet_info_NNNN.txt`` uses ``PACKET_INFO_TITLE``.
    """
    if not _has_points(frame):
        _log.warning("Cannot save stats for empty LiDAR frame")
        return None
    assert frame is not None
    lines = [
        title,
        "=" * (len(title) - 1),
        "",
        f"Frame Start Time: {_time(frame.frame_start_time)}",
        f"Frame End Time: {_time(frame.frame_end_time)}",
        f"Frame Duration: {_time(frame.duration)}",
        f"Total Packets: {len(frame.packets)}",
        f"Total Points: {frame.total_points}",
        "",
        "Packet Details:",
        "===============",
    ]
    for i, packet in enumerate(frame.packets):
        lines += [
            f"Packet {i + 1}:",
            f"  Line Index: {packet.line_index}",
            f"  Direction: {packet.direction_label}",
            f"  Points: {len(packet.points)}",
            f"  Timestamp: {packet.timestamp:.6f}s",
            f"  Sensor Position: {_vec3(packet.sensor_position)}",
            f"  Sensor Rotation: {_vec3(euler_rpy_deg(packet.sensor_rotation))}",
            "",
        ]
    return "\n".join(lines) + "\n"


class TextFileSink:
    """Writes a prepared payload, creating parent directories."""

    def write(self, path: str | pathlib.Path, payload: str, encoding: str = "utf-8") -> pathlib.Path:
        path = pathlib.Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        # newline="" keeps "\n" on every platform
        with open(path, "w", encoding=encoding, newline="") as f:
            f.write(payload)
        return path


@dataclass
class LasWriter:
    """Streaming LAS writer using laspy (v2+), one packet at a time.

    The header is created lazily from the first non-empty packet so the
    offset can follow the data.
    """
    path: str
    point_format: int = 3
    compress: bool = False
    scale: tuple[float, float, float] = (1e-4, 1e-4, 1e-4)
    offset: Optional[tuple[float, float, float]] = None

    def __post_init__(self) -> None:
        self._fh: Optional[laspy.LasWriter] = None  # type: ignore
        self._header: Optional[laspy.LasHeader] = None  # type: ignore

    def write_packet(self, packet: Packet) -> None:
        if not packet.points:
            return
        if self._fh is None:
            self._init_header(packet)
        assert self._fh is not None and self._header is not None
        self._fh.write_points(self._point_record(packet, self._header))

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def _init_header(self, packet: Packet) -> None:
        hdr = laspy.LasHeader(point_format=self.point_format, version="1.4")
        hdr.scales = self.scale
        if self.offset is None:
            mn = np.min(packet.xyz(), axis=0)
            hdr.offsets = (float(mn[0]), float(mn[1]), float(mn[2]))
        else:
            hdr.offsets = self.offset
        hdr.add_extra_dim(laspy.ExtraBytesParams(name="scanline_id", type="uint16"))
        hdr.add_extra_dim(laspy.ExtraBytesParams(name="left_to_right", type="uint8"))

        path = pathlib.Path(self.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = laspy.open(path, mode="w", header=hdr, do_compress=self.compress)
        self._header = hdr
        _log.info("Opened %s (PF=%d, compress=%s)", path.name, self.point_format, self.compress)

    def _point_record(self, packet: Packet, header: "laspy.LasHeader") -> "laspy.ScaleAwarePointRecord":
        n = len(packet.points)
        pts = laspy.ScaleAwarePointRecord.zeros(n, header=header)
        xyz = packet.xyz()
        pts.x = xyz[:, 0]
        pts.y = xyz[:, 1]
        pts.z = xyz[:, 2]

        v = np.clip(packet.intensities().astype(np.float64), 0.0, 1.0)
        pts.intensity = (v * 65535.0 + 0.5).astype(np.uint16)
        pts.gps_time = np.full(n, packet.timestamp, dtype=np.float64)

        rgb = np.asarray([color_to_uint8(p.color) for p in packet.points], dtype=np.uint16) * 257
        pts.red = rgb[:, 0]
        pts.green = rgb[:, 1]
        pts.blue = rgb[:, 2]

        pts["scanline_id"] = np.full(n, packet.line_index, dtype=np.uint16)
        pts["left_to_right"] = np.full(n, int(packet.left_to_right), dtype=np.uint8)
        return pts


class NpzWriter:
    def __init__(self, path: str) -> None:
        self.path = path
        self._packets: List[Packet] = []

    def write_packet(self, packet: Packet) -> None:
        if packet.points:
            self._packets.append(packet)

    def close(self) -> None:
        if not self._packets:
            return
        path = pathlib.Path(self.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        out = {
            "xyz": np.vstack([p.xyz() for p in self._packets]),
            "intensity": np.concatenate([p.intensities() for p in self._packets]),
            "rgb": np.asarray(
                [color_to_uint8(pt.color) for p in self._packets for pt in p.points], dtype=np.uint8
            ),
            "line_index": np.concatenate(
                [np.full(len(p.points), p.line_index, dtype=np.uint32) for p in self._packets]
            ),
            "timestamp": np.concatenate(
                [np.full(len(p.points), p.timestamp, dtype=np.float64) for p in self._packets]
            ),
        }
        np.savez_compressed(path, **out)
        self._packets.clear()


class PointCloudExporter:
    """Export boundary: empty input is a warning, I/O failure is logged.

    Every ``save_*`` method returns the written path or ``None``; none of
    them raise for empty frames or failing disks.
    """

    def __init__(self, sink: Optional[TextFileSink] = None) -> None:
        self.sink = sink or TextFileSink()

    def save_frame_ply(
        self,
        frame: Optional[Frame],
        path: str | pathlib.Path,
        include_packet_info: bool = True,
    ) -> Optional[pathlib.Path]:
        payload = format_frame_ply(frame, include_packet_info=include_packet_info)
        if payload is None:
            return None
        written = self._write_text(path, payload, "ascii", "LiDAR frame to PLY")
        if written is not None and frame is not None:
            _log.info("LiDAR frame saved to PLY: %s (%d points, %d packets)",
                      written, frame.total_points, len(frame.packets))
        return written

    def save_packet_ply(self, packet: Optional[Packet], path: str | pathlib.Path) -> Optional[pathlib.Path]:
        payload = format_packet_ply(packet)
        if payload is None:
            return None
        return self._write_text(path, payload, "ascii", "LiDAR packet to PLY")

    def save_frame_stats(
        self, frame: Optional[Frame], path: str | pathlib.Path, title: str = FRAME_STATS_TITLE
    ) -> Optional[pathlib.Path]:
        payload = format_frame_stats(frame, title=title)
        if payload is None:
            return None
        return self._write_text(path, payload, "utf-8", "frame statistics")

    def save_frame_las(self, frame: Optional[Frame], path: str | pathlib.Path, compress: bool = False) -> Optional[pathlib.Path]:
        if not _has_points(frame):
            _log.warning("Cannot save empty LiDAR frame to LAS")
            return None
        assert frame is not None
        return self._write_packets(LasWriter(str(path), compress=compress), frame, path, "LAS")

    def save_frame_npz(self, frame: Optional[Frame], path: str | pathlib.Path) -> Optional[pathlib.Path]:
        if not _has_points(frame):
            _log.warning("Cannot save empty LiDAR frame to NPZ")
            return None
        assert frame is not None
        return self._write_packets(NpzWriter(str(path)), frame, path, "NPZ")

    def save_metadata(self, metadata: BaseModel, path: str | pathlib.Path) -> Optional[pathlib.Path]:
        return self._write_text(path, metadata.model_dump_json(indent=2) + "\n", "utf-8", "sensor metadata")

    def _write_text(self, path: str | pathlib.Path, payload: str, encoding: str, what: str) -> Optional[pathlib.Path]:
        try:
            return self.sink.write(path, payload, encoding=encoding)
        except (OSError, UnicodeError) as exc:
            _log.error("Error saving %s: %s", what, exc)
            return None

    def _write_packets(self, writer: Any, frame: Frame, path: str | pathlib.Path, what: str) -> Optional[pathlib.Path]:
        try:
            try:
                for packet in frame.packets:
                    writer.write_packet(packet)
            finally:
                writer.close()
        except OSError as exc:
            _log.error("Error saving LiDAR frame to %s: %s", what, exc)
            return None
        return pathlib.Path(path)
