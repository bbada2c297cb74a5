from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..config.schema import LidarConfig
from ..core.utils import ensure_unit_vectors, rot_x, rot_y

# Sensor-local forward axis; +Y is up, so positive vertical angles tilt down.
FORWARD = np.array([0.0, 0.0, 1.0])


def sweep_left_to_right(line_index: int) -> bool:
    """Even lines sweep left-to-right, odd lines right-to-left."""
    return line_index % 2 == 0


def traversal_indices(points_per_line: int, left_to_right: bool) -> range:
    if left_to_right:
        return range(points_per_line)
    return range(points_per_line - 1, -1, -1)


def _step(fov_deg: float, count: int) -> float:
    return fov_deg / max(1, count - 1)


def _normalized(index: int | np.ndarray, count: int) -> float | np.ndarray:
    return (index / max(1, count - 1)) * 2.0 - 1.0


def scan_angles(line_index: int, point_index: int, cfg: LidarConfig) -> tuple[float, float]:
    """Return ``(vertical_deg, horizontal_deg)`` after fisheye scaling."""
    vertical = -cfg.vertical_fov_deg / 2.0 + line_index * _step(cfg.vertical_fov_deg, cfg.line_count)
    horizontal = -cfg.horizontal_fov_deg / 2.0 + point_index * _step(cfg.horizontal_fov_deg, cfg.points_per_line)
    if cfg.fisheye_strength == 0.0:
        return vertical, horizontal
    norm_h = _normalized(point_index, cfg.points_per_line)
    norm_v = _normalized(line_index, cfg.line_count)
    scale = 1.0 + cfg.fisheye_strength * (norm_h * norm_h + norm_v * norm_v)
    return vertical * scale, horizontal * scale


@dataclass
class PatternSample:
    """Directions for one scan line, listed in traversal order."""

    directions: np.ndarray        # (N, 3) unit
    point_index: np.ndarray       # (N,)
    vertical_deg: np.ndarray      # (N,)
    horizontal_deg: np.ndarray    # (N,)
    left_to_right: bool


class SweepPattern:
    """Bidirectional line-by-line sweep with optional fisheye magnification.

    Both sweep directions visit the same set of horizontal angles; only the
    emission order is reversed on odd lines.
    """

    def direction(
        self,
        line_index: int,
        point_index: int,
        left_to_right: bool,
        cfg: LidarConfig,
    ) -> np.ndarray:
        """Unit ray direction in sensor-local space.

        ``left_to_right`` selects traversal order only and leaves the angle
        for a given ``point_index`` unchanged.
        """
        vertical, horizontal = scan_angles(line_index, point_index, cfg)
        d = rot_y(horizontal) @ rot_x(vertical) @ FORWARD
        return d / np.linalg.norm(d)

    def sample(
        self,
        line_index: int,
        cfg: LidarConfig,
        rotation: Optional[np.ndarray] = None,
    ) -> PatternSample:
        left_to_right = sweep_left_to_right(line_index)
        idx = np.asarray(traversal_indices(cfg.points_per_line, left_to_right), dtype=np.int64)

        vertical = -cfg.vertical_fov_deg / 2.0 + line_index * _step(cfg.vertical_fov_deg, cfg.line_count)
        v_deg = np.full(idx.shape, vertical, dtype=np.float64)
        h_deg = -cfg.horizontal_fov_deg / 2.0 + idx * _step(cfg.horizontal_fov_deg, cfg.points_per_line)
        if cfg.fisheye_strength != 0.0:
            norm_h = _normalized(idx.astype(np.float64), cfg.points_per_line)
            norm_v = _normalized(line_index, cfg.line_count)
            scale = 1.0 + cfg.fisheye_strength * (norm_h ** 2 + norm_v ** 2)
            v_deg = v_deg * scale
            h_deg = h_deg * scale

        v_rad = np.deg2rad(v_deg)
        h_rad = np.deg2rad(h_deg)
        dirs = np.column_stack(
            [
                np.cos(v_rad) * np.sin(h_rad),
                -np.sin(v_rad),
                np.cos(v_rad) * np.cos(h_rad),
            ]
        )
        if rotation is not None:
            dirs = (np.asarray(rotation, dtype=np.float64).reshape(3, 3) @ dirs.T).T
        dirs = ensure_unit_vectors(dirs)
        return PatternSample(
            directions=dirs,
            point_index=idx,
            vertical_deg=v_deg,
            horizontal_deg=h_deg,
            left_to_right=left_to_right,
        )
