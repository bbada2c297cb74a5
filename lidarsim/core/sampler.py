from __future__ import annotations
from typing import Optional
import numpy as np

from ..config.schema import LidarConfig
from ..sensors.noise import GaussianNoise
from .pointcloud import Point
from .scene import SceneOracle
from .utils import get_logger, unit

_log = get_logger()


def lambertian_intensity(direction: np.ndarray, normal: np.ndarray) -> float:
    """Cosine of the incidence angle, clamped below at zero."""
    return max(0.0, float(np.dot(-unit(direction), unit(normal))))


class RangeSampler:
    """Turns one ray into at most one noisy, coloured point.

    A miss returns ``None``. Oracle failures are treated as misses so a bad
    ray never aborts a scan.
    """

    def sample(
        self,
        origin: np.ndarray,
        direction: np.ndarray,
        cfg: LidarConfig,
        rng: np.random.Generator,
        scene: SceneOracle,
    ) -> Optional[Point]:
        direction = unit(direction)
        try:
            hit = scene.cast_ray(np.asarray(origin, dtype=np.float64), direction, cfg.scan_radius)
        except Exception as exc:
            _log.debug("Ray query failed, treating as miss: %s", exc)
            return None
        if hit is None:
            return None

        normal = unit(hit.normal)
        offset = GaussianNoise(cfg.noise_std_dev).sample(rng)
        position = np.asarray(hit.point, dtype=np.float64) + normal * offset
        intensity = lambertian_intensity(direction, normal)
        color = hit.surface.color()
        return Point(
            position=(float(position[0]), float(position[1]), float(position[2])),
            intensity=intensity,
            color=color,
        )
