from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence, Union
import numpy as np

import trimesh  # type: ignore

from .intersector import intersect_quad, intersect_triangles
from .pointcloud import Vec3, WHITE
from .utils import get_logger, unit

_log = get_logger()


class Texture2D:
    """RGB texture sampled bilinearly with repeat wrapping.

    Row 0 of ``pixels`` is the v=0 (bottom) edge; channels are floats in [0, 1].
    """

    def __init__(self, pixels: np.ndarray) -> None:
        arr = np.asarray(pixels, dtype=np.float64)
        if arr.ndim != 3 or arr.shape[2] < 3 or arr.shape[0] == 0 or arr.shape[1] == 0:
            raise ValueError("Texture pixels must have shape (H, W, 3|4).")
        self.pixels = arr[:, :, :3]
        self.height, self.width = self.pixels.shape[:2]

    @classmethod
    def from_image(cls, image: np.ndarray) -> "Texture2D":
        """Build from a top-down uint8 image array (as read from disk)."""
        arr = np.asarray(image)
        if arr.ndim == 2:
            arr = np.stack([arr, arr, arr], axis=-1)
        scale = 255.0 if np.issubdtype(arr.dtype, np.integer) else 1.0
        return cls(arr[::-1, :, :3].astype(np.float64) / scale)

    def sample_bilinear(self, u: float, v: float) -> Vec3:
        x = u * self.width - 0.5
        y = v * self.height - 0.5
        x0 = int(np.floor(x))
        y0 = int(np.floor(y))
        fx = x - x0
        fy = y - y0
        xs = (x0 % self.width, (x0 + 1) % self.width)
        ys = (y0 % self.height, (y0 + 1) % self.height)
        p = self.pixels
        top = p[ys[0], xs[0]] * (1.0 - fx) + p[ys[0], xs[1]] * fx
        bottom = p[ys[1], xs[0]] * (1.0 - fx) + p[ys[1], xs[1]] * fx
        c = top * (1.0 - fy) + bottom * fy
        return (float(c[0]), float(c[1]), float(c[2]))


@dataclass(frozen=True)
class TexturedSurface:
    texture: Texture2D
    uv: tuple[float, float]

    def color(self) -> Vec3:
        return self.texture.sample_bilinear(*self.uv)


@dataclass(frozen=True)
class FlatColor:
    rgb: Vec3

    def color(self) -> Vec3:
        return self.rgb


@dataclass(frozen=True)
class NoSurface:
    def color(self) -> Vec3:
        return WHITE


SurfaceColorSource = Union[TexturedSurface, FlatColor, NoSurface]


@dataclass(frozen=True)
class HitRecord:
    point: np.ndarray                  # (3,)
    normal: np.ndarray                 # (3,) unit
    distance: float
    surface: SurfaceColorSource = field(default_factory=NoSurface)


class SceneOracle(Protocol):
    def cast_ray(self, origin: np.ndarray, direction: np.ndarray, max_distance: float) -> Optional[HitRecord]: ...


def _facing(normal: np.ndarray, direction: np.ndarray) -> np.ndarray:
    """Surface normal turned towards the incoming ray (surfaces are two-sided)."""
    return -normal if float(np.dot(direction, normal)) > 0.0 else normal


def _surface_for(color: Optional[Sequence[float]]) -> SurfaceColorSource:
    if color is None:
        return NoSurface()
    r, g, b = (float(c) for c in color[:3])
    return FlatColor((r, g, b))


class QuadObject:
    """Finite rectangle, two-sided, with a flat colour or a UV texture."""

    def __init__(
        self,
        center: Sequence[float],
        normal: Sequence[float] = (0.0, 0.0, -1.0),
        up: Sequence[float] = (0.0, 1.0, 0.0),
        size: tuple[float, float] = (10.0, 10.0),
        color: Optional[Sequence[float]] = None,
        texture: Optional[Texture2D] = None,
    ) -> None:
        if size[0] <= 0.0 or size[1] <= 0.0:
            raise ValueError("size must be positive.")
        self.center = np.asarray(center, dtype=np.float64).reshape(3)
        self.normal = unit(normal)
        u_axis = np.cross(np.asarray(up, dtype=np.float64), self.normal)
        if np.linalg.norm(u_axis) < 1e-9:
            raise ValueError("up must not be parallel to normal.")
        self.u_axis = unit(u_axis)
        self.v_axis = unit(np.cross(self.normal, self.u_axis))
        self.half_extents = (0.5 * float(size[0]), 0.5 * float(size[1]))
        self.texture = texture
        self._flat = _surface_for(color)

    def cast_ray(self, origin: np.ndarray, direction: np.ndarray, max_distance: float) -> Optional[HitRecord]:
        o = np.asarray(origin, dtype=np.float64)
        d = np.asarray(direction, dtype=np.float64)
        hit = intersect_quad(o, d, self.center, self.normal, self.u_axis, self.v_axis,
                             self.half_extents, max_distance)
        if hit is None:
            return None
        surface: SurfaceColorSource
        if self.texture is not None:
            surface = TexturedSurface(self.texture, hit.uv)
        else:
            surface = self._flat
        return HitRecord(point=o + d * hit.distance, normal=_facing(self.normal, d),
                         distance=hit.distance, surface=surface)


class MeshObject:
    """Triangle mesh oracle backed by a trimesh mesh.

    Colour priority per hit: UV texture, configured colour, face/vertex colours.
    """

    def __init__(self, mesh: "trimesh.Trimesh", color: Optional[Sequence[float]] = None) -> None:
        self._triangles = np.asarray(mesh.triangles, dtype=np.float64)
        self._normals = np.asarray(mesh.face_normals, dtype=np.float64)
        self._faces = np.asarray(mesh.faces, dtype=np.int64)
        self._flat = _surface_for(color) if color is not None else None
        self._uv: Optional[np.ndarray] = None
        self._texture: Optional[Texture2D] = None
        self._face_colors: Optional[np.ndarray] = None

        visual = mesh.visual
        kind = getattr(visual, "kind", None)
        if kind == "texture":
            uv = getattr(visual, "uv", None)
            image = _material_image(getattr(visual, "material", None))
            if uv is not None and image is not None:
                self._uv = np.asarray(uv, dtype=np.float64)
                self._texture = Texture2D.from_image(image)
        elif kind in ("face", "vertex"):
            self._face_colors = np.asarray(visual.face_colors, dtype=np.float64)[:, :3] / 255.0

    @classmethod
    def from_file(cls, path: str | Path, color: Optional[Sequence[float]] = None) -> "MeshObject":
        mesh = trimesh.load(str(path), force="mesh")
        _log.info("Loaded mesh %s (%d faces)", Path(path).name, len(mesh.faces))
        return cls(mesh, color=color)

    def cast_ray(self, origin: np.ndarray, direction: np.ndarray, max_distance: float) -> Optional[HitRecord]:
        o = np.asarray(origin, dtype=np.float64)
        d = np.asarray(direction, dtype=np.float64)
        hit = intersect_triangles(o, d, self._triangles, max_distance)
        if hit is None:
            return None
        return HitRecord(
            point=o + d * hit.distance,
            normal=_facing(unit(self._normals[hit.face]), d),
            distance=hit.distance,
            surface=self._surface(hit.face, hit.barycentric),
        )

    def _surface(self, face: int, bary: tuple[float, float]) -> SurfaceColorSource:
        if self._texture is not None and self._uv is not None:
            i0, i1, i2 = self._faces[face]
            b1, b2 = bary
            uv = (1.0 - b1 - b2) * self._uv[i0] + b1 * self._uv[i1] + b2 * self._uv[i2]
            return TexturedSurface(self._texture, (float(uv[0]), float(uv[1])))
        if self._flat is not None:
            return self._flat
        if self._face_colors is not None:
            return _surface_for(self._face_colors[face])
        return NoSurface()


def _material_image(material: object) -> Optional[np.ndarray]:
    if material is None:
        return None
    for attr in ("image", "baseColorTexture"):
        image = getattr(material, attr, None)
        if image is not None:
            return np.asarray(image)
    return None


class CompositeScene:
    """Nearest hit across several scene objects."""

    def __init__(self, objects: Iterable[SceneOracle] = ()) -> None:
        self.objects: List[SceneOracle] = list(objects)

    def add(self, obj: SceneOracle) -> None:
        self.objects.append(obj)

    def cast_ray(self, origin: np.ndarray, direction: np.ndarray, max_distance: float) -> Optional[HitRecord]:
        best: Optional[HitRecord] = None
        limit = float(max_distance)
        for obj in self.objects:
            hit = obj.cast_ray(origin, direction, limit)
            if hit is not None and (best is None or hit.distance < best.distance):
                best = hit
                limit = hit.distance
        return best
