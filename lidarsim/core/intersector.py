from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import numpy as np


@dataclass(frozen=True)
class TriangleHit:
    distance: float
    face: int
    barycentric: tuple[float, float]   # (u, v) weights of vertices 1 and 2


@dataclass(frozen=True)
class QuadHit:
    distance: float
    uv: tuple[float, float]            # [0,1]^2 across the quad


def intersect_triangles(
    origin: np.ndarray,
    direction: np.ndarray,
    triangles: np.ndarray,
    max_range: float,
    epsilon: float = 1e-9,
) -> Optional[TriangleHit]:
    """Closest Möller–Trumbore hit of one ray against (F, 3, 3) triangles."""
    if triangles.shape[0] == 0:
        return None
    o = np.asarray(origin, dtype=np.float64)
    d = np.asarray(direction, dtype=np.float64)
    v0 = triangles[:, 0, :]
    edge1 = triangles[:, 1, :] - v0
    edge2 = triangles[:, 2, :] - v0

    pvec = np.cross(d, edge2)
    det = np.einsum("ij,ij->i", edge1, pvec)
    valid = np.abs(det) > epsilon
    inv_det = np.zeros_like(det)
    inv_det[valid] = 1.0 / det[valid]

    tvec = o - v0
    u = np.einsum("ij,ij->i", tvec, pvec) * inv_det
    qvec = np.cross(tvec, edge1)
    v = (qvec @ d) * inv_det
    t = np.einsum("ij,ij->i", edge2, qvec) * inv_det

    valid &= (u >= 0.0) & (u <= 1.0) & (v >= 0.0) & (u + v <= 1.0)
    valid &= (t > epsilon) & (t <= max_range)
    if not np.any(valid):
        return None

    candidates = np.flatnonzero(valid)
    best = int(candidates[np.argmin(t[candidates])])
    return TriangleHit(distance=float(t[best]), face=best, barycentric=(float(u[best]), float(v[best])))


def intersect_quad(
    origin: np.ndarray,
    direction: np.ndarray,
    center: np.ndarray,
    normal: np.ndarray,
    u_axis: np.ndarray,
    v_axis: np.ndarray,
    half_extents: tuple[float, float],
    max_range: float,
    epsilon: float = 1e-9,
) -> Optional[QuadHit]:
    """Two-sided ray/rectangle test; ``u_axis``/``v_axis`` must be unit and orthogonal."""
    denom = float(np.dot(direction, normal))
    if abs(denom) < epsilon:
        return None
    t = float(np.dot(center - origin, normal)) / denom
    if t <= epsilon or t > max_range:
        return None
    local = origin + direction * t - center
    a = float(np.dot(local, u_axis))
    b = float(np.dot(local, v_axis))
    hu, hv = half_extents
    if abs(a) > hu or abs(b) > hv:
        return None
    return QuadHit(distance=t, uv=(0.5 + 0.5 * a / hu, 0.5 + 0.5 * b / hv))
