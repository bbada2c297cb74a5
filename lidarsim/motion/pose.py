from __future__ import annotations
from dataclasses import dataclass
from typing import Protocol
import numpy as np

class PoseSource(Protocol):
    def world_position(self) -> np.ndarray: ...
    def world_orientation(self) -> np.ndarray: ...

@dataclass
class Pose:
    t: np.ndarray   # (3,)
    R: np.ndarray   # (3,3)

    @staticmethod
    def from_xyz_rpy(xyz: tuple[float,float,float], rpy_deg: tuple[float,float,float]) -> "Pose":
        rx, ry, rz = np.deg2rad(rpy_deg)
        cx, sx = np.cos(rx), np.sin(rx)
        cy, sy = np.cos(ry), np.sin(ry)
        cz, sz = np.cos(rz), np.sin(rz)
        Rx = np.array([[1,0,0],[0,cx,-sx],[0,sx,cx]])
        Ry = np.array([[cy,0,sy],[0,1,0],[-sy,0,cy]])
        Rz = np.array([[cz,-sz,0],[sz,cz,0],[0,0,1]])
        R = Rz @ Ry @ Rx
        return Pose(t=np.array(xyz, dtype=float), R=R.astype(float))

    # A fixed pose is its own pose source.
    def world_position(self) -> np.ndarray:
        return np.array(self.t, dtype=float)

    def world_orientation(self) -> np.ndarray:
        return np.array(self.R, dtype=float)

    def matrix(self) -> np.ndarray:
        """4x4 local-to-world transform."""
        m = np.eye(4)
        m[:3, :3] = self.R
        m[:3, 3] = self.t
        return m


def euler_rpy_deg(R: np.ndarray) -> tuple[float, float, float]:
    """Inverse of ``Pose.from_xyz_rpy`` (R = Rz @ Ry @ Rx), in degrees."""
    R = np.asarray(R, dtype=float).reshape(3, 3)
    pitch = np.arcsin(np.clip(-R[2, 0], -1.0, 1.0))
    if abs(R[2, 0]) < 1.0 - 1e-9:
        roll = np.arctan2(R[2, 1], R[2, 2])
        yaw = np.arctan2(R[1, 0], R[0, 0])
    else:
        # Gimbal lock: fold everything into yaw.
        roll = 0.0
        yaw = np.arctan2(-R[0, 1], R[1, 1])
    r, p, y = np.rad2deg([roll, pitch, yaw])
    return (float(r), float(p), float(y))
