from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from ..config import ScenarioConfig
from ..config.schema import MeshObjectConfig, QuadObjectConfig
from ..core.clock import Clock, MonotonicClock, SimulatedClock
from ..core.scene import CompositeScene, MeshObject, QuadObject, Texture2D
from ..motion.pose import Pose
from ..motion.trajectory import PolylineTrajectory, StaticTrajectory, Trajectory, TrajectoryPoseSource
from ..sensors.lidar import AutoSaveConfig, ExternalLidarSensor


def build_scene(cfg: ScenarioConfig) -> CompositeScene:
    scene = CompositeScene()
    for obj in cfg.scene.objects:
        if isinstance(obj, QuadObjectConfig):
            texture = None
            if obj.texture is not None:
                texture = Texture2D(np.asarray(obj.texture, dtype=np.float64))
            scene.add(
                QuadObject(
                    center=obj.center,
                    normal=obj.normal,
                    up=obj.up,
                    size=obj.size,
                    color=obj.color,
                    texture=texture,
                )
            )
        elif isinstance(obj, MeshObjectConfig):
            scene.add(MeshObject.from_file(obj.path, color=obj.color))
        else:
            raise ValueError(f"Unsupported scene object kind: {obj.kind}")
    return scene


def build_clock(cfg: ScenarioConfig) -> Clock:
    if cfg.clock == "simulated":
        return SimulatedClock()
    if cfg.clock == "monotonic":
        return MonotonicClock()
    raise ValueError(f"Unsupported clock: {cfg.clock}")


def build_trajectory(cfg: ScenarioConfig) -> Trajectory:
    traj_cfg = cfg.trajectory
    if traj_cfg.kind == "static":
        return StaticTrajectory(Pose.from_xyz_rpy(traj_cfg.xyz, traj_cfg.rpy_deg))
    if traj_cfg.kind == "polyline":
        return PolylineTrajectory(
            traj_cfg.waypoints,
            speed_mps=traj_cfg.speed_mps,
            rpy_deg=traj_cfg.rpy_deg,
            start_time_s=traj_cfg.start_time_s,
        )
    raise ValueError(f"Unsupported trajectory kind: {traj_cfg.kind}")


def build_pose_source(cfg: ScenarioConfig, clock: Clock) -> TrajectoryPoseSource:
    return TrajectoryPoseSource(build_trajectory(cfg), clock)


def build_autosave(cfg: ScenarioConfig, formats: Optional[Sequence[str]] = None) -> AutoSaveConfig:
    out_cfg = cfg.output
    selected = set(formats if formats is not None else out_cfg.formats)
    return AutoSaveConfig(
        directory=out_cfg.directory,
        save_ply="ply" in selected,
        save_stats="stats" in selected,
        save_las="las" in selected,
        save_npz="npz" in selected,
        save_metadata="metadata" in selected,
        include_packet_info=out_cfg.include_packet_info,
    )


def build_sensor(
    cfg: ScenarioConfig,
    scene: CompositeScene,
    clock: Clock,
    rng: np.random.Generator,
    autosave: Optional[AutoSaveConfig] = None,
) -> ExternalLidarSensor:
    return ExternalLidarSensor(
        scene,
        build_pose_source(cfg, clock),
        config=cfg.lidar,
        clock=clock,
        rng=rng,
        autosave=autosave,
    )
