from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from ..config import ScenarioConfig, load_config
from ..core.pointcloud import Frame
from ..runtime.builders import build_autosave, build_clock, build_scene, build_sensor
from ..sensors.lidar import ExternalLidarSensor


@dataclass(frozen=True)
class ScanRunResult:
    """Summary of a scan run driven by a configuration file."""

    frames: List[Frame]
    stats: Dict[str, int]
    output_paths: List[Path]
    config: ScenarioConfig


async def _scan_frames(sensor: ExternalLidarSensor, count: int) -> List[Frame]:
    frames: List[Frame] = []
    for _ in range(count):
        frame = await sensor.capture_frame()
        if frame is not None:
            frames.append(frame)
    return frames


def scan_from_config(
    config: Union[str, Path, ScenarioConfig],
    *,
    output_dir: Optional[Path] = None,
    seed: Optional[int] = None,
    frames: Optional[int] = None,
    formats: Optional[Sequence[str]] = None,
) -> ScanRunResult:
    """Run a scan scenario described by a configuration file or object.

    Parameters
    ----------
    config:
        Path to a YAML file or a pre-loaded :class:`~lidarsim.config.schema.ScenarioConfig`.
    output_dir:
        Optional override for the directory auto-saved frames are written to.
    seed:
        Optional RNG seed. Falls back to the value in the config or ``12345``.
    frames:
        Optional override for the number of frames to scan.
    formats:
        Optional subset of ``ply``, ``stats``, ``las``, ``npz``, ``metadata``.
        An empty sequence scans without writing anything.

    Returns
    -------
    ScanRunResult
        The completed frames, basic statistics (frames, packets, points), the
        files written and the resolved configuration used for the run.
    """

    cfg = load_config(config) if not isinstance(config, ScenarioConfig) else config.model_copy(deep=True)

    if output_dir is not None:
        cfg.output.directory = Path(output_dir).resolve()
    if frames is not None:
        if frames < 1:
            raise ValueError("frames must be at least 1")
        cfg.frames = frames
    if formats is not None:
        unknown = sorted(set(formats) - {"ply", "stats", "las", "npz", "metadata"})
        if unknown:
            raise ValueError(f"Unsupported output format(s): {', '.join(unknown)}")
        cfg.output.formats = list(formats)  # type: ignore[assignment]

    scene = build_scene(cfg)
    clock = build_clock(cfg)
    run_seed = seed if seed is not None else (cfg.seed if cfg.seed is not None else 12345)
    rng = np.random.default_rng(run_seed)
    autosave = build_autosave(cfg) if cfg.output.formats else None
    sensor = build_sensor(cfg, scene, clock, rng, autosave=autosave)

    done = asyncio.run(_scan_frames(sensor, cfg.frames))

    stats = {
        "frames": len(done),
        "packets": sum(len(f.packets) for f in done),
        "points": sum(f.total_points for f in done),
    }
    return ScanRunResult(frames=done, stats=stats, output_paths=list(sensor.saved_files), config=cfg)
