from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import numpy as np
import typer

from ..config import ConfigError, LidarConfig
from ..core.clock import SimulatedClock
from ..core.scene import CompositeScene, QuadObject
from ..motion.pose import Pose
from ..sdk.run import scan_from_config
from ..sensors.lidar import AutoSaveConfig, ExternalLidarSensor

app = typer.Typer(help="lidarsim scanning LiDAR simulator")

FORMATS = ("ply", "stats", "las", "npz", "metadata")


def _configure_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format="[%(levelname)s] %(message)s")
    logging.getLogger("lidarsim").setLevel(numeric)


def _check_formats(formats: Optional[List[str]]) -> Optional[List[str]]:
    if not formats:
        return None
    bad = [f for f in formats if f not in FORMATS]
    if bad:
        raise typer.BadParameter(f"Unsupported format(s) {bad}; choose from {list(FORMATS)}.", param_hint="--format")
    return list(formats)


def _execute_scan(
    config: Path,
    output_dir: Optional[Path],
    seed: Optional[int],
    frames: Optional[int],
    formats: Optional[List[str]],
    log_level: str,
) -> None:
    _configure_logging(log_level)
    result = scan_from_config(
        config,
        output_dir=output_dir,
        seed=seed,
        frames=frames,
        formats=_check_formats(formats),
    )
    typer.echo(
        f"Completed {result.stats['frames']} frame(s), {result.stats['packets']} packets, "
        f"{result.stats['points']} points → {result.config.output.directory}"
    )
    for path in result.output_paths:
        typer.echo(f"  wrote {path}")


@app.command("scan")
def scan(
    config: Path = typer.Argument(..., exists=True, readable=True, help="Path to YAML configuration file."),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Override output directory."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Override random seed."),
    frames: Optional[int] = typer.Option(None, "--frames", "-n", min=1, help="Override number of frames."),
    fmt: Optional[List[str]] = typer.Option(None, "--format", "-f", help="Output formats (ply, stats, las, npz, metadata)."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Run a scan scenario specified by a YAML config."""

    _execute_scan(config, output_dir, seed, frames, fmt, log_level)


@app.command("run")
def run(
    config: Path = typer.Argument(..., exists=True, readable=True, help="Path to YAML configuration file."),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Override output directory."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Override random seed."),
    frames: Optional[int] = typer.Option(None, "--frames", "-n", min=1, help="Override number of frames."),
    fmt: Optional[List[str]] = typer.Option(None, "--format", "-f", help="Output formats (ply, stats, las, npz, metadata)."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Alias for `scan`"""

    _execute_scan(config, output_dir, seed, frames, fmt, log_level)


@app.command("scan-plane")
def scan_plane(
    output_dir: Path = typer.Option(Path("SensorData/LidarPLY"), "--output-dir", "-o", help="Directory for the exported frame."),
    distance_m: float = typer.Option(10.0, "--distance-m", help="Distance from the sensor to the plane."),
    plane_size_m: float = typer.Option(40.0, "--plane-size-m", help="Edge length of the square plane."),
    lines: int = typer.Option(16, "--lines", help="Scan lines (channels) per frame."),
    points_per_line: int = typer.Option(64, "--points-per-line", help="Points sampled per line."),
    vertical_fov_deg: float = typer.Option(30.0, "--vertical-fov-deg", help="Vertical field of view in degrees."),
    horizontal_fov_deg: float = typer.Option(90.0, "--horizontal-fov-deg", help="Horizontal field of view in degrees."),
    noise_std_dev: float = typer.Option(0.01, "--noise-std-dev", help="Range noise along the surface normal (metres)."),
    fisheye_strength: float = typer.Option(0.0, "--fisheye-strength", help="Radial angular distortion strength."),
    seed: int = typer.Option(101, "--seed", help="Random seed for deterministic sampling."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Quick single-frame scan of a flat plane driven entirely from CLI options."""

    _configure_logging(log_level)
    try:
        cfg = LidarConfig().with_updates(
            line_count=lines,
            points_per_line=points_per_line,
            vertical_fov_deg=vertical_fov_deg,
            horizontal_fov_deg=horizontal_fov_deg,
            noise_std_dev=noise_std_dev,
            fisheye_strength=fisheye_strength,
        )
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc
    if distance_m <= 0.0 or plane_size_m <= 0.0:
        raise typer.BadParameter("distance and plane size must be positive.", param_hint="--distance-m")

    scene = CompositeScene([
        QuadObject(center=(0.0, 0.0, distance_m), size=(plane_size_m, plane_size_m), color=(0.8, 0.8, 0.8)),
    ])
    clock = SimulatedClock()
    sensor = ExternalLidarSensor(
        scene,
        Pose.from_xyz_rpy((0.0, 0.0, 0.0), (0.0, 0.0, 0.0)),
        config=cfg,
        clock=clock,
        rng=np.random.default_rng(seed),
        autosave=AutoSaveConfig(directory=output_dir.resolve()),
    )
    frame = asyncio.run(sensor.capture_frame())
    if frame is None:
        raise typer.Exit(code=1)
    typer.echo(f"Completed {frame.total_points} points in {len(frame.packets)} packets → {output_dir.resolve()}")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
