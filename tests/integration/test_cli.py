from __future__ import annotations

from pathlib import Path

import yaml
from typer.testing import CliRunner

from lidarsim.cli.main import app


def _write_config(path: Path) -> None:
    config = {
        "lidar": {
            "line_count": 4,
            "points_per_line": 8,
            "vertical_fov_deg": 30.0,
            "horizontal_fov_deg": 90.0,
            "noise_std_dev": 0.0,
        },
        "scene": {
            "objects": [
                {
                    "kind": "quad",
                    "center": [0.0, 0.0, 10.0],
                    "size": [40.0, 40.0],
                    "texture": [
                        [[1.0, 0.0, 0.0], [1.0, 0.0, 0.0]],
                        [[1.0, 0.0, 0.0], [1.0, 0.0, 0.0]],
                    ],
                }
            ]
        },
        "output": {"directory": "out", "formats": ["ply", "stats"]},
        "seed": 42,
    }
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config, f)


def _body(ply_path: Path) -> list[str]:
    lines = ply_path.read_text(encoding="ascii").splitlines()
    return lines[lines.index("end_header") + 1:]


def test_cli_scan_writes_ply_and_stats(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.yaml"
    _write_config(cfg_path)

    runner = CliRunner()
    result = runner.invoke(app, ["scan", str(cfg_path)])

    assert result.exit_code == 0, result.stdout
    ply = tmp_path / "out" / "lidar_frame_0000.ply"
    stats = tmp_path / "out" / "packet_info_0000.txt"
    assert ply.exists() and stats.exists()
    body = _body(ply)
    assert len(body) == 32
    assert all(line.endswith(" 255 0 0") for line in body)
    assert "element vertex 32" in ply.read_text(encoding="ascii")
    assert stats.read_text(encoding="utf-8").startswith("LiDAR Packet Information\n=======================\n")


def test_cli_run_alias_with_overrides(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.yaml"
    _write_config(cfg_path)
    out_dir = tmp_path / "elsewhere"

    runner = CliRunner()
    result = runner.invoke(
        app,
        ["run", str(cfg_path), "--output-dir", str(out_dir), "--frames", "2", "--format", "ply", "--format", "metadata"],
    )

    assert result.exit_code == 0, result.stdout
    assert sorted(p.name for p in out_dir.iterdir()) == [
        "lidar_frame_0000.ply",
        "lidar_frame_0001.ply",
        "sensor_metadata_0000.json",
        "sensor_metadata_0001.json",
    ]


def test_cli_rejects_unknown_format(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.yaml"
    _write_config(cfg_path)
    runner = CliRunner()
    result = runner.invoke(app, ["scan", str(cfg_path), "--format", "obj"])
    assert result.exit_code != 0


def test_cli_scan_plane(tmp_path: Path) -> None:
    out_dir = tmp_path / "plane"
    runner = CliRunner()
    result = runner.invoke(
        app,
        ["scan-plane", "--output-dir", str(out_dir), "--plane-size-m", "40", "--lines", "4",
         "--points-per-line", "8", "--noise-std-dev", "0"],
    )
    assert result.exit_code == 0, result.stdout
    assert len(_body(out_dir / "lidar_frame_0000.ply")) == 32
    assert (out_dir / "packet_info_0000.txt").exists()
