from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class ConfigError(ValueError):
    """Raised when a configuration change is rejected."""


class LidarConfig(BaseModel):
    """Immutable scan configuration snapshot, consulted once per frame."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    scan_radius: float = Field(100.0, gt=0.0)
    vertical_fov_deg: float = Field(30.0, ge=0.0)
    horizontal_fov_deg: float = Field(360.0, ge=0.0)
    line_count: int = Field(64, ge=1)
    points_per_line: int = Field(1024, ge=1)
    noise_std_dev: float = Field(0.01, ge=0.0)
    fisheye_strength: float = Field(0.0, ge=0.0)
    point_delay_ms: float = Field(0.1, ge=0.0)
    packet_delay_ms: float = Field(10.0, ge=0.0)
    frame_end_delay_ms: float = Field(100.0, ge=0.0)
    enable_delays: bool = True

    def with_updates(self, **changes: Any) -> "LidarConfig":
        unknown = sorted(set(changes) - set(type(self).model_fields))
        if unknown:
            raise ConfigError(f"Unknown lidar setting(s): {', '.join(unknown)}")
        data = self.model_dump()
        data.update(changes)
        try:
            return LidarConfig.model_validate(data, strict=True)
        except ValidationError as exc:
            raise ConfigError(_describe(exc)) from exc

    @property
    def packet_delay_s(self) -> float:
        return self.packet_delay_ms / 1000.0 if self.enable_delays else 0.0

    @property
    def frame_end_delay_s(self) -> float:
        return self.frame_end_delay_ms / 1000.0 if self.enable_delays else 0.0


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')} (got {err.get('input')!r})")
    return "; ".join(parts)


Vec3Config = tuple[float, float, float]
ColorConfig = tuple[float, float, float]


class QuadObjectConfig(BaseModel):
    kind: Literal["quad"]
    center: Vec3Config = (0.0, 0.0, 10.0)
    normal: Vec3Config = (0.0, 0.0, -1.0)
    up: Vec3Config = (0.0, 1.0, 0.0)
    size: tuple[float, float] = (10.0, 10.0)
    color: Optional[ColorConfig] = None
    # Rows of RGB triples, first row at v=0 (bottom edge).
    texture: Optional[List[List[ColorConfig]]] = None

    @model_validator(mode="after")
    def _validate_size(self) -> "QuadObjectConfig":
        if self.size[0] <= 0.0 or self.size[1] <= 0.0:
            raise ValueError("quad size must be positive")
        return self


class MeshObjectConfig(BaseModel):
    kind: Literal["mesh"]
    path: Path
    color: Optional[ColorConfig] = None


SceneObjectConfig = Annotated[
    Union[QuadObjectConfig, MeshObjectConfig],
    Field(discriminator="kind"),
]


class SceneConfig(BaseModel):
    objects: List[SceneObjectConfig] = Field(default_factory=list)


class StaticTrajectoryConfig(BaseModel):
    kind: Literal["static"]
    xyz: Vec3Config = (0.0, 0.0, 0.0)
    rpy_deg: Vec3Config = (0.0, 0.0, 0.0)


class PolylineTrajectoryConfig(BaseModel):
    kind: Literal["polyline"]
    waypoints: List[Vec3Config]
    speed_mps: float = Field(gt=0.0)
    rpy_deg: Vec3Config = (0.0, 0.0, 0.0)
    start_time_s: float = 0.0

    @model_validator(mode="after")
    def _validate_waypoints(self) -> "PolylineTrajectoryConfig":
        if len(self.waypoints) < 2:
            raise ValueError("polyline trajectory requires at least two waypoints")
        return self


TrajectoryConfig = Annotated[
    Union[StaticTrajectoryConfig, PolylineTrajectoryConfig],
    Field(discriminator="kind"),
]

OutputFormat = Literal["ply", "stats", "las", "npz", "metadata"]


class OutputConfig(BaseModel):
    directory: Path = Path("SensorData/LidarPLY")
    formats: List[OutputFormat] = Field(default_factory=lambda: ["ply", "stats"])
    include_packet_info: bool = True


class ScenarioConfig(BaseModel):
    lidar: LidarConfig = LidarConfig()
    scene: SceneConfig
    trajectory: TrajectoryConfig = StaticTrajectoryConfig(kind="static")
    output: OutputConfig = OutputConfig()
    clock: Literal["simulated", "monotonic"] = "simulated"
    frames: int = Field(1, ge=1)
    seed: Optional[int] = None

    @model_validator(mode="after")
    def _ensure_scene(self) -> "ScenarioConfig":
        if not self.scene.objects:
            raise ValueError("Scenario requires at least one scene object")
        return self


def load_config(path: str | Path) -> ScenarioConfig:
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be a mapping.")
    cfg = ScenarioConfig.model_validate(data)
    if not cfg.output.directory.is_absolute():
        cfg.output.directory = (path.parent / cfg.output.directory).resolve()
    for obj in cfg.scene.objects:
        if isinstance(obj, MeshObjectConfig) and not obj.path.is_absolute():
            obj.path = (path.parent / obj.path).resolve()
    return cfg
