"""lidarsim – Scanning LiDAR Simulator.

This package contains the scanning engine and its surroundings:
- LidarConfig & scenario loading (config.schema)
- SweepPattern bidirectional line scan with fisheye distortion (sensors.patterns)
- RangeSampler noisy, coloured single-ray sampling (core.sampler)
- Scene oracles: textured/flat quads and trimesh meshes (core.scene)
- ScanStateMachine asyncio packet/frame scanner (core.scanner)
- PLY / stats / LAS / NPZ exporters (core.exporter)
- ExternalLidarSensor façade with typed setters and auto-save (sensors.lidar)
"""

from .config.schema import ConfigError, LidarConfig, ScenarioConfig, load_config
from .core.clock import Clock, MonotonicClock, SimulatedClock
from .core.pointcloud import Point, Packet, Frame
from .core.scene import (SceneOracle, HitRecord, TexturedSurface, FlatColor, NoSurface,
                         Texture2D, QuadObject, MeshObject, CompositeScene)
from .core.sampler import RangeSampler
from .core.scanner import ScanState, ScanStateMachine
from .core.exporter import (PointCloudExporter, TextFileSink, LasWriter, NpzWriter,
                            format_frame_ply, format_packet_ply, format_frame_stats)
from .motion.pose import Pose
from .motion.trajectory import StaticTrajectory, PolylineTrajectory, TrajectoryPoseSource
from .sensors.patterns import SweepPattern
from .sensors.noise import GaussianNoise
from .sensors.lidar import ExternalLidarSensor, AutoSaveConfig, SensorMetadata
