from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


@dataclass
class GaussianNoise:
    """Zero-mean Gaussian range noise drawn with the Box–Muller transform.

    Two uniforms are consumed per sample even when ``std_dev`` is zero, so
    the RNG stream position depends only on the number of hits.
    """

    std_dev: float = 0.0
    mean: float = 0.0

    def __post_init__(self) -> None:
        if self.std_dev < 0.0:
            raise ValueError("std_dev must be non-negative.")
        self.std_dev = float(self.std_dev)

    def sample(self, rng: np.random.Generator) -> float:
        # Generator.random() is [0, 1); flip to (0, 1] so log() stays finite.
        u1 = 1.0 - rng.random()
        u2 = 1.0 - rng.random()
        std_normal = math.sqrt(-2.0 * math.log(u1)) * math.sin(2.0 * math.pi * u2)
        return self.mean + self.std_dev * std_normal
