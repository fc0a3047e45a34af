"""Configuration for the normal estimation and triangulation steps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Literal


@dataclass
class NormalEstimationConfig:
    """Configuration for a normals batch.

    Modify the default values here for experimentation.
    Command-line overrides: see `normals_app.cli.main`.
    """

    # Neighbourhood search
    k_neighbors: int = 200
    """Number of nearest reconstructed vertices used to fit each plane"""

    search_eps: float = 0.05
    """Relative error allowed in the approximate nearest-neighbour search"""

    # Robust plane fit
    ransac_iterations: int = 200
    """Number of three-point hypotheses tried per neighbourhood"""

    ransac_relative_threshold: float = 0.05
    """Inlier distance as a fraction of the neighbourhood's RMS spread"""

    min_inlier_ratio: float = 0.5
    """Fraction of the neighbourhood that must support the plane"""

    seed: int = 0
    """Base seed for the per-vertex RANSAC generators"""

    # Orientation
    orientation_policy: Literal["first_calibrated", "majority"] = "first_calibrated"
    """Which calibrated observers decide the sign of the normal"""

    # Batch
    progress_every: int = 100
    """Report progress after this many vertices"""

    num_workers: int = 1
    """Worker threads for the per-vertex loop (1 = run in the caller's thread)"""

    def __post_init__(self) -> None:
        if self.k_neighbors < 1:
            raise ValueError(f"k_neighbors must be positive, got {self.k_neighbors}")
        if self.search_eps < 0:
            raise ValueError(f"search_eps must be non-negative, got {self.search_eps}")
        if not 0.0 < self.min_inlier_ratio <= 1.0:
            raise ValueError(f"min_inlier_ratio must be in (0, 1], got {self.min_inlier_ratio}")
        if self.seed < 0:
            raise ValueError(f"seed must be non-negative, got {self.seed}")
        if self.progress_every < 1:
            raise ValueError(f"progress_every must be positive, got {self.progress_every}")
        if self.num_workers < 1:
            raise ValueError(f"num_workers must be positive, got {self.num_workers}")


@dataclass
class TriangulationConfig:
    """Thresholds for turning marked 2D points into 3D vertices."""

    min_inliers: int = 2
    """Views that must agree on a vertex position"""

    min_inliers_weaker: int = 2
    """Agreeing views required when a vertex has fewer than `min_inliers` usable views"""

    stricter_threshold: bool = False
    """Also require the refined position to reproject within threshold in every inlier view"""

    measurement_threshold: float = 4.0
    """Maximum reprojection error (pixels) of an inlier view"""


TRIANGULATION_PRESETS: Dict[str, TriangulationConfig] = {
    "all": TriangulationConfig(),
    # Points placed by hand are noisier, so they get a larger threshold.
    "user": TriangulationConfig(stricter_threshold=True, measurement_threshold=50.0),
    "trusted": TriangulationConfig(min_inliers=3, min_inliers_weaker=3),
}


__all__ = ["NormalEstimationConfig", "TriangulationConfig", "TRIANGULATION_PRESETS"]
