"""
Robust plane estimation for small 3D point subsets using RANSAC.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from normals_app.errors import PlaneFitError
from normals_app.scene.data_structures import PointCloudStore


@dataclass(frozen=True)
class Plane:
    """Plane a*x + b*y + c*z = d with (a, b, c) = `normal` of unit length."""

    normal: np.ndarray
    d: float

    @property
    def coefficients(self) -> Tuple[float, float, float, float]:
        a, b, c = (float(v) for v in self.normal)
        return a, b, c, float(self.d)

    def signed_distance(self, points: np.ndarray) -> np.ndarray:
        """Signed distances (N,) of points (N, 3) from the plane."""
        return np.asarray(points, dtype=float).reshape(-1, 3) @ self.normal - self.d


def fit_plane_least_squares(points: np.ndarray) -> Plane:
    """
    Fit a plane to points (N, 3) by total least squares.

    The normal is the right singular vector of the centred points with the
    smallest singular value.

    Raises:
        PlaneFitError: If there are fewer than 3 points or they are collinear.
    """
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    if len(points) < 3:
        raise PlaneFitError(f"Need at least 3 points for a plane, got {len(points)}")

    centroid = points.mean(axis=0)
    _, S, Vt = np.linalg.svd(points - centroid)
    if S[1] <= 1e-12 * max(S[0], 1e-300):
        raise PlaneFitError("Points are collinear or coincident")

    normal = Vt[-1]
    normal = normal / np.linalg.norm(normal)
    return Plane(normal=normal, d=float(normal @ centroid))


def fit_plane_ransac(
    points: np.ndarray,
    *,
    max_iterations: int = 200,
    relative_threshold: float = 0.05,
    min_inlier_ratio: float = 0.5,
    rng: Optional[np.random.Generator] = None,
) -> Plane:
    """
    Fit a plane to points (N, 3) while tolerating outliers.

    Each iteration proposes the plane through three random points and counts
    the points closer than `relative_threshold` times the RMS distance of the
    subset from its centroid. The largest consensus set is refined with
    `fit_plane_least_squares`.

    Args:
        points: Candidate points (N, 3).
        max_iterations: Number of three-point hypotheses.
        relative_threshold: Inlier distance relative to the subset spread.
        min_inlier_ratio: Fraction of the points the plane must explain.
        rng: Random generator; a fresh unseeded one is used if omitted.

    Returns:
        Plane with a unit normal.

    Raises:
        PlaneFitError: If the subset is too small, degenerate, or has no
                       plane supported by enough inliers.
    """
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    n = len(points)
    if n < 3:
        raise PlaneFitError(f"Need at least 3 points for a plane, got {n}")

    centroid = points.mean(axis=0)
    spread = float(np.sqrt(np.mean(np.sum((points - centroid) ** 2, axis=1))))
    if spread <= 1e-12:
        raise PlaneFitError("All points coincide")

    threshold = relative_threshold * spread
    min_inliers = max(3, int(np.ceil(min_inlier_ratio * n)))
    rng = rng or np.random.default_rng()

    best_inliers: Optional[np.ndarray] = None
    best_count = 0

    for _ in range(max_iterations):
        p0, p1, p2 = points[rng.choice(n, size=3, replace=False)]
        normal = np.cross(p1 - p0, p2 - p0)
        norm = np.linalg.norm(normal)
        if norm <= 1e-9 * spread**2:
            continue
        normal /= norm

        inlier_mask = np.abs(points @ normal - normal @ p0) <= threshold
        count = int(inlier_mask.sum())
        if count > best_count:
            best_count = count
            best_inliers = inlier_mask
            if count == n:
                break

    if best_inliers is None:
        raise PlaneFitError("Every sampled triple was collinear")
    if best_count < min_inliers:
        raise PlaneFitError(
            f"Best plane explains only {best_count} of {n} points (need {min_inliers})"
        )

    return fit_plane_least_squares(points[best_inliers])


def fit_plane(
    store: PointCloudStore,
    candidate_ids: Sequence[int],
    count: int,
    **kwargs,
) -> Plane:
    """
    Robustly fit a plane through the first `count` candidate vertices.

    Args:
        store: Point cloud store providing vertex positions.
        candidate_ids: Vertex ids, typically a nearest-neighbour set.
        count: Number of ids from `candidate_ids` to use.
        **kwargs: Forwarded to `fit_plane_ransac`.

    Raises:
        PlaneFitError: See `fit_plane_ransac`.
    """
    ids = list(candidate_ids)[: max(int(count), 0)]
    points = np.array([store.vertices[i].xyz for i in ids], dtype=float).reshape(-1, 3)
    return fit_plane_ransac(points, **kwargs)


__all__ = ["Plane", "fit_plane", "fit_plane_ransac", "fit_plane_least_squares"]
