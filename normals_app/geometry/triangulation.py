"""
Multi-view triangulation of vertices from their marked 2D observations.
"""

from __future__ import annotations

from itertools import combinations
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from normals_app.scene.data_structures import PointCloudStore


def triangulate_pair(
    P1: np.ndarray,
    P2: np.ndarray,
    x1: np.ndarray,
    x2: np.ndarray,
) -> Optional[np.ndarray]:
    """
    Triangulate one 3D point from two views.

    Args:
        P1, P2: Projection matrices (3x4).
        x1, x2: Pixel coordinates (2,) in the corresponding images.

    Returns:
        Point (3,) in world coordinates, or None if it lies at infinity.
    """
    point_4d = cv2.triangulatePoints(
        np.asarray(P1, dtype=np.float64),
        np.asarray(P2, dtype=np.float64),
        np.asarray(x1, dtype=np.float64).reshape(2, 1),
        np.asarray(x2, dtype=np.float64).reshape(2, 1),
    ).ravel()
    if abs(point_4d[3]) < 1e-12:
        return None
    return point_4d[:3] / point_4d[3]


def triangulate_dlt(Ps: Sequence[np.ndarray], xs: Sequence[np.ndarray]) -> Optional[np.ndarray]:
    """
    Linear (DLT) triangulation of one point from two or more views.

    Args:
        Ps: Projection matrices (3x4), one per view.
        xs: Pixel coordinates (2,), one per view.

    Returns:
        Point (3,) in world coordinates, or None if it lies at infinity.
    """
    A = np.zeros((2 * len(Ps), 4))
    for i, (P, x) in enumerate(zip(Ps, xs)):
        A[2 * i] = x[0] * P[2] - P[0]
        A[2 * i + 1] = x[1] * P[2] - P[1]

    _, _, Vt = np.linalg.svd(A)
    X = Vt[-1]
    if abs(X[3]) < 1e-12:
        return None
    return X[:3] / X[3]


def reprojection_errors(
    Ps: Sequence[np.ndarray],
    xs: Sequence[np.ndarray],
    X: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Reprojection errors and depths of point X in several views.

    Returns:
        Tuple of (errors, depths), both (M,). Depth is positive for views
        that have the point in front of the camera.
    """
    X_h = np.append(X, 1.0)
    errors = np.zeros(len(Ps))
    depths = np.zeros(len(Ps))
    for i, (P, x) in enumerate(zip(Ps, xs)):
        projected = P @ X_h
        # Normalize the arbitrary scale of P so depth has a meaningful sign.
        depths[i] = projected[2] * np.sign(np.linalg.det(P[:, :3]))
        if abs(projected[2]) < 1e-12:
            errors[i] = np.inf
        else:
            errors[i] = np.linalg.norm(projected[:2] / projected[2] - x)
    return errors, depths


def triangulate_views(
    Ps: List[np.ndarray],
    xs: List[np.ndarray],
    required_inliers: int,
    stricter_threshold: bool,
    measurement_threshold: float,
) -> Optional[np.ndarray]:
    """
    Robustly triangulate one point seen in several views.

    Every pair of views proposes a point; the proposal consistent with the
    most views wins and is refined by DLT over those views.

    Returns:
        Point (3,) or None if no position is supported by `required_inliers` views.
    """
    if len(Ps) < 2 or len(Ps) < required_inliers:
        return None

    best_inliers: Optional[np.ndarray] = None
    best_score = (0, -np.inf)
    for i, j in combinations(range(len(Ps)), 2):
        X = triangulate_pair(Ps[i], Ps[j], xs[i], xs[j])
        if X is None:
            continue
        errors, depths = reprojection_errors(Ps, xs, X)
        inliers = (errors < measurement_threshold) & (depths > 0)
        count = int(inliers.sum())
        score = (count, -float(np.mean(errors[inliers])) if count else -np.inf)
        if score > best_score:
            best_score = score
            best_inliers = inliers

    if best_inliers is None or best_score[0] < max(required_inliers, 2):
        return None

    inlier_idx = np.flatnonzero(best_inliers)
    X = triangulate_dlt([Ps[k] for k in inlier_idx], [xs[k] for k in inlier_idx])
    if X is None:
        return None

    errors, depths = reprojection_errors(Ps, xs, X)
    if stricter_threshold:
        if np.any(errors[inlier_idx] >= measurement_threshold) or np.any(depths[inlier_idx] <= 0):
            return None
    elif int(np.sum((errors < measurement_threshold) & (depths > 0))) < required_inliers:
        return None

    return X


def triangulate_vertices(
    store: PointCloudStore,
    shot_mask: Optional[Sequence[bool]] = None,
    min_inliers: int = 2,
    min_inliers_weaker: int = 2,
    stricter_threshold: bool = False,
    measurement_threshold: float = 4.0,
) -> int:
    """
    Triangulate every vertex of `store` from its observations.

    Only calibrated shots that have a projection matrix are used. Vertices
    that cannot be triangulated are marked as not reconstructed.

    Args:
        store: Point cloud store; vertex positions and flags are updated.
        shot_mask: Optional per-shot flags; shots whose flag is False are ignored.
        min_inliers: Views that must agree on a position.
        min_inliers_weaker: Views that must agree when a vertex has fewer than
                            `min_inliers` usable views.
        stricter_threshold: Reject positions that reproject outside the
                            threshold in any of their inlier views.
        measurement_threshold: Maximum reprojection error in pixels.

    Returns:
        Number of reconstructed vertices.

    Raises:
        ValueError: If `shot_mask` does not have one flag per shot.
    """
    if shot_mask is not None and len(shot_mask) != len(store.shots):
        raise ValueError(
            f"shot_mask has {len(shot_mask)} entries for {len(store.shots)} shots"
        )

    reconstructed = 0
    for vertex in store.vertices:
        Ps: List[np.ndarray] = []
        xs: List[np.ndarray] = []
        for entry in store.incidence[vertex.id]:
            shot = store.shots[entry.shot_id]
            if not shot.calibrated or shot.P is None:
                continue
            if shot_mask is not None and not shot_mask[shot.id]:
                continue
            Ps.append(shot.P)
            xs.append(store.observation_pixels(store.observations[entry.observation_id]))

        required = min_inliers if len(Ps) >= min_inliers else min_inliers_weaker
        X = triangulate_views(Ps, xs, required, stricter_threshold, measurement_threshold)

        if X is None:
            vertex.reconstructed = False
            continue

        vertex.xyz = X
        vertex.reconstructed = True
        reconstructed += 1

    print(f"[triangulate] Reconstructed {reconstructed} of {len(store.vertices)} vertices")
    return reconstructed


__all__ = [
    "triangulate_pair",
    "triangulate_dlt",
    "reprojection_errors",
    "triangulate_views",
    "triangulate_vertices",
]
