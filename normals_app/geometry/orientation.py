"""
Choosing the sign of a fitted plane normal from the cameras that observe it.

A plane only defines its normal up to sign. The sign is resolved so that the
normal faces the reference point `T` of an observing calibrated shot, which
makes normals of a surface seen from the outside point outwards.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence

import numpy as np

from normals_app.errors import PlaneFitError
from normals_app.geometry.plane_fitting import Plane
from normals_app.scene.data_structures import IncidenceEntry, Shot


class OrientationPolicy(str, Enum):
    # Only the first calibrated shot in incidence order is consulted.
    FIRST_CALIBRATED = "first_calibrated"
    # Every distinct calibrated observer votes; ties use the first one.
    MAJORITY = "majority"


def plane_side(plane: Plane, T: np.ndarray) -> float:
    """Signed value dot(normal, T) - d; positive when T is on the normal's side."""
    return float(plane.normal @ np.asarray(T, dtype=float).reshape(3) - plane.d)


def calibrated_observers(
    incidence: Sequence[IncidenceEntry],
    shots: Sequence[Shot],
) -> List[Shot]:
    """Calibrated shots observing a vertex, deduplicated, in incidence order."""
    seen = set()
    observers = []
    for entry in incidence:
        shot = shots[entry.shot_id]
        if not shot.calibrated or shot.id in seen:
            continue
        seen.add(shot.id)
        observers.append(shot)
    return observers


def _should_flip(plane: Plane, observers: List[Shot], policy: OrientationPolicy) -> bool:
    if not observers:
        return False

    first_flip = plane_side(plane, observers[0].T) < 0
    if policy == OrientationPolicy.FIRST_CALIBRATED:
        return first_flip

    sides = np.array([plane_side(plane, shot.T) for shot in observers])
    facing = int(np.sum(sides > 0))
    behind = int(np.sum(sides < 0))
    if facing == behind:
        return first_flip
    return behind > facing


def orient_normal(
    plane: Plane,
    incidence: Sequence[IncidenceEntry],
    shots: Sequence[Shot],
    policy: OrientationPolicy = OrientationPolicy.FIRST_CALIBRATED,
) -> np.ndarray:
    """
    Return the unit normal of `plane`, signed to face an observing camera.

    Args:
        plane: Fitted plane.
        incidence: Incidence list of the vertex the plane belongs to.
        shots: All shots of the store, indexed by shot id.
        policy: Which calibrated observers decide the sign.

    Returns:
        Unit normal (3,). If no observer is calibrated the fitted sign is kept.

    Raises:
        PlaneFitError: If the plane normal has zero length.
    """
    length = float(np.linalg.norm(plane.normal))
    if not np.isfinite(length) or length <= 1e-12:
        raise PlaneFitError("Plane normal has zero length")
    unit = Plane(normal=np.asarray(plane.normal, dtype=float) / length, d=plane.d / length)

    policy = OrientationPolicy(policy)
    if _should_flip(unit, calibrated_observers(incidence, shots), policy):
        return -unit.normal
    return unit.normal.copy()


def resolve_policy(value: Optional[str]) -> OrientationPolicy:
    """Parse a policy name, defaulting to the first calibrated observer."""
    if value is None:
        return OrientationPolicy.FIRST_CALIBRATED
    try:
        return OrientationPolicy(value)
    except ValueError as e:
        choices = ", ".join(p.value for p in OrientationPolicy)
        raise ValueError(f"Unknown orientation policy {value!r}; expected one of {choices}") from e


__all__ = [
    "OrientationPolicy",
    "plane_side",
    "calibrated_observers",
    "orient_normal",
    "resolve_policy",
]
