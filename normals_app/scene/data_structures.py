"""
Shared core data structures for the reconstruction tool.

These dataclasses are intentionally simple containers used across:
- triangulation
- normal estimation
- surface reconstruction
- persistence and visualization

`PointCloudStore` is the single owner of all scene state. Vertices, shots and
observations live in append-only lists, so the integer ids handed out by the
`add_*` methods stay valid for the lifetime of the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional, Sequence, Tuple

import numpy as np


@dataclass
class Vertex:
    """A single 3D vertex of the reconstruction."""

    id: int
    # 3D location (X, Y, Z) in world coordinates, meaningful only when
    # `reconstructed` is True.
    xyz: np.ndarray = field(default_factory=lambda: np.zeros(3))
    reconstructed: bool = False
    # Unit surface normal (3,), or None while unset.
    normal: Optional[np.ndarray] = None


@dataclass
class Shot:
    """A single photograph and the camera that took it."""

    id: int
    width: int
    height: int
    calibrated: bool = False
    # Viewing reference point used to decide which side of a fitted plane
    # the camera is on.
    T: np.ndarray = field(default_factory=lambda: np.zeros(3))
    # Optional projection matrix (3x4) mapping world points to pixels.
    # Only the triangulator needs it.
    P: Optional[np.ndarray] = None
    name: str = ""


@dataclass
class Observation:
    """
    A 2D point marked on a shot, corresponding to one vertex.

    `xy` is a (2,) numpy array in normalized image coordinates, i.e. in
    [0, 1] x [0, 1]; multiply by the shot size to get pixels.
    """

    id: int
    shot_id: int
    vertex_id: int
    xy: np.ndarray


class IncidenceEntry(NamedTuple):
    """One (shot, observation) pair that was fused into a vertex."""

    shot_id: int
    observation_id: int


@dataclass
class PointCloudStore:
    """
    Global container for vertices, shots, observations and their incidence.

    This is the main structure passed between triangulation, normal
    estimation, surface reconstruction and I/O.
    """

    vertices: List[Vertex] = field(default_factory=list)
    shots: List[Shot] = field(default_factory=list)
    observations: List[Observation] = field(default_factory=list)
    # incidence[vertex_id] lists every observation of that vertex, in the
    # order the observations were added.
    incidence: List[List[IncidenceEntry]] = field(default_factory=list)
    # Triangles produced by surface reconstruction, as vertex id triples.
    polygons: List[Tuple[int, int, int]] = field(default_factory=list)

    def add_vertex(
        self,
        xyz: Optional[Sequence[float]] = None,
        reconstructed: Optional[bool] = None,
    ) -> int:
        """
        Append a vertex and return its id.

        A vertex created with a position counts as reconstructed unless
        `reconstructed` says otherwise.
        """
        vertex_id = len(self.vertices)
        if xyz is None:
            position = np.zeros(3)
            flag = bool(reconstructed)
        else:
            position = np.asarray(xyz, dtype=float).reshape(3)
            flag = True if reconstructed is None else bool(reconstructed)

        self.vertices.append(Vertex(id=vertex_id, xyz=position, reconstructed=flag))
        self.incidence.append([])
        return vertex_id

    def add_shot(
        self,
        width: int,
        height: int,
        calibrated: bool = False,
        T: Optional[Sequence[float]] = None,
        P: Optional[np.ndarray] = None,
        name: str = "",
    ) -> int:
        """Append a shot and return its id."""
        shot_id = len(self.shots)
        reference = np.zeros(3) if T is None else np.asarray(T, dtype=float).reshape(3)
        projection = None if P is None else np.asarray(P, dtype=float).reshape(3, 4)
        self.shots.append(
            Shot(
                id=shot_id,
                width=int(width),
                height=int(height),
                calibrated=bool(calibrated),
                T=reference,
                P=projection,
                name=name,
            )
        )
        return shot_id

    def add_observation(self, shot_id: int, vertex_id: int, xy: Sequence[float]) -> int:
        """
        Mark vertex `vertex_id` at normalized position `xy` on shot `shot_id`.

        Returns the observation id. The observation is appended to the end of
        the vertex's incidence list.

        Raises:
            ValueError: If the shot or vertex does not exist.
        """
        if not 0 <= shot_id < len(self.shots):
            raise ValueError(f"Unknown shot id {shot_id}")
        if not 0 <= vertex_id < len(self.vertices):
            raise ValueError(f"Unknown vertex id {vertex_id}")

        observation_id = len(self.observations)
        self.observations.append(
            Observation(
                id=observation_id,
                shot_id=shot_id,
                vertex_id=vertex_id,
                xy=np.asarray(xy, dtype=float).reshape(2),
            )
        )
        self.incidence[vertex_id].append(IncidenceEntry(shot_id, observation_id))
        return observation_id

    def reconstructed_ids(self) -> List[int]:
        """Ids of all vertices with a valid position, in ascending order."""
        return [v.id for v in self.vertices if v.reconstructed]

    def observation_pixels(self, observation: Observation) -> np.ndarray:
        """Pixel coordinates (2,) of an observation on its shot."""
        shot = self.shots[observation.shot_id]
        return observation.xy * np.array([shot.width, shot.height], dtype=float)

    def clear_positions(self) -> None:
        """
        Forget the position of every vertex.

        Normals are left as they are; they are stale from now on and will only
        be recomputed for vertices that get reconstructed again.
        """
        for vertex in self.vertices:
            vertex.reconstructed = False
            vertex.xyz = np.zeros(3)

    def normals_array(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Return (normals, valid) with normals (N, 3) and a boolean mask (N,).

        Rows for vertices without a normal are zero.
        """
        n = len(self.vertices)
        normals = np.zeros((n, 3))
        valid = np.zeros(n, dtype=bool)
        for vertex in self.vertices:
            if vertex.normal is not None:
                normals[vertex.id] = vertex.normal
                valid[vertex.id] = True
        return normals, valid


__all__ = ["Vertex", "Shot", "Observation", "IncidenceEntry", "PointCloudStore"]
