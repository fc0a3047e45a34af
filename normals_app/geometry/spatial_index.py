"""
Nearest-neighbour index over the reconstructed vertices of a store.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree

from normals_app.errors import IndexBuildError
from normals_app.scene.data_structures import PointCloudStore


class SpatialIndex:
    """
    K-nearest-neighbour search over a compact copy of reconstructed vertices.

    Attributes:
        points: (N, 3) positions of the reconstructed vertices.
        vertex_ids: (N,) int array, vertex_ids[i] is the store id of points[i].
    """

    def __init__(self, points: np.ndarray, vertex_ids: np.ndarray) -> None:
        self.points = points
        self.vertex_ids = vertex_ids
        self._tree: Optional[cKDTree] = cKDTree(points) if len(points) > 0 else None
        self._closed = False

    def __len__(self) -> int:
        return len(self.vertex_ids)

    @property
    def closed(self) -> bool:
        return self._closed

    def query(
        self,
        xyz: np.ndarray,
        k: int,
        eps: float = 0.05,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find up to `k` reconstructed vertices nearest to `xyz`.

        Args:
            xyz: Query position (3,).
            k: Maximum number of neighbours.
            eps: Relative error bound of the approximate search; the i-th
                 returned distance is at most (1 + eps) times the true i-th
                 nearest distance.

        Returns:
            Tuple of (vertex_ids, distances), both (M,) with M = min(k, N),
            sorted by ascending distance. Nothing is padded: when fewer than
            `k` vertices exist, only the existing ones are returned.

        Raises:
            RuntimeError: If the index has been closed.
        """
        if self._closed:
            raise RuntimeError("Spatial index has been released")

        count = min(int(k), len(self))
        if count <= 0 or self._tree is None:
            return np.zeros((0,), dtype=int), np.zeros((0,))

        distances, compact_ids = self._tree.query(
            np.asarray(xyz, dtype=float).reshape(3), k=count, eps=eps
        )
        distances = np.atleast_1d(distances)
        compact_ids = np.atleast_1d(compact_ids)

        # scipy marks missing neighbours with an infinite distance.
        found = np.isfinite(distances)
        return self.vertex_ids[compact_ids[found]], distances[found]

    def close(self) -> None:
        """Drop the tree and the compact arrays."""
        self._tree = None
        self.points = np.zeros((0, 3))
        self.vertex_ids = np.zeros((0,), dtype=int)
        self._closed = True


def build_spatial_index(store: PointCloudStore) -> SpatialIndex:
    """
    Compact the reconstructed vertices of `store` and index them.

    Args:
        store: Point cloud store; it is only read.

    Returns:
        SpatialIndex whose compact order follows ascending vertex id. An empty
        index is returned when nothing is reconstructed.

    Raises:
        IndexBuildError: If the compact arrays or the tree cannot be allocated.
    """
    try:
        vertex_ids = np.array(store.reconstructed_ids(), dtype=int)
        points = np.zeros((len(vertex_ids), 3))
        for compact, vertex_id in enumerate(vertex_ids):
            points[compact] = store.vertices[vertex_id].xyz
        index = SpatialIndex(points, vertex_ids)
    except MemoryError as e:
        raise IndexBuildError(
            f"Out of memory while indexing {len(store.vertices)} vertices"
        ) from e

    print(f"[index] Indexed {len(index)} reconstructed of {len(store.vertices)} vertices")
    return index


@contextmanager
def spatial_index(store: PointCloudStore) -> Iterator[SpatialIndex]:
    """Build an index for the duration of a `with` block and release it afterwards."""
    index = build_spatial_index(store)
    try:
        yield index
    finally:
        index.close()


__all__ = ["SpatialIndex", "build_spatial_index", "spatial_index"]
