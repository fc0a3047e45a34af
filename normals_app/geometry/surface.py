"""
Surface reconstruction from the points marked on a single shot.

The reconstructed vertices seen in the shot are triangulated in image space
(Delaunay), and each image triangle becomes a polygon over the
corresponding 3D vertices.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

import cv2

from normals_app.scene.data_structures import PointCloudStore


def triangulate_shot_surface(store: PointCloudStore, shot_id: int) -> List[Tuple[int, int, int]]:
    """
    Build triangles over the reconstructed vertices visible in one shot.

    Args:
        store: Point cloud store; new triangles are appended to `store.polygons`.
        shot_id: Shot whose marked points are triangulated.

    Returns:
        List of (v0, v1, v2) vertex id triples that were added.

    Raises:
        ValueError: If `shot_id` does not name a shot.
    """
    if not 0 <= shot_id < len(store.shots):
        raise ValueError(f"Unknown shot id {shot_id}")

    shot = store.shots[shot_id]
    # Subdiv2D rejects points on the right/bottom border, hence the extra pixel.
    subdiv = cv2.Subdiv2D((0, 0, shot.width + 1, shot.height + 1))
    subdiv_to_vertex: Dict[int, int] = {}

    for observation in store.observations:
        if observation.shot_id != shot_id:
            continue
        if not store.vertices[observation.vertex_id].reconstructed:
            continue

        x, y = store.observation_pixels(observation)
        if x < 0 or x > shot.width or y < 0 or y > shot.height:
            continue

        subdiv_id = subdiv.insert((float(x), float(y)))
        subdiv_to_vertex[subdiv_id] = observation.vertex_id

    if len(subdiv_to_vertex) < 3:
        print(f"[surface] Shot {shot_id}: fewer than 3 usable points, no triangles")
        return []

    triangles: List[Tuple[int, int, int]] = []
    for row in subdiv.getTriangleList():
        corners = []
        for k in range(3):
            subdiv_id, _ = subdiv.findNearest((float(row[2 * k]), float(row[2 * k + 1])))
            corners.append(subdiv_to_vertex.get(subdiv_id))

        # Triangles touching the virtual outer vertices or collapsing onto a
        # duplicated point are dropped.
        if any(c is None for c in corners) or len(set(corners)) < 3:
            continue
        triangles.append((corners[0], corners[1], corners[2]))

    store.polygons.extend(triangles)
    print(f"[surface] Shot {shot_id}: {len(triangles)} triangles over {len(subdiv_to_vertex)} points")
    return triangles


__all__ = ["triangulate_shot_surface"]
