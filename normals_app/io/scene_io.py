"""
Scene I/O utilities for saving and loading point cloud stores.
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

import numpy as np

from normals_app.scene.data_structures import PointCloudStore

PathLike = Union[str, Path]


def save_scene_npz(output_path: PathLike, store: PointCloudStore) -> None:
    """
    Serialize a PointCloudStore to a .npz file.

    Args:
        output_path: Path where the scene data will be saved (.npz file).
        store: Store containing vertices, shots, observations and polygons.
    """
    # Extract vertices
    n_vertices = len(store.vertices)
    vertex_xyz = np.zeros((n_vertices, 3))
    vertex_reconstructed = np.zeros(n_vertices, dtype=bool)
    for i, vertex in enumerate(store.vertices):
        vertex_xyz[i] = vertex.xyz
        vertex_reconstructed[i] = vertex.reconstructed
    vertex_normals, vertex_has_normal = store.normals_array()

    # Extract shots
    n_shots = len(store.shots)
    shot_sizes = np.zeros((n_shots, 2), dtype=int)
    shot_calibrated = np.zeros(n_shots, dtype=bool)
    shot_T = np.zeros((n_shots, 3))
    shot_P = np.zeros((n_shots, 3, 4))
    shot_has_P = np.zeros(n_shots, dtype=bool)
    shot_names = np.array([shot.name for shot in store.shots], dtype=str)

    for i, shot in enumerate(store.shots):
        shot_sizes[i] = (shot.width, shot.height)
        shot_calibrated[i] = shot.calibrated
        shot_T[i] = shot.T
        if shot.P is not None:
            shot_P[i] = shot.P
            shot_has_P[i] = True

    # Extract observations; their id order is also the incidence order.
    n_observations = len(store.observations)
    obs_shot_ids = np.zeros(n_observations, dtype=int)
    obs_vertex_ids = np.zeros(n_observations, dtype=int)
    obs_xy = np.zeros((n_observations, 2))

    for i, obs in enumerate(store.observations):
        obs_shot_ids[i] = obs.shot_id
        obs_vertex_ids[i] = obs.vertex_id
        obs_xy[i] = obs.xy

    polygons = np.array(store.polygons, dtype=int).reshape(-1, 3)

    np.savez(
        output_path,
        vertex_xyz=vertex_xyz,
        vertex_reconstructed=vertex_reconstructed,
        vertex_normals=vertex_normals,
        vertex_has_normal=vertex_has_normal,
        shot_sizes=shot_sizes,
        shot_calibrated=shot_calibrated,
        shot_T=shot_T,
        shot_P=shot_P,
        shot_has_P=shot_has_P,
        shot_names=shot_names,
        obs_shot_ids=obs_shot_ids,
        obs_vertex_ids=obs_vertex_ids,
        obs_xy=obs_xy,
        polygons=polygons,
    )


def load_scene_npz(input_path: PathLike) -> PointCloudStore:
    """
    Load a PointCloudStore written by `save_scene_npz`.

    Args:
        input_path: Path to the .npz file.

    Returns:
        A new store with the same ids, incidence order and normals.
    """
    store = PointCloudStore()
    with np.load(input_path) as data:
        for xyz, reconstructed, normal, has_normal in zip(
            data["vertex_xyz"],
            data["vertex_reconstructed"],
            data["vertex_normals"],
            data["vertex_has_normal"],
        ):
            vertex_id = store.add_vertex(xyz, reconstructed=bool(reconstructed))
            if has_normal:
                store.vertices[vertex_id].normal = np.array(normal, dtype=float)

        for size, calibrated, T, P, has_P, name in zip(
            data["shot_sizes"],
            data["shot_calibrated"],
            data["shot_T"],
            data["shot_P"],
            data["shot_has_P"],
            data["shot_names"],
        ):
            store.add_shot(
                int(size[0]),
                int(size[1]),
                calibrated=bool(calibrated),
                T=T,
                P=P if has_P else None,
                name=str(name),
            )

        for shot_id, vertex_id, xy in zip(
            data["obs_shot_ids"], data["obs_vertex_ids"], data["obs_xy"]
        ):
            store.add_observation(int(shot_id), int(vertex_id), xy)

        store.polygons = [tuple(int(v) for v in face) for face in data["polygons"]]

    return store


def export_ply(output_path: PathLike, store: PointCloudStore) -> int:
    """
    Write reconstructed vertices, their normals and polygons as ASCII PLY.

    Vertices without a normal are written with a zero normal. Polygons that
    reference unreconstructed vertices are left out.

    Returns:
        Number of vertices written.
    """
    ids = store.reconstructed_ids()
    new_index = {vertex_id: i for i, vertex_id in enumerate(ids)}
    faces = [
        tuple(new_index[v] for v in face)
        for face in store.polygons
        if all(v in new_index for v in face)
    ]

    lines = [
        "ply",
        "format ascii 1.0",
        f"element vertex {len(ids)}",
        "property float x",
        "property float y",
        "property float z",
        "property float nx",
        "property float ny",
        "property float nz",
        f"element face {len(faces)}",
        "property list uchar int vertex_indices",
        "end_header",
    ]
    for vertex_id in ids:
        vertex = store.vertices[vertex_id]
        normal = vertex.normal if vertex.normal is not None else np.zeros(3)
        values = list(vertex.xyz) + list(normal)
        lines.append(" ".join(f"{v:.6f}" for v in values))
    for face in faces:
        lines.append("3 " + " ".join(str(v) for v in face))

    Path(output_path).write_text("\n".join(lines) + "\n")
    return len(ids)


__all__ = ["save_scene_npz", "load_scene_npz", "export_ply"]
