"""
Visualization of reconstructed vertices and their normals using Plotly.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import plotly.graph_objs as go

from normals_app.scene.data_structures import PointCloudStore


def plot_normals(store: PointCloudStore, normal_length: Optional[float] = None) -> go.Figure:
    """
    Create a 3D Plotly visualization of the point cloud and its normals.

    Args:
        store: Point cloud store.
        normal_length: Length of the drawn normal segments. Defaults to 5% of
                       the point cloud's bounding box diagonal.

    Returns:
        Plotly Figure with reconstructed points, normal segments, and the
        reference points of calibrated shots.
    """
    ids = store.reconstructed_ids()
    if ids:
        points_xyz = np.array([store.vertices[i].xyz for i in ids])
    else:
        points_xyz = np.array([]).reshape(0, 3)

    if normal_length is None:
        extent = np.ptp(points_xyz, axis=0) if len(points_xyz) > 0 else np.zeros(3)
        normal_length = 0.05 * float(np.linalg.norm(extent)) or 1.0

    # Normal segments as one line trace, separated by None gaps.
    seg_x, seg_y, seg_z = [], [], []
    for vertex_id in ids:
        vertex = store.vertices[vertex_id]
        if vertex.normal is None:
            continue
        tip = vertex.xyz + normal_length * vertex.normal
        seg_x += [vertex.xyz[0], tip[0], None]
        seg_y += [vertex.xyz[1], tip[1], None]
        seg_z += [vertex.xyz[2], tip[2], None]

    references = np.array([shot.T for shot in store.shots if shot.calibrated]).reshape(-1, 3)

    fig = go.Figure()

    if len(points_xyz) > 0:
        fig.add_trace(
            go.Scatter3d(
                x=points_xyz[:, 0],
                y=points_xyz[:, 1],
                z=points_xyz[:, 2],
                mode="markers",
                marker=dict(size=2, color="steelblue", opacity=0.8),
                name="Vertices",
                text=[f"Vertex {i}" for i in ids],
            )
        )

    if seg_x:
        fig.add_trace(
            go.Scatter3d(
                x=seg_x,
                y=seg_y,
                z=seg_z,
                mode="lines",
                line=dict(color="orange", width=2),
                name="Normals",
            )
        )

    if len(references) > 0:
        fig.add_trace(
            go.Scatter3d(
                x=references[:, 0],
                y=references[:, 1],
                z=references[:, 2],
                mode="markers",
                marker=dict(size=8, color="red", symbol="diamond"),
                name="Shot reference points",
                text=[shot.name or f"Shot {shot.id}" for shot in store.shots if shot.calibrated],
            )
        )

    fig.update_layout(
        title="Vertex normals",
        scene=dict(
            xaxis_title="X",
            yaxis_title="Y",
            zaxis_title="Z",
            aspectmode="data",
        ),
        width=800,
        height=600,
    )

    return fig


__all__ = ["plot_normals"]
