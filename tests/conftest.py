"""
Shared fixtures and scene builders for the normals test suite.
"""

import numpy as np
import pytest

from normals_app.scene.data_structures import PointCloudStore


def planar_store(points, T, calibrated=True):
    """Store with one shot at reference point T observing every given point."""
    store = PointCloudStore()
    shot_id = store.add_shot(640, 480, calibrated=calibrated, T=T)
    for xyz in points:
        vertex_id = store.add_vertex(xyz)
        store.add_observation(shot_id, vertex_id, (0.5, 0.5))
    return store


def camera_P(center, K=None, target=(0.0, 0.0, 0.0)):
    """Projection matrix (3x4) of a camera at `center` looking at `target`."""
    from make_synthetic_scene import look_at

    if K is None:
        K = np.array([[800.0, 0.0, 320.0], [0.0, 800.0, 240.0], [0.0, 0.0, 1.0]])
    C = np.asarray(center, dtype=float)
    R = look_at(C, np.asarray(target, dtype=float))
    t = -R @ C
    return K @ np.hstack([R, t.reshape(3, 1)])


@pytest.fixture
def z0_plane_points():
    return [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0)]


@pytest.fixture
def tilted_plane_cloud():
    """Noisy grid on z = 0.3x + 0.2y with a few off-plane outliers."""
    rng = np.random.default_rng(7)
    u, v = np.meshgrid(np.linspace(-1, 1, 15), np.linspace(-1, 1, 15))
    x, y = u.ravel(), v.ravel()
    z = 0.3 * x + 0.2 * y + rng.normal(scale=0.001, size=x.size)
    inliers = np.column_stack([x, y, z])
    outliers = rng.uniform(-1, 1, size=(20, 3))
    offsets = rng.choice([-1.0, 1.0], size=20) * rng.uniform(0.5, 1.0, size=20)
    outliers[:, 2] = 0.3 * outliers[:, 0] + 0.2 * outliers[:, 1] + offsets
    normal = np.array([-0.3, -0.2, 1.0])
    return inliers, outliers, normal / np.linalg.norm(normal)
