"""
Synthetic scene generator for trying out the normals pipeline.

Samples noisy points on the surface of a box, places calibrated cameras on a
ring around it, projects every point into every camera that sees it and saves
the result as a scene `.npz` readable by `normals-from-scene`.
"""

import argparse
from pathlib import Path

import numpy as np

from normals_app.io.scene_io import save_scene_npz
from normals_app.scene.data_structures import PointCloudStore


def look_at(center: np.ndarray, target: np.ndarray) -> np.ndarray:
    """Rotation (3x3) of a camera at `center` looking at `target`, z-up world."""
    z = target - center
    z = z / np.linalg.norm(z)
    x = np.cross(z, np.array([0.0, 0.0, 1.0]))
    x = x / np.linalg.norm(x)
    y = np.cross(z, x)
    return np.vstack([x, y, z])


def sample_box_surface(n_points: int, half_size: float, noise: float, rng):
    """
    Uniform samples on the faces of an axis-aligned box, plus Gaussian noise.

    Returns:
        Tuple of (points, face_normals), both (N, 3); face_normals are the
        outward unit normals of the face each point was sampled on.
    """
    axis = rng.integers(0, 3, size=n_points)
    side = rng.choice([-1.0, 1.0], size=n_points)
    points = rng.uniform(-half_size, half_size, size=(n_points, 3))
    points[np.arange(n_points), axis] = side * half_size
    face_normals = np.zeros((n_points, 3))
    face_normals[np.arange(n_points), axis] = side
    return points + rng.normal(scale=noise, size=points.shape), face_normals


def build_scene(
    n_points: int = 2000,
    n_cameras: int = 8,
    noise: float = 0.01,
    reconstructed: bool = True,
    seed: int = 0,
) -> PointCloudStore:
    rng = np.random.default_rng(seed)
    width, height = 1024, 768
    K = np.array([[800.0, 0.0, width / 2], [0.0, 800.0, height / 2], [0.0, 0.0, 1.0]])

    store = PointCloudStore()
    for i in range(n_cameras):
        angle = 2 * np.pi * i / n_cameras
        C = np.array([6.0 * np.cos(angle), 6.0 * np.sin(angle), 3.0])
        R = look_at(C, np.zeros(3))
        t = -R @ C
        P = K @ np.hstack([R, t.reshape(3, 1)])
        store.add_shot(width, height, calibrated=True, T=C, P=P, name=f"cam{i:02d}")

    points, face_normals = sample_box_surface(n_points, 1.0, noise, rng)
    for X, face_normal in zip(points, face_normals):
        vertex_id = store.add_vertex(X if reconstructed else None)
        for shot in store.shots:
            # Back faces are hidden from the camera.
            if face_normal @ (shot.T - X) <= 0:
                continue
            projected = shot.P @ np.append(X, 1.0)
            if projected[2] <= 0:
                continue
            u, v = projected[:2] / projected[2]
            if 0 <= u < width and 0 <= v < height:
                store.add_observation(shot.id, vertex_id, (u / width, v / height))

    return store


def main():
    parser = argparse.ArgumentParser(description="Write a synthetic box scene to .npz")
    parser.add_argument(
        "--output",
        type=str,
        default="output/synthetic_scene.npz",
        help="Path of the scene file to write",
    )
    parser.add_argument("--points", type=int, default=2000, help="Number of surface points")
    parser.add_argument("--cameras", type=int, default=8, help="Number of cameras on the ring")
    parser.add_argument("--noise", type=float, default=0.01, help="Std. dev. of point noise")
    parser.add_argument("--seed", type=int, default=0, help="Random seed")
    parser.add_argument(
        "--unreconstructed",
        action="store_true",
        help="Leave vertices unreconstructed so they have to be triangulated first",
    )
    args = parser.parse_args()

    store = build_scene(
        n_points=args.points,
        n_cameras=args.cameras,
        noise=args.noise,
        reconstructed=not args.unreconstructed,
        seed=args.seed,
    )

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    save_scene_npz(output_path, store)
    print(
        f"[synthetic] Saved {len(store.vertices)} vertices, {len(store.shots)} shots, "
        f"{len(store.observations)} observations to {output_path}"
    )


if __name__ == "__main__":
    main()
