"""End-to-end tests for the command-line pipeline on a synthetic box."""

import numpy as np
import pytest

from make_synthetic_scene import build_scene
from normals_app.cli.main import main
from normals_app.config import NormalEstimationConfig
from normals_app.io.scene_io import load_scene_npz, save_scene_npz
from normals_app.normals.estimation import compute_normals


def face_normal(xyz):
    axis = int(np.argmax(np.abs(xyz)))
    normal = np.zeros(3)
    normal[axis] = np.sign(xyz[axis])
    return normal


class TestSyntheticBox:
    def test_observed_face_centres_point_outwards(self):
        store = build_scene(n_points=1500, n_cameras=8, noise=0.002, seed=1)

        report = compute_normals(store, NormalEstimationConfig(k_neighbors=50))

        assert report.processed > 0.75 * report.total
        checked = 0
        for vertex in store.vertices:
            offsets = np.sort(np.abs(vertex.xyz))
            # Points near a face centre, seen by at least one camera.
            if offsets[1] > 0.4 or not store.incidence[vertex.id]:
                continue
            assert vertex.normal is not None
            assert vertex.normal @ face_normal(vertex.xyz) > 0.9
            checked += 1
        assert checked > 0

    def test_triangulation_preset_rebuilds_positions(self, tmp_path):
        truth = build_scene(n_points=200, n_cameras=6, noise=0.0, seed=2)
        store = build_scene(n_points=200, n_cameras=6, noise=0.0, seed=2, reconstructed=False)
        scene_path = tmp_path / "scene.npz"
        save_scene_npz(scene_path, store)

        main(["--scene", str(scene_path), "--output-dir", str(tmp_path / "out"),
              "--triangulate", "all", "--k", "30"])

        result = load_scene_npz(tmp_path / "out" / "scene.npz")
        for vertex, expected in zip(result.vertices, truth.vertices):
            if vertex.reconstructed:
                assert np.allclose(vertex.xyz, expected.xyz, atol=1e-5)
        assert sum(v.reconstructed for v in result.vertices) > 120


class TestMain:
    @pytest.fixture
    def scene_path(self, tmp_path):
        path = tmp_path / "scene.npz"
        save_scene_npz(path, build_scene(n_points=300, n_cameras=4, noise=0.002, seed=3))
        return path

    def test_writes_scene_ply_and_html(self, scene_path, tmp_path, capsys):
        out = tmp_path / "out"

        main(["--scene", str(scene_path), "--output-dir", str(out), "--k", "30",
              "--orientation", "majority", "--workers", "2", "--progress-every", "50",
              "--surface-shot", "0", "--ply", "--visualize"])

        assert (out / "scene.npz").exists()
        assert (out / "normals.ply").exists()
        assert (out / "normals.html").exists()
        result = load_scene_npz(out / "scene.npz")
        _, valid = result.normals_array()
        assert valid.sum() > 0.6 * len(result.vertices)
        assert len(result.polygons) > 0

        printed = capsys.readouterr().out
        assert "[normals]" in printed
        assert "Processed" in printed

    def test_rejects_unknown_orientation(self, scene_path, tmp_path):
        with pytest.raises(SystemExit):
            main(["--scene", str(scene_path), "--orientation", "vote",
                  "--output-dir", str(tmp_path / "out")])
