"""Tests for the normals batch driver."""

import threading
from unittest import mock

import numpy as np
import pytest

from conftest import planar_store
from normals_app.config import NormalEstimationConfig
from normals_app.errors import IndexBuildError, PlaneFitError
from normals_app.geometry.plane_fitting import Plane
from normals_app.geometry.spatial_index import build_spatial_index
from normals_app.normals.estimation import (
    NormalBatchReport,
    VertexOutcome,
    compute_normals,
    estimate_vertex_normal,
)
from normals_app.scene.data_structures import PointCloudStore


class TestPlanarScenarios:
    def test_camera_above_plane(self, z0_plane_points):
        store = planar_store(z0_plane_points, T=(0, 0, 1))

        report = compute_normals(store)

        assert report.processed == 3
        for vertex in store.vertices:
            assert np.allclose(vertex.normal, [0, 0, 1], atol=1e-9)

    def test_camera_below_plane(self, z0_plane_points):
        store = planar_store(z0_plane_points, T=(0, 0, -1))

        compute_normals(store)

        for vertex in store.vertices:
            assert np.allclose(vertex.normal, [0, 0, -1], atol=1e-9)

    def test_isolated_vertex_is_skipped(self):
        store = PointCloudStore()
        store.add_vertex((1, 2, 3))
        store.add_vertex()
        store.add_vertex()

        report = compute_normals(store, NormalEstimationConfig(k_neighbors=200))

        assert report.total == 1
        assert report.outcomes == {0: VertexOutcome.NO_NEIGHBORS}
        assert report.skipped_no_neighbors == 1
        assert all(v.normal is None for v in store.vertices)

    def test_plane_fit_failure_does_not_stop_batch(self, z0_plane_points):
        store = planar_store(z0_plane_points + [(1.0, 1.0, 0.0)], T=(0, 0, 1))
        up = Plane(normal=np.array([0.0, 0.0, 1.0]), d=0.0)

        with mock.patch(
            "normals_app.normals.estimation.fit_plane",
            side_effect=[up, PlaneFitError("noise"), up, up],
        ) as fitter:
            report = compute_normals(store)

        assert fitter.call_count == 4
        assert report.outcomes[1] == VertexOutcome.PLANE_FIT_FAILED
        assert store.vertices[1].normal is None
        for vertex_id in (0, 2, 3):
            assert report.outcomes[vertex_id] == VertexOutcome.DONE
            assert np.allclose(store.vertices[vertex_id].normal, [0, 0, 1])
        assert (report.processed, report.skipped_plane_fit) == (3, 1)

    def test_noise_cluster_is_left_unset(self):
        rng = np.random.default_rng(5)
        store = planar_store(rng.uniform(0, 1, size=(60, 3)), T=(0, 0, 5))

        report = compute_normals(store, NormalEstimationConfig(k_neighbors=60))

        assert report.skipped_plane_fit == report.total == 60
        assert all(v.normal is None for v in store.vertices)


class TestInvariants:
    def test_noisy_plane_gives_unit_normals(self, tilted_plane_cloud):
        inliers, outliers, true_normal = tilted_plane_cloud
        store = planar_store(np.vstack([inliers, outliers]), T=(0, 0, 10))

        report = compute_normals(store)

        assert report.processed > 0
        for vertex_id, outcome in report.outcomes.items():
            if outcome != VertexOutcome.DONE:
                continue
            normal = store.vertices[vertex_id].normal
            assert np.isclose(np.linalg.norm(normal), 1.0)
        for vertex_id in range(len(inliers)):
            assert store.vertices[vertex_id].normal @ true_normal > 0.99

    def test_unreconstructed_vertices_are_untouched(self, z0_plane_points):
        store = planar_store(z0_plane_points, T=(0, 0, 1))
        hidden = store.add_vertex((0.5, 0.5, 0.0), reconstructed=False)
        stale = np.array([1.0, 0.0, 0.0])
        store.vertices[hidden].normal = stale

        report = compute_normals(store)

        assert hidden not in report.outcomes
        assert store.vertices[hidden].normal is stale

    def test_rerun_gives_identical_normals(self, tilted_plane_cloud):
        inliers, outliers, _ = tilted_plane_cloud
        store = planar_store(np.vstack([inliers, outliers]), T=(0, 0, 10))

        compute_normals(store)
        first, first_valid = store.normals_array()
        compute_normals(store)
        second, second_valid = store.normals_array()

        assert np.array_equal(first_valid, second_valid)
        assert np.array_equal(first, second)

    def test_threaded_matches_sequential(self, tilted_plane_cloud):
        inliers, outliers, _ = tilted_plane_cloud
        points = np.vstack([inliers, outliers])
        sequential = planar_store(points, T=(0, 0, 10))
        threaded = planar_store(points, T=(0, 0, 10))

        report_seq = compute_normals(sequential, NormalEstimationConfig(k_neighbors=50))
        report_thr = compute_normals(
            threaded, NormalEstimationConfig(k_neighbors=50, num_workers=4)
        )

        assert report_seq.outcomes == report_thr.outcomes
        assert np.array_equal(sequential.normals_array()[0], threaded.normals_array()[0])

    def test_empty_store_is_a_no_op(self):
        report = compute_normals(PointCloudStore())

        assert report.total == 0
        assert report.outcomes == {}
        assert not report.cancelled

    def test_index_failure_aborts_batch(self, z0_plane_points):
        store = planar_store(z0_plane_points, T=(0, 0, 1))

        with mock.patch(
            "normals_app.geometry.spatial_index.cKDTree", side_effect=MemoryError
        ):
            with pytest.raises(IndexBuildError):
                compute_normals(store)

        assert all(v.normal is None for v in store.vertices)


class TestProgressAndCancellation:
    def test_progress_heartbeat(self, z0_plane_points):
        points = z0_plane_points + [(1.0, 1.0, 0.0), (2.0, 0.0, 0.0)]
        store = planar_store(points, T=(0, 0, 1))
        calls = []

        compute_normals(
            store,
            NormalEstimationConfig(progress_every=2),
            progress_callback=lambda done, total: calls.append((done, total)),
        )

        assert calls == [(2, 5), (4, 5), (5, 5)]

    def test_cancel_before_start(self, z0_plane_points):
        store = planar_store(z0_plane_points, T=(0, 0, 1))
        cancel = threading.Event()
        cancel.set()

        report = compute_normals(store, cancel_event=cancel)

        assert report.cancelled
        assert report.attempted == 0
        assert set(report.outcomes.values()) == {VertexOutcome.CANCELLED}
        assert all(v.normal is None for v in store.vertices)

    def test_cancel_mid_batch_leaves_rest_untouched(self, z0_plane_points):
        points = z0_plane_points + [(1.0, 1.0, 0.0), (2.0, 0.0, 0.0)]
        store = planar_store(points, T=(0, 0, 1))
        cancel = threading.Event()

        def progress(done, total):
            if done == 2:
                cancel.set()

        report = compute_normals(
            store,
            NormalEstimationConfig(progress_every=1),
            progress_callback=progress,
            cancel_event=cancel,
        )

        assert report.cancelled
        assert report.processed == 2
        assert [v.normal is not None for v in store.vertices] == [True, True, False, False, False]
        assert "cancelled after 2" in report.summary()


class TestSingleVertex:
    def test_estimate_does_not_write(self, z0_plane_points):
        store = planar_store(z0_plane_points, T=(0, 0, 1))
        index = build_spatial_index(store)

        outcome, normal = estimate_vertex_normal(store, 0, index, NormalEstimationConfig())

        assert outcome == VertexOutcome.DONE
        assert np.allclose(normal, [0, 0, 1])
        assert store.vertices[0].normal is None

    def test_report_counters(self):
        report = NormalBatchReport(total=3)
        report.record(0, VertexOutcome.DONE)
        report.record(1, VertexOutcome.NO_NEIGHBORS)
        report.record(2, VertexOutcome.PLANE_FIT_FAILED)

        assert (report.processed, report.skipped, report.attempted) == (1, 2, 3)
        assert not report.cancelled
