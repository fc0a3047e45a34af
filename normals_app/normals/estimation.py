"""
Batch estimation of vertex normals from the reconstructed point cloud.

For every reconstructed vertex the K nearest reconstructed vertices are
looked up, a plane is fitted to them with RANSAC, and the plane normal is
oriented towards a camera that observes the vertex.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from normals_app.config import NormalEstimationConfig
from normals_app.errors import PlaneFitError
from normals_app.geometry.orientation import orient_normal, resolve_policy
from normals_app.geometry.plane_fitting import fit_plane
from normals_app.geometry.spatial_index import SpatialIndex, spatial_index
from normals_app.scene.data_structures import PointCloudStore

ProgressCallback = Callable[[int, int], None]


class VertexOutcome(str, Enum):
    DONE = "done"
    NO_NEIGHBORS = "no_neighbors"
    PLANE_FIT_FAILED = "plane_fit_failed"
    # The batch was cancelled before this vertex was reached.
    CANCELLED = "cancelled"


@dataclass
class NormalBatchReport:
    """What happened to each reconstructed vertex during one batch."""

    total: int = 0
    processed: int = 0
    skipped_no_neighbors: int = 0
    skipped_plane_fit: int = 0
    cancelled: bool = False
    outcomes: Dict[int, VertexOutcome] = field(default_factory=dict)

    @property
    def skipped(self) -> int:
        return self.skipped_no_neighbors + self.skipped_plane_fit

    @property
    def attempted(self) -> int:
        return self.processed + self.skipped

    def record(self, vertex_id: int, outcome: VertexOutcome) -> None:
        self.outcomes[vertex_id] = outcome
        if outcome == VertexOutcome.DONE:
            self.processed += 1
        elif outcome == VertexOutcome.NO_NEIGHBORS:
            self.skipped_no_neighbors += 1
        elif outcome == VertexOutcome.PLANE_FIT_FAILED:
            self.skipped_plane_fit += 1
        else:
            self.cancelled = True

    def summary(self) -> str:
        text = (
            f"Normals computed for {self.processed} of {self.total} reconstructed vertices, "
            f"skipped {self.skipped} ({self.skipped_no_neighbors} without neighbours, "
            f"{self.skipped_plane_fit} without a stable plane)"
        )
        if self.cancelled:
            text += f"; cancelled after {self.attempted} vertices"
        return text


def estimate_vertex_normal(
    store: PointCloudStore,
    vertex_id: int,
    index: SpatialIndex,
    config: NormalEstimationConfig,
) -> Tuple[VertexOutcome, Optional[np.ndarray]]:
    """
    Estimate the normal of a single reconstructed vertex without storing it.

    Args:
        store: Point cloud store.
        vertex_id: Id of a reconstructed vertex.
        index: Spatial index over the reconstructed vertices of `store`.
        config: Batch configuration.

    Returns:
        Tuple of (outcome, normal); `normal` is a unit vector (3,) when the
        outcome is DONE and None otherwise.
    """
    vertex = store.vertices[vertex_id]
    neighbor_ids, _ = index.query(vertex.xyz, config.k_neighbors, eps=config.search_eps)

    # The vertex is its own nearest neighbour; it needs at least one other.
    if not np.any(neighbor_ids != vertex_id):
        return VertexOutcome.NO_NEIGHBORS, None

    # Seeded per vertex so results do not depend on visiting order.
    rng = np.random.default_rng([config.seed, vertex_id])
    try:
        plane = fit_plane(
            store,
            neighbor_ids,
            len(neighbor_ids),
            max_iterations=config.ransac_iterations,
            relative_threshold=config.ransac_relative_threshold,
            min_inlier_ratio=config.min_inlier_ratio,
            rng=rng,
        )
        normal = orient_normal(
            plane,
            store.incidence[vertex_id],
            store.shots,
            resolve_policy(config.orientation_policy),
        )
    except PlaneFitError:
        return VertexOutcome.PLANE_FIT_FAILED, None

    return VertexOutcome.DONE, normal


def _run_sequential(
    store: PointCloudStore,
    targets: List[int],
    index: SpatialIndex,
    config: NormalEstimationConfig,
    report: NormalBatchReport,
    progress: Callable[[int], None],
    cancel_event: Optional[threading.Event],
) -> None:
    for position, vertex_id in enumerate(targets):
        if cancel_event is not None and cancel_event.is_set():
            for remaining in targets[position:]:
                report.record(remaining, VertexOutcome.CANCELLED)
            return

        outcome, normal = estimate_vertex_normal(store, vertex_id, index, config)
        if normal is not None:
            store.vertices[vertex_id].normal = normal
        report.record(vertex_id, outcome)
        progress(position + 1)


def _run_threaded(
    store: PointCloudStore,
    targets: List[int],
    index: SpatialIndex,
    config: NormalEstimationConfig,
    report: NormalBatchReport,
    progress: Callable[[int], None],
    cancel_event: Optional[threading.Event],
) -> None:
    def process(vertex_id: int) -> Tuple[int, VertexOutcome]:
        if cancel_event is not None and cancel_event.is_set():
            return vertex_id, VertexOutcome.CANCELLED
        outcome, normal = estimate_vertex_normal(store, vertex_id, index, config)
        # Each task owns exactly one vertex, so the write needs no lock.
        if normal is not None:
            store.vertices[vertex_id].normal = normal
        return vertex_id, outcome

    done = 0
    with ThreadPoolExecutor(max_workers=config.num_workers) as pool:
        futures = [pool.submit(process, vertex_id) for vertex_id in targets]
        for future in as_completed(futures):
            vertex_id, outcome = future.result()
            report.record(vertex_id, outcome)
            if outcome != VertexOutcome.CANCELLED:
                done += 1
                progress(done)


def compute_normals(
    store: PointCloudStore,
    config: Optional[NormalEstimationConfig] = None,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
) -> NormalBatchReport:
    """
    Compute normals for all reconstructed vertices of `store`.

    Vertices that are not reconstructed are never touched. Vertices without
    neighbours or without a stable plane keep whatever normal they had.

    Args:
        store: Point cloud store; only `Vertex.normal` is written.
        config: Batch configuration; defaults to `NormalEstimationConfig()`.
        progress_callback: Called as `progress_callback(done, total)` every
                           `config.progress_every` vertices and after the last.
        cancel_event: When set, the batch stops before the next vertex.

    Returns:
        NormalBatchReport with per-vertex outcomes.

    Raises:
        IndexBuildError: If the spatial index cannot be built.
    """
    config = config or NormalEstimationConfig()
    resolve_policy(config.orientation_policy)

    targets = store.reconstructed_ids()
    report = NormalBatchReport(total=len(targets))
    if not targets:
        print("[normals] No reconstructed vertices; nothing to do")
        return report

    def progress(done: int) -> None:
        if progress_callback is None:
            return
        if done % config.progress_every == 0 or done == report.total:
            progress_callback(done, report.total)

    print(
        f"[normals] Estimating normals for {len(targets)} vertices "
        f"(K={config.k_neighbors}, workers={config.num_workers})"
    )

    with spatial_index(store) as index:
        if config.num_workers > 1:
            _run_threaded(store, targets, index, config, report, progress, cancel_event)
        else:
            _run_sequential(store, targets, index, config, report, progress, cancel_event)

    print(f"[normals] {report.summary()}")
    return report


__all__ = [
    "VertexOutcome",
    "NormalBatchReport",
    "estimate_vertex_normal",
    "compute_normals",
]
