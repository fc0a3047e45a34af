"""
Command-line interface for vertex normal estimation.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from normals_app.config import TRIANGULATION_PRESETS, NormalEstimationConfig
from normals_app.geometry.orientation import OrientationPolicy
from normals_app.geometry.surface import triangulate_shot_surface
from normals_app.geometry.triangulation import triangulate_vertices
from normals_app.io.scene_io import export_ply, load_scene_npz, save_scene_npz
from normals_app.normals.estimation import compute_normals


def _print_progress(done: int, total: int) -> None:
    print(".", end="", flush=True)
    if done == total:
        print()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Estimate oriented vertex normals for a reconstructed scene"
    )
    parser.add_argument(
        "--scene",
        type=str,
        required=True,
        help="Path to the scene .npz file",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="output",
        help="Output directory for the updated scene and exports (default: output)",
    )
    parser.add_argument(
        "--triangulate",
        type=str,
        default=None,
        choices=sorted(TRIANGULATION_PRESETS),
        help="Re-triangulate vertices with the given preset before estimating normals",
    )
    parser.add_argument(
        "--k",
        type=int,
        default=NormalEstimationConfig.k_neighbors,
        help="Number of nearest neighbours per plane fit (default: 200)",
    )
    parser.add_argument(
        "--eps",
        type=float,
        default=NormalEstimationConfig.search_eps,
        help="Relative error of the approximate neighbour search (default: 0.05)",
    )
    parser.add_argument(
        "--orientation",
        type=str,
        default=OrientationPolicy.FIRST_CALIBRATED.value,
        choices=[p.value for p in OrientationPolicy],
        help="How observing cameras decide the normal sign (default: first_calibrated)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Worker threads for the per-vertex loop (default: 1)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=0,
        help="Seed for the robust plane fits (default: 0)",
    )
    parser.add_argument(
        "--progress-every",
        type=int,
        default=NormalEstimationConfig.progress_every,
        help="Print a progress dot after this many vertices (default: 100)",
    )
    parser.add_argument(
        "--surface-shot",
        type=int,
        default=None,
        help="Also build surface triangles from the points marked on this shot",
    )
    parser.add_argument(
        "--ply",
        action="store_true",
        help="Export reconstructed vertices with normals to normals.ply",
    )
    parser.add_argument(
        "--visualize",
        action="store_true",
        help="Generate HTML visualization of the normals",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """
    Main CLI entry point.

    Usage:
        normals-from-scene --scene path/to/scene.npz \\
                           --output-dir out/ \\
                           --ply --visualize
    """
    args = build_parser().parse_args(argv)

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    print(f"Loading scene from {args.scene}...")
    store = load_scene_npz(args.scene)
    print(
        f"Loaded {len(store.vertices)} vertices, {len(store.shots)} shots, "
        f"{len(store.observations)} observations"
    )

    if args.triangulate is not None:
        preset = TRIANGULATION_PRESETS[args.triangulate]
        print(f"Triangulating vertices ({args.triangulate})...")
        triangulate_vertices(
            store,
            min_inliers=preset.min_inliers,
            min_inliers_weaker=preset.min_inliers_weaker,
            stricter_threshold=preset.stricter_threshold,
            measurement_threshold=preset.measurement_threshold,
        )

    config = NormalEstimationConfig(
        k_neighbors=args.k,
        search_eps=args.eps,
        orientation_policy=args.orientation,
        num_workers=args.workers,
        seed=args.seed,
        progress_every=args.progress_every,
    )

    print("Computing vertex normals...")
    report = compute_normals(store, config, progress_callback=_print_progress)
    print(f"Processed {report.processed}, skipped {report.skipped}")

    if args.surface_shot is not None:
        print(f"Building surface from shot {args.surface_shot}...")
        triangulate_shot_surface(store, args.surface_shot)

    scene_path = output_dir / "scene.npz"
    print(f"Saving scene to {scene_path}...")
    save_scene_npz(scene_path, store)

    if args.ply:
        ply_path = output_dir / "normals.ply"
        count = export_ply(ply_path, store)
        print(f"Wrote {count} vertices to {ply_path}")

    if args.visualize:
        from normals_app.viz.plotly_viz import plot_normals

        print("Generating visualization...")
        fig = plot_normals(store)
        viz_path = output_dir / "normals.html"
        fig.write_html(str(viz_path))
        print(f"Visualization saved to {viz_path}")

    print("Done.")


if __name__ == "__main__":
    main()
