#!/usr/bin/env python3
"""
Validate geodesic circles against analytic surfaces.

Surfaces generated in memory:
  - icosphere_R50 (subdivision levels 3/4)
  - plane_grid (spacing 2.0/1.0)

Validation checks:
  - fitted radius against the analytic radius for the same area fraction
  - fitted perimeter against the analytic perimeter at that radius
  - consistency: measured perimeter vs finite-difference dA/dr of the
    area curve around the fitted radius

Edge-path distances overestimate surface geodesics (zig-zag paths), so the
errors here are dominated by the mesh metric, not by the circle fitting.
"""

import argparse
import logging
import os

import numpy as np
import pandas as pd
from scipy.spatial import Delaunay

from fastgeod_circles import circle_parameters, circle_stats
from fastgeod_dijkstra import correct_sentinel, propagate
from fastgeod_mesh import MeshGraph
from fastgeod_parallel import geodesic_circles
from fastgeod_settings import GeodesicSettings, configure_logging

logger = logging.getLogger(__name__)

AREA_FRACTIONS = [1.0, 3.0, 5.0, 10.0]
SPHERE_RADIUS = 50.0
PLANE_EXTENTS = (-100.0, 100.0, -100.0, 100.0)
RADIUS_TOL = 0.15
PERIMETER_TOL = 0.25
CONSISTENCY_TOL = 0.25

RES_LEVELS = {
    "coarse": {"sphere_subdiv": 3, "plane_spacing": 2.0},
    "fine": {"sphere_subdiv": 4, "plane_spacing": 1.0},
}


def make_icosphere(radius, subdivisions):
    """Icosahedron refined `subdivisions` times, vertices projected to the sphere."""
    phi = (1.0 + np.sqrt(5.0)) / 2.0
    verts = [
        np.array(v, dtype=np.float64)
        for v in (
            (-1, phi, 0), (1, phi, 0), (-1, -phi, 0), (1, -phi, 0),
            (0, -1, phi), (0, 1, phi), (0, -1, -phi), (0, 1, -phi),
            (phi, 0, -1), (phi, 0, 1), (-phi, 0, -1), (-phi, 0, 1),
        )
    ]
    verts = [v / np.linalg.norm(v) for v in verts]
    faces = [
        (0, 11, 5), (0, 5, 1), (0, 1, 7), (0, 7, 10), (0, 10, 11),
        (1, 5, 9), (5, 11, 4), (11, 10, 2), (10, 7, 6), (7, 1, 8),
        (3, 9, 4), (3, 4, 2), (3, 2, 6), (3, 6, 8), (3, 8, 9),
        (4, 9, 5), (2, 4, 11), (6, 2, 10), (8, 6, 7), (9, 8, 1),
    ]

    for _ in range(int(subdivisions)):
        cache = {}

        def midpoint(i, j):
            key = (min(i, j), max(i, j))
            if key not in cache:
                m = 0.5 * (verts[i] + verts[j])
                verts.append(m / np.linalg.norm(m))
                cache[key] = len(verts) - 1
            return cache[key]

        refined = []
        for i, j, k in faces:
            a, b, c = midpoint(i, j), midpoint(j, k), midpoint(k, i)
            refined.extend(((i, a, c), (j, b, a), (k, c, b), (a, b, c)))
        faces = refined

    return np.asarray(verts) * float(radius), np.asarray(faces, dtype=np.int64)


def make_plane_grid(xmin=-100.0, xmax=100.0, ymin=-100.0, ymax=100.0, spacing=2.0):
    xs = np.arange(xmin, xmax + 0.5 * spacing, spacing, dtype=np.float64)
    ys = np.arange(ymin, ymax + 0.5 * spacing, spacing, dtype=np.float64)
    xv, yv = np.meshgrid(xs, ys, indexing="xy")
    verts = np.column_stack((xv.ravel(), yv.ravel(), np.zeros(xv.size, dtype=np.float64)))
    faces = Delaunay(verts[:, :2]).simplices.astype(np.int64)
    return verts, faces


def sphere_area(radius, r):
    return 2.0 * np.pi * (radius ** 2) * (1.0 - np.cos(r / radius))


def sphere_perimeter(radius, r):
    return 2.0 * np.pi * radius * np.sin(r / radius)


def plane_area(r):
    return np.pi * (r ** 2)


def plane_perimeter(r):
    return 2.0 * np.pi * r


def sphere_r_from_area(radius, area):
    return float(radius * np.arccos(1.0 - area / (2.0 * np.pi * radius ** 2)))


def plane_r_from_area(area):
    return float(np.sqrt(area / np.pi))


def pick_test_vertices(vertices, kind, n=5):
    """A few well-separated query vertices; central ones on the plane."""
    if kind == "plane":
        d = np.linalg.norm(vertices[:, :2], axis=1)
        return np.argsort(d, kind="stable")[:n]
    targets = np.array([(0, 0, 1), (0, 0, -1), (1, 0, 0), (0, 1, 0), (-1, 0, 0)], dtype=np.float64)
    unit = vertices / np.linalg.norm(vertices, axis=1, keepdims=True)
    return np.array([int(np.argmax(unit @ t)) for t in targets[:n]])


def consistency_perimeter(mesh, vertex, r):
    """dA/dr by central differences on the measured area curve."""
    h = max(0.5 * mesh.mean_edge_length, 1e-3)
    d = correct_sentinel(propagate(mesh, [vertex]), vertex)
    stats = circle_stats(mesh, d, [r - h, r + h], vertex=vertex)
    return float((stats.areas[1] - stats.areas[0]) / (2.0 * h))


def validate_surface(name, kind, mesh, settings):
    q = pick_test_vertices(mesh.vertices, kind)
    rows = []
    for frac in AREA_FRACTIONS:
        circles = geodesic_circles(mesh, query_vertices=q, area_fraction_percent=frac, settings=settings)
        params = circle_parameters(mesh, frac, settings=settings)
        if kind == "sphere":
            r_true = sphere_r_from_area(SPHERE_RADIUS, params.target_area)
            p_true = sphere_perimeter(SPHERE_RADIUS, r_true)
        else:
            r_true = plane_r_from_area(params.target_area)
            p_true = plane_perimeter(r_true)
        for pos, v in enumerate(circles.query_vertices):
            r_meas = float(circles.radius[pos])
            p_meas = float(circles.perimeter[pos])
            p_fd = consistency_perimeter(mesh, int(v), r_meas)
            rows.append({
                "surface": name,
                "vertex": int(v),
                "area_fraction": frac,
                "r_true": r_true,
                "r_measured": r_meas,
                "p_true": p_true,
                "p_measured": p_meas,
                "radius_error": abs(r_meas - r_true) / r_true,
                "perimeter_error": abs(p_meas - p_true) / p_true,
                "consistency_error": abs(p_fd - p_meas) / max(p_meas, 1e-12),
            })
    df = pd.DataFrame(rows)
    df["pass"] = (
        (df["radius_error"] <= RADIUS_TOL)
        & (df["perimeter_error"] <= PERIMETER_TOL)
        & (df["consistency_error"] <= CONSISTENCY_TOL)
    )
    return df


def build_surfaces(levels):
    for level in levels:
        cfg = RES_LEVELS[level]
        v, f = make_icosphere(SPHERE_RADIUS, cfg["sphere_subdiv"])
        yield f"icosphere_R{SPHERE_RADIUS:g}_{level}", "sphere", MeshGraph(v, f)
        v, f = make_plane_grid(*PLANE_EXTENTS, spacing=cfg["plane_spacing"])
        yield f"plane_grid_{level}", "plane", MeshGraph(v, f)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Validate geodesic circles on analytic surfaces.")
    parser.add_argument("--out-dir", default="validation_fastgeod", help="Folder for the result CSVs.")
    parser.add_argument("--levels", nargs="+", choices=sorted(RES_LEVELS), default=["coarse"],
                        help="Mesh resolutions to validate.")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads.")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    settings = GeodesicSettings(workers=args.workers, progress=False)
    frames = []
    for name, kind, mesh in build_surfaces(args.levels):
        print(f"Validating {name}: {mesh.n_vertices} vertices, {mesh.n_faces} faces")
        frames.append(validate_surface(name, kind, mesh, settings))
    results = pd.concat(frames, ignore_index=True)

    os.makedirs(args.out_dir, exist_ok=True)
    detailed_csv = os.path.join(args.out_dir, "validation_results_detailed.csv")
    results.to_csv(detailed_csv, index=False)
    print(f"\nWrote detailed results: {detailed_csv}")

    summary = results.groupby("surface").agg(
        radius_error_max=("radius_error", "max"),
        radius_error_mean=("radius_error", "mean"),
        perimeter_error_max=("perimeter_error", "max"),
        perimeter_error_mean=("perimeter_error", "mean"),
        consistency_error_max=("consistency_error", "max"),
        pass_all=("pass", "all"),
    )
    summary_csv = os.path.join(args.out_dir, "validation_results_summary.csv")
    summary.to_csv(summary_csv)
    print(f"Wrote summary: {summary_csv}")

    print("\n=== Overall ===")
    for surface, row in summary.iterrows():
        status = "PASS" if row["pass_all"] else "FAIL"
        print(f"{surface}: {status} (radius err max {row['radius_error_max']:.4f}, "
              f"perimeter err max {row['perimeter_error_max']:.4f})")
    return 0 if bool(summary["pass_all"].all()) else 1


if __name__ == "__main__":
    raise SystemExit(main())
