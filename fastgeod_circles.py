"""
Geodesic circle statistics: enclosed area and perimeter of distance contours.

ALGORITHM:
For a source vertex with distance field d, the geodesic disc of radius r is
{x : d(x) < r} with d interpolated linearly over each face.

1. Faces with all three distances < r lie fully inside and add their area.
2. Faces with all three distances >= r lie outside and add nothing.
3. Straddling faces (1 or 2 vertices inside) are rotated so the odd vertex
   (the lone inside or the lone outside one) comes first. The contour crosses
   the two edges leaving it at parameters (d_far - r) / (d_far - d_odd); the
   small triangle (odd vertex, crossing 1, crossing 2) has area b. One vertex
   inside adds b, two inside add (face area - b). The crossing segment adds
   to the perimeter.

RADIUS FIT:
Area and perimeter are sampled on a small radius grid around the disk-model
radius sqrt(target / pi). Splines through index->area, index->radius and
index->perimeter are resampled densely and the sample whose area is closest to
the target gives the radius and perimeter. This is a discrete argmin, not a
root find. A source whose sampled areas never reach the target (isolated
vertex, small island, grid too short) raises UnreachableArea.

The distance field must be sentinel-corrected first (fastgeod_dijkstra); a
straddling face that still touches an unreached vertex raises
InsufficientMargin instead of returning a wrong area.
"""

import logging
from typing import NamedTuple, Optional

import numpy as np
from scipy.interpolate import CubicSpline, PchipInterpolator

from fastgeod_dijkstra import UNREACHED, correct_sentinel, mean_distance
from fastgeod_errors import InsufficientMargin, InvalidArgument, UnreachableArea
from fastgeod_settings import GeodesicSettings

logger = logging.getLogger(__name__)

_CEILING = UNREACHED - 0.01

# relative slack when comparing the largest sampled area to the target
AREA_RTOL = 1e-9


class CircleStats(NamedTuple):
    radii: np.ndarray
    areas: np.ndarray
    perimeters: np.ndarray


class CircleResult(NamedTuple):
    radius: float
    perimeter: float
    mean_distance: float = float('nan')


class CircleParameters(NamedTuple):
    target_area: float
    ideal_radius: float
    max_distance: Optional[float]  # None: propagate over the full mesh
    compute_mean_distance: bool


# ============================================================================
# PER-FACE PARTIAL COVERAGE
# ============================================================================

def _straddle_segments(V, F, d, r):
    """
    Crossing points and odd-corner triangle areas for straddling faces.

    Args:
        V: (N,3) vertex positions
        F: (S,3) straddling faces
        d: (N,) distances
        r: radius

    Returns:
        v1, v2: (S,3) contour crossings on the two edges leaving the odd vertex
        b: (S,) area of triangle (odd vertex, v1, v2)
        n_in: (S,) number of face vertices inside
    """
    df = d[F]
    inside = df < r
    n_in = inside.sum(axis=1)
    odd = np.where((n_in == 1)[:, None], inside, ~inside)
    k = np.argmax(odd, axis=1)

    # Rotate each face so the odd vertex is at position 0 (cyclic order kept)
    cols = (k[:, None] + np.arange(3)) % 3
    rot = np.take_along_axis(F, cols, axis=1)
    fd = d[rot] - r
    P0 = V[rot[:, 0]]
    P1 = V[rot[:, 1]]
    P2 = V[rot[:, 2]]

    alpha1 = fd[:, 1] / (fd[:, 1] - fd[:, 0])
    alpha2 = fd[:, 2] / (fd[:, 2] - fd[:, 0])
    v1 = alpha1[:, None] * P0 + (1.0 - alpha1)[:, None] * P1
    v2 = alpha2[:, None] * P0 + (1.0 - alpha2)[:, None] * P2

    b = 0.5 * np.linalg.norm(np.cross(P0 - v1, P0 - v2), axis=1)
    return v1, v2, b, n_in


def circle_stats(mesh, distances, sample_radii, face_mask=None, vertex=None):
    """
    Enclosed area and contour perimeter at each sample radius.

    Args:
        mesh: MeshGraph
        distances: Sentinel-corrected (N,) distance field
        sample_radii: Radii to evaluate
        face_mask: Optional (M,) bool; only these faces count
        vertex: Source vertex, used in InsufficientMargin diagnostics

    Returns:
        CircleStats(radii, areas, perimeters)
    """
    d = np.asarray(distances, dtype=np.float64)
    if d.shape != (mesh.n_vertices,):
        raise InvalidArgument(f"distances must have shape ({mesh.n_vertices},), got {d.shape}")
    radii = np.asarray(sample_radii, dtype=np.float64).ravel()

    V = mesh.vertices
    face_ids = np.arange(mesh.n_faces)
    F = mesh.faces
    face_areas = mesh.face_areas
    if face_mask is not None:
        face_mask = np.asarray(face_mask, dtype=bool)
        if face_mask.shape != (mesh.n_faces,):
            raise InvalidArgument(f"face_mask must have shape ({mesh.n_faces},), got {face_mask.shape}")
        face_ids = face_ids[face_mask]
        F = F[face_mask]
        face_areas = face_areas[face_mask]

    # Per-face min/max distance, shared by every radius
    df = d[F]
    dmin = df.min(axis=1)
    dmax = df.max(axis=1)

    areas = np.zeros(radii.size, dtype=np.float64)
    perimeters = np.zeros(radii.size, dtype=np.float64)
    for i, r in enumerate(radii):
        full = dmax < r
        band = (dmin < r) & ~full
        area = np.sum(face_areas[full])
        perim = 0.0
        if np.any(band):
            unreached = dmax[band] >= _CEILING
            if np.any(unreached):
                raise InsufficientMargin(vertex, r, int(face_ids[band][np.argmax(unreached)]))
            v1, v2, b, n_in = _straddle_segments(V, F[band], d, r)
            area = area + np.sum(np.where(n_in == 2, face_areas[band] - b, b))
            perim = float(np.sum(np.linalg.norm(v1 - v2, axis=1)))
        areas[i] = area
        perimeters[i] = perim
    return CircleStats(radii, areas, perimeters)


# ============================================================================
# RADIUS FIT
# ============================================================================

def circle_parameters(mesh, area_fraction_percent, compute_mean_distance=False, settings=None,
                      face_mask=None):
    """
    Target area, disk-model radius and propagation cutoff for one batch.

    The cutoff is ideal_radius + margin_edge_factor * max edge length, widened
    when needed so the whole radius grid plus one edge is covered. When the mean
    distance is requested the field must cover the whole mesh, so there is no cutoff.
    """
    settings = settings or GeodesicSettings()
    frac = float(area_fraction_percent)
    if not np.isfinite(frac) or frac <= 0:
        raise InvalidArgument(f"area_fraction_percent must be > 0, got {area_fraction_percent}")
    mesh.require_nondegenerate()

    if face_mask is None:
        total_area = mesh.total_area
    else:
        total_area = float(np.sum(mesh.face_areas[face_mask]))
        if not total_area > 0:
            raise InvalidArgument("The valid-vertex mask leaves no surface area")

    target_area = frac / 100.0 * total_area
    ideal_radius = float(np.sqrt(target_area / np.pi))

    max_distance = None
    if not compute_mean_distance:
        max_edge = mesh.max_edge_length
        margin = settings.margin_edge_factor * max_edge
        grid_margin = settings.radius_half_width + max_edge
        if grid_margin > margin:
            logger.debug(f"Widening propagation margin from {margin:.4f} to {grid_margin:.4f} to cover the radius grid")
            margin = grid_margin
        max_distance = ideal_radius + margin

    logger.info(f"Target area {target_area:.4f} ({frac:.2f}% of {total_area:.4f}), "
                f"ideal radius {ideal_radius:.4f}")
    return CircleParameters(target_area, ideal_radius, max_distance, bool(compute_mean_distance))


def radius_grid(ideal_radius, settings=None):
    settings = settings or GeodesicSettings()
    w = float(settings.radius_half_width)
    return np.linspace(ideal_radius - w, ideal_radius + w, int(settings.n_radius_samples))


def _spline(x, y, kind):
    if kind == 'pchip':
        return PchipInterpolator(x, y)
    return CubicSpline(x, y, bc_type=kind)


def fit_circle(stats, target_area, settings=None):
    """
    Radius and perimeter whose spline-interpolated area is closest to target_area.

    Returns:
        (radius, perimeter)
    """
    settings = settings or GeodesicSettings()
    n = stats.areas.size
    x = np.linspace(1, n, n)
    xx = np.linspace(1, n, (n - 1) * int(settings.resample_factor) + 1)

    area_s = _spline(x, stats.areas, settings.spline)(xx)
    radius_s = _spline(x, stats.radii, settings.spline)(xx)
    perim_s = _spline(x, stats.perimeters, settings.spline)(xx)

    best = int(np.argmin(np.abs(target_area - area_s)))
    return float(radius_s[best]), float(perim_s[best])


def circle_for_field(mesh, distances, source, params, settings=None, face_mask=None, weights=None):
    """
    Full per-vertex circle computation on an uncorrected distance field.

    Args:
        mesh: MeshGraph
        distances: Field from propagate() with source as seed
        source: Source vertex index
        params: CircleParameters for the batch
        settings: GeodesicSettings
        face_mask: Optional valid-face mask
        weights: Optional per-vertex weights for the mean distance

    Returns:
        CircleResult

    Raises:
        UnreachableArea: no sampled radius encloses the target area
    """
    settings = settings or GeodesicSettings()
    corrected = correct_sentinel(distances, source, settings.sentinel_eps)
    stats = circle_stats(mesh, corrected, radius_grid(params.ideal_radius, settings), face_mask, source)
    reachable = float(stats.areas.max())
    if reachable < params.target_area * (1.0 - AREA_RTOL):
        raise UnreachableArea(source, params.target_area, reachable)
    radius, perimeter = fit_circle(stats, params.target_area, settings)
    mean = float('nan')
    if params.compute_mean_distance:
        mean = mean_distance(corrected, source, weights, settings.sentinel_eps)
    return CircleResult(radius, perimeter, mean)
