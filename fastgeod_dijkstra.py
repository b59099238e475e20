"""
Approximate geodesic distance fields by shortest paths over mesh edges.

DISTANCE PROPAGATION:
Distances are multi-source Dijkstra shortest paths over the unique-edge graph
of a MeshGraph, weighted by Euclidean edge length. This is a piecewise-linear
upper bound on the true surface geodesic, not the exact value.

SENTINEL POLICY:
A returned field holds 0.0 for every vertex that was not reached: vertices past
max_distance, excluded vertices and vertices of other connected components.
Seeds also read 0.0, so a zero means "unreached" for every non-seed vertex.
correct_sentinel() turns those entries into the float32 ceiling UNREACHED,
which is what the circle statistics expect; reached_mask() gives the same
classification as a boolean mask.

PATHS:
shortest_path() runs the same Dijkstra from one source with predecessors and
walks them back from the target.
"""

import logging
from typing import NamedTuple

import numpy as np
from scipy.sparse import csgraph

from fastgeod_errors import InvalidArgument

logger = logging.getLogger(__name__)

UNREACHED = float(np.finfo(np.float32).max)
SENTINEL_EPS = 1e-9


def _as_seed_array(mesh, seeds):
    seeds = np.atleast_1d(np.asarray(seeds))
    if seeds.ndim != 1:
        raise InvalidArgument(f"seeds must be a flat collection of vertex indices, got shape {seeds.shape}")
    if seeds.size == 0:
        raise InvalidArgument("seeds must contain at least one vertex index")
    return np.unique(np.array([mesh.check_vertex(s) for s in seeds], dtype=np.int64))


def _as_limit(max_distance):
    if max_distance is None:
        return np.inf
    limit = float(max_distance)
    if np.isnan(limit):
        raise InvalidArgument("max_distance must not be NaN")
    # zero or negative means "no early termination"
    return limit if limit > 0 else np.inf


def propagate(mesh, seeds, max_distance=None, exclude_mask=None, graph=None):
    """
    Shortest-path distance from the nearest seed to every vertex.

    Args:
        mesh: MeshGraph
        seeds: Non-empty collection of seed vertex indices
        max_distance: Stop expanding past this distance; None or <= 0 runs to completion
        exclude_mask: Optional (N,) bool array; excluded vertices are never
            seeds or path intermediates
        graph: Prebuilt mesh.edge_graph(exclude_mask), reused across calls

    Returns:
        (N,) float64 distance field, 0.0 for unreached vertices
    """
    seeds = _as_seed_array(mesh, seeds)
    limit = _as_limit(max_distance)

    if exclude_mask is not None:
        exclude_mask = mesh.check_mask(exclude_mask, 'exclude_mask')
        active = seeds[~exclude_mask[seeds]]
        if graph is None:
            graph = mesh.edge_graph(exclude_mask)
    else:
        active = seeds
        if graph is None:
            graph = mesh.edge_graph()

    out = np.zeros(mesh.n_vertices, dtype=np.float64)
    if active.size == 0:
        logger.debug(f"All {seeds.size} seeds are excluded; nothing reachable")
        return out

    d = csgraph.dijkstra(graph, directed=False, indices=active, limit=limit, min_only=True)
    reached = np.isfinite(d)
    out[reached] = d[reached]
    return out


def correct_sentinel(distances, sources, eps=SENTINEL_EPS):
    """
    Replace the 0.0 "unreached" sentinel by UNREACHED for every non-source vertex.

    Re-applying the correction leaves the array unchanged.
    """
    d = np.array(distances, dtype=np.float64, copy=True)
    d[~reached_mask(d, sources, eps)] = UNREACHED
    return d


def reached_mask(distances, sources, eps=SENTINEL_EPS):
    """True for sources and for vertices carrying a real (positive, below-ceiling) distance."""
    d = np.asarray(distances, dtype=np.float64)
    mask = (d > eps) & (d < UNREACHED)
    mask[np.atleast_1d(np.asarray(sources, dtype=np.int64))] = True
    return mask


def mean_distance(distances, source, weights=None, eps=SENTINEL_EPS):
    """
    Mean distance from source over the vertices it reaches (itself included at 0).

    Args:
        distances: Distance field from propagate (corrected or not)
        source: Source vertex index
        weights: Optional per-vertex weights (e.g. vertex areas)

    Returns:
        float mean distance
    """
    d = np.asarray(distances, dtype=np.float64)
    mask = reached_mask(d, source, eps)
    vals = np.where(mask, d, 0.0)
    vals[source] = 0.0
    if weights is None:
        return float(vals[mask].mean())
    w = np.asarray(weights, dtype=np.float64)
    if w.shape != d.shape:
        raise InvalidArgument(f"weights must have shape {d.shape}, got {w.shape}")
    wsum = float(w[mask].sum())
    if not wsum > 0:
        return float('nan')
    return float((vals[mask] * w[mask]).sum() / wsum)


# ============================================================================
# SINGLE SOURCE -> TARGET PATH
# ============================================================================

class GeodesicPath(NamedTuple):
    indices: np.ndarray  # source first, target last; empty when unreachable
    length: float  # inf when unreachable
    points: np.ndarray


def shortest_path(mesh, source, target, exclude_mask=None, graph=None):
    """
    Edge path from source to target and its length.

    Args:
        mesh: MeshGraph
        source, target: Vertex indices
        exclude_mask: Optional (N,) bool array of vertices the path must avoid
        graph: Prebuilt mesh.edge_graph(exclude_mask)

    Returns:
        GeodesicPath; a target in another component gives an empty path of
        infinite length
    """
    s = mesh.check_vertex(source)
    t = mesh.check_vertex(target)
    if exclude_mask is not None:
        exclude_mask = mesh.check_mask(exclude_mask, 'exclude_mask')
        if exclude_mask[s] or exclude_mask[t]:
            raise InvalidArgument(f"Path endpoints {s} -> {t} must not be excluded")
    if graph is None:
        graph = mesh.edge_graph(exclude_mask)

    d, pred = csgraph.dijkstra(graph, directed=False, indices=s, return_predecessors=True)
    if not np.isfinite(d[t]):
        logger.warning(f"Vertex {t} is not reachable from vertex {s}")
        return GeodesicPath(np.zeros(0, dtype=np.int64), float('inf'), np.zeros((0, 3)))

    path = [t]
    while path[-1] != s:
        path.append(int(pred[path[-1]]))
    idx = np.array(path[::-1], dtype=np.int64)
    return GeodesicPath(idx, float(d[t]), mesh.vertices[idx].copy())
