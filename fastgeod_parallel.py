"""
Per-vertex batch drivers: mean distance, geodesic neighborhoods, geodesic circles.

EXECUTION MODEL:
Every query vertex is an independent task. The batch holds one immutable
MeshSnapshot (mesh, edge graph for the validity mask, face mask) shared by all
tasks; each task builds its own TaskWorkspace from it, which owns the scratch
distance field for that vertex and is dropped once the result is extracted.
Results are written to pre-sized arrays by query position from the submitting
thread, so no locking is needed.

Backends:
- workers == 1: plain loop in the calling thread
- 'thread' (default): ThreadPoolExecutor; scipy's Dijkstra and the numpy
  kernels spend most of their time outside the GIL
- 'process': ProcessPoolExecutor; the snapshot is shipped once per worker
  process through the pool initializer

FAILURE POLICY:
The first failing task aborts the whole batch: pending tasks are cancelled and
VertexTaskError (naming the vertex and the step) is raised, chained to the
original error. A batch never returns partially filled arrays.
"""

import logging
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from functools import partial
from typing import Optional

import numpy as np
from tqdm import tqdm

from fastgeod_circles import CircleResult, circle_for_field, circle_parameters
from fastgeod_dijkstra import mean_distance, propagate
from fastgeod_errors import InvalidArgument, VertexTaskError
from fastgeod_neigh import build_neighborhood, check_normals, field_neighbors
from fastgeod_settings import GeodesicSettings

logger = logging.getLogger(__name__)


# ============================================================================
# SHARED SNAPSHOT AND PER-TASK WORKSPACE
# ============================================================================

@dataclass(frozen=True)
class MeshSnapshot:
    """Read-only data shared by every task of a batch."""
    mesh: object
    graph: object
    exclude_mask: Optional[np.ndarray] = None
    face_mask: Optional[np.ndarray] = None

    @classmethod
    def build(cls, mesh, cortical_mask=None):
        if cortical_mask is None:
            return cls(mesh, mesh.edge_graph())
        valid = mesh.check_mask(cortical_mask, 'cortical_mask')
        exclude = ~valid
        exclude.setflags(write=False)
        face_mask = mesh.face_mask(valid)
        face_mask.setflags(write=False)
        return cls(mesh, mesh.edge_graph(exclude), exclude, face_mask)


class TaskWorkspace:
    """Owned per-task handle: the shared snapshot plus a private distance field."""

    def __init__(self, snapshot, vertex):
        self.snapshot = snapshot
        self.mesh = snapshot.mesh
        self.vertex = int(vertex)
        self.distances = None

    def propagate(self, max_distance=None):
        self.distances = propagate(self.mesh, [self.vertex], max_distance=max_distance,
                                   exclude_mask=self.snapshot.exclude_mask, graph=self.snapshot.graph)
        return self.distances


# ============================================================================
# TASK FUNCTIONS (module level so the process backend can pickle them)
# ============================================================================

def _mean_distance_task(snapshot, vertex, weights=None):
    ws = TaskWorkspace(snapshot, vertex)
    return mean_distance(ws.propagate(), vertex, weights)


def _neighborhood_task(snapshot, vertex, max_distance, include_self=True, normals=None):
    ws = TaskWorkspace(snapshot, vertex)
    pairs = field_neighbors(ws.propagate(max_distance), vertex, max_distance, include_self)
    return build_neighborhood(ws.mesh, vertex, pairs, normals)


def _circle_task(snapshot, vertex, params, settings):
    ws = TaskWorkspace(snapshot, vertex)
    d = ws.propagate(params.max_distance)
    return circle_for_field(ws.mesh, d, vertex, params, settings, snapshot.face_mask)


_WORKER_SNAPSHOT = None


def _init_worker(snapshot):
    global _WORKER_SNAPSHOT
    _WORKER_SNAPSHOT = snapshot


def _run_in_worker(task, vertex, params):
    return task(_WORKER_SNAPSHOT, vertex, **params)


# ============================================================================
# GENERIC FAN-OUT
# ============================================================================

def resolve_query_vertices(mesh, query_vertices=None, cortical_mask=None):
    """
    Query vertices as an int array: all (valid) vertices by default.
    """
    valid = None
    if cortical_mask is not None:
        valid = mesh.check_mask(cortical_mask, 'cortical_mask')
    if query_vertices is None:
        if valid is None:
            return np.arange(mesh.n_vertices, dtype=np.int64)
        return np.flatnonzero(valid).astype(np.int64)
    q = np.array([mesh.check_vertex(v) for v in np.atleast_1d(query_vertices)], dtype=np.int64)
    if valid is not None and not np.all(valid[q]):
        bad = int(q[~valid[q]][0])
        raise InvalidArgument(f"Query vertex {bad} is excluded by the cortical mask")
    return q


def run_vertex_tasks(task, snapshot, query_vertices, settings=None, desc='Computing', task_kwargs=None):
    """
    Run task(snapshot, vertex, **task_kwargs) for every query vertex.

    Returns:
        list of results in query order
    """
    settings = settings or GeodesicSettings()
    params = dict(task_kwargs or {})
    n = len(query_vertices)
    results = [None] * n
    if n == 0:
        return results
    workers = min(settings.n_workers, n)

    if workers == 1:
        for pos in tqdm(range(n), desc=desc, disable=not settings.progress):
            v = int(query_vertices[pos])
            try:
                results[pos] = task(snapshot, v, **params)
            except Exception as exc:
                raise VertexTaskError(v, desc, exc) from exc
        return results

    if settings.backend == 'process':
        executor = ProcessPoolExecutor(max_workers=workers, initializer=_init_worker, initargs=(snapshot,))
        submit = partial(_run_in_worker, task, params=params)
    else:
        executor = ThreadPoolExecutor(max_workers=workers)
        submit = partial(task, snapshot, **params)

    logger.debug(f"{desc}: {n} tasks on {workers} {settings.backend} workers")
    with executor:
        futures = {executor.submit(submit, int(v)): pos for pos, v in enumerate(query_vertices)}
        try:
            for fut in tqdm(as_completed(futures), total=n, desc=desc, disable=not settings.progress):
                pos = futures[fut]
                try:
                    results[pos] = fut.result()
                except Exception as exc:
                    raise VertexTaskError(int(query_vertices[pos]), desc, exc) from exc
        except VertexTaskError:
            for f in futures:
                f.cancel()
            raise
    return results


def _log_stats(name, values):
    v = values[np.isfinite(values)]
    if v.size:
        logger.info(f"{name} stats: min={np.min(v):.2f}, max={np.max(v):.2f}, mean={np.mean(v):.2f}")


# ============================================================================
# BATCH DRIVERS
# ============================================================================

def mean_geodesic_distances(mesh, query_vertices=None, cortical_mask=None, settings=None, weighting='uniform'):
    """
    Mean edge-path distance from each query vertex to every vertex it reaches.

    Args:
        weighting: 'uniform' (plain mean) or 'area' (vertex-area weighted)

    Returns:
        (query_vertices, mean_distance) arrays
    """
    settings = settings or GeodesicSettings()
    if weighting not in ('uniform', 'area'):
        raise InvalidArgument(f"weighting must be 'uniform' or 'area', got {weighting!r}")
    q = resolve_query_vertices(mesh, query_vertices, cortical_mask)
    snapshot = MeshSnapshot.build(mesh, cortical_mask)
    weights = mesh.vertex_areas() if weighting == 'area' else None

    res = run_vertex_tasks(_mean_distance_task, snapshot, q, settings, desc='Mean geodesic distance',
                           task_kwargs={'weights': weights})
    out = np.asarray(res, dtype=np.float64)
    _log_stats('Mean distance', out)
    return q, out


def geodesic_neighborhoods(mesh, max_distance, query_vertices=None, include_self=True, normals=None,
                           cortical_mask=None, settings=None):
    """
    Geodesic neighborhood (edge-path distance <= max_distance) of every query vertex.

    Returns:
        list of Neighborhood in query order
    """
    if max_distance is None or not float(max_distance) > 0:
        raise InvalidArgument(f"max_distance must be > 0, got {max_distance}")
    normals = check_normals(mesh, normals)
    q = resolve_query_vertices(mesh, query_vertices, cortical_mask)
    snapshot = MeshSnapshot.build(mesh, cortical_mask)
    return run_vertex_tasks(_neighborhood_task, snapshot, q, settings, desc='Geodesic neighborhoods',
                            task_kwargs={'max_distance': float(max_distance), 'include_self': include_self,
                                         'normals': normals})


@dataclass(frozen=True)
class GeodesicCircles:
    """Per-query-vertex geodesic circle results."""
    query_vertices: np.ndarray
    radius: np.ndarray
    perimeter: np.ndarray
    mean_distance: Optional[np.ndarray]
    target_area: float
    ideal_radius: float
    max_distance: Optional[float]

    def result(self, pos):
        mean = self.mean_distance[pos] if self.mean_distance is not None else float('nan')
        return CircleResult(float(self.radius[pos]), float(self.perimeter[pos]), float(mean))


def geodesic_circles(mesh, query_vertices=None, area_fraction_percent=5.0, compute_mean_distance=False,
                     cortical_mask=None, settings=None):
    """
    Radius and perimeter of the geodesic disc enclosing area_fraction_percent of the mesh.

    Args:
        mesh: MeshGraph
        query_vertices: Source vertices (default: all, or all valid under the mask)
        area_fraction_percent: Disc area as a percentage of total (valid) area
        compute_mean_distance: Also return the mean distance (full propagation)
        cortical_mask: Optional (N,) bool validity mask
        settings: GeodesicSettings

    Returns:
        GeodesicCircles
    """
    settings = settings or GeodesicSettings()
    q = resolve_query_vertices(mesh, query_vertices, cortical_mask)
    snapshot = MeshSnapshot.build(mesh, cortical_mask)
    params = circle_parameters(mesh, area_fraction_percent, compute_mean_distance, settings, snapshot.face_mask)

    res = run_vertex_tasks(_circle_task, snapshot, q, settings, desc='Geodesic circles',
                           task_kwargs={'params': params, 'settings': settings})

    radius = np.array([r.radius for r in res], dtype=np.float64)
    perimeter = np.array([r.perimeter for r in res], dtype=np.float64)
    mean = np.array([r.mean_distance for r in res], dtype=np.float64) if compute_mean_distance else None

    _log_stats('Radius', radius)
    _log_stats('Perimeter', perimeter)
    if mean is not None:
        _log_stats('Mean distance', mean)
    return GeodesicCircles(q, radius, perimeter, mean, params.target_area, params.ideal_radius,
                           params.max_distance)
