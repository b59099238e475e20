"""
Per-vertex neighborhoods, from edge hops or from a geodesic distance field.

Two construction modes share one output type (Neighborhood):

1. Edge mode (k hops): breadth-first expansion over mesh edges. Neighbors come
   in discovery order; the reported distance is the straight-line distance to
   the query vertex, not the hop count.
2. Geodesic mode: every vertex j with 0 < d[j] <= R in the query vertex's
   distance field, in ascending vertex index. A zero for j != i is the
   propagator's "not reached" sentinel and is never a neighbor.

Neighbor offsets are centered on the query vertex. Normals, when given, are
copied from a caller-supplied per-vertex array.
"""

from collections import deque
from dataclasses import dataclass

import numpy as np

from fastgeod_dijkstra import SENTINEL_EPS, propagate
from fastgeod_errors import InvalidArgument
from fastgeod_mesh import Vec3


@dataclass(frozen=True)
class Neighbor:
    index: int
    distance: float
    offset: Vec3
    normal: Vec3 = None


@dataclass(frozen=True)
class Neighborhood:
    """Neighbors of one source vertex (the source itself appears at distance 0 when included)."""
    index: int
    neighbors: tuple

    def __len__(self):
        return len(self.neighbors)

    @property
    def indices(self):
        return np.array([n.index for n in self.neighbors], dtype=np.int64)

    @property
    def distances(self):
        return np.array([n.distance for n in self.neighbors], dtype=np.float64)

    @property
    def offsets(self):
        return np.array([n.offset.as_array() for n in self.neighbors], dtype=np.float64).reshape(-1, 3)

    @property
    def normals(self):
        if any(n.normal is None for n in self.neighbors):
            return None
        return np.array([n.normal.as_array() for n in self.neighbors], dtype=np.float64).reshape(-1, 3)


def check_normals(mesh, normals):
    if normals is None:
        return None
    normals = np.asarray(normals, dtype=np.float64)
    if normals.shape != (mesh.n_vertices, 3):
        raise InvalidArgument(f"normals must have shape ({mesh.n_vertices}, 3), got {normals.shape}")
    return normals


def build_neighborhood(mesh, source, pairs, normals=None):
    """Assemble a Neighborhood from (vertex, distance) pairs."""
    center = mesh.vertex(source)
    out = []
    for j, d in pairs:
        p = mesh.vertex(j)
        n = Vec3.from_array(normals[j]) if normals is not None else None
        out.append(Neighbor(int(j), float(d), p - center, n))
    return Neighborhood(int(source), tuple(out))


# ============================================================================
# EDGE (K-HOP) MODE
# ============================================================================

def k_ring(mesh, vertex, k=1, include_self=False):
    """
    Vertices within k edge hops of vertex, in BFS discovery order.
    """
    if int(k) < 1:
        raise InvalidArgument(f"k must be >= 1, got {k}")
    s = mesh.check_vertex(vertex)
    depth = {s: 0}
    order = [s] if include_self else []
    q = deque([s])
    while q:
        v = q.popleft()
        if depth[v] == k:
            continue
        for nb in mesh.neighbors(v):
            nb = int(nb)
            if nb not in depth:
                depth[nb] = depth[v] + 1
                order.append(nb)
                q.append(nb)
    return order


def edge_neighborhood(mesh, vertex, k=1, include_self=False, normals=None):
    normals = check_normals(mesh, normals)
    ring = k_ring(mesh, vertex, k, include_self)
    pos = mesh.vertices
    d = np.linalg.norm(pos[ring] - pos[int(vertex)], axis=1) if ring else []
    return build_neighborhood(mesh, vertex, zip(ring, d), normals)


def edge_neighborhoods(mesh, query_vertices=None, k=1, include_self=False, normals=None):
    """k-hop neighborhoods for every query vertex (default: all vertices)."""
    if query_vertices is None:
        query_vertices = range(mesh.n_vertices)
    normals = check_normals(mesh, normals)
    return [edge_neighborhood(mesh, v, k, include_self, normals) for v in query_vertices]


# ============================================================================
# GEODESIC MODE
# ============================================================================

def field_neighbors(distances, source, max_distance, include_self=True, eps=SENTINEL_EPS):
    """
    Filter a distance field down to the geodesic neighbors of source.

    Returns:
        list of (vertex, distance) pairs in ascending vertex index
    """
    d = np.asarray(distances, dtype=np.float64)
    source = int(source)
    keep = (d > eps) & (d <= float(max_distance))
    keep[source] = bool(include_self)
    idx = np.flatnonzero(keep)
    return [(int(j), 0.0 if j == source else float(d[j])) for j in idx]


def geodesic_neighborhood(mesh, vertex, max_distance, include_self=True, normals=None,
                          exclude_mask=None, graph=None):
    """
    Neighbors of vertex within geodesic (edge-path) distance max_distance.
    """
    if max_distance is None or not float(max_distance) > 0:
        raise InvalidArgument(f"max_distance must be > 0, got {max_distance}")
    normals = check_normals(mesh, normals)
    d = propagate(mesh, [vertex], max_distance=max_distance, exclude_mask=exclude_mask, graph=graph)
    return build_neighborhood(mesh, vertex, field_neighbors(d, vertex, max_distance, include_self), normals)
