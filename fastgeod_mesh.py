"""
Read-only triangle mesh view used by every fastgeod computation.

MESH GRAPH VIEW:
A MeshGraph wraps vertex positions (N,3) and triangle faces (M,3) and
precomputes everything the distance and circle computations need:

1. Face geometry: raw normals, areas, unit normals, max edge length per face
2. Topology: unique undirected edges, CSR vertex adjacency, CSR vertex->face adjacency
3. A sparse edge-weight graph (Euclidean edge lengths) for shortest paths

All arrays are flagged read-only after construction. Distance fields are never
stored on the mesh, so one MeshGraph can be shared by any number of concurrent
tasks without copying.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np
from scipy import sparse

from fastgeod_errors import DegenerateMesh, InvalidArgument, InvalidIndex

logger = logging.getLogger(__name__)


# ============================================================================
# SMALL FIXED-SIZE VECTOR
# ============================================================================

@dataclass(frozen=True)
class Vec3:
    """Immutable 3D point/vector with named arithmetic."""
    x: float
    y: float
    z: float

    @classmethod
    def from_array(cls, a):
        a = np.asarray(a, dtype=np.float64)
        if a.shape != (3,):
            raise InvalidArgument(f"Vec3 needs exactly 3 components, got shape {a.shape}")
        return cls(float(a[0]), float(a[1]), float(a[2]))

    def add(self, other):
        return Vec3(self.x + other.x, self.y + other.y, self.z + other.z)

    def sub(self, other):
        return Vec3(self.x - other.x, self.y - other.y, self.z - other.z)

    def scale(self, s):
        s = float(s)
        return Vec3(self.x * s, self.y * s, self.z * s)

    def dot(self, other):
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other):
        return Vec3(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x,
        )

    def norm(self):
        return math.sqrt(self.dot(self))

    def __add__(self, other):
        return self.add(other)

    def __sub__(self, other):
        return self.sub(other)

    def as_array(self):
        return np.array((self.x, self.y, self.z), dtype=np.float64)


def _readonly(a):
    a.setflags(write=False)
    return a


def _csr_lists(rows, cols, n):
    """Group cols by rows into CSR (indptr, indices), indices sorted within each row."""
    order = np.lexsort((cols, rows))
    indices = np.ascontiguousarray(cols[order])
    counts = np.bincount(rows, minlength=n)
    indptr = np.zeros(n + 1, dtype=np.int64)
    np.cumsum(counts, out=indptr[1:])
    return _readonly(indptr), _readonly(indices)


# ============================================================================
# MESH GRAPH VIEW
# ============================================================================

class MeshGraph:
    """
    Immutable triangle mesh with precomputed geometry and adjacency.

    Args:
        vertices: (N,3) vertex positions
        faces: (M,3) 0-based vertex indices per triangle
    """

    def __init__(self, vertices, faces):
        V = np.array(vertices, dtype=np.float64, copy=True)
        F = np.array(faces, copy=True)
        if V.ndim != 2 or V.shape[1] != 3:
            raise InvalidArgument(f"vertices must have shape (N, 3), got {V.shape}")
        if F.ndim != 2 or F.shape[1] != 3:
            raise InvalidArgument(f"faces must have shape (M, 3), got {F.shape}")
        if F.shape[0] == 0:
            raise DegenerateMesh("Mesh has no faces")
        if not np.issubdtype(F.dtype, np.integer):
            if not np.all(np.equal(np.mod(F, 1), 0)):
                raise InvalidArgument("faces must contain integer vertex indices")
        F = F.astype(np.int64)
        n = V.shape[0]
        if F.min() < 0 or F.max() >= n:
            bad = int(F.min()) if F.min() < 0 else int(F.max())
            raise InvalidIndex(f"Face references vertex {bad}, mesh has {n} vertices")
        if not np.all(np.isfinite(V)):
            raise DegenerateMesh("Vertex positions contain NaN or infinite values")

        self.vertices = _readonly(np.ascontiguousarray(V))
        self.faces = _readonly(np.ascontiguousarray(F))

        # Face geometry, computed once
        normals, areas, unit, L = self._precompute_face_geometry(self.vertices, self.faces)
        self.face_normals = _readonly(normals)
        self.face_areas = _readonly(areas)
        self.face_unit_normals = _readonly(unit)
        self.face_L = _readonly(L)

        # Unique undirected edges (i < j) and their lengths
        e = np.concatenate((self.faces[:, [0, 1]], self.faces[:, [1, 2]], self.faces[:, [2, 0]]))
        e.sort(axis=1)
        self.edges = _readonly(np.unique(e, axis=0))
        self.edge_lengths = _readonly(
            np.linalg.norm(self.vertices[self.edges[:, 1]] - self.vertices[self.edges[:, 0]], axis=1)
        )

        # CSR vertex adjacency over the unique edges
        rows = np.concatenate((self.edges[:, 0], self.edges[:, 1]))
        cols = np.concatenate((self.edges[:, 1], self.edges[:, 0]))
        self._adj_ptr, self._adj_idx = _csr_lists(rows, cols, n)

        # CSR vertex -> incident faces
        face_ids = np.repeat(np.arange(self.faces.shape[0], dtype=np.int64), 3)
        self._vf_ptr, self._vf_idx = _csr_lists(self.faces.ravel(), face_ids, n)

        self._graph = self._build_edge_graph(None)

        isolated = self.isolated_vertices()
        if isolated.size:
            logger.warning(f"Mesh has {isolated.size} isolated vertices (no incident faces); they are unreachable")
        logger.debug(f"MeshGraph: {self.n_vertices} vertices, {self.n_faces} faces, {self.n_edges} edges")

    # ========================================================================
    # FACE GEOMETRY
    # ========================================================================

    @staticmethod
    def _precompute_face_geometry(V, F):
        """
        Precompute face normals, areas, unit normals, and max edge length per face.

        Near-degenerate faces (cross product below a scale-aware threshold) get
        zero area and a zero unit normal.

        Returns:
            face_normals: Raw cross-product normals (not normalized)
            face_areas: Triangle areas
            face_unit_normals: Unit normal vectors (zero for tiny triangles)
            face_L: Maximum edge length per face
        """
        p0 = V[F[:, 0]]
        p1 = V[F[:, 1]]
        p2 = V[F[:, 2]]

        e01 = p1 - p0
        e12 = p2 - p1
        e20 = p0 - p2

        normals = np.cross(e01, p2 - p0)
        norm_n = np.linalg.norm(normals, axis=1)

        L = np.maximum.reduce([np.linalg.norm(e01, axis=1),
                               np.linalg.norm(e12, axis=1),
                               np.linalg.norm(e20, axis=1)])
        tiny = np.finfo(np.float64).eps * (L * L) * 10.0

        areas = 0.5 * norm_n
        denom = np.maximum(norm_n, tiny)
        with np.errstate(invalid='ignore', divide='ignore'):
            unit = (normals.T / denom).T

        bad = norm_n < tiny
        areas[bad] = 0.0
        unit[bad] = 0.0
        return normals, areas, unit, L

    # ========================================================================
    # SIZES AND SCALARS
    # ========================================================================

    @property
    def n_vertices(self):
        return self.vertices.shape[0]

    @property
    def n_faces(self):
        return self.faces.shape[0]

    @property
    def n_edges(self):
        return self.edges.shape[0]

    @property
    def total_area(self):
        return float(np.sum(self.face_areas))

    @property
    def max_edge_length(self):
        return float(self.edge_lengths.max()) if self.n_edges else 0.0

    @property
    def mean_edge_length(self):
        return float(self.edge_lengths.mean()) if self.n_edges else 0.0

    def require_nondegenerate(self):
        """Raise DegenerateMesh unless the mesh has edges, positive area and no zero-length edges."""
        if self.n_edges == 0:
            raise DegenerateMesh("Mesh has no edges")
        if not self.total_area > 0.0:
            raise DegenerateMesh(f"Mesh total area must be > 0, got {self.total_area}")
        zero = np.flatnonzero(self.edge_lengths <= 0.0)
        if zero.size:
            i, j = self.edges[zero[0]]
            raise DegenerateMesh(
                f"Mesh has {zero.size} zero-length edges (duplicate positions), e.g. vertices {int(i)} and {int(j)}"
            )

    # ========================================================================
    # ADJACENCY
    # ========================================================================

    def check_vertex(self, i):
        """Return i as int, or raise InvalidIndex when it is not a vertex of this mesh."""
        try:
            idx = int(i)
        except (TypeError, ValueError):
            raise InvalidIndex(f"Vertex index must be an integer, got {i!r}") from None
        if idx != i or not 0 <= idx < self.n_vertices:
            raise InvalidIndex(f"Vertex index {i} out of range [0, {self.n_vertices})")
        return idx

    def neighbors(self, i):
        """Sorted 1-ring vertex neighbors of vertex i."""
        i = self.check_vertex(i)
        return self._adj_idx[self._adj_ptr[i]:self._adj_ptr[i + 1]]

    def vertex_faces(self, i):
        """Indices of the faces incident to vertex i."""
        i = self.check_vertex(i)
        return self._vf_idx[self._vf_ptr[i]:self._vf_ptr[i + 1]]

    def isolated_vertices(self):
        return np.flatnonzero(np.diff(self._vf_ptr) == 0)

    def vertex(self, i):
        return Vec3.from_array(self.vertices[self.check_vertex(i)])

    def check_mask(self, mask, name='mask'):
        """Validate a per-vertex boolean mask and return it as a bool array."""
        m = np.asarray(mask)
        if m.shape != (self.n_vertices,):
            raise InvalidArgument(f"{name} must have shape ({self.n_vertices},), got {m.shape}")
        return m.astype(bool)

    def face_mask(self, valid):
        """Faces whose three vertices are all valid."""
        valid = self.check_mask(valid, 'valid')
        return valid[self.faces].all(axis=1)

    def _build_edge_graph(self, exclude_mask):
        e = self.edges
        w = self.edge_lengths
        if exclude_mask is not None:
            keep = ~(exclude_mask[e[:, 0]] | exclude_mask[e[:, 1]])
            e = e[keep]
            w = w[keep]
        n = self.n_vertices
        # Upper triangle only; shortest paths run with directed=False
        return sparse.csr_matrix((w, (e[:, 0], e[:, 1])), shape=(n, n))

    def edge_graph(self, exclude_mask=None):
        """
        Sparse Euclidean edge-weight graph.

        With an exclusion mask, every edge touching an excluded vertex is dropped,
        so excluded vertices can never be path intermediates.
        """
        if exclude_mask is None:
            return self._graph
        return self._build_edge_graph(self.check_mask(exclude_mask, 'exclude_mask'))

    # ========================================================================
    # PER-VERTEX DERIVED QUANTITIES
    # ========================================================================

    def vertex_areas(self):
        """
        Barycentric vertex areas: 1/3 of each incident face area.
        """
        vertex_areas = np.zeros(self.n_vertices, dtype=np.float64)
        for k in range(3):
            np.add.at(vertex_areas, self.faces[:, k], self.face_areas / 3.0)
        return vertex_areas

    def vertex_normals(self, weighting='area'):
        """
        Per-vertex unit normals averaged from incident face normals.

        Args:
            weighting: 'area' (face area weights) or 'angle' (corner angle weights)

        Returns:
            (N,3) array; zero rows for vertices without a usable face
        """
        V = self.vertices
        F = self.faces
        acc = np.zeros((self.n_vertices, 3), dtype=np.float64)
        if weighting == 'area':
            for k in range(3):
                np.add.at(acc, F[:, k], self.face_unit_normals * self.face_areas[:, None])
        elif weighting == 'angle':
            for k in range(3):
                a = V[F[:, k]]
                u = V[F[:, (k + 1) % 3]] - a
                v = V[F[:, (k + 2) % 3]] - a
                angle = np.arctan2(np.linalg.norm(np.cross(u, v), axis=1), np.einsum('ij,ij->i', u, v))
                np.add.at(acc, F[:, k], self.face_unit_normals * angle[:, None])
        else:
            raise InvalidArgument(f"weighting must be 'area' or 'angle', got {weighting!r}")
        norm = np.linalg.norm(acc, axis=1)
        out = np.zeros_like(acc)
        ok = norm > 0
        out[ok] = acc[ok] / norm[ok, None]
        return out
