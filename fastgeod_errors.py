"""
Exception hierarchy shared by all fastgeod modules.

Every error derives from GeodesicError so callers can catch the whole family,
and additionally from the closest builtin (IndexError, ValueError, RuntimeError)
so generic handlers keep working.

A disconnected mesh component is not an error: unreachable vertices simply
read as the 0.0 sentinel in a distance field (see fastgeod_dijkstra).
"""


class GeodesicError(Exception):
    """Base class for all fastgeod errors."""


class InvalidIndex(GeodesicError, IndexError):
    """A seed, query or face vertex index is outside [0, n_vertices)."""


class InvalidArgument(GeodesicError, ValueError):
    """An argument is out of its valid domain or has a mismatched size."""


class DegenerateMesh(GeodesicError, ValueError):
    """The mesh has no faces or edges, no area, or bad vertex positions."""


class InsufficientMargin(GeodesicError, RuntimeError):
    """
    A face straddling a sample radius touches a vertex the propagation never reached.

    This means the distance field was cut off too close to the contour, so the
    partial coverage of that face cannot be computed.
    """

    def __init__(self, vertex, radius, face=None):
        self.vertex = vertex
        self.radius = float(radius)
        self.face = face
        where = f" (face {face})" if face is not None else ""
        super().__init__(
            f"Propagation margin too small for source vertex {vertex} at radius {self.radius:.6g}{where}: "
            "a straddling face touches an unreached vertex"
        )

    def __reduce__(self):
        return (self.__class__, (self.vertex, self.radius, self.face))


class VertexTaskError(GeodesicError):
    """A per-vertex task failed inside a batch run; the batch is aborted."""

    def __init__(self, vertex, step, cause=None):
        self.vertex = vertex
        self.step = step
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{step} failed for query vertex {vertex}{detail}")

    def __reduce__(self):
        return (self.__class__, (self.vertex, self.step, self.cause))


class UnreachableArea(GeodesicError, RuntimeError):
    """
    The disc around a source vertex never grows to the target area.

    Raised for isolated vertices, small disconnected islands, and radius grids
    that stop short of the target.
    """

    def __init__(self, vertex, target_area, reachable_area):
        self.vertex = vertex
        self.target_area = float(target_area)
        self.reachable_area = float(reachable_area)
        super().__init__(
            f"Source vertex {vertex} covers at most {self.reachable_area:.6g} of the "
            f"target area {self.target_area:.6g}"
        )

    def __reduce__(self):
        return (self.__class__, (self.vertex, self.target_area, self.reachable_area))
