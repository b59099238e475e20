import numpy as np
import pytest

from fastgeod_mesh import MeshGraph
from fastgeod_settings import GeodesicSettings
from validate_fastgeod import make_icosphere, make_plane_grid

CUBE_VERTICES = np.array(
    [
        (-1, -1, -1),
        (1, -1, -1),
        (1, 1, -1),
        (-1, 1, -1),
        (-1, -1, 1),
        (1, -1, 1),
        (1, 1, 1),
        (-1, 1, 1),
    ],
    dtype=np.float64,
)

# Two outward-facing triangles per cube side
CUBE_FACES = np.array(
    [
        (0, 2, 1), (0, 3, 2),  # z = -1
        (4, 5, 6), (4, 6, 7),  # z = +1
        (0, 1, 5), (0, 5, 4),  # y = -1
        (2, 3, 7), (2, 7, 6),  # y = +1
        (0, 4, 7), (0, 7, 3),  # x = -1
        (1, 2, 6), (1, 6, 5),  # x = +1
    ],
    dtype=np.int64,
)


@pytest.fixture
def cube():
    """Cube with vertices at +-1 on each axis: 8 vertices, 12 faces, 18 edges."""
    return MeshGraph(CUBE_VERTICES, CUBE_FACES)


@pytest.fixture
def triangle():
    """Single right triangle with unit legs in the xy plane."""
    return MeshGraph([(0, 0, 0), (1, 0, 0), (0, 1, 0)], [(0, 1, 2)])


@pytest.fixture
def icosphere():
    v, f = make_icosphere(10.0, 2)
    return MeshGraph(v, f)


@pytest.fixture
def plane():
    """40 x 40 planar grid with unit spacing, centered on the origin."""
    v, f = make_plane_grid(-20.0, 20.0, -20.0, 20.0, spacing=1.0)
    return MeshGraph(v, f)


@pytest.fixture
def serial():
    return GeodesicSettings(workers=1, progress=False)
