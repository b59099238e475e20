import numpy as np
import pytest

from fastgeod_errors import DegenerateMesh, InvalidArgument, InvalidIndex
from fastgeod_mesh import MeshGraph, Vec3


def test_vec3_named_operations():
    a = Vec3(1.0, 0.0, 0.0)
    b = Vec3(0.0, 2.0, 0.0)
    assert a.add(b) == Vec3(1.0, 2.0, 0.0)
    assert (b - a) == Vec3(-1.0, 2.0, 0.0)
    assert a.scale(3) == Vec3(3.0, 0.0, 0.0)
    assert a.cross(b) == Vec3(0.0, 0.0, 2.0)
    assert a.dot(b) == 0.0
    assert Vec3(3.0, 4.0, 0.0).norm() == pytest.approx(5.0)


def test_vec3_rejects_wrong_shape():
    with pytest.raises(InvalidArgument):
        Vec3.from_array([1.0, 2.0])


def test_cube_counts_and_area(cube):
    assert cube.n_vertices == 8
    assert cube.n_faces == 12
    assert cube.n_edges == 18
    assert cube.total_area == 24.0
    assert np.all(cube.face_areas == 2.0)
    assert cube.max_edge_length == pytest.approx(2.0 * np.sqrt(2.0))


def test_arrays_are_read_only(cube):
    with pytest.raises(ValueError):
        cube.vertices[0, 0] = 5.0
    with pytest.raises(ValueError):
        cube.faces[0, 0] = 1


def test_adjacency(cube):
    assert list(cube.neighbors(0)) == [1, 2, 3, 4, 5, 7]
    assert len(cube.vertex_faces(6)) == 5
    for i, j in cube.edges:
        assert j in cube.neighbors(i)
        assert i in cube.neighbors(j)


def test_vertex_lookup(cube):
    assert cube.vertex(6) == Vec3(1.0, 1.0, 1.0)
    with pytest.raises(InvalidIndex):
        cube.vertex(8)
    with pytest.raises(InvalidIndex):
        cube.neighbors(-1)


def test_face_index_out_of_range():
    with pytest.raises(InvalidIndex):
        MeshGraph([(0, 0, 0), (1, 0, 0), (0, 1, 0)], [(0, 1, 3)])


def test_bad_shapes():
    with pytest.raises(InvalidArgument):
        MeshGraph([(0, 0), (1, 0), (0, 1)], [(0, 1, 2)])
    with pytest.raises(InvalidArgument):
        MeshGraph([(0, 0, 0), (1, 0, 0), (0, 1, 0)], [(0, 1)])


def test_nan_positions_are_degenerate():
    with pytest.raises(DegenerateMesh):
        MeshGraph([(0, 0, 0), (np.nan, 0, 0), (0, 1, 0)], [(0, 1, 2)])


def test_no_faces_is_degenerate():
    with pytest.raises(DegenerateMesh):
        MeshGraph([(0, 0, 0), (1, 0, 0), (0, 1, 0)], np.zeros((0, 3), dtype=int))


def test_duplicate_positions_fail_nondegenerate_check():
    mesh = MeshGraph([(0, 0, 0), (0, 0, 0), (0, 1, 0)], [(0, 1, 2)])
    with pytest.raises(DegenerateMesh):
        mesh.require_nondegenerate()


def test_zero_area_fails_nondegenerate_check():
    mesh = MeshGraph([(0, 0, 0), (1, 0, 0), (2, 0, 0)], [(0, 1, 2)])
    assert mesh.total_area == 0.0
    with pytest.raises(DegenerateMesh):
        mesh.require_nondegenerate()


def test_isolated_vertex_detected():
    mesh = MeshGraph([(0, 0, 0), (1, 0, 0), (0, 1, 0), (5, 5, 5)], [(0, 1, 2)])
    assert list(mesh.isolated_vertices()) == [3]
    assert len(mesh.neighbors(3)) == 0


def test_vertex_areas_sum_to_total(icosphere):
    assert icosphere.vertex_areas().sum() == pytest.approx(icosphere.total_area)


def test_vertex_normals(cube):
    angle = cube.vertex_normals('angle')
    np.testing.assert_allclose(angle[6], np.ones(3) / np.sqrt(3.0))
    np.testing.assert_allclose(angle[0], -np.ones(3) / np.sqrt(3.0))

    area = cube.vertex_normals('area')
    np.testing.assert_allclose(np.linalg.norm(area, axis=1), 1.0)
    assert np.all(np.einsum('ij,ij->i', area, cube.vertices) > 0)

    with pytest.raises(InvalidArgument):
        cube.vertex_normals('uniform')


def test_icosphere_normals_point_outward(icosphere):
    n = icosphere.vertex_normals()
    radial = icosphere.vertices / np.linalg.norm(icosphere.vertices, axis=1, keepdims=True)
    assert np.min(np.einsum('ij,ij->i', n, radial)) > 0.99


def test_edge_graph_with_exclusion(cube):
    full = cube.edge_graph()
    assert full.nnz == 18
    exclude = np.zeros(8, dtype=bool)
    exclude[0] = True
    masked = cube.edge_graph(exclude)
    assert masked.nnz == 18 - 6
    with pytest.raises(InvalidArgument):
        cube.edge_graph(np.zeros(7, dtype=bool))


def test_face_mask(cube):
    valid = np.ones(8, dtype=bool)
    valid[6] = False
    mask = cube.face_mask(valid)
    assert int(mask.sum()) == 7
