import json

import nibabel as nib
import numpy as np
import pytest

from conftest import CUBE_FACES, CUBE_VERTICES
from fastgeod_dijkstra import shortest_path
from fastgeod_errors import InvalidArgument
from fastgeod_io import (circles_to_frame, load_cortex_mask, load_descriptor, load_surface,
                         neighborhoods_to_frame, neighbors_to_frame, neighbors_to_json, path_to_frame,
                         scatter_to_vertices, write_curv)
from fastgeod_neigh import geodesic_neighborhood
from fastgeod_parallel import geodesic_circles


def write_label(path, indices):
    with open(path, 'w') as f:
        f.write('#!ascii label, from subject test\n')
        f.write(f'{len(indices)}\n')
        for i in indices:
            f.write(f'{i}  0.000  0.000  0.000 0.0000000000\n')


@pytest.fixture
def cube_neighborhoods(cube):
    normals = cube.vertex_normals()
    return [geodesic_neighborhood(cube, v, 2.5, normals=normals) for v in (0, 6)]


def test_load_surface(tmp_path, cube):
    path = str(tmp_path / 'lh.pial')
    nib.freesurfer.write_geometry(path, CUBE_VERTICES, CUBE_FACES.astype(np.int32))
    mesh = load_surface(path)
    assert mesh.n_vertices == 8
    assert mesh.n_faces == 12
    np.testing.assert_allclose(mesh.vertices, CUBE_VERTICES)
    assert mesh.total_area == pytest.approx(cube.total_area)


def test_load_surface_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_surface(str(tmp_path / 'lh.white'))


def test_load_cortex_mask(tmp_path):
    path = str(tmp_path / 'lh.cortex.label')
    write_label(path, [0, 2, 5, 40])
    mask = load_cortex_mask(path, 8)
    assert list(np.flatnonzero(mask)) == [0, 2, 5]
    with pytest.raises(FileNotFoundError):
        load_cortex_mask(str(tmp_path / 'rh.cortex.label'), 8)


def test_write_curv_and_descriptor(tmp_path):
    path = str(tmp_path / 'lh.thickness')
    values = np.array([1.5, 2.0, np.nan, 3.25])
    write_curv(path, values)
    back = nib.freesurfer.read_morph_data(path)
    assert back.dtype == np.float32
    np.testing.assert_array_equal(np.isnan(back), np.isnan(values))
    np.testing.assert_allclose(back[[0, 1, 3]], values[[0, 1, 3]])

    np.testing.assert_allclose(load_descriptor(path, 4)[[0, 1, 3]], values[[0, 1, 3]])
    with pytest.raises(InvalidArgument):
        load_descriptor(path, 8)


def test_scatter_to_vertices():
    out = scatter_to_vertices([3, 1], [7.0, 9.0], 5)
    assert out.dtype == np.float32
    assert out[3] == 7.0 and out[1] == 9.0
    assert np.isnan(out[[0, 2, 4]]).all()


def test_circles_to_frame(cube, serial):
    mask = np.ones(8, dtype=bool)
    mask[6] = False
    circles = geodesic_circles(cube, area_fraction_percent=50.0, cortical_mask=mask, settings=serial)
    df = circles_to_frame(circles, 8)
    assert list(df.columns) == ['vertex', 'radius', 'perimeter']
    assert len(df) == 8
    assert np.isnan(df.loc[6, 'radius'])
    assert df.loc[0, 'radius'] == pytest.approx(circles.radius[0])

    circles = geodesic_circles(cube, area_fraction_percent=50.0, compute_mean_distance=True, settings=serial)
    assert 'mean_distance' in circles_to_frame(circles, 8).columns


def test_neighbors_to_frame_and_json(cube_neighborhoods):
    df = neighbors_to_frame(cube_neighborhoods)
    assert list(df.columns) == ['source', 'target', 'distance']
    assert len(df) == 8
    assert set(df[df.source == 0].target) == {0, 1, 3, 4}

    doc = json.loads(neighbors_to_json(cube_neighborhoods))
    assert set(doc['neighbors']) == {'0', '6'}
    assert sorted(doc['neighbors']['6']) == [2, 5, 6, 7]
    assert len(doc['distances']['0']) == 4


def test_neighborhoods_to_frame_wide(cube, cube_neighborhoods):
    descriptor = np.arange(8, dtype=np.float64) * 10.0
    df = neighborhoods_to_frame(cube_neighborhoods, descriptor=descriptor)
    assert len(df) == 2
    assert 'n3_index' in df.columns and 'n4_index' not in df.columns
    for col in ('n0_x', 'n0_y', 'n0_z', 'n0_dist', 'n0_nx', 'n0_ny', 'n0_nz', 'n0_desc'):
        assert col in df.columns
    row = df.iloc[0]
    for j in range(4):
        idx = int(row[f'n{j}_index'])
        assert row[f'n{j}_desc'] == descriptor[idx]
        assert row[f'n{j}_x'] == pytest.approx(cube.vertices[idx, 0] - cube.vertices[0, 0])


def test_neighborhoods_to_frame_truncates_and_pads(cube_neighborhoods):
    df = neighborhoods_to_frame(cube_neighborhoods, neigh_write_size=2)
    assert 'n1_index' in df.columns and 'n2_index' not in df.columns

    with pytest.raises(InvalidArgument):
        neighborhoods_to_frame(cube_neighborhoods, neigh_write_size=6)

    df = neighborhoods_to_frame(cube_neighborhoods, neigh_write_size=6, allow_nan=True)
    assert np.isnan(df.loc[0, 'n5_index'])
    assert np.isnan(df.loc[1, 'n4_dist'])
    assert not np.isnan(df.loc[1, 'n3_dist'])


def test_path_to_frame(cube):
    path = shortest_path(cube, 0, 6)
    df = path_to_frame(path)
    assert list(df.columns) == ['step', 'vertex', 'x', 'y', 'z', 'distance']
    assert list(df.vertex) == list(path.indices)
    assert df.distance.iloc[0] == 0.0
    assert df.distance.iloc[-1] == pytest.approx(path.length)
    assert len(path_to_frame(shortest_path(cube, 2, 2))) == 1
