import numpy as np
import pytest

from fastgeod_circles import (CircleParameters, CircleStats, circle_for_field, circle_parameters, circle_stats,
                              fit_circle, radius_grid)
from fastgeod_dijkstra import correct_sentinel, propagate
from fastgeod_errors import DegenerateMesh, InsufficientMargin, InvalidArgument, UnreachableArea
from fastgeod_mesh import MeshGraph
from fastgeod_settings import GeodesicSettings


# ============================================================================
# PARTIAL COVERAGE ON A SINGLE TRIANGLE
# ============================================================================

def test_one_vertex_inside(triangle):
    stats = circle_stats(triangle, [0.0, 1.0, 1.0], [0.5])
    assert stats.areas[0] == pytest.approx(0.125)
    assert stats.perimeters[0] == pytest.approx(np.sqrt(0.5))


def test_two_vertices_inside(triangle):
    stats = circle_stats(triangle, [1.0, 0.0, 0.0], [0.5])
    assert stats.areas[0] == pytest.approx(0.5 - 0.125)
    assert stats.perimeters[0] == pytest.approx(np.sqrt(0.5))


def test_odd_vertex_not_first(triangle):
    stats = circle_stats(triangle, [1.0, 1.0, 0.0], [0.5])
    assert stats.areas[0] == pytest.approx(0.125)
    assert stats.perimeters[0] == pytest.approx(0.5)


def test_fully_inside_and_outside(triangle):
    stats = circle_stats(triangle, [0.0, 1.0, 1.0], [0.0, 1.0, 1.5])
    # r == d is outside: the disc is d < r
    assert stats.areas[0] == 0.0
    assert stats.perimeters[0] == 0.0
    # far vertices sit exactly on the contour
    assert stats.areas[1] == pytest.approx(0.5)
    assert stats.perimeters[1] == pytest.approx(np.sqrt(2.0))
    assert stats.areas[2] == 0.5
    assert stats.perimeters[2] == 0.0


def test_face_mask_limits_statistics(cube):
    d = correct_sentinel(propagate(cube, [0]), 0)
    mask = np.zeros(cube.n_faces, dtype=bool)
    mask[:2] = True
    stats = circle_stats(cube, d, [100.0], face_mask=mask)
    assert stats.areas[0] == 4.0


# ============================================================================
# CURVE PROPERTIES
# ============================================================================

def test_full_coverage_equals_total_area_exactly(cube):
    diagonal = 2.0 * np.sqrt(3.0)
    for s in range(cube.n_vertices):
        d = correct_sentinel(propagate(cube, [s]), s)
        stats = circle_stats(cube, d, [diagonal * 2.0, 50.0])
        assert stats.areas[0] == cube.total_area
        assert stats.areas[1] == cube.total_area
        assert np.all(stats.perimeters == 0.0)


def test_area_is_monotone_in_radius(icosphere):
    for s in (0, 40, 100):
        d = correct_sentinel(propagate(icosphere, [s]), s)
        radii = np.linspace(0.0, d.max() * 1.01, 60)
        stats = circle_stats(icosphere, d, radii)
        assert stats.areas[0] == 0.0
        assert np.all(np.diff(stats.areas) >= -1e-9)
        assert stats.areas[-1] == icosphere.total_area


def test_negative_radii_cover_nothing(cube):
    d = correct_sentinel(propagate(cube, [0]), 0)
    stats = circle_stats(cube, d, [-5.0, -0.1])
    np.testing.assert_array_equal(stats.areas, 0.0)
    np.testing.assert_array_equal(stats.perimeters, 0.0)


def test_unreached_straddle_raises(cube):
    d = correct_sentinel(propagate(cube, [0], max_distance=2.5), 0)
    with pytest.raises(InsufficientMargin) as info:
        circle_stats(cube, d, [1.0], vertex=0)
    assert info.value.vertex == 0
    assert info.value.radius == 1.0
    assert info.value.face is not None


def test_distances_must_match_mesh(cube):
    with pytest.raises(InvalidArgument):
        circle_stats(cube, np.zeros(3), [1.0])


# ============================================================================
# RADIUS FIT
# ============================================================================

def _disk_stats(radii):
    radii = np.asarray(radii, dtype=np.float64)
    return CircleStats(radii, np.pi * radii ** 2, 2.0 * np.pi * radii)


@pytest.mark.parametrize('spline', ['pchip', 'not-a-knot', 'natural'])
def test_fit_circle_inverts_disk_area(spline):
    settings = GeodesicSettings(spline=spline)
    stats = _disk_stats(np.linspace(1.0, 10.0, 10))
    radius, perimeter = fit_circle(stats, np.pi * 25.0, settings)
    assert radius == pytest.approx(5.0, abs=0.06)
    assert perimeter == pytest.approx(2.0 * np.pi * 5.0, abs=0.5)


def test_fit_circle_picks_first_full_coverage_sample():
    # area saturates at the 7th sample; later samples tie and must not win
    radii = np.linspace(-7.0, 11.0, 10)
    areas = np.array([0, 0, 0, 0, 3.0, 12.0, 24.0, 24.0, 24.0, 24.0])
    stats = CircleStats(radii, areas, np.zeros(10))
    radius, _ = fit_circle(stats, 24.0)
    assert radius == pytest.approx(radii[6], abs=0.25)


def test_radius_grid_defaults():
    grid = radius_grid(12.0)
    assert grid.size == 10
    assert grid[0] == pytest.approx(2.0)
    assert grid[-1] == pytest.approx(22.0)


def test_circle_parameters(cube):
    params = circle_parameters(cube, 100.0)
    assert params.target_area == pytest.approx(24.0)
    assert params.ideal_radius == pytest.approx(np.sqrt(24.0 / np.pi))
    assert params.max_distance == pytest.approx(params.ideal_radius + 8.0 * 2.0 * np.sqrt(2.0))
    assert circle_parameters(cube, 5.0, compute_mean_distance=True).max_distance is None


def test_margin_widens_to_cover_grid(plane):
    params = circle_parameters(plane, 5.0)
    assert params.max_distance >= params.ideal_radius + 10.0 + plane.max_edge_length


@pytest.mark.parametrize('fraction', [0.0, -5.0, float('nan')])
def test_circle_parameters_rejects_bad_fraction(cube, fraction):
    with pytest.raises(InvalidArgument):
        circle_parameters(cube, fraction)


def test_circle_parameters_rejects_degenerate_mesh():
    flat = MeshGraph([(0, 0, 0), (1, 0, 0), (2, 0, 0)], [(0, 1, 2)])
    with pytest.raises(DegenerateMesh):
        circle_parameters(flat, 5.0)


def test_circle_on_plane_is_close_to_disk(plane):
    settings = GeodesicSettings()
    params = circle_parameters(plane, 5.0, settings=settings)
    center = int(np.argmin(np.linalg.norm(plane.vertices, axis=1)))
    d = propagate(plane, [center], max_distance=params.max_distance)
    result = circle_for_field(plane, d, center, params, settings)
    assert result.radius == pytest.approx(params.ideal_radius, rel=0.2)
    assert result.perimeter == pytest.approx(2.0 * np.pi * result.radius, rel=0.3)
    assert np.isnan(result.mean_distance)


def test_circle_for_field_mean_distance(cube):
    params = CircleParameters(24.0 * 0.5, np.sqrt(12.0 / np.pi), None, True)
    d = propagate(cube, [0])
    result = circle_for_field(cube, d, 0, params)
    assert result.mean_distance == pytest.approx(d.sum() / 8.0)
    assert result.radius > 0


def test_circle_for_field_rejects_unreachable_target(cube):
    params = circle_parameters(cube, 50.0, compute_mean_distance=True)
    d = propagate(cube, [0])
    # no face counts, so the disc stays empty at every radius
    with pytest.raises(UnreachableArea) as info:
        circle_for_field(cube, d, 0, params, face_mask=np.zeros(cube.n_faces, dtype=bool))
    assert info.value.vertex == 0
    assert info.value.reachable_area == 0.0
    assert info.value.target_area == pytest.approx(params.target_area)


def test_circle_for_field_accepts_exact_full_area(cube):
    params = circle_parameters(cube, 100.0, compute_mean_distance=True)
    result = circle_for_field(cube, propagate(cube, [3]), 3, params)
    assert result.radius > 0
