import numpy as np
import pytest

from proximity_correction.exceptions import GeometryError
from proximity_correction.grid import PatternSet
from proximity_correction.mask import choose_resolution, grid_layout, rasterize, resolution_exponent


def unit_square(x0=0.0, y0=0.0, size=1.0):
    return np.array([[x0, y0], [x0 + size, y0], [x0 + size, y0 + size], [x0, y0 + size]])


def test_unit_square_point_count():
    raster = rasterize(PatternSet([unit_square()]), dx=0.1, margin=1.0)
    count = int(raster.occupancy.values.sum())
    # 9 x 9 strictly inside, up to 11 x 11 with the boundary points
    assert 81 <= count <= 121
    assert raster.margin_points == 10


def test_axes_are_odd():
    for size in (1.0, 1.05, 2.0, 3.3):
        raster = rasterize(PatternSet([unit_square(size=size)]), dx=0.1, margin=0.5)
        assert raster.occupancy.is_odd


def test_overlaps_accumulate():
    patterns = PatternSet([unit_square(size=2.0), unit_square(1.0, 1.0, 2.0)])
    raster = rasterize(patterns, dx=0.1, margin=0.5)
    values = raster.occupancy.values
    assert values.max() == 2
    x, y = raster.occupancy.x_coords, raster.occupancy.y_coords
    row = np.argmin(np.abs(y - 1.55))
    col = np.argmin(np.abs(x - 1.55))
    assert values[row, col] == 2
    assert np.array_equal(raster.shape_mask, values > 0)


def test_degenerate_polygon_is_skipped():
    line = np.array([[0.0, 0.0], [1.0, 1.0]])
    raster = rasterize(PatternSet([unit_square(), line]), dx=0.1, margin=0.5)
    assert raster.occupancy.values.max() == 1


def test_empty_pattern_raises():
    with pytest.raises(GeometryError):
        rasterize(PatternSet([]), dx=0.1)


def test_origin_includes_margin():
    (x0, y0), (rows, cols), margin_points = grid_layout((0.0, 0.0, 1.0, 2.0), 0.1, margin=0.25)
    assert margin_points == 3
    assert x0 == pytest.approx(-0.3)
    assert y0 == pytest.approx(-0.3)
    assert rows % 2 == 1 and cols % 2 == 1
    assert rows >= 27 and cols >= 17


def test_resolution_exponent_is_minimal():
    for points, target in [(4e6, 1e6), (1e6, 1e6), (17e6, 1e6), (2.5e5, 1e6), (3e6, 1e6)]:
        k = resolution_exponent(points, target)
        assert 4.0 ** k >= points / target - 1e-9
        assert 4.0 ** (k - 1) < points / target
    assert resolution_exponent(4e6, 1e6) == 1
    assert resolution_exponent(1e6, 1e6) == 0


def test_choose_resolution_coarsens_large_grids():
    bounds = (0.0, 0.0, 10.0, 10.0)
    dx = choose_resolution(bounds, 0.01, target_points=1e4, margin=0.0)
    assert dx > 0.01
    assert np.log2(dx / 0.01) == pytest.approx(round(np.log2(dx / 0.01)))


def test_choose_resolution_keeps_dx_inside_band():
    bounds = (0.0, 0.0, 9.9, 9.9)
    _, (rows, cols), _ = grid_layout(bounds, 0.1, margin=0.0)
    assert choose_resolution(bounds, 0.1, target_points=rows * cols, margin=0.0) == 0.1


def test_auto_resolution_requires_target():
    with pytest.raises(ValueError):
        rasterize(PatternSet([unit_square()]), dx=0.1, auto_resolution=True)
