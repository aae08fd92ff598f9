import numpy as np
import pytest

from proximity_correction.exceptions import GeometryError
from proximity_correction.grid import Grid, PatternSet, polygon_area


def square_triples(object_id, x0, y0, size):
    return [
        [object_id, x0, y0],
        [object_id, x0 + size, y0],
        [object_id, x0 + size, y0 + size],
        [object_id, x0, y0 + size],
    ]


def test_from_triples_splits_runs():
    triples = np.array(square_triples(1, 0, 0, 1) + square_triples(2, 5, 5, 2))
    patterns = PatternSet.from_triples(triples)
    assert len(patterns) == 2
    assert patterns[0].shape == (4, 2)
    assert np.allclose(patterns[1][0], [5, 5])
    assert np.allclose(patterns.areas(), [1, 4])
    assert patterns.bounds() == (0.0, 0.0, 7.0, 7.0)


def test_explicit_closing_vertex_is_dropped():
    triples = np.array(square_triples(1, 0, 0, 1) + [[1, 0, 0]])
    patterns = PatternSet.from_triples(triples)
    assert len(patterns[0]) == 4


def test_empty_input_raises():
    with pytest.raises(GeometryError):
        PatternSet.from_triples(np.zeros((0, 3)))


def test_non_contiguous_ids_raise():
    triples = np.array(square_triples(1, 0, 0, 1) + square_triples(3, 2, 2, 1))
    with pytest.raises(GeometryError):
        PatternSet.from_triples(triples)
    repeated = np.array(square_triples(1, 0, 0, 1) + square_triples(2, 2, 2, 1) + square_triples(1, 4, 4, 1))
    with pytest.raises(GeometryError):
        PatternSet.from_triples(repeated)


def test_bad_shape_raises():
    with pytest.raises(GeometryError):
        PatternSet.from_triples(np.ones((4, 2)))


def test_polygon_area_sign():
    square = np.array([[0, 0], [2, 0], [2, 2], [0, 2]])
    assert polygon_area(square) == pytest.approx(4.0)
    assert polygon_area(square[::-1]) == pytest.approx(-4.0)
    assert polygon_area(square[:2]) == 0.0


def test_grid_coordinates_and_crop():
    grid = Grid(np.arange(35).reshape(5, 7), origin=(-1.0, 2.0), dx=0.5)
    assert grid.is_odd
    assert np.allclose(grid.index_to_coords([[0, 0], [2, 4]]), [[-1.0, 2.0], [1.0, 3.0]])

    cropped = grid.crop((1, 1), (2, 2))
    assert cropped.shape == (3, 3)
    assert cropped.origin == (0.0, 2.5)
    assert cropped.values[0, 0] == grid.values[1, 2]
    assert np.allclose(cropped.x_coords, grid.x_coords[2:5])


def test_with_values_checks_shape():
    grid = Grid(np.zeros((3, 3)), (0, 0), 1.0)
    with pytest.raises(ValueError):
        grid.with_values(np.zeros((3, 4)))
