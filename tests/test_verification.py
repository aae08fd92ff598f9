import numpy as np
import pytest

from proximity_correction.fracture import Boundary, fracture_layer
from proximity_correction.layers import DoseLayer, build_layers
from proximity_correction.verification import (
    boundaries_area,
    calculate_overlap_area,
    check_layer_coverage,
    check_vertex_cap,
    comprehensive_verification_report,
    rasterize_boundaries,
)


def test_overlap_metrics():
    a = np.zeros((4, 4))
    b = np.zeros((4, 4))
    a[:2, :] = 1
    b[1:3, :] = 1
    metrics = calculate_overlap_area(a, b)
    assert metrics['intersection_area'] == 4
    assert metrics['union_area'] == 12
    assert metrics['jaccard_index'] == pytest.approx(1 / 3)
    assert metrics['dice_coefficient'] == pytest.approx(0.5)


def test_rasterize_square_boundary():
    boundary = Boundary(np.array([[0.5, 0.5], [0.5, 3.5], [2.5, 3.5], [2.5, 0.5]]))
    coverage = rasterize_boundaries([boundary], (4, 5))
    expected = np.zeros((4, 5), dtype=int)
    expected[1:3, 1:4] = 1
    assert np.array_equal(coverage, expected)
    assert boundaries_area([boundary]) == pytest.approx(6)


def test_coverage_report_flags_gaps():
    dose = np.array([[0.9, 1.1], [1.5, np.nan]])
    layers = build_layers(dose, [1.0, 1.2])
    report = check_layer_coverage(layers, dose)
    assert report == {
        'valid_cells': 3,
        'uncovered_cells': 0,
        'multiply_covered_cells': 0,
        'invalid_covered_cells': 0,
    }
    layers[0].mask[:] = False
    assert check_layer_coverage(layers, dose)['uncovered_cells'] == 1


def test_full_report_on_fractured_layers():
    rows, cols = np.indices((40, 40))
    dose = 1.0 + 0.02 * np.hypot(rows - 20, cols - 20)
    layers = build_layers(dose, [1.1, 1.2, 1.3])
    for layer in layers:
        fracture_layer(layer, subfield_size=16, max_vertices=40)

    report = comprehensive_verification_report(layers, dose, max_vertices=40)
    assert report['coverage']['uncovered_cells'] == 0
    assert report['vertices']['over_cap'] == 0
    assert report['vertices']['under_three'] == 0
    for index, layer_report in report['layers'].items():
        assert layer_report['overlapping_cells'] == 0
        assert layer_report['jaccard_index'] == pytest.approx(1.0)
        assert layer_report['boundary_area'] == pytest.approx(layers[index - 1].area)


def test_vertex_cap_report():
    layer = DoseLayer(1, 1.0, 1.0, np.zeros((2, 2), dtype=bool))
    layer.boundaries = [Boundary(np.zeros((5, 2))), Boundary(np.zeros((3, 2)))]
    report = check_vertex_cap([layer], max_vertices=4)
    assert report['boundaries'] == 2
    assert report['over_cap'] == 1
    assert report['max_vertices'] == 5
