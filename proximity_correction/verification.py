"""Verification and metrics module for the proximity correction pipeline.

This module checks the guarantees of a correction run after the fact: the dose
layers cover every valid cell exactly once, no polygon exceeds the vertex cap
and the fractured polygons reproduce the layer masks they were traced from.
"""

import numpy as np
from typing import Dict, Sequence
from skimage import draw

from proximity_correction.fracture import Boundary
from proximity_correction.layers import DoseLayer

# (row, col) offset of the sample point from the cell center
SAMPLE_OFFSET = np.array([1e-3, 2.3e-3])


def check_layer_coverage(layers: Sequence[DoseLayer], dose: np.ndarray) -> Dict[str, int]:
    """
    Count how often each valid dose cell is claimed by a layer.

    Args:
        layers: Dose layers built from `dose`
        dose: Dose map, NaN where invalid

    Returns:
        Dictionary with the number of valid cells, cells in no layer, cells
        in more than one layer and claimed invalid cells
    """
    counts = np.zeros(dose.shape, dtype=int)
    for layer in layers:
        counts += layer.mask.astype(int)

    valid = np.isfinite(dose)
    return {
        'valid_cells': int(valid.sum()),
        'uncovered_cells': int(np.sum(valid & (counts == 0))),
        'multiply_covered_cells': int(np.sum(counts > 1)),
        'invalid_covered_cells': int(np.sum(~valid & (counts > 0))),
    }


def check_vertex_cap(layers: Sequence[DoseLayer], max_vertices: int) -> Dict[str, int]:
    """Vertex statistics of every boundary, and how many break the cap."""
    sizes = [len(b) for layer in layers for b in layer.boundaries]
    return {
        'boundaries': len(sizes),
        'max_vertices': max(sizes) if sizes else 0,
        'min_vertices': min(sizes) if sizes else 0,
        'over_cap': sum(1 for n in sizes if n > max_vertices),
        'under_three': sum(1 for n in sizes if n < 3),
    }


def boundaries_area(boundaries: Sequence[Boundary]) -> float:
    """Total enclosed area in cells; merged holes are already subtracted."""
    return float(sum(abs(b.area) for b in boundaries))


def rasterize_boundaries(boundaries: Sequence[Boundary], shape) -> np.ndarray:
    """
    Count, for every cell, the boundaries whose interior holds its center.

    Boundaries run along cell edges, but the zero-width slits of merged holes
    can cross cell centers diagonally, so cells are sampled slightly off
    center.

    Args:
        boundaries: Boundaries in (row, col) grid indices
        shape: Shape of the grid

    Returns:
        Integer array of coverage counts
    """
    coverage = np.zeros(shape, dtype=int)
    for boundary in boundaries:
        vertices = boundary.vertices - SAMPLE_OFFSET
        rr, cc = draw.polygon(vertices[:, 0], vertices[:, 1], shape=shape)
        coverage[rr, cc] += 1
    return coverage


def calculate_overlap_area(
    predicted_pattern: np.ndarray,
    target_pattern: np.ndarray,
    threshold: float = 0.5
) -> Dict[str, float]:
    """
    Calculate overlap metrics between predicted and target patterns.

    Args:
        predicted_pattern: 2D array representing the predicted pattern
        target_pattern: 2D array representing the target pattern
        threshold: Threshold for binarization

    Returns:
        Dictionary containing overlap metrics
    """
    pred_binary = np.asarray(predicted_pattern) > threshold
    target_binary = np.asarray(target_pattern) > threshold

    intersection_area = int(np.sum(pred_binary & target_binary))
    union_area = int(np.sum(pred_binary | target_binary))
    target_area = int(np.sum(target_binary))
    pred_area = int(np.sum(pred_binary))

    jaccard_index = intersection_area / union_area if union_area > 0 else 1.0
    dice_coefficient = (2 * intersection_area) / (pred_area + target_area) if (pred_area + target_area) > 0 else 1.0

    return {
        'jaccard_index': jaccard_index,
        'dice_coefficient': dice_coefficient,
        'intersection_area': intersection_area,
        'union_area': union_area,
        'target_area': target_area,
        'predicted_area': pred_area
    }


def verify_layer(layer: DoseLayer, max_vertices: int) -> Dict[str, float]:
    """
    Compare a fractured layer with its mask.

    Args:
        layer: Fractured dose layer
        max_vertices: Vertex cap the layer was fractured with

    Returns:
        Overlap metrics of the re-rasterized boundaries against the mask,
        plus the number of doubly covered cells and cap violations
    """
    coverage = rasterize_boundaries(layer.boundaries, layer.mask.shape)
    report = calculate_overlap_area(coverage, layer.mask.astype(int))
    report['overlapping_cells'] = int(np.sum(coverage > 1))
    report['over_cap'] = sum(1 for b in layer.boundaries if len(b) > max_vertices)
    report['boundary_area'] = boundaries_area(layer.boundaries)
    return report


def comprehensive_verification_report(
    layers: Sequence[DoseLayer],
    dose: np.ndarray,
    max_vertices: int
) -> Dict[str, object]:
    """
    Run every check on a correction result.

    Args:
        layers: Fractured dose layers
        dose: Dose map the layers were built from
        max_vertices: Vertex cap

    Returns:
        Dictionary with 'coverage', 'vertices' and per-layer 'layers' reports
    """
    return {
        'coverage': check_layer_coverage(layers, dose),
        'vertices': check_vertex_cap(layers, max_vertices),
        'layers': {layer.index: verify_layer(layer, max_vertices) for layer in layers},
    }
