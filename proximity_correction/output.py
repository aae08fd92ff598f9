"""Output assembly for the proximity correction pipeline.

Maps the fractured boundaries of every dose layer from grid indices back to
coordinates in microns.
"""

import numpy as np
from typing import List, NamedTuple, Sequence

from proximity_correction.grid import Grid
from proximity_correction.layers import DoseLayer


class LayerGeometry(NamedTuple):
    """Polygons of one dose layer in real-world coordinates.

    Attributes:
        index: 1-based layer index
        dose: Representative dose the layer is written with
        polygons: List of (n, 2) arrays of (x, y) vertices in microns
    """
    index: int
    dose: float
    polygons: List[np.ndarray]


def assemble_layer(layer: DoseLayer, grid: Grid) -> LayerGeometry:
    polygons = [grid.index_to_coords(boundary.vertices) for boundary in layer.boundaries]
    return LayerGeometry(layer.index, layer.representative_dose, polygons)


def assemble_layers(layers: Sequence[DoseLayer], grid: Grid) -> List[LayerGeometry]:
    """
    Convert every layer's boundaries to real-world coordinates.

    Args:
        layers: Fractured dose layers
        grid: Grid the layer masks were sampled on

    Returns:
        List of LayerGeometry, in the order of `layers`
    """
    return [assemble_layer(layer, grid) for layer in layers]


def write_order(geometry: Sequence[LayerGeometry]) -> List[LayerGeometry]:
    """Layers in the order they are written: descending layer index."""
    return sorted(geometry, key=lambda g: g.index, reverse=True)
