"""Dose layering module for the proximity correction pipeline.

The continuous programmed dose map is cut into a small number of dose bands.
Each band becomes one output layer that is written at a single dose, the mean
programmed dose of the cells it covers.
"""

import logging
import numpy as np
from typing import List, Optional, Sequence, Tuple

from proximity_correction.config import validate_dvals

logger = logging.getLogger(__name__)


class DoseLayer:
    """One dose band of the corrected pattern."""

    def __init__(
        self,
        index: int,
        nominal_dose: float,
        representative_dose: float,
        mask: np.ndarray,
        bounds: Tuple[float, float] = (-np.inf, np.inf)
    ):
        """
        Initialize the layer.

        Args:
            index: 1-based layer index, ascending with dose
            nominal_dose: Dose the band was defined around
            representative_dose: Dose the layer is written with
            mask: Boolean mask of the cells in the band
            bounds: (lower, upper) dose bounds of the band; infinite for the
                open-ended first and last layers
        """
        self.index = index
        self.nominal_dose = float(nominal_dose)
        self.representative_dose = float(representative_dose)
        self.mask = mask
        self.bounds = bounds
        self.boundaries = []

    @property
    def area(self) -> int:
        """Number of cells in the layer."""
        return int(np.count_nonzero(self.mask))

    @property
    def is_empty(self) -> bool:
        return self.area == 0

    def __repr__(self) -> str:
        return (f"DoseLayer(index={self.index}, nominal_dose={self.nominal_dose:.3f}, "
                f"representative_dose={self.representative_dose:.3f}, area={self.area}, "
                f"boundaries={len(self.boundaries)})")


def layer_bounds(dvals: Sequence[float]) -> List[Tuple[float, float]]:
    """
    Lower and upper dose bound of every layer.

    The upper bound of layer i is dvals[i] and its lower bound is one
    threshold step below. For uniformly spaced thresholds this is
    ``dvals[i] - (dvals[1] - dvals[0])``; in general the previous threshold is
    used so that the bands tile the dose axis without gaps. The first layer
    is open below and the last layer open above.

    Args:
        dvals: Ascending dose thresholds

    Returns:
        List of (lower, upper) tuples, one per layer
    """
    values = validate_dvals(dvals)
    lower = np.r_[values[0] - (values[1] - values[0]), values[:-1]]
    upper = values
    bounds = [(float(lo), float(hi)) for lo, hi in zip(lower, upper)]
    bounds[0] = (-np.inf, bounds[0][1])
    bounds[-1] = (bounds[-1][0], np.inf)
    return bounds


def nominal_doses(dvals: Sequence[float]) -> np.ndarray:
    """Threshold value for the end layers, band midpoint for interior layers."""
    values = validate_dvals(dvals)
    nominal = values.copy()
    lower = np.r_[values[0] - (values[1] - values[0]), values[:-1]]
    nominal[1:-1] = (lower[1:-1] + values[1:-1]) / 2
    return nominal


def build_layers(dose: np.ndarray, dvals: Sequence[float], shape_mask: Optional[np.ndarray] = None) -> List[DoseLayer]:
    """
    Threshold a dose map into dose layers.

    Every finite cell lands in exactly one layer; NaN cells land in none.

    Args:
        dose: Programmed dose map, NaN where the dose is invalid
        dvals: Ascending dose thresholds, at least two
        shape_mask: Optional mask restricting the layers to the shapes

    Returns:
        List of DoseLayer objects in ascending dose order
    """
    bounds = layer_bounds(dvals)
    nominal = nominal_doses(dvals)

    valid = np.isfinite(dose)
    if shape_mask is not None:
        valid &= shape_mask.astype(bool)
    # NaN compares False, fill them so the comparisons below stay quiet
    filled = np.where(valid, dose, 0.0)

    layers = []
    for i, (lower, upper) in enumerate(bounds):
        mask = valid.copy()
        if np.isfinite(lower):
            mask &= filled >= lower
        if np.isfinite(upper):
            mask &= filled < upper

        count = np.count_nonzero(mask)
        if count > 0:
            representative = float(filled[mask].mean())
        else:
            representative = float(nominal[i])

        layer = DoseLayer(i + 1, nominal[i], representative, mask, (lower, upper))
        logger.debug(f"Layer {layer.index}: {count} cells, dose {representative:.3f}")
        layers.append(layer)

    return layers


def representative_doses(layers: Sequence[DoseLayer]) -> List[float]:
    return [layer.representative_dose for layer in layers]
