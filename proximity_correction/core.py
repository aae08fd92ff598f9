"""Core correction engine for electron-beam proximity effect correction.

This module wires the pipeline stages together: rasterize the pattern, size
the point-spread function to the grid, deconvolve the dose, threshold it into
dose layers, fracture every layer into polygons and map them back to microns.
"""

import logging
import os
import numpy as np
from typing import Dict, List, Optional, Sequence, Tuple, Union

from proximity_correction.config import CorrectionConfig
from proximity_correction.deconvolution import DoseDeconvolver, crop_padding, mark_invalid
from proximity_correction.dxf_io import read_dxf_triples, write_dose_report, write_layers_dxf
from proximity_correction.exceptions import GeometryError
from proximity_correction.fracture import fracture_layer
from proximity_correction.grid import Grid, PatternSet
from proximity_correction.layers import DoseLayer, build_layers, representative_doses
from proximity_correction.mask import rasterize
from proximity_correction.output import LayerGeometry, assemble_layers
from proximity_correction.psf import PSFDescriptor, PSFModel, load_psf_descriptor

logger = logging.getLogger(__name__)


class CorrectionObserver:
    """Receives intermediate results of a correction run.

    Subclasses override the hooks they need; the defaults do nothing.
    """

    def on_iteration(self, iteration: int, programmed: np.ndarray, actual: np.ndarray) -> None:
        pass

    def on_dose_map(self, dose: Grid, shape_mask: np.ndarray) -> None:
        pass

    def on_layer_fractured(self, layer: DoseLayer, grid: Grid) -> None:
        pass


class CorrectionResult:
    """Everything a correction run produces."""

    def __init__(
        self,
        dose: Grid,
        shape_mask: np.ndarray,
        layers: List[DoseLayer],
        geometry: List[LayerGeometry],
        history: List[Dict[str, float]],
        descriptor: PSFDescriptor
    ):
        """
        Initialize the result.

        Args:
            dose: Programmed dose map on the pattern grid, NaN where invalid
            shape_mask: Boolean shape mask on the same grid
            layers: Fractured dose layers in ascending dose order
            geometry: Layer polygons in microns
            history: Per-iteration deconvolution residuals
            descriptor: PSF the dose was corrected for
        """
        self.dose = dose
        self.shape_mask = shape_mask
        self.layers = layers
        self.geometry = geometry
        self.history = history
        self.descriptor = descriptor

    @property
    def dx(self) -> float:
        return self.dose.dx

    @property
    def doses(self) -> List[float]:
        """Representative dose of every layer, in layer order."""
        return representative_doses(self.layers)

    @property
    def polygon_count(self) -> int:
        return sum(len(g.polygons) for g in self.geometry)

    def __repr__(self) -> str:
        return (f"CorrectionResult(layers={len(self.layers)}, polygons={self.polygon_count}, "
                f"dx={self.dx:g}, psf={self.descriptor.label!r})")


class ProximityCorrector:
    """Runs the proximity correction of a pattern for one PSF."""

    def __init__(
        self,
        config: Optional[CorrectionConfig] = None,
        observers: Optional[Sequence[CorrectionObserver]] = None
    ):
        """
        Initialize the corrector.

        Args:
            config: Pipeline options; defaults are used when omitted
            observers: Objects notified of intermediate results
        """
        self.config = (config or CorrectionConfig()).validate()
        self.observers = list(observers or [])

    def add_observer(self, observer: CorrectionObserver) -> None:
        self.observers.append(observer)

    def compute_dose(
        self,
        patterns: PatternSet,
        descriptor: PSFDescriptor
    ) -> Tuple[Grid, np.ndarray, List[Dict[str, float]]]:
        """
        Compute the programmed dose map of a pattern.

        Args:
            patterns: Input polygons in microns
            descriptor: PSF of the exposure

        Returns:
            Tuple of (dose grid cropped to the pattern, shape mask on the same
            grid, deconvolution history)
        """
        config = self.config
        logger.info("Rasterizing pattern...")
        raster = rasterize(patterns, config.dx, config.target_points,
                           config.auto_resolution, config.margin)

        logger.info("Building point-spread function...")
        model = PSFModel(descriptor, raster.dx, config.window_val)
        kernel, window, occupancy, pads = model.fit_to(raster.occupancy.values)
        shape_mask = occupancy > 0

        logger.info(f"Deconvolving ({config.max_iter} iterations)...")
        callbacks = [observer.on_iteration for observer in self.observers]
        deconvolver = DoseDeconvolver(kernel, window, config.max_iter,
                                      config.divergence_factor, callbacks)
        dose = deconvolver.run(shape_mask)

        # Back to the rasterized grid, then drop the margin
        m = raster.margin_points
        dose = raster.occupancy.with_values(crop_padding(dose, pads)).crop((m, m), (m, m))
        shape_mask = raster.occupancy.with_values(crop_padding(shape_mask, pads)).crop((m, m), (m, m)).values
        dose = dose.with_values(mark_invalid(dose.values))
        logger.info("Done with the deconvolution.")
        return dose, shape_mask, deconvolver.history

    def correct(self, patterns: Union[PatternSet, np.ndarray], descriptor: PSFDescriptor) -> CorrectionResult:
        """
        Correct a pattern for the proximity effect.

        Args:
            patterns: PatternSet, or (N, 3) array of (objectId, x, y) rows
            descriptor: PSF of the exposure

        Returns:
            CorrectionResult with the dose map, layers and layer polygons

        Raises:
            GeometryError: If the pattern is empty or malformed
            PSFError: If the PSF descriptor is invalid
            FractureError: If a layer cannot be fractured within the vertex cap
        """
        if not isinstance(patterns, PatternSet):
            patterns = PatternSet.from_triples(patterns)
        descriptor.validate()

        dose, shape_mask, history = self.compute_dose(patterns, descriptor)
        for observer in self.observers:
            observer.on_dose_map(dose, shape_mask)

        logger.info("Fracturing the layers...")
        layers = build_layers(dose.values, self.config.dvals, shape_mask)
        for layer in layers:
            fracture_layer(layer, self.config.subfield_size, self.config.max_vertices,
                           self.config.max_fracture_attempts)
            for observer in self.observers:
                observer.on_layer_fractured(layer, dose)

        geometry = assemble_layers(layers, dose)
        result = CorrectionResult(dose, shape_mask, layers, geometry, history, descriptor)
        logger.info(f"Correction finished: {result}")
        return result


def output_paths(input_path: str, label: str, output_path: Optional[str] = None) -> Tuple[str, str]:
    """
    DXF and dose report paths of a run.

    Args:
        input_path: Source DXF path
        label: PSF label appended to the input stem
        output_path: Explicit DXF path; the dose report goes beside it

    Returns:
        Tuple of (dxf path, txt path)
    """
    if output_path is None:
        stem = os.path.splitext(input_path)[0]
        output_path = f"{stem}_{label}.dxf"
    return output_path, os.path.splitext(output_path)[0] + '.txt'


def process_file(
    input_path: str,
    psf_path: str,
    output_path: Optional[str] = None,
    config: Optional[CorrectionConfig] = None,
    observers: Optional[Sequence[CorrectionObserver]] = None
) -> CorrectionResult:
    """
    Correct a DXF file and write the layered DXF and the dose report.

    Args:
        input_path: Path to the input DXF
        psf_path: Path to a .mat or .npz PSF descriptor
        output_path: Path of the output DXF; defaults to
            ``<input stem>_<psf label>.dxf`` beside the input
        config: Pipeline options
        observers: Objects notified of intermediate results

    Returns:
        The CorrectionResult
    """
    if not os.path.isfile(input_path):
        raise GeometryError(f"Input file {input_path} does not exist")
    triples = read_dxf_triples(input_path)
    descriptor = load_psf_descriptor(psf_path)

    result = ProximityCorrector(config, observers).correct(triples, descriptor)

    dxf_path, txt_path = output_paths(input_path, descriptor.label, output_path)
    write_layers_dxf(result.geometry, dxf_path)
    write_dose_report(result.doses, txt_path)
    logger.info(f"Data saved to {dxf_path}")
    return result
