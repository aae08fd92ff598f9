"""Electron-beam proximity effect correction.

This package converts a polygon pattern into a multi-layer, dose-corrected
pattern for electron-beam writing: rasterization, point-spread function
modeling, iterative dose deconvolution, dose layering, polygon fracturing
under a vertex cap, and DXF output.
"""

# Pipeline stages
from .grid import Grid, PatternSet, polygon_area
from .mask import RasterizedPattern, rasterize, resolution_exponent
from .psf import (
    PSFDescriptor,
    PSFModel,
    build_psf_kernel,
    build_window,
    load_psf_descriptor,
    save_psf_descriptor
)
from .deconvolution import DoseDeconvolver, FFTConvolver, deconvolve
from .layers import DoseLayer, build_layers
from .fracture import Boundary, fracture_layer, fracture_mask
from .output import LayerGeometry, assemble_layers

# Orchestration
from .config import CorrectionConfig
from .core import CorrectionObserver, CorrectionResult, ProximityCorrector, process_file
from .exceptions import (
    ProximityCorrectionError,
    ConfigurationError,
    GeometryError,
    PSFError,
    FractureError,
    OutputError
)
from .dxf_io import read_dxf_triples, write_dose_report, write_layers_dxf
from .logging_config import setup_logging

__version__ = "1.0.0"
__all__ = [
    # Geometry
    'Grid', 'PatternSet', 'polygon_area', 'RasterizedPattern', 'rasterize', 'resolution_exponent',

    # PSF
    'PSFDescriptor', 'PSFModel', 'build_psf_kernel', 'build_window',
    'load_psf_descriptor', 'save_psf_descriptor',

    # Dose
    'DoseDeconvolver', 'FFTConvolver', 'deconvolve', 'DoseLayer', 'build_layers',

    # Fracturing and output
    'Boundary', 'fracture_layer', 'fracture_mask', 'LayerGeometry', 'assemble_layers',
    'read_dxf_triples', 'write_dose_report', 'write_layers_dxf',

    # Pipeline
    'CorrectionConfig', 'CorrectionObserver', 'CorrectionResult', 'ProximityCorrector', 'process_file',
    'setup_logging',

    # Errors
    'ProximityCorrectionError', 'ConfigurationError', 'GeometryError', 'PSFError',
    'FractureError', 'OutputError'
]
