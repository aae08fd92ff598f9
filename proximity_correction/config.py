"""Configuration for the proximity correction pipeline.

Defaults follow the settings the correction has historically been run with:
a 10 nm grid, 50-point subfields, six deconvolution iterations and ten dose
layers from 1.0 to 1.9 times the dose to clear.
"""

import numpy as np
from typing import Any, Dict, Optional, Sequence

from proximity_correction.exceptions import ConfigurationError


DEFAULT_DVALS = tuple(np.round(np.arange(1.0, 1.95, 0.1), 10))


class CorrectionConfig:
    """Options recognized by the correction pipeline."""

    FIELDS = (
        'dx', 'target_points', 'auto_resolution', 'subfield_size', 'max_iter',
        'dvals', 'window_val', 'margin', 'max_vertices',
        'max_fracture_attempts', 'divergence_factor',
    )

    def __init__(
        self,
        dx: float = 0.01,  # Grid spacing in microns
        target_points: float = 1e6,  # Point budget for automatic resolution
        auto_resolution: bool = False,
        subfield_size: int = 50,  # Tile edge in grid cells
        max_iter: int = 6,
        dvals: Sequence[float] = DEFAULT_DVALS,  # Units of dose to clear
        window_val: float = 10.0,  # Ringing suppression, roughly in grid steps
        margin: float = 5.0,  # Border added around the pattern, microns
        max_vertices: int = 200,
        max_fracture_attempts: int = 16,
        divergence_factor: Optional[float] = None,
    ):
        """
        Initialize the configuration.

        Args:
            dx: Grid spacing for the deconvolution in microns
            target_points: Target number of grid points when auto_resolution is on
            auto_resolution: Rescale dx by a power of two to approach target_points
            subfield_size: Maximum tile edge used while fracturing, in grid cells
            max_iter: Number of deconvolution iterations
            dvals: Ascending dose thresholds, one per output layer
            window_val: Smoothing factor of the ringing-suppression window
            margin: Border around the pattern bounding box in microns
            max_vertices: Maximum number of vertices per output polygon
            max_fracture_attempts: Subfield size reductions tried per layer
            divergence_factor: Warn when the deconvolution residual grows by
                more than this factor between iterations (None disables)
        """
        self.dx = float(dx)
        self.target_points = float(target_points)
        self.auto_resolution = bool(auto_resolution)
        self.subfield_size = int(subfield_size)
        self.max_iter = int(max_iter)
        self.dvals = tuple(float(d) for d in dvals)
        self.window_val = float(window_val)
        self.margin = float(margin)
        self.max_vertices = int(max_vertices)
        self.max_fracture_attempts = int(max_fracture_attempts)
        self.divergence_factor = None if divergence_factor is None else float(divergence_factor)

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> 'CorrectionConfig':
        """Build a configuration from a mapping, rejecting unknown keys."""
        unknown = sorted(set(options) - set(cls.FIELDS))
        if unknown:
            raise ConfigurationError(f"Unknown configuration option(s): {', '.join(unknown)}")
        try:
            config = cls(**options)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}")
        return config.validate()

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.FIELDS}

    def validate(self) -> 'CorrectionConfig':
        """
        Check option ranges.

        Returns:
            Self for method chaining

        Raises:
            ConfigurationError: If any option is out of range
        """
        if not np.isfinite(self.dx) or self.dx <= 0:
            raise ConfigurationError(f"dx must be positive, got {self.dx}")
        if self.target_points <= 0:
            raise ConfigurationError(f"target_points must be positive, got {self.target_points}")
        if self.subfield_size < 1:
            raise ConfigurationError(f"subfield_size must be at least 1, got {self.subfield_size}")
        if self.max_iter < 0:
            raise ConfigurationError(f"max_iter must not be negative, got {self.max_iter}")
        if self.window_val <= 0:
            raise ConfigurationError(f"window_val must be positive, got {self.window_val}")
        if self.margin < 0:
            raise ConfigurationError(f"margin must not be negative, got {self.margin}")
        if self.max_vertices < 3:
            raise ConfigurationError(f"max_vertices must be at least 3, got {self.max_vertices}")
        if self.max_fracture_attempts < 1:
            raise ConfigurationError(
                f"max_fracture_attempts must be at least 1, got {self.max_fracture_attempts}"
            )
        if self.divergence_factor is not None and self.divergence_factor <= 1.0:
            raise ConfigurationError(
                f"divergence_factor must be greater than 1, got {self.divergence_factor}"
            )
        validate_dvals(self.dvals)
        return self

    def __repr__(self) -> str:
        options = ', '.join(f"{k}={v!r}" for k, v in self.to_dict().items())
        return f"CorrectionConfig({options})"


def validate_dvals(dvals: Sequence[float]) -> np.ndarray:
    """
    Check a dose threshold list.

    Args:
        dvals: Dose thresholds in units of the dose to clear

    Returns:
        The thresholds as a float array

    Raises:
        ConfigurationError: If fewer than two thresholds are given or they
            are not strictly ascending
    """
    values = np.asarray(dvals, dtype=float)
    if values.ndim != 1 or values.size < 2:
        raise ConfigurationError(f"dvals needs at least two thresholds, got {list(np.atleast_1d(values))}")
    if not np.all(np.isfinite(values)):
        raise ConfigurationError("dvals must be finite")
    if np.any(np.diff(values) <= 0):
        raise ConfigurationError(f"dvals must be strictly ascending, got {list(values)}")
    return values
