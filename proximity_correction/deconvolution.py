"""Dose deconvolution module for the proximity correction pipeline.

This module computes the programmed dose map that, once blurred by the
electron point-spread function, delivers the dose to clear uniformly inside
every shape. It runs a fixed number of fixed-point corrections: convolve the
current programmed dose with the PSF, then add the shortfall between the
desired and the delivered dose back onto the programmed dose.
"""

import logging
import tensorflow as tf
import numpy as np
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

IterationCallback = Callable[[int, np.ndarray, np.ndarray], None]


class FFTConvolver:
    """Circular convolution with a fixed, centered kernel via tf.signal."""

    def __init__(self, kernel: np.ndarray, window: Optional[np.ndarray] = None):
        """
        Initialize the convolver.

        Args:
            kernel: Odd-sized kernel centered in its array
            window: Optional frequency-domain window of the same shape,
                centered like the kernel
        """
        if kernel.shape[0] % 2 == 0 or kernel.shape[1] % 2 == 0:
            raise ValueError(f"Kernel shape must be odd, got {kernel.shape}")
        self.shape = kernel.shape

        transfer = tf.signal.fft2d(tf.cast(kernel, tf.complex128))
        if window is not None:
            if window.shape != kernel.shape:
                raise ValueError(f"Window shape {window.shape} does not match kernel shape {kernel.shape}")
            # Move the window peak onto the zero frequency
            transfer = transfer * tf.cast(tf.signal.ifftshift(window), tf.complex128)
        self.transfer = transfer

    def __call__(self, values: np.ndarray) -> np.ndarray:
        """
        Convolve values with the kernel.

        Args:
            values: Array with the kernel's shape

        Returns:
            Real part of the convolution, aligned with the input indices
        """
        if values.shape != self.shape:
            raise ValueError(f"Input shape {values.shape} does not match kernel shape {self.shape}")
        spectrum = tf.signal.fft2d(tf.cast(values, tf.complex128))
        blurred = tf.signal.ifft2d(spectrum * self.transfer)
        # The centered kernel shifts the result by half its size; undo that
        blurred = tf.signal.ifftshift(blurred)
        return tf.math.real(blurred).numpy()


class DoseDeconvolver:
    """Fixed-point deconvolution of the PSF from a binary shape mask."""

    def __init__(
        self,
        kernel: np.ndarray,
        window: Optional[np.ndarray] = None,
        max_iterations: int = 6,
        divergence_factor: Optional[float] = None,
        callbacks: Optional[List[IterationCallback]] = None
    ):
        """
        Initialize the deconvolver.

        Args:
            kernel: Normalized PSF kernel, already sized to the shape mask
            window: Ringing-suppression window matching the kernel
            max_iterations: Number of correction steps; there is no early exit
            divergence_factor: Log a warning when the residual grows by more
                than this factor from one iteration to the next
            callbacks: Called as callback(iteration, programmed, actual) after
                every iteration
        """
        self.convolver = FFTConvolver(kernel, window)
        self.max_iterations = max_iterations
        self.divergence_factor = divergence_factor
        self.callbacks = list(callbacks or [])
        self.history: List[Dict[str, float]] = []

    def residual(self, shape_mask: np.ndarray, dose_shape: np.ndarray) -> Tuple[float, float]:
        """Max and RMS shortfall between desired and delivered dose inside the shapes."""
        inside = shape_mask > 0
        if not inside.any():
            return 0.0, 0.0
        diff = (shape_mask - dose_shape)[inside]
        return float(np.max(np.abs(diff))), float(np.sqrt(np.mean(diff ** 2)))

    def run(self, shape_mask: np.ndarray) -> np.ndarray:
        """
        Run the deconvolution.

        Args:
            shape_mask: Boolean mask, True inside the shapes, same shape as
                the kernel

        Returns:
            Programmed dose map in units of the dose to clear. Values may lie
            outside [0, 1].
        """
        shape = shape_mask.astype(np.float64)
        dose_programmed = shape.copy()  # Dose to clear everywhere inside the shapes
        self.history = []

        for iteration in range(1, self.max_iterations + 1):
            dose_actual = self.convolver(dose_programmed)
            dose_shape = dose_actual * shape  # Only the dose inside the shapes matters
            dose_programmed = dose_programmed + (shape - dose_shape)

            max_residual, rms_residual = self.residual(shape, dose_shape)
            self.history.append({
                'iteration': iteration,
                'max_residual': max_residual,
                'rms_residual': rms_residual,
                'max_dose': float(dose_programmed.max()),
                'min_dose': float(dose_programmed.min()),
            })
            logger.debug(f"Iteration {iteration}, max residual: {max_residual:.6f}, "
                         f"rms residual: {rms_residual:.6f}")
            self._check_divergence()

            for callback in self.callbacks:
                callback(iteration, dose_programmed, dose_actual)

        return dose_programmed

    def _check_divergence(self) -> None:
        if self.divergence_factor is None or len(self.history) < 2:
            return
        previous = self.history[-2]['max_residual']
        current = self.history[-1]['max_residual']
        if previous > 0 and current > self.divergence_factor * previous:
            logger.warning(f"Deconvolution residual grew from {previous:.4g} to {current:.4g} "
                           f"at iteration {self.history[-1]['iteration']}, the correction may be diverging")


def deconvolve(
    shape_mask: np.ndarray,
    kernel: np.ndarray,
    window: Optional[np.ndarray] = None,
    max_iterations: int = 6,
    divergence_factor: Optional[float] = None,
    callbacks: Optional[List[IterationCallback]] = None
) -> Tuple[np.ndarray, List[Dict[str, float]]]:
    """
    Convenience wrapper around DoseDeconvolver.

    Returns:
        Tuple of (programmed dose map, per-iteration history)
    """
    deconvolver = DoseDeconvolver(kernel, window, max_iterations, divergence_factor, callbacks)
    dose = deconvolver.run(shape_mask)
    return dose, deconvolver.history


def crop_padding(values: np.ndarray, pads: Tuple[int, int]) -> np.ndarray:
    """Remove `pads` = (rows, cols) from both ends of each axis."""
    rows, cols = pads
    n_rows, n_cols = values.shape
    return values[rows:n_rows - rows, cols:n_cols - cols]


def mark_invalid(dose: np.ndarray) -> np.ndarray:
    """
    Replace unrealizable doses by NaN.

    Zero and negative programmed doses cannot be written and are excluded from
    layering rather than clamped.

    Args:
        dose: Programmed dose map

    Returns:
        Float copy of the map with NaN where dose <= 0
    """
    dose = np.array(dose, dtype=np.float64)
    dose[dose <= 0] = np.nan
    return dose
