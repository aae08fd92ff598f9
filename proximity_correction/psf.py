"""Point-spread function module for the proximity correction pipeline.

The electron scattering in resist is described by the usual two-Gaussian
model: a narrow forward-scattering Gaussian of width alpha and a wide
backscattering Gaussian of width beta, weighted by eta. This module samples
that model on the correction grid, builds the Gaussian window used to suppress
ringing in the frequency-domain convolution, and reconciles the kernel size
with the occupancy grid.
"""

import logging
import os
import numpy as np
from typing import NamedTuple, Tuple
from scipy import io as sio

from proximity_correction.exceptions import PSFError

logger = logging.getLogger(__name__)


class PSFDescriptor(NamedTuple):
    """Two-Gaussian scattering model.

    Attributes:
        eta: Backscatter to forward-scatter energy ratio
        alpha: Forward-scattering range in microns
        beta: Backscattering range in microns
        range: Radius over which the PSF is sampled, in microns
        label: Short description, used to name output files
    """
    eta: float
    alpha: float
    beta: float
    range: float
    label: str = 'psf'

    def validate(self) -> 'PSFDescriptor':
        if not np.isfinite([self.eta, self.alpha, self.beta, self.range]).all():
            raise PSFError(f"PSF parameters must be finite: {self!r}")
        if self.eta < 0:
            raise PSFError(f"eta must not be negative, got {self.eta}")
        if self.alpha <= 0 or self.beta <= 0:
            raise PSFError(f"alpha and beta must be positive, got {self.alpha}, {self.beta}")
        if self.range <= 0:
            raise PSFError(f"PSF range must be positive, got {self.range}")
        return self


def psf_profile(r2: np.ndarray, descriptor: PSFDescriptor) -> np.ndarray:
    """
    Evaluate the two-Gaussian PSF at squared radii.

    Args:
        r2: Squared distances from the exposure point in square microns
        descriptor: Scattering model

    Returns:
        PSF values (not normalized to the grid)
    """
    eta, alpha, beta = descriptor.eta, descriptor.alpha, descriptor.beta
    forward = np.exp(-r2 / alpha ** 2) / (np.pi * alpha ** 2)
    backscatter = eta * np.exp(-r2 / beta ** 2) / (np.pi * beta ** 2)
    return (forward + backscatter) / (1 + eta)


def build_psf_kernel(descriptor: PSFDescriptor, dx: float) -> np.ndarray:
    """
    Sample the PSF on an odd square grid and normalize it.

    The kernel has half-width round(range / dx) points and sums to one.

    Args:
        descriptor: Scattering model
        dx: Grid step in microns

    Returns:
        2D kernel array of shape (2n + 1, 2n + 1)
    """
    descriptor.validate()
    if not np.isfinite(dx) or dx <= 0:
        raise PSFError(f"Grid step must be positive, got {dx}")

    n = int(round(descriptor.range / dx))
    offsets = np.arange(-n, n + 1) * dx
    xpsf, ypsf = np.meshgrid(offsets, offsets)
    kernel = psf_profile(xpsf ** 2 + ypsf ** 2, descriptor)

    total = kernel.sum()
    if not np.isfinite(total) or total <= 0:
        raise PSFError(f"PSF {descriptor.label!r} cannot be normalized at dx = {dx:g}")
    return kernel / total


def build_window(shape: Tuple[int, int], window_val: float) -> np.ndarray:
    """
    Centered Gaussian window that damps high spatial frequencies.

    Args:
        shape: (rows, cols) of the kernel, both odd
        window_val: Smoothing factor; larger values smooth more

    Returns:
        2D window with its peak of 1 at the center
    """
    if window_val <= 0:
        raise PSFError(f"window_val must be positive, got {window_val}")
    half_rows = (shape[0] - 1) / 2
    half_cols = (shape[1] - 1) / 2
    rw = min(half_rows, half_cols)
    if rw == 0:
        return np.ones(shape)

    i, j = np.meshgrid(
        np.arange(-half_rows, half_rows + 1),
        np.arange(-half_cols, half_cols + 1),
        indexing='ij'
    )
    return np.exp(-(i ** 2 + j ** 2) / (rw / window_val) ** 2)


def reconcile_sizes(
    kernel: np.ndarray,
    occupancy: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, Tuple[int, int]]:
    """
    Bring the kernel and the occupancy grid to the same odd shape.

    Along each axis the smaller array is zero-padded symmetrically. The kernel
    is never cropped since that would cut off the physical PSF.

    Args:
        kernel: Odd-sized PSF kernel
        occupancy: Odd-sized occupancy array

    Returns:
        Tuple of (kernel, occupancy, (row_pad, col_pad)) where the pads are
        the number of zero rows/columns added on each side of the occupancy
    """
    if kernel.shape[0] % 2 == 0 or kernel.shape[1] % 2 == 0:
        raise ValueError(f"Kernel shape must be odd, got {kernel.shape}")
    if occupancy.shape[0] % 2 == 0 or occupancy.shape[1] % 2 == 0:
        raise ValueError(f"Occupancy shape must be odd, got {occupancy.shape}")

    kernel_pad = []
    occupancy_pad = []
    for axis in range(2):
        diff = occupancy.shape[axis] - kernel.shape[axis]
        kernel_pad.append((max(diff, 0) // 2,) * 2)
        occupancy_pad.append((max(-diff, 0) // 2,) * 2)

    kernel = np.pad(kernel, kernel_pad)
    occupancy = np.pad(occupancy, occupancy_pad)
    return kernel, occupancy, (occupancy_pad[0][0], occupancy_pad[1][0])


class PSFModel:
    """Discretized PSF and ringing window for one grid step."""

    def __init__(self, descriptor: PSFDescriptor, dx: float, window_val: float = 10.0):
        """
        Initialize the PSF model.

        Args:
            descriptor: Scattering model
            dx: Grid step in microns
            window_val: Smoothing factor of the ringing-suppression window
        """
        self.descriptor = descriptor
        self.dx = dx
        self.window_val = window_val
        self.kernel = build_psf_kernel(descriptor, dx)
        self.window = build_window(self.kernel.shape, window_val)

    def fit_to(self, occupancy: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, Tuple[int, int]]:
        """
        Size the kernel and window to an occupancy grid.

        Args:
            occupancy: Odd-sized occupancy array

        Returns:
            Tuple of (kernel, window, occupancy, (row_pad, col_pad)); the
            window matches the reconciled kernel shape
        """
        kernel, occupancy, pads = reconcile_sizes(self.kernel, occupancy)
        window = build_window(kernel.shape, self.window_val)
        if pads != (0, 0):
            logger.debug(f"PSF larger than pattern grid, padded grid by {pads}")
        return kernel, window, occupancy, pads


def load_psf_descriptor(path: str) -> PSFDescriptor:
    """
    Load a PSF descriptor from a file.

    MATLAB ``.mat`` files must hold a ``psf`` struct with fields eta, alpha,
    beta, range and descr. ``.npz`` archives hold the same values under the
    keys eta, alpha, beta, range and label.

    Args:
        path: Path to a .mat or .npz file

    Returns:
        The validated descriptor
    """
    ext = os.path.splitext(path)[1].lower()
    try:
        if ext == '.mat':
            contents = sio.loadmat(path, squeeze_me=True, struct_as_record=False)
            if 'psf' not in contents:
                raise PSFError(f"{path} does not contain a 'psf' struct")
            psf = contents['psf']
            descriptor = PSFDescriptor(
                eta=float(psf.eta),
                alpha=float(psf.alpha),
                beta=float(psf.beta),
                range=float(psf.range),
                label=str(getattr(psf, 'descr', 'psf'))
            )
        elif ext == '.npz':
            with np.load(path) as data:
                descriptor = PSFDescriptor(
                    eta=float(data['eta']),
                    alpha=float(data['alpha']),
                    beta=float(data['beta']),
                    range=float(data['range']),
                    label=str(data['label']) if 'label' in data else 'psf'
                )
        else:
            raise PSFError(f"Unsupported PSF file type {ext!r}, expected .mat or .npz")
    except (OSError, KeyError, AttributeError, ValueError) as e:
        raise PSFError(f"Could not read PSF descriptor from {path}: {e}")

    logger.info(f"Loaded PSF {descriptor.label!r}: eta = {descriptor.eta:g}, "
                f"alpha = {descriptor.alpha:g}, beta = {descriptor.beta:g}, range = {descriptor.range:g}")
    return descriptor.validate()


def save_psf_descriptor(descriptor: PSFDescriptor, path: str) -> None:
    """Save a PSF descriptor to a compressed numpy archive."""
    np.savez_compressed(
        path,
        eta=descriptor.eta,
        alpha=descriptor.alpha,
        beta=descriptor.beta,
        range=descriptor.range,
        label=descriptor.label
    )
