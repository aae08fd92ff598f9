"""Rasterization module for the proximity correction pipeline.

This module turns the closed input polygons into an occupancy grid: every grid
point inside a polygon is counted, so places covered by overlapping polygons
carry counts above one. The sampled domain is the pattern bounding box plus a
margin that keeps the backscattering tail away from the domain edge, and both
axes always have an odd number of points.
"""

import logging
import numpy as np
from typing import Optional, Tuple
from skimage import measure

from proximity_correction.exceptions import GeometryError
from proximity_correction.grid import Grid, PatternSet

logger = logging.getLogger(__name__)

# Acceptable point count band around the target, as fractions of the target
RESOLUTION_BAND = (0.8, 1.2)


class RasterizedPattern:
    """Occupancy grid of a pattern together with its sampling bookkeeping."""

    def __init__(self, occupancy: Grid, margin_points: int):
        """
        Initialize the rasterized pattern.

        Args:
            occupancy: Grid of integer overlap counts
            margin_points: Number of grid points added on each side as margin
        """
        self.occupancy = occupancy
        self.margin_points = margin_points

    @property
    def shape_mask(self) -> np.ndarray:
        """Boolean mask, True inside at least one polygon."""
        return self.occupancy.values > 0

    @property
    def dx(self) -> float:
        return self.occupancy.dx

    @property
    def point_count(self) -> int:
        rows, cols = self.occupancy.shape
        return rows * cols


def resolution_exponent(point_count: float, target_points: float) -> int:
    """
    Power of two by which the grid step is rescaled.

    Multiplying the step by ``2**k`` divides the point count by roughly
    ``4**k``; k is the smallest integer with ``4**k >= point_count / target``.

    Args:
        point_count: Number of grid points at the current step
        target_points: Desired number of grid points

    Returns:
        The exponent k
    """
    if point_count <= 0 or target_points <= 0:
        raise ValueError("Point counts must be positive")
    return int(np.ceil(np.log2(np.sqrt(point_count / target_points))))


def _axis_length(low: float, high: float, dx: float) -> int:
    """Number of samples of low:dx:high."""
    return int(np.floor((high - low) / dx + 1e-9)) + 1


def grid_layout(
    bounds: Tuple[float, float, float, float],
    dx: float,
    margin: float = 5.0
) -> Tuple[Tuple[float, float], Tuple[int, int], int]:
    """
    Sampling layout of the expanded bounding box.

    Args:
        bounds: (min_x, min_y, max_x, max_y) of the pattern
        dx: Grid step in microns
        margin: Border added on every side in microns

    Returns:
        Tuple of ((x0, y0) origin, (rows, cols) shape, margin in grid points).
        Both axis lengths are odd.
    """
    min_x, min_y, max_x, max_y = bounds
    margin_points = int(np.ceil(margin / dx - 1e-9))
    pad = margin_points * dx

    x0, y0 = min_x - pad, min_y - pad
    cols = _axis_length(x0, max_x + pad, dx)
    rows = _axis_length(y0, max_y + pad, dx)

    # The centered FFT convolution needs odd axis lengths
    if cols % 2 == 0:
        cols += 1
    if rows % 2 == 0:
        rows += 1
    return (x0, y0), (rows, cols), margin_points


def choose_resolution(
    bounds: Tuple[float, float, float, float],
    dx: float,
    target_points: float,
    margin: float = 5.0
) -> float:
    """
    Rescale dx by a power of two when the point count is outside the target band.

    Args:
        bounds: (min_x, min_y, max_x, max_y) of the pattern
        dx: Initial grid step
        target_points: Desired number of grid points
        margin: Border added on every side in microns

    Returns:
        The grid step to use
    """
    _, (rows, cols), _ = grid_layout(bounds, dx, margin)
    points = rows * cols
    low, high = RESOLUTION_BAND[0] * target_points, RESOLUTION_BAND[1] * target_points
    if low <= points <= high:
        return dx

    k = resolution_exponent(points, target_points)
    if k == 0:
        logger.info(f"{points} grid points is outside the target band around {target_points:.0f}, "
                    f"keeping dx = {dx:g}")
        return dx

    new_dx = dx * 2.0 ** k
    _, (rows, cols), _ = grid_layout(bounds, new_dx, margin)
    logger.info(f"Resolution adjusted from dx = {dx:g} to dx = {new_dx:g} "
                f"({points} -> {rows * cols} grid points, target {target_points:.0f})")
    if not low <= rows * cols <= high:
        logger.info(f"{rows * cols} grid points is still outside the target band, continuing")
    return new_dx


def fill_polygon(occupancy: np.ndarray, x: np.ndarray, y: np.ndarray, polygon: np.ndarray) -> int:
    """
    Add one to every grid point inside a polygon.

    Args:
        occupancy: 2D count array, modified in place
        x: Column coordinates of the grid
        y: Row coordinates of the grid
        polygon: (n, 2) array of (x, y) vertices

    Returns:
        Number of grid points marked
    """
    if len(polygon) < 3:
        return 0

    # Only test points inside the polygon's bounding box
    min_x, min_y = polygon.min(axis=0)
    max_x, max_y = polygon.max(axis=0)
    cols = np.flatnonzero((x >= min_x - 1e-9) & (x <= max_x + 1e-9))
    rows = np.flatnonzero((y >= min_y - 1e-9) & (y <= max_y + 1e-9))
    if cols.size == 0 or rows.size == 0:
        return 0

    xx, yy = np.meshgrid(x[cols], y[rows])
    points = np.column_stack([xx.ravel(), yy.ravel()])
    inside = measure.points_in_poly(points, polygon).reshape(xx.shape)
    occupancy[np.ix_(rows, cols)] += inside
    return int(inside.sum())


def rasterize(
    patterns: PatternSet,
    dx: float,
    target_points: Optional[float] = None,
    auto_resolution: bool = False,
    margin: float = 5.0
) -> RasterizedPattern:
    """
    Rasterize a pattern set into an occupancy grid.

    Args:
        patterns: Input polygons
        dx: Nominal grid step in microns
        target_points: Target number of grid points for auto_resolution
        auto_resolution: Rescale dx once by a power of two towards target_points
        margin: Border around the bounding box in microns

    Returns:
        RasterizedPattern with the occupancy grid and margin size

    Raises:
        GeometryError: If the pattern set is empty
    """
    if patterns is None or len(patterns) == 0:
        raise GeometryError("Cannot rasterize an empty pattern set")

    bounds = patterns.bounds()
    if auto_resolution:
        if not target_points:
            raise ValueError("auto_resolution requires target_points")
        dx = choose_resolution(bounds, dx, target_points, margin)

    (x0, y0), (rows, cols), margin_points = grid_layout(bounds, dx, margin)
    x = x0 + dx * np.arange(cols)
    y = y0 + dx * np.arange(rows)
    logger.info(f"Creating {rows} x {cols} grid (spacing = {dx:g})...")

    occupancy = np.zeros((rows, cols), dtype=np.int32)
    skipped = 0
    for polygon in patterns:
        if fill_polygon(occupancy, x, y, polygon) == 0:
            skipped += 1
    if skipped:
        logger.debug(f"{skipped} polygon(s) covered no grid points")

    return RasterizedPattern(Grid(occupancy, (x0, y0), dx), margin_points)
