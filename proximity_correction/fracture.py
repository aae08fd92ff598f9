"""Fracturing module for the proximity correction pipeline.

Each dose layer's raster mask is turned into closed polygons for the pattern
generator. Pattern-generation tools limit the number of vertices per polygon
(200 for NPGS / DesignCAD), so the mask is processed in square subfields and
the subfield size is reduced whenever a polygon comes out too large.

Boundaries follow the cell edges of the mask. A boundary vertex is a cell
corner, i.e. it has half-integer (row, col) grid indices, and a polygon
covers exactly the cells of the region it was traced from. Neighbouring
subfields therefore share their edges exactly, without gaps or overlap.
"""

import logging
import numpy as np
from typing import Iterator, List, NamedTuple, Optional, Sequence, Tuple
from scipy import ndimage
from skimage import measure

from proximity_correction.exceptions import FractureError
from proximity_correction.grid import polygon_area
from proximity_correction.layers import DoseLayer

logger = logging.getLogger(__name__)

MAX_VERTICES = 200


class Boundary:
    """Closed polygon in (row, col) grid-index coordinates."""

    def __init__(self, vertices: np.ndarray, hole_count: int = 0):
        """
        Initialize the boundary.

        Args:
            vertices: (n, 2) array of (row, col) vertices, implicitly closed
            hole_count: Number of holes merged into the polygon
        """
        self.vertices = np.asarray(vertices, dtype=float)
        self.hole_count = hole_count

    def __len__(self) -> int:
        return len(self.vertices)

    @property
    def area(self) -> float:
        """Enclosed area in cells; merged holes are subtracted."""
        return abs(polygon_area(self.vertices))

    def translated(self, offset: Tuple[float, float]) -> 'Boundary':
        return Boundary(self.vertices + np.asarray(offset, dtype=float), self.hole_count)

    def __repr__(self) -> str:
        return f"Boundary(vertices={len(self)}, holes={self.hole_count})"


class FractureTile(NamedTuple):
    """Index range [row_start, row_stop) x [col_start, col_stop) of a mask."""
    row_start: int
    row_stop: int
    col_start: int
    col_stop: int


class TracedContour(NamedTuple):
    """Closed contour traced from a padded tile.

    Attributes:
        midpoints: Closed list of crack midpoints as returned by the tracer
        corners: Cell-corner polygon through the same cracks
        label: Connected component of the mask the contour borders
        area: Signed area of the corner polygon
    """
    midpoints: np.ndarray
    corners: np.ndarray
    label: int
    area: float


class FractureResult(NamedTuple):
    boundaries: List[Boundary]
    subfield_size: int
    attempts: int


def iter_tiles(shape: Tuple[int, int], tile_size: int) -> Iterator[FractureTile]:
    """
    Cover a mask with square tiles in row-major order.

    Args:
        shape: (rows, cols) of the mask
        tile_size: Tile edge in cells; the last row/column of tiles may be smaller

    Yields:
        FractureTile ranges
    """
    rows, cols = shape
    n_tile_rows = int(np.ceil(rows / tile_size))
    n_tile_cols = int(np.ceil(cols / tile_size))
    for i in range(n_tile_rows):
        for j in range(n_tile_cols):
            yield FractureTile(
                i * tile_size, min((i + 1) * tile_size, rows),
                j * tile_size, min((j + 1) * tile_size, cols)
            )


def tile_count(shape: Tuple[int, int], tile_size: int) -> int:
    return int(np.ceil(shape[0] / tile_size) * np.ceil(shape[1] / tile_size))


def crack_corners(midpoints: np.ndarray) -> np.ndarray:
    """
    Convert a closed marching-squares contour into a cell-corner polygon.

    On a binary image every contour point is the midpoint of a crack between
    a set and an unset cell, and consecutive points lie in the same 2x2
    marching square. The corner shared by two consecutive cracks is the
    center of that square.

    Args:
        midpoints: (n, 2) closed list (first point repeated last)

    Returns:
        (n - 1, 2) array of corner vertices, implicitly closed
    """
    pts = np.round(np.asarray(midpoints, dtype=float) * 2) / 2
    return np.floor(np.minimum(pts[:-1], pts[1:])) + 0.5


def _contour_label(labels: np.ndarray, midpoint: np.ndarray) -> int:
    """Label of the set cell next to a crack midpoint."""
    r, c = midpoint
    if r != np.floor(r):
        cells = [(int(np.floor(r)), int(c)), (int(np.ceil(r)), int(c))]
    else:
        cells = [(int(r), int(np.floor(c))), (int(r), int(np.ceil(c)))]
    for cell in cells:
        if labels[cell] > 0:
            return int(labels[cell])
    return 0


def trace_contours(padded: np.ndarray) -> Tuple[List[TracedContour], List[int]]:
    """
    Trace all region boundaries of a zero-framed binary mask.

    Regions are 4-connected, matching the marching-squares default of joining
    unset cells diagonally.

    Args:
        padded: Boolean mask with a frame of unset cells

    Returns:
        Tuple of (contours, parents). parents[k] is the index of the contour
        enclosing hole k, or -1 when contour k is an outer boundary.
    """
    labels, _ = ndimage.label(padded)
    contours = []
    for points in measure.find_contours(padded.astype(float), 0.5):
        points = np.round(points * 2) / 2
        if len(points) < 4 or not np.array_equal(points[0], points[-1]):
            continue
        label = _contour_label(labels, points[0])
        if label == 0:
            continue
        corners = crack_corners(points)
        contours.append(TracedContour(points, corners, label, polygon_area(corners)))

    # The outer boundary of a region is its largest contour; every other
    # contour bordering the same region is one of its holes
    outer_of = {}
    for k, contour in enumerate(contours):
        best = outer_of.get(contour.label)
        if best is None or abs(contour.area) > abs(contours[best].area):
            outer_of[contour.label] = k

    parents = [-1 if outer_of[c.label] == k else outer_of[c.label] for k, c in enumerate(contours)]
    return contours, parents


def is_simple_trace(midpoints: np.ndarray) -> bool:
    """True when the only repeated point of a closed trace is its closing point."""
    unique = np.unique(midpoints, axis=0)
    return len(unique) == len(midpoints) - 1


def merge_holes(outer: np.ndarray, holes: Sequence[np.ndarray]) -> np.ndarray:
    """
    Merge holes into their enclosing polygon through zero-width slits.

    Each hole is spliced in at the pair of vertices (polygon, hole) closest to
    each other: the result walks the polygon to the bridge vertex, around the
    hole, back across the bridge and on along the polygon.

    Args:
        outer: (n, 2) enclosing polygon
        holes: (m, 2) hole polygons

    Returns:
        New (n + sum(m + 2), 2) polygon
    """
    polygon = np.asarray(outer, dtype=float)
    outer_sign = np.sign(polygon_area(polygon))
    ordered = sorted(holes, key=lambda h: (h[:, 0].min(), h[:, 1].min()))
    for hole in ordered:
        hole = np.asarray(hole, dtype=float)
        if np.sign(polygon_area(hole)) == outer_sign:
            hole = hole[::-1]
        dist = ((polygon[:, None, :] - hole[None, :, :]) ** 2).sum(axis=-1)
        i, j = np.unravel_index(np.argmin(dist), dist.shape)
        loop = np.roll(hole, -j, axis=0)
        polygon = np.vstack([polygon[:i + 1], loop, loop[:1], polygon[i:]])
    return polygon


def simplify_boundary(vertices: np.ndarray, tol: float = 1e-9) -> np.ndarray:
    """
    Remove repeated and collinear vertices from a closed polygon.

    A vertex is dropped when it repeats its predecessor or when the polygon
    continues straight through it. Vertices where the polygon turns back on
    itself (the ends of hole slits) are kept.

    Args:
        vertices: (n, 2) implicitly closed polygon

    Returns:
        Simplified polygon
    """
    pts = np.asarray(vertices, dtype=float)
    while len(pts) >= 3:
        d_in = pts - np.roll(pts, 1, axis=0)
        d_out = np.roll(pts, -1, axis=0) - pts
        cross = d_in[:, 0] * d_out[:, 1] - d_in[:, 1] * d_out[:, 0]
        dot = (d_in * d_out).sum(axis=1)
        repeated = np.all(np.abs(d_in) < tol, axis=1)
        straight = (np.abs(cross) < tol) & (dot > 0)
        redundant = repeated | straight
        if not redundant.any():
            break
        pts = pts[~redundant]
    return pts


def tile_boundaries(sub_mask: np.ndarray) -> List[Boundary]:
    """
    Boundaries of one tile, holes merged and simplified.

    The tile is padded by one unset cell on every side before tracing, so all
    contours close; the returned vertices are in padded-tile coordinates.

    Args:
        sub_mask: Boolean mask of the tile

    Returns:
        List of Boundary objects
    """
    padded = np.pad(sub_mask.astype(bool), 1)
    contours, parents = trace_contours(padded)

    boundaries = []
    for k, contour in enumerate(contours):
        if parents[k] != -1:
            continue
        holes = [
            contours[h].corners for h, parent in enumerate(parents)
            if parent == k and abs(contours[h].area) > 0 and is_simple_trace(contours[h].midpoints)
        ]
        merged = merge_holes(contour.corners, holes) if holes else contour.corners
        simplified = simplify_boundary(merged)
        if len(simplified) >= 3:
            boundaries.append(Boundary(simplified, len(holes)))
    return boundaries


def fracture_pass(mask: np.ndarray, tile_size: int, max_vertices: int = MAX_VERTICES) -> Optional[List[Boundary]]:
    """
    Fracture a mask with a fixed tile size.

    Args:
        mask: Boolean layer mask
        tile_size: Tile edge in cells
        max_vertices: Vertex cap per boundary

    Returns:
        Boundaries in mask (row, col) coordinates, or None as soon as one
        boundary exceeds the vertex cap
    """
    boundaries = []
    for tile in iter_tiles(mask.shape, tile_size):
        sub_mask = mask[tile.row_start:tile.row_stop, tile.col_start:tile.col_stop]
        if not sub_mask.any():
            continue
        for boundary in tile_boundaries(sub_mask):
            if len(boundary) > max_vertices:
                logger.debug(f"Boundary with {len(boundary)} vertices in tile {tile}")
                return None
            # Remove the one-cell frame and move to the tile origin
            boundaries.append(boundary.translated((tile.row_start - 1, tile.col_start - 1)))
    return boundaries


def fracture_mask(
    mask: np.ndarray,
    subfield_size: int = 50,
    max_vertices: int = MAX_VERTICES,
    max_attempts: int = 16
) -> FractureResult:
    """
    Fracture a mask into polygons of at most max_vertices vertices.

    Every overflow discards the pass and restarts from the first tile with
    subfield size ``round(subfield_size / attempt)``.

    Args:
        mask: Boolean layer mask
        subfield_size: Initial tile edge in cells
        max_vertices: Vertex cap per boundary
        max_attempts: Number of tile sizes tried before giving up

    Returns:
        FractureResult with the boundaries, the tile size that succeeded and
        the number of attempts

    Raises:
        FractureError: If no tile size within max_attempts meets the cap
    """
    mask = np.asarray(mask, dtype=bool)
    if subfield_size < 1:
        raise FractureError(f"subfield_size must be at least 1, got {subfield_size}")

    attempt = 1
    tile_size = subfield_size
    while True:
        logger.debug(f"Trying subfield size of {tile_size}. "
                     f"There are a total of {tile_count(mask.shape, tile_size)} subfields...")
        boundaries = fracture_pass(mask, tile_size, max_vertices)
        if boundaries is not None:
            return FractureResult(boundaries, tile_size, attempt)

        if attempt >= max_attempts or tile_size == 1:
            raise FractureError(
                f"Boundaries still exceed {max_vertices} vertices after {attempt} attempt(s) "
                f"(last subfield size {tile_size})"
            )
        attempt += 1
        tile_size = max(1, int(round(subfield_size / attempt)))
        logger.info(f"Large boundaries found. Reducing subfield size to {tile_size} and retrying...")


def fracture_layer(
    layer: DoseLayer,
    subfield_size: int = 50,
    max_vertices: int = MAX_VERTICES,
    max_attempts: int = 16
) -> DoseLayer:
    """
    Fracture a DoseLayer's mask and attach the boundaries to it.

    Args:
        layer: DoseLayer to fracture
        subfield_size: Initial tile edge in cells
        max_vertices: Vertex cap per boundary
        max_attempts: Number of tile sizes tried before giving up

    Returns:
        The same layer, with its boundaries set
    """
    try:
        result = fracture_mask(layer.mask, subfield_size, max_vertices, max_attempts)
    except FractureError as e:
        raise FractureError(f"Layer {layer.index}: {e}")
    layer.boundaries = result.boundaries
    logger.info(f"Layer {layer.index}: {len(result.boundaries)} polygons "
                f"(subfield size {result.subfield_size})")
    return layer
