"""Sampled grids and input pattern containers.

A `Grid` stores a 2D array together with the origin and step of its sampling,
so array indices can always be mapped back to coordinates in microns. A
`PatternSet` holds the closed input polygons in object-id order.
"""

import numpy as np
from typing import Iterator, List, Sequence, Tuple

from proximity_correction.exceptions import GeometryError


def polygon_area(vertices: np.ndarray) -> float:
    """Signed shoelace area of an implicitly closed polygon."""
    pts = np.asarray(vertices, dtype=float)
    if len(pts) < 3:
        return 0.0
    x, y = pts[:, 0], pts[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


class PatternSet:
    """Ordered collection of closed polygons read from the source geometry."""

    def __init__(self, polygons: Sequence[np.ndarray]):
        """
        Initialize the pattern set.

        Args:
            polygons: Sequence of (n, 2) arrays of (x, y) vertices in microns.
                Polygon i belongs to object id i + 1.
        """
        self.polygons: List[np.ndarray] = []
        for i, polygon in enumerate(polygons):
            pts = np.asarray(polygon, dtype=float)
            if pts.ndim != 2 or pts.shape[1] != 2:
                raise GeometryError(f"Polygon {i + 1} must be an (n, 2) array, got shape {pts.shape}")
            # Drop an explicit closing vertex, the polygon is closed implicitly
            if len(pts) > 1 and np.array_equal(pts[0], pts[-1]):
                pts = pts[:-1]
            self.polygons.append(pts)

    @classmethod
    def from_triples(cls, triples: np.ndarray) -> 'PatternSet':
        """
        Build a pattern set from (objectId, x, y) rows.

        Each contiguous run of one object id forms one polygon. Ids must start
        at 1 and increase by one from run to run.

        Args:
            triples: (N, 3) array of object id, x, y

        Returns:
            The pattern set

        Raises:
            GeometryError: If the input is empty or the ids are not contiguous
        """
        data = np.asarray(triples, dtype=float)
        if data.size == 0:
            raise GeometryError("No geometry found in input")
        if data.ndim != 2 or data.shape[1] != 3:
            raise GeometryError(f"Geometry must be (objectId, x, y) rows, got shape {data.shape}")

        ids = data[:, 0]
        if not np.all(ids == np.round(ids)):
            raise GeometryError("Object ids must be integers")
        starts = np.flatnonzero(np.r_[True, ids[1:] != ids[:-1]])
        run_ids = ids[starts].astype(int)
        expected = np.arange(1, len(run_ids) + 1)
        if not np.array_equal(run_ids, expected):
            raise GeometryError(
                f"Object ids must be contiguous starting at 1, got runs {run_ids.tolist()[:10]}"
            )

        polygons = np.split(data[:, 1:], starts[1:])
        return cls(polygons)

    def __len__(self) -> int:
        return len(self.polygons)

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self.polygons)

    def __getitem__(self, index: int) -> np.ndarray:
        return self.polygons[index]

    def bounds(self) -> Tuple[float, float, float, float]:
        """Return (min_x, min_y, max_x, max_y) over all vertices."""
        if not self.polygons:
            raise GeometryError("Pattern set is empty")
        allpts = np.vstack(self.polygons)
        min_x, min_y = allpts.min(axis=0)
        max_x, max_y = allpts.max(axis=0)
        return float(min_x), float(min_y), float(max_x), float(max_y)

    def areas(self) -> np.ndarray:
        return np.array([abs(polygon_area(p)) for p in self.polygons])


class Grid:
    """2D array sampled at uniform step dx from a known origin.

    Row index maps to y and column index to x:
    ``(row, col) -> (x0 + col * dx, y0 + row * dx)``.
    """

    def __init__(self, values: np.ndarray, origin: Tuple[float, float], dx: float):
        """
        Initialize the grid.

        Args:
            values: 2D array of samples, indexed [row, col]
            origin: (x0, y0) coordinates of sample [0, 0] in microns
            dx: Sampling step in microns
        """
        values = np.asarray(values)
        if values.ndim != 2:
            raise ValueError(f"Grid values must be 2D, got {values.ndim}D")
        self.values = values
        self.origin = (float(origin[0]), float(origin[1]))
        self.dx = float(dx)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def is_odd(self) -> bool:
        """True when both axis lengths are odd."""
        rows, cols = self.shape
        return bool(rows % 2 and cols % 2)

    @property
    def x_coords(self) -> np.ndarray:
        return self.origin[0] + self.dx * np.arange(self.shape[1])

    @property
    def y_coords(self) -> np.ndarray:
        return self.origin[1] + self.dx * np.arange(self.shape[0])

    def index_to_coords(self, indices: np.ndarray) -> np.ndarray:
        """
        Map (row, col) grid indices to (x, y) coordinates.

        Fractional indices are allowed; boundary vertices sit on cell corners
        at half-integer indices.

        Args:
            indices: (n, 2) array of (row, col)

        Returns:
            (n, 2) array of (x, y) in microns
        """
        idx = np.asarray(indices, dtype=float)
        x = self.origin[0] + idx[:, 1] * self.dx
        y = self.origin[1] + idx[:, 0] * self.dx
        return np.column_stack([x, y])

    def crop(self, rows: Tuple[int, int], cols: Tuple[int, int]) -> 'Grid':
        """
        Remove rows and columns from the edges of the grid.

        Args:
            rows: Number of rows to drop at the (low, high) end
            cols: Number of columns to drop at the (low, high) end

        Returns:
            New grid with the origin moved to the first kept sample
        """
        n_rows, n_cols = self.shape
        values = self.values[rows[0]:n_rows - rows[1], cols[0]:n_cols - cols[1]]
        origin = (self.origin[0] + cols[0] * self.dx, self.origin[1] + rows[0] * self.dx)
        return Grid(values, origin, self.dx)

    def with_values(self, values: np.ndarray) -> 'Grid':
        """Return a grid with the same sampling and new values."""
        if np.shape(values) != self.shape:
            raise ValueError(f"Values shape {np.shape(values)} does not match grid shape {self.shape}")
        return Grid(values, self.origin, self.dx)

    def __repr__(self) -> str:
        return f"Grid(shape={self.shape}, origin={self.origin}, dx={self.dx})"
