"""
proximity_correction.plot
-------------------------
Figures of the dose map and the fractured layers.
API:
    - parse_slice
    - plot_dose_map
    - plot_layer_boundaries
    - FigureObserver
"""

import logging
import os
import numpy as np
import matplotlib.pyplot as plt

from proximity_correction.core import CorrectionObserver
from proximity_correction.grid import Grid
from proximity_correction.output import assemble_layer

logger = logging.getLogger(__name__)


def parse_slice(slice_str: str, arr_shape: tuple) -> dict:
    """
    Parse a slice string like 'h,10:20:at15' or 'v,5:30:at20'.
    Returns: dict with keys: type ('h' or 'v'), start, end, at
    """
    try:
        parts = slice_str.split(',')
        if len(parts) != 2 or ':at' not in parts[1]:
            raise ValueError("expected '<h|v>,<start>:<end>:at<index>'")
        axis, rest = parts
        rng, at = rest.rsplit(':at', 1)
        axis = axis.strip().lower()
        if axis not in ('h', 'v'):
            raise ValueError(f"invalid axis {axis!r}")
        at_idx = int(at)
        full = arr_shape[1] if axis == 'h' else arr_shape[0]
        if ':' in rng:
            start, end = rng.split(':')
            start = int(start) if start else 0
            end = int(end) if end else full
        else:
            start = int(rng) if rng else 0
            end = start + 1 if rng else full
    except ValueError as e:
        raise ValueError(f"Invalid slice string '{slice_str}': {e}")
    limit = arr_shape[0] if axis == 'h' else arr_shape[1]
    if not 0 <= at_idx < limit:
        raise IndexError(f"Slice index {at_idx} out of bounds for shape {arr_shape}")
    return {'type': axis, 'start': start, 'end': end, 'at': at_idx}


def plot_dose_map(
    dose: Grid,
    slices: list = None,
    save_path: str = None,
    cmap: str = 'jet',
    dvals: list = None
):
    """
    Plot the programmed dose map and optional 1D profiles through it.
    Args:
        dose: dose Grid, NaN where the dose is invalid
        slices: list of slice dicts from parse_slice
        save_path: path to save figure
        cmap: colormap for imshow
        dvals: dose thresholds drawn as contours on the map
    Returns:
        the matplotlib figure
    """
    slices = slices or []
    values = dose.values
    x, y = dose.x_coords, dose.y_coords
    extent = (x[0] - dose.dx / 2, x[-1] + dose.dx / 2, y[0] - dose.dx / 2, y[-1] + dose.dx / 2)

    nrows = 1 + len(slices)
    fig, axes = plt.subplots(nrows, 1, squeeze=False, figsize=(6, 4 * nrows))
    ax = axes[0, 0]
    im = ax.imshow(values, origin='lower', extent=extent, cmap=cmap)
    fig.colorbar(im, ax=ax, fraction=0.046, pad=0.04, label='dose / dose to clear')
    if dvals is not None and np.isfinite(values).any():
        ax.contour(x, y, np.nan_to_num(values), levels=sorted(dvals), colors='k', linewidths=0.5)
    ax.set_title('Programmed dose')
    ax.set_xlabel('x (um)')
    ax.set_ylabel('y (um)')

    for j, slc in enumerate(slices):
        ax = axes[j + 1, 0]
        if slc['type'] == 'h':
            data = values[slc['at'], slc['start']:slc['end']]
            ax.plot(x[slc['start']:slc['end']], data)
            ax.set_title(f"y = {y[slc['at']]:g} um")
            ax.set_xlabel('x (um)')
        else:
            data = values[slc['start']:slc['end'], slc['at']]
            ax.plot(y[slc['start']:slc['end']], data)
            ax.set_title(f"x = {x[slc['at']]:g} um")
            ax.set_xlabel('y (um)')
        ax.set_ylabel('dose')
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path)
        logger.info(f"Figure saved to {save_path}")
    return fig


def plot_layer_boundaries(geometry: list, save_path: str = None):
    """
    Plot the polygons of every layer, one colour per layer.
    Args:
        geometry: list of LayerGeometry
        save_path: path to save figure
    Returns:
        the matplotlib figure
    """
    fig, ax = plt.subplots(figsize=(6, 6))
    for layer in geometry:
        color = f'C{(layer.index - 1) % 10}'
        for k, polygon in enumerate(layer.polygons):
            closed = np.vstack([polygon, polygon[:1]])
            label = f'{layer.index}: {layer.dose:.3f}' if k == 0 else None
            ax.fill(closed[:, 0], closed[:, 1], color=color, alpha=0.4, linewidth=0)
            ax.plot(closed[:, 0], closed[:, 1], color=color, linewidth=0.5, label=label)
    ax.set_aspect('equal')
    ax.set_xlabel('x (um)')
    ax.set_ylabel('y (um)')
    if any(layer.polygons for layer in geometry):
        ax.legend(title='layer: dose', fontsize=8)
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path)
        logger.info(f"Figure saved to {save_path}")
    return fig


class FigureObserver(CorrectionObserver):
    """Saves the dose map and every fractured layer as PNG files."""

    def __init__(self, output_dir: str, dvals: list = None):
        self.output_dir = output_dir
        self.dvals = dvals
        self.saved = []
        os.makedirs(output_dir, exist_ok=True)

    def _save(self, fig, name: str) -> None:
        path = os.path.join(self.output_dir, name)
        fig.savefig(path)
        plt.close(fig)
        self.saved.append(path)

    def on_dose_map(self, dose: Grid, shape_mask: np.ndarray) -> None:
        self._save(plot_dose_map(dose, dvals=self.dvals), 'dose_map.png')

    def on_layer_fractured(self, layer, grid: Grid) -> None:
        self._save(plot_layer_boundaries([assemble_layer(layer, grid)]), f'layer_{layer.index:02d}.png')
