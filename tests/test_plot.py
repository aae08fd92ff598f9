import os

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pytest

from proximity_correction.fracture import fracture_layer
from proximity_correction.grid import Grid
from proximity_correction.layers import build_layers
from proximity_correction.output import assemble_layers
from proximity_correction.plot import FigureObserver, parse_slice, plot_dose_map, plot_layer_boundaries


def make_dose():
    rows, cols = np.indices((31, 41))
    values = 1.0 + 0.03 * np.hypot(rows - 15, cols - 20)
    values[0, :] = np.nan
    return Grid(values, origin=(0.0, 0.0), dx=0.1)


def test_parse_slice():
    assert parse_slice("h,10:20:at15", (30, 40)) == {'type': 'h', 'start': 10, 'end': 20, 'at': 15}
    assert parse_slice("v,:at5", (30, 40)) == {'type': 'v', 'start': 0, 'end': 30, 'at': 5}
    with pytest.raises(ValueError):
        parse_slice("d,1:2:at3", (30, 40))
    with pytest.raises(IndexError):
        parse_slice("h,1:2:at30", (30, 40))


def test_dose_map_figure(tmp_path):
    dose = make_dose()
    slices = [parse_slice("h,5:35:at15", dose.shape), parse_slice("v,:at20", dose.shape)]
    path = str(tmp_path / 'dose.png')
    fig = plot_dose_map(dose, slices, save_path=path, dvals=[1.2, 1.4])
    assert os.path.exists(path)
    assert len(fig.axes) == 4  # map, colorbar and two profiles


def test_layer_figure(tmp_path):
    dose = make_dose()
    layers = build_layers(dose.values, [1.2, 1.4])
    for layer in layers:
        fracture_layer(layer)
    path = str(tmp_path / 'layers.png')
    plot_layer_boundaries(assemble_layers(layers, dose), save_path=path)
    assert os.path.exists(path)


def test_figure_observer(tmp_path):
    dose = make_dose()
    observer = FigureObserver(str(tmp_path / 'figures'), dvals=[1.2, 1.4])
    observer.on_dose_map(dose, np.isfinite(dose.values))
    layers = build_layers(dose.values, [1.2, 1.4])
    for layer in layers:
        fracture_layer(layer)
        observer.on_layer_fractured(layer, dose)
    names = sorted(os.path.basename(p) for p in observer.saved)
    assert names == ['dose_map.png', 'layer_01.png', 'layer_02.png']
    assert all(os.path.exists(p) for p in observer.saved)
