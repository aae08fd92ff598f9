import ezdxf
import numpy as np
import pytest

from proximity_correction.dxf_io import (
    layer_color,
    read_dose_report,
    read_dxf_triples,
    write_dose_report,
    write_layers_dxf,
)
from proximity_correction.exceptions import GeometryError, OutputError
from proximity_correction.fracture import Boundary
from proximity_correction.grid import Grid
from proximity_correction.layers import DoseLayer
from proximity_correction.output import LayerGeometry, assemble_layers, write_order


def square(x0, y0, size):
    return np.array([[x0, y0], [x0 + size, y0], [x0 + size, y0 + size], [x0, y0 + size]])


def test_assemble_maps_indices_to_microns():
    grid = Grid(np.zeros((5, 5)), origin=(10.0, 20.0), dx=0.5)
    layer = DoseLayer(1, 1.0, 1.05, np.zeros((5, 5), dtype=bool))
    layer.boundaries = [Boundary(np.array([[-0.5, -0.5], [-0.5, 1.5], [0.5, 1.5], [0.5, -0.5]]))]
    geometry = assemble_layers([layer], grid)
    assert geometry[0].index == 1
    assert geometry[0].dose == pytest.approx(1.05)
    polygon = geometry[0].polygons[0]
    assert np.allclose(polygon[0], [9.75, 19.75])
    assert np.allclose(polygon[1], [10.75, 19.75])
    assert np.allclose(polygon[2], [10.75, 20.25])


def test_write_order_is_descending():
    geometry = [LayerGeometry(i, 1.0 + i / 10, []) for i in (1, 2, 3)]
    assert [g.index for g in write_order(geometry)] == [3, 2, 1]


def test_layer_colors_cycle():
    assert layer_color(1) == 1
    assert layer_color(2) == 3
    assert layer_color(7) == layer_color(1)
    assert len({layer_color(i) for i in range(1, 7)}) == 6


def test_dxf_roundtrip(tmp_path):
    path = str(tmp_path / 'out' / 'layers.dxf')
    geometry = [
        LayerGeometry(1, 1.05, [square(0, 0, 1)]),
        LayerGeometry(2, 1.3, [square(2, 0, 1), square(4, 0, 2)]),
    ]
    write_layers_dxf(geometry, path)

    doc = ezdxf.readfile(path)
    assert doc.layers.get('1').color == 1
    assert doc.layers.get('2').color == 3
    polylines = list(doc.modelspace().query('LWPOLYLINE'))
    assert [p.dxf.layer for p in polylines] == ['2', '2', '1']
    assert all(p.closed for p in polylines)

    triples = read_dxf_triples(path)
    assert triples.shape == (12, 3)
    assert np.array_equal(np.unique(triples[:, 0]), [1, 2, 3])
    assert np.allclose(triples[triples[:, 0] == 3, 1:], square(0, 0, 1))


def test_read_polyline_entities(tmp_path):
    path = str(tmp_path / 'in.dxf')
    doc = ezdxf.new('R2010')
    msp = doc.modelspace()
    msp.add_lwpolyline(square(0, 0, 1).tolist(), close=True)
    msp.add_polyline2d(square(3, 3, 2).tolist(), close=True)
    msp.add_line((0, 0), (5, 5))
    doc.saveas(path)

    triples = read_dxf_triples(path)
    assert triples.shape == (8, 3)
    assert np.allclose(triples[4:, 1:], square(3, 3, 2))


def test_read_errors(tmp_path):
    with pytest.raises(GeometryError):
        read_dxf_triples(str(tmp_path / 'missing.dxf'))

    path = str(tmp_path / 'empty.dxf')
    doc = ezdxf.new('R2010')
    doc.modelspace().add_line((0, 0), (1, 1))
    doc.saveas(path)
    with pytest.raises(GeometryError):
        read_dxf_triples(path)


def test_dose_report_format(tmp_path):
    path = str(tmp_path / 'doses.txt')
    write_dose_report([1.0, 1.23456, 2.5], path)
    with open(path) as f:
        assert f.read() == "1.000\n1.235\n2.500\n"
    assert read_dose_report(path) == [1.0, 1.235, 2.5]


def test_dose_report_unwritable(tmp_path):
    with pytest.raises(OutputError):
        write_dose_report([1.0], str(tmp_path / 'missing_dir' / 'doses.txt'))
