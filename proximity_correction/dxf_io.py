"""
DXF input/output for the proximity correction pipeline.

Uses ezdxf to read the source pattern and to write the corrected pattern with
one layer per dose:
  - input: every LWPOLYLINE / POLYLINE in modelspace is one closed polygon
  - output: layer i holds the polygons of dose layer i, each layer gets its
    own colour, layers are written from the highest index down

Units: microns, one drawing unit is one micron.
"""
import logging
import os
from typing import List, Sequence

import ezdxf
import numpy as np

from proximity_correction.exceptions import GeometryError, OutputError
from proximity_correction.output import LayerGeometry, write_order

logger = logging.getLogger(__name__)

# ACI colours: red, green, blue, yellow, magenta, cyan
LAYER_COLORS = (1, 3, 5, 2, 6, 4)


def layer_color(index: int) -> int:
    """Colour of a 1-based layer index, cycling through LAYER_COLORS."""
    return LAYER_COLORS[(index - 1) % len(LAYER_COLORS)]


def _entity_points(entity) -> np.ndarray:
    if entity.dxftype() == 'LWPOLYLINE':
        points = entity.get_points('xy')
    else:
        points = [tuple(v)[:2] for v in entity.points()]
    return np.asarray(points, dtype=float).reshape(-1, 2)


def read_dxf_triples(filepath: str) -> np.ndarray:
    """Read the polylines of a DXF file as (objectId, x, y) rows.

    Object ids count the polylines in file order, starting at 1.

    Args:
        filepath: Path to the DXF file.

    Returns:
        (N, 3) array of object id, x, y.

    Raises:
        GeometryError: If the file cannot be read or holds no polylines.
    """
    try:
        doc = ezdxf.readfile(filepath)
    except (IOError, ezdxf.DXFStructureError) as e:
        raise GeometryError(f"Could not read DXF file {filepath}: {e}")

    rows = []
    object_id = 0
    for entity in doc.modelspace().query('LWPOLYLINE POLYLINE'):
        points = _entity_points(entity)
        if len(points) == 0:
            continue
        object_id += 1
        rows.append(np.column_stack([np.full(len(points), object_id), points]))

    if not rows:
        raise GeometryError(f"No polylines found in {filepath}")
    logger.info("Read %d polygons from %s", object_id, filepath)
    return np.vstack(rows)


def write_layers_dxf(geometry: Sequence[LayerGeometry], filepath: str) -> str:
    """Write dose layers to a DXF file.

    Args:
        geometry: Assembled layers.
        filepath: Output DXF file path.

    Returns:
        Path to created DXF file.
    """
    doc = ezdxf.new("R2010")
    msp = doc.modelspace()

    for layer in write_order(geometry):
        name = str(layer.index)
        logger.debug("Writing layer %s (%d polygons)", name, len(layer.polygons))
        doc.layers.add(name, color=layer_color(layer.index))
        for polygon in layer.polygons:
            msp.add_lwpolyline(
                [tuple(p) for p in polygon],
                close=True,
                dxfattribs={"layer": name},
            )

    try:
        os.makedirs(os.path.dirname(filepath) or ".", exist_ok=True)
        doc.saveas(filepath)
    except OSError as e:
        raise OutputError(f"Could not write {filepath}: {e}")
    logger.info("Exported DXF: %s", filepath)
    return filepath


def write_dose_report(doses: Sequence[float], filepath: str) -> str:
    """Write one dose per line with three decimals.

    Args:
        doses: Representative dose of every layer, in layer order.
        filepath: Output text file path.

    Returns:
        Path to created file.
    """
    try:
        with open(filepath, 'w') as f:
            for dose in doses:
                f.write(f"{dose:.3f}\n")
    except OSError as e:
        raise OutputError(f"Could not write {filepath}: {e}")
    logger.info("Saved doses to %s", filepath)
    return filepath


def read_dose_report(filepath: str) -> List[float]:
    with open(filepath) as f:
        return [float(line) for line in f if line.strip()]
