import argparse
import logging
import sys

from proximity_correction.config import CorrectionConfig
from proximity_correction.core import process_file
from proximity_correction.exceptions import ProximityCorrectionError
from proximity_correction.logging_config import setup_logging


def parse_dvals(text: str) -> list:
    """Parse '1.0,1.2,1.4' or 'start:stop:step' (stop inclusive)."""
    if ':' in text:
        start, stop, step = (float(v) for v in text.split(':'))
        count = int(round((stop - start) / step)) + 1
        return [round(start + i * step, 10) for i in range(count)]
    return [float(v) for v in text.split(',') if v.strip()]


def build_parser() -> argparse.ArgumentParser:
    defaults = CorrectionConfig()
    parser = argparse.ArgumentParser(
        prog='proximity-correct',
        description="Correct an e-beam pattern for the proximity effect and write one DXF layer per dose."
    )
    parser.add_argument('input', help="Input .dxf file with closed polylines")
    parser.add_argument('psf', help="PSF descriptor, .mat (psf struct) or .npz")
    parser.add_argument('--output', '-o', default=None,
                        help="Output .dxf path (default: <input>_<psf label>.dxf)")
    parser.add_argument('--dx', type=float, default=defaults.dx, help="Grid spacing in microns")
    parser.add_argument('--target-points', dest='target_points', type=float, default=defaults.target_points,
                        help="Grid point budget used with --auto-resolution")
    parser.add_argument('--auto-resolution', dest='auto_resolution', action='store_true',
                        help="Rescale dx by a power of two to approach --target-points")
    parser.add_argument('--subfield-size', dest='subfield_size', type=int, default=defaults.subfield_size,
                        help="Initial fracturing tile edge in grid cells")
    parser.add_argument('--max-iter', dest='max_iter', type=int, default=defaults.max_iter,
                        help="Number of deconvolution iterations")
    parser.add_argument('--dvals', type=parse_dvals, default=list(defaults.dvals),
                        help="Dose thresholds, e.g. 1.0,1.2,1.4 or 1.0:1.9:0.1")
    parser.add_argument('--window-val', dest='window_val', type=float, default=defaults.window_val,
                        help="Ringing-suppression window factor")
    parser.add_argument('--margin', type=float, default=defaults.margin,
                        help="Border around the pattern in microns")
    parser.add_argument('--max-vertices', dest='max_vertices', type=int, default=defaults.max_vertices,
                        help="Vertex cap per output polygon")
    parser.add_argument('--max-fracture-attempts', dest='max_fracture_attempts', type=int,
                        default=defaults.max_fracture_attempts, help="Subfield reductions tried per layer")
    parser.add_argument('--divergence-factor', dest='divergence_factor', type=float, default=None,
                        help="Warn when the deconvolution residual grows by this factor")
    parser.add_argument('--figures', default=None, help="Directory to save dose map and layer figures")
    parser.add_argument('--verbose', '-v', action='store_true', help="Log debug messages")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    options = {name: getattr(args, name) for name in CorrectionConfig.FIELDS}
    observers = []
    try:
        config = CorrectionConfig.from_dict(options)
        if args.figures:
            from proximity_correction.plot import FigureObserver
            observers.append(FigureObserver(args.figures, list(config.dvals)))
        process_file(args.input, args.psf, args.output, config, observers)
    except ProximityCorrectionError as e:
        print(f"proximity-correct: error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
