# blindquant/__main__.py
# Entry point for running BlindQuant as a module: python -m blindquant
"""
BlindQuant - blinded ROI segmentation and fluorescence quantification

Usage:
    python -m blindquant                          # ask for the input folder, Tk dialogs
    python -m blindquant --input DIR              # Tk dialogs for threshold/revision/ROIs
    python -m blindquant --input DIR --headless   # no prompts, suggested or --threshold value
    python -m blindquant --help                   # all options
"""
from __future__ import annotations

import argparse
import logging
import os
import sys

# Support both "python -m blindquant" (relative imports work) and direct script execution
_RUNNING_AS_PACKAGE = bool(__package__)

if not _RUNNING_AS_PACKAGE:
    _here = os.path.dirname(os.path.abspath(__file__))
    _parent = os.path.dirname(_here)
    if _parent not in sys.path:
        sys.path.insert(0, _parent)

from blindquant.core.batch import run_directory
from blindquant.core.blinding import BlindingController
from blindquant.core.errors import UserAbort
from blindquant.core.interaction import HeadlessInteraction
from blindquant.core.processing import DEFAULTS, makeConfig

logger = logging.getLogger("blindquant")


def _import_gui_interaction():
    """Import the Tk collaborator lazily so headless runs never need a display."""
    from blindquant.gui.interaction import TkInteraction
    return TkInteraction


def _range(text: str):
    lo, _, hi = text.partition(",")
    lo = float(lo)
    hi = None if hi.strip().lower() in ("", "inf", "infinity", "none") else float(hi)
    return lo, hi


def _threshold(text: str):
    lo, hi = _range(text) if "," in text else (float(text), None)
    return lo if hi is None else (lo, hi)


def build_parser() -> argparse.ArgumentParser:
    d = DEFAULTS
    p = argparse.ArgumentParser(
        prog="blindquant",
        description="Blinded ROI segmentation and per-channel intensity measurement.",
    )
    p.add_argument("--input", "-i", help="input directory (asked interactively when omitted)")
    p.add_argument("--output", "-o", help="output directory (default: <input>/results)")
    p.add_argument("--ext", default=d["batch"]["extension"], help="input file extension (default: %(default)s)")
    p.add_argument("--headless", action="store_true", help="no dialogs; accept every default")
    p.add_argument("--threshold", type=_threshold,
                   help="boundary threshold, 'LOWER' or 'LOWER,UPPER' (default: Otsu suggestion)")
    p.add_argument("--boundary-channel", type=int, default=d["boundary"]["channel"])
    p.add_argument("--sigma", type=float, default=d["boundary"]["sigma"], help="Gaussian blur sigma")
    p.add_argument("--area", type=_range, default=(d["detection"]["minArea"], d["detection"]["maxArea"]),
                   help="area range MIN,MAX in px (default: %(default)s)")
    p.add_argument("--circularity", type=_range, default=(d["detection"]["minCirc"], d["detection"]["maxCirc"]),
                   help="circularity range MIN,MAX (default: %(default)s)")
    p.add_argument("--keep-border", action="store_true", help="keep regions touching the image border")
    p.add_argument("--no-watershed", action="store_true", help="skip watershed separation")
    p.add_argument("--precision", type=int, default=d["measurement"]["precision"],
                   help="decimal places in the result tables")
    p.add_argument("--shuffle", action="store_true", help="process images in random order")
    p.add_argument("--seed", type=int, default=None, help="seed for --shuffle")
    p.add_argument("--save-key", action="store_true", help="write the blinding key after the batch")
    p.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return p


def config_from_args(args: argparse.Namespace):
    threshold = args.threshold
    lower, upper = (threshold if isinstance(threshold, tuple) else (threshold, None))
    return makeConfig({
        "boundary": {"channel": args.boundary_channel, "sigma": args.sigma},
        "threshold": {"lower": lower, "upper": upper},
        "separation": {"method": "none" if args.no_watershed else "watershed"},
        "detection": {
            "minArea": args.area[0], "maxArea": args.area[1],
            "minCirc": args.circularity[0], "maxCirc": args.circularity[1],
            "excludeBorder": not args.keep_border,
        },
        "measurement": {"precision": args.precision},
        "batch": {"extension": args.ext, "shuffle": args.shuffle, "seed": args.seed, "saveKey": args.save_key},
    })


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s [%(levelname)s] %(message)s')

    config = config_from_args(args)
    if args.headless:
        interaction = HeadlessInteraction(args.input, args.threshold)
    else:
        TkInteraction = _import_gui_interaction()
        interaction = TkInteraction()

    try:
        report = run_directory(args.input, args.output, config, interaction, BlindingController())
    except UserAbort as e:
        logger.warning("run aborted: %s", e)
        return 1
    finally:
        close = getattr(interaction, "close", None)
        if close:
            close()
    return 0 if not report.failed else 2


if __name__ == "__main__":
    sys.exit(main())
