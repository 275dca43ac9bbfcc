# blindquant/__init__.py
# BlindQuant package root
"""
BlindQuant - blinded ROI segmentation and fluorescence quantification

Subpackages:
    core - Pure algorithms (smoothing, thresholding, watershed, detection,
           revision state machine, measurements, blinding, batch)
    gui  - Tkinter-based operator dialogs

Quick start:
    python -m blindquant --input DIR          # interactive (Tk dialogs)
    python -m blindquant --input DIR --headless --threshold 120

    # Or use core algorithms directly:
    from blindquant.core import buildMask, watershedSeparate, detectRegions
"""

__version__ = "0.1.0"

# Re-export commonly used items from core for convenience
from .core import (
    DEFAULTS,
    BatchReport,
    BlindingController,
    ChannelImage,
    HeadlessInteraction,
    Interaction,
    MeasurementRecord,
    Region,
    RegionSet,
    RevisionController,
    buildMask,
    detectRegions,
    loadImage,
    makeConfig,
    measure_regions,
    run_batch,
    run_directory,
    save_results_csv,
    smoothBoundary,
    watershedSeparate,
)

__all__ = [
    "DEFAULTS",
    "makeConfig",
    "ChannelImage",
    "loadImage",
    "smoothBoundary",
    "buildMask",
    "watershedSeparate",
    "detectRegions",
    "Region",
    "RegionSet",
    "RevisionController",
    "MeasurementRecord",
    "measure_regions",
    "save_results_csv",
    "BlindingController",
    "Interaction",
    "HeadlessInteraction",
    "BatchReport",
    "run_batch",
    "run_directory",
]
