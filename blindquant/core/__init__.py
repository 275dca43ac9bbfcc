# blindquant/core/__init__.py
# Core algorithms package - pure callables with no GUI dependencies
# Safe for headless testing

from .batch import (
    BatchReport,
    ImageOutcome,
    process_single_image,
    run_batch,
    run_directory,
)
from .blinding import BlindingController
from .errors import (
    BlindQuantError,
    EmptySelection,
    FrozenRegionSetError,
    InteractionClosed,
    InvalidChannelIndex,
    InvalidImageError,
    MissingBoundaryChannel,
    OutputWriteFailure,
    PipelineError,
    UserAbort,
)
from .interaction import HeadlessInteraction, Interaction
from .measurement import (
    MeasurementRecord,
    measure_regions,
    result_columns,
    save_results_csv,
)
from .preprocessing import (
    ChannelImage,
    discoverImages,
    loadImage,
    smoothBoundary,
)
from .processing import (
    DEFAULTS,
    buildMask,
    clearBorderTouching,
    detectRegions,
    fillHoles,
    labelsToColor,
    makeConfig,
    runSegmentationPipeline,
    suggestThreshold,
    thresholdBoundary,
    watershedSeparate,
)
from .regions import Region, RegionSet, polygonMask
from .revision import RevisionController, RevisionState, mergeParams

__all__ = [
    # processing
    "DEFAULTS",
    "makeConfig",
    "suggestThreshold",
    "thresholdBoundary",
    "fillHoles",
    "buildMask",
    "clearBorderTouching",
    "watershedSeparate",
    "detectRegions",
    "labelsToColor",
    "runSegmentationPipeline",
    # regions
    "Region",
    "RegionSet",
    "polygonMask",
    # preprocessing
    "ChannelImage",
    "discoverImages",
    "loadImage",
    "smoothBoundary",
    # measurement
    "MeasurementRecord",
    "measure_regions",
    "result_columns",
    "save_results_csv",
    # revision
    "RevisionController",
    "RevisionState",
    "mergeParams",
    # blinding
    "BlindingController",
    # interaction
    "Interaction",
    "HeadlessInteraction",
    # batch
    "BatchReport",
    "ImageOutcome",
    "process_single_image",
    "run_batch",
    "run_directory",
    # errors
    "BlindQuantError",
    "PipelineError",
    "MissingBoundaryChannel",
    "InvalidChannelIndex",
    "InvalidImageError",
    "OutputWriteFailure",
    "FrozenRegionSetError",
    "InteractionClosed",
    "UserAbort",
    "EmptySelection",
]
