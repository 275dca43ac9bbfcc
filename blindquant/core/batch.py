# blindquant/core/batch.py
# Sequential batch orchestration: load -> blind -> segment/revise -> measure -> write -> release
# One image at a time; per-image failures are isolated, operator aborts stop the run

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .blinding import BlindingController
from .errors import InteractionClosed, PipelineError, UserAbort
from .interaction import HeadlessInteraction, Interaction
from .measurement import MeasurementRecord, measure_regions, save_results_csv
from .preprocessing import ChannelImage, discoverImages, loadImage, smoothBoundary
from .processing import Threshold, makeConfig, runSegmentationPipeline, suggestThreshold
from .regions import RegionSet
from .revision import RevisionController

logger = logging.getLogger(__name__)

# Type aliases for clarity
Config = Dict[str, Dict[str, Any]]
MetaDict = Dict[str, Any]
Loader = Callable[[str], ChannelImage]
Writer = Callable[[str, List[MeasurementRecord], Dict[str, Any]], None]
ProgressCallback = Callable[[int, int], None]  # (completed, total) -> None

KEY_FILENAME = "blinding_key.csv"


# ---------- Report ----------

@dataclass
class ImageOutcome:
    label: str
    output: Optional[str] = None
    threshold: Optional[Threshold] = None
    regionCount: int = 0
    revisions: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchReport:
    total: int = 0
    outcomes: List[ImageOutcome] = field(default_factory=list)
    keyPath: Optional[str] = None

    @property
    def succeeded(self) -> List[ImageOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[ImageOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def __str__(self) -> str:
        return f"{len(self.succeeded)}/{self.total} image(s) measured, {len(self.failed)} skipped"


# ---------- Single image ----------

def _askOr(default: Any, prompt: Callable[..., Any], *args: Any) -> Any:
    try:
        answer = prompt(*args)
    except InteractionClosed:
        return default
    return default if answer is None else answer


def process_single_image(
    image: ChannelImage,
    config: Config,
    interaction: Interaction
) -> Tuple[List[MeasurementRecord], MetaDict]:
    """
    Segment, revise and measure one blinded image.
    Returns (records, meta); meta carries the confirmed threshold, region count
    and the revision history for reproducibility.
    """
    bcfg = config["boundary"]
    image.requireChannels(int(bcfg["channel"]))
    smoothed = smoothBoundary(image, int(bcfg["channel"]), float(bcfg["sigma"]))

    tcfg = config["threshold"]
    lower = tcfg["lower"] if tcfg["lower"] is not None else suggestThreshold(smoothed)
    suggested: Threshold = float(lower) if tcfg["upper"] is None else (float(lower), float(tcfg["upper"]))
    threshold = _askOr(suggested, interaction.adjustThreshold, image.label, smoothed, suggested)
    logger.info("%s: threshold %s (suggested %s)", image.label, threshold, suggested)

    params = {
        "threshold": threshold,
        "separation": dict(config["separation"]),
        "detection": dict(config["detection"]),
    }

    def detect(p: Dict[str, Any]) -> RegionSet:
        _, regions, _ = runSegmentationPipeline(smoothed, p["threshold"], p["separation"], p["detection"])
        return regions

    controller = RevisionController(interaction, detect, params, image.label, background=smoothed)
    regions = controller.run()
    if len(regions) == 0:
        logger.info("%s: no qualifying regions, result table will be empty", image.label)

    records = measure_regions(regions, image, config["measurement"])
    meta: MetaDict = {
        "threshold": controller.params["threshold"],
        "regionCount": len(regions),
        "revisions": controller.revisions,
        "history": [s.value for s in controller.history],
    }
    return records, meta


# ---------- Public API ----------

def run_batch(
    paths: Sequence[str],
    outputDir: str,
    config: Optional[Config] = None,
    interaction: Optional[Interaction] = None,
    blinding: Optional[BlindingController] = None,
    loader: Loader = loadImage,
    writer: Writer = save_results_csv,
    progress_callback: Optional[ProgressCallback] = None
) -> BatchReport:
    """
    Process images one after another, writing <outputDir>/<real base name>.csv each.

    Each image is released when its iteration ends, whatever the outcome.
    Per-image errors are logged and recorded in the report; the batch goes on.
    UserAbort (and EmptySelection) propagate immediately, with the partial
    report attached as ``exc.report``.
    """
    cfg = config if config is not None else makeConfig()
    interaction = interaction if interaction is not None else HeadlessInteraction()
    blinding = blinding if blinding is not None else BlindingController()

    order = list(paths)
    if cfg["batch"]["shuffle"]:
        order = BlindingController.shuffled(order, seed=cfg["batch"]["seed"])

    n = len(order)
    report = BatchReport(total=n)
    if n == 0:
        logger.warning("no input images to process")
    os.makedirs(outputDir, exist_ok=True)

    for i, path in enumerate(order):
        label = blinding.blind(path)
        outcome = ImageOutcome(label=label)
        report.outcomes.append(outcome)
        logger.info("[%d/%d] %s", i + 1, n, label)
        try:
            with loader(path) as image:
                image.label = label
                records, meta = process_single_image(image, cfg, interaction)
                outPath = os.path.join(outputDir, blinding.outputName(label, ".csv"))
                writer(outPath, records, cfg["measurement"])
            outcome.output = outPath
            outcome.threshold = meta["threshold"]
            outcome.regionCount = meta["regionCount"]
            outcome.revisions = meta["revisions"]
            blinding.note(label, threshold=meta["threshold"], regions=meta["regionCount"],
                          revisions=meta["revisions"])
            logger.info("%s: %d region(s) written", label, meta["regionCount"])
        except UserAbort as e:
            outcome.error = "aborted"
            logger.warning("batch aborted by operator at image %d of %d", i + 1, n)
            e.report = report
            raise
        except (PipelineError, OSError, ValueError) as e:
            outcome.error = blinding.redact(label, f"{type(e).__name__}: {e}")
            logger.error("%s: skipped (%s)", label, outcome.error)
        except Exception as e:
            # Log but continue with other images; tracebacks carry the path, so none is printed
            outcome.error = blinding.redact(label, f"{type(e).__name__}: {e}")
            logger.error("%s: unexpected failure, skipped (%s)", label, outcome.error)
        finally:
            if progress_callback:
                progress_callback(i + 1, n)

    if cfg["batch"]["saveKey"]:
        report.keyPath = os.path.join(outputDir, KEY_FILENAME)
        blinding.save_key_csv(report.keyPath)
        logger.info("blinding key written to %s", report.keyPath)

    logger.info("%s", report)
    _askOr(None, interaction.acknowledge, report)
    return report


def run_directory(
    directory: Optional[str],
    outputDir: Optional[str] = None,
    config: Optional[Config] = None,
    interaction: Optional[Interaction] = None,
    blinding: Optional[BlindingController] = None
) -> BatchReport:
    """Discover inputs by extension (asking the operator for the directory when none is given) and run the batch."""
    cfg = config if config is not None else makeConfig()
    interaction = interaction if interaction is not None else HeadlessInteraction(directory)
    if not directory:
        directory = interaction.chooseDirectory()
    paths = discoverImages(directory, cfg["batch"]["extension"])
    logger.info("%d image(s) with extension %s found", len(paths), cfg["batch"]["extension"])
    return run_batch(paths, outputDir or os.path.join(directory, "results"), cfg, interaction, blinding)
