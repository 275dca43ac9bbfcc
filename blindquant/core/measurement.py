# blindquant/core/measurement.py
# Per-region, per-channel intensity measurements + CSV export
# Pure callables with no GUI dependencies - safe for headless testing

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from .errors import OutputWriteFailure
from .preprocessing import ChannelImage
from .processing import DEFAULTS
from .regions import RegionSet

logger = logging.getLogger(__name__)

# statistic flag -> (record attribute, column header)
STATISTICS = (
    ("area", "area", "Area"),
    ("mean", "mean", "Mean"),
    ("min", "min", "Min"),
    ("max", "max", "Max"),
    ("integratedDensity", "int_den", "IntDen"),
    ("rawIntegratedDensity", "raw_int_den", "RawIntDen"),
)

MEASUREMENT_DEFAULTS: Dict[str, Any] = DEFAULTS["measurement"]


# ---------- Data Model ----------

@dataclass(frozen=True)
class MeasurementRecord:
    # identity
    region_id: int
    channel: int  # 1-based

    # statistics (None when disabled in the configuration)
    area: Optional[float]         # px, or unitsPerPx^2 * px when calibrated
    mean: Optional[float]
    min: Optional[float]
    max: Optional[float]
    int_den: Optional[float]      # mean * area
    raw_int_den: Optional[float]  # sum of pixel values, uncalibrated


def _resolveConfig(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    cfg = dict(MEASUREMENT_DEFAULTS)
    if config:
        unknown = set(config) - set(cfg)
        if unknown:
            raise ValueError(f"Unknown measurement option(s): {sorted(unknown)}")
        cfg.update(config)
    return cfg


def _pixelArea(image: ChannelImage) -> float:
    scale = image.calibration
    if isinstance(scale, dict) and scale.get("unitsPerPx"):
        upx = float(scale["unitsPerPx"])
        if upx > 0:
            return upx * upx
    return 1.0


# ---------- Public API ----------

def measure_regions(
    regions: RegionSet,
    image: ChannelImage,
    config: Optional[Dict[str, Any]] = None
) -> List[MeasurementRecord]:
    """
    Measure every (channel, region) pair of a frozen region set.

    Rows are ordered channel-major (all regions of channel 1, then channel 2, ...),
    region id ascending within a channel. The boundary channel is measured like
    any other; its rows describe the segmentation input and are expected, not an error.
    """
    if not regions.frozen:
        raise ValueError("measure_regions requires a frozen region set")
    if tuple(regions.shape) != tuple(image.shape):
        raise ValueError(f"region set shape {regions.shape} does not match image shape {image.shape}")
    cfg = _resolveConfig(config)
    pxArea = _pixelArea(image)

    ordered = sorted(regions, key=lambda r: r.id)
    records: List[MeasurementRecord] = []
    for ch in range(1, image.channelCount + 1):
        data = image.channel(ch)
        for region in ordered:
            vals = region.pixels(data).astype(np.float64)
            count = int(vals.size)
            area = count * pxArea
            total = float(vals.sum())
            mean = total / count if count else float("nan")
            records.append(MeasurementRecord(
                region_id=region.id,
                channel=ch,
                area=area if cfg["area"] else None,
                mean=mean if cfg["mean"] else None,
                min=float(vals.min()) if cfg["min"] and count else None,
                max=float(vals.max()) if cfg["max"] and count else None,
                int_den=mean * area if cfg["integratedDensity"] else None,
                raw_int_den=total if cfg["rawIntegratedDensity"] else None,
            ))
    logger.debug("measured %d region(s) x %d channel(s) for %s",
                 len(ordered), image.channelCount, image.label or "<unlabelled>")
    return records


def result_columns(config: Optional[Dict[str, Any]] = None) -> List[str]:
    cfg = _resolveConfig(config)
    return ["Channel"] + [header for flag, _, header in STATISTICS if cfg[flag]]


def results_to_rows(records: Iterable[MeasurementRecord], config: Optional[Dict[str, Any]] = None) -> List[List[str]]:
    """Formatted table rows (strings), values rounded to the configured precision."""
    cfg = _resolveConfig(config)
    digits = int(cfg["precision"])
    rows: List[List[str]] = []
    for rec in records:
        row = [str(rec.channel)]
        for flag, attr, _ in STATISTICS:
            if not cfg[flag]:
                continue
            val = getattr(rec, attr)
            row.append("NaN" if val is None or not np.isfinite(val) else f"{val:.{digits}f}")
        rows.append(row)
    return rows


def save_results_csv(path: str, records: Iterable[MeasurementRecord], config: Optional[Dict[str, Any]] = None) -> None:
    """
    Write a result table. An empty table still gets its header.
    Raises OutputWriteFailure when the destination cannot be written.
    """
    header = result_columns(config)
    rows = results_to_rows(records, config)
    try:
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(header)
            writer.writerows(rows)
    except OSError as e:
        raise OutputWriteFailure(f"could not write results to {path}: {e}") from e
