# blindquant/core/processing.py
# Core segmentation algorithms - pure callables with no GUI dependencies
# Safe for headless testing

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Optional, Tuple, Union

import cv2
import numpy as np
from skimage.segmentation import watershed

from .regions import Region, RegionSet

logger = logging.getLogger(__name__)

Threshold = Union[float, Tuple[float, Optional[float]]]  # lower, or (lower, upper)

# --------------------- Defaults (edit freely) ---------------------
DEFAULTS: Dict[str, Dict[str, Any]] = {
    "boundary": {
        "channel": 3,            # 1-based index of the boundary-marker channel
        "sigma": 3.0,            # Gaussian blur sigma, 0 disables
    },
    "threshold": {
        "lower": None,           # None => suggested value seeds the operator prompt
        "upper": None,           # None => open-ended (>= lower)
    },
    "separation": {
        "method": "watershed",   # "none" | "watershed"
        "fillHoles": True,       # fill internal holes before separation
        "distanceBlurK": 3,      # 0=off; smoothing for distance
        "peakMinDistance": 9,    # local-max suppression radius (px)
        "peakRelThreshold": 0.2, # 0..1 relative to max distance
    },
    "detection": {
        "minArea": 4000,         # px, inclusive
        "maxArea": 50000,        # px, inclusive; None = unbounded
        "minCirc": 0.20,
        "maxCirc": 1.00,
        "excludeBorder": True,   # drop objects touching the image border
        "connectivity": 8,       # 4 or 8 for component labeling
    },
    "measurement": {
        "area": True,
        "mean": True,
        "min": True,
        "max": True,
        "integratedDensity": True,
        "rawIntegratedDensity": True,
        "precision": 3,          # decimal places in the written table
    },
    "batch": {
        "extension": ".tif",
        "shuffle": False,        # randomize processing order
        "seed": None,
        "saveKey": False,        # write the blinding key after the batch
    },
}
# ------------------------------------------------------------------


def makeConfig(overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, Dict[str, Any]]:
    """Deep copy of DEFAULTS with per-section overrides applied. Unknown keys are errors."""
    cfg = copy.deepcopy(DEFAULTS)
    for section, values in (overrides or {}).items():
        if section not in cfg:
            raise ValueError(f"Unknown config section: {section}")
        for key, val in (values or {}).items():
            if key not in cfg[section]:
                raise ValueError(f"Unknown config key: {section}.{key}")
            cfg[section][key] = val
    return cfg


# --------------------- Internal helpers ---------------------------

def _forceOdd(k: int) -> int:
    k = int(max(1, k))
    return k if k % 2 == 1 else k + 1


def _localMaxima(dist: np.ndarray, minDist: int, minVal: float) -> np.ndarray:
    """Binary map of local maxima using dilation-and-compare with min distance suppression."""
    if minDist < 1:
        minDist = 1
    k = int(minDist)
    kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (k, k))
    dil = cv2.dilate(dist, kernel)
    peaks = (dist == dil) & (dist >= minVal)
    return peaks.astype(np.uint8)


def _borderLabels(labels: np.ndarray) -> np.ndarray:
    return np.unique(np.concatenate([
        labels[0, :].ravel(),
        labels[-1, :].ravel(),
        labels[:, 0].ravel(),
        labels[:, -1].ravel()
    ]))


def splitThreshold(threshold: Threshold) -> Tuple[float, Optional[float]]:
    if isinstance(threshold, (tuple, list)):
        lower, upper = threshold
        return float(lower), (None if upper is None else float(upper))
    return float(threshold), None


# --------------------- Thresholding -------------------------------

def suggestThreshold(channel: np.ndarray) -> float:
    """
    Otsu threshold of channel, in the channel's own intensity units.
    Only a starting point for the operator; never applied without confirmation
    in interactive runs.
    """
    img = np.asarray(channel, dtype=np.float32)
    lo = float(img.min()) if img.size else 0.0
    hi = float(img.max()) if img.size else 0.0
    if hi <= lo:
        return hi
    img8 = cv2.normalize(img, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    t8, _ = cv2.threshold(img8, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    # THRESH_BINARY keeps pixels > t8, i.e. >= t8 + 1 on the 8-bit scale
    return lo + (float(t8) + 1.0) * (hi - lo) / 255.0


def thresholdBoundary(channel: np.ndarray, lower: float, upper: Optional[float] = None) -> np.ndarray:
    """Foreground (255) where lower <= value (<= upper when given); dark-background convention."""
    img = np.asarray(channel)
    fg = img >= lower
    if upper is not None:
        fg &= img <= upper
    return fg.astype(np.uint8) * 255


# -------------------------- Cleanup -------------------------------

def fillHoles(binary: np.ndarray) -> np.ndarray:
    """Fill internal holes in a binary mask (255=FG): background not reachable from the border."""
    mask = (binary > 0).astype(np.uint8)
    h, w = mask.shape
    pad = cv2.copyMakeBorder(mask, 1, 1, 1, 1, cv2.BORDER_CONSTANT, value=0)
    cv2.floodFill(pad, None, (0, 0), 1)  # fill from padded corner
    reached = pad[1:h+1, 1:w+1]
    out = mask.copy()
    out[reached == 0] = 1
    return (out * 255).astype(np.uint8)


def buildMask(channel: np.ndarray, threshold: Threshold, fill: bool = True) -> np.ndarray:
    """Threshold the (smoothed) boundary channel, then fill holes. Empty masks are valid."""
    lower, upper = splitThreshold(threshold)
    binary = thresholdBoundary(channel, lower, upper)
    if fill:
        binary = fillHoles(binary)
    return binary


def clearBorderTouching(binary: np.ndarray, connectivity: int = 8) -> np.ndarray:
    """Drop every component with a pixel on the outermost rows or columns (incomplete cells)."""
    mask = (binary > 0).astype(np.uint8)
    num, labels = cv2.connectedComponents(mask, connectivity=connectivity)
    if num <= 1:
        return (mask * 255).astype(np.uint8)
    keep_lut = np.ones(num, dtype=np.uint8)
    keep_lut[0] = 0  # background always excluded
    keep_lut[_borderLabels(labels)] = 0
    out = keep_lut[labels]
    return (out * 255).astype(np.uint8)


# -------------------------- Separation ----------------------------

def watershedSeparate(
    binary: np.ndarray,
    distanceBlurK: int = 3,
    peakMinDistance: int = 9,
    peakRelThreshold: float = 0.2,
    connectivity: int = 8
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Distance-transform watershed on binary FG. Returns (separated_uint8, labels_int32).

    separated is the input foreground with one-pixel cuts wherever two basins
    meet; labels holds the basin ids (0=background or cut). Flooding is
    confined to the foreground, so objects that do not touch keep every pixel.

    Reproducibility policy:
    - markers are the local maxima of the distance map, numbered in row-major
      order of their first pixel; a foreground component with no qualifying
      peak gets one marker at its first (row-major) distance maximum;
    - skimage's watershed floods -distance from a priority queue ordered by
      (height, insertion age), so equal-height ties go to the basin whose
      front reached the pixel first;
    - pixels left between basins become the watershed line, and wherever two
      basins are still 8-adjacent the pixels of the higher-numbered one are cut.
    """
    fg = (binary > 0).astype(np.uint8)
    if not fg.any():
        return (fg * 255).astype(np.uint8), fg.astype(np.int32)

    dist = cv2.distanceTransform(fg, cv2.DIST_L2, cv2.DIST_MASK_PRECISE)
    if distanceBlurK and distanceBlurK >= 3:
        dist = cv2.GaussianBlur(dist, (_forceOdd(distanceBlurK), _forceOdd(distanceBlurK)), 0)
        dist[fg == 0] = 0.0

    dist = np.nan_to_num(dist, nan=0.0, posinf=0.0, neginf=0.0)
    dist_max = float(dist.max())
    minVal = float(np.clip(peakRelThreshold, 0.0, 1.0)) * max(dist_max, 1e-9)
    peaks = _localMaxima(dist, minDist=max(1, int(peakMinDistance)), minVal=minVal)
    peaks[fg == 0] = 0

    # one marker at least per foreground component
    ncomp, comps = cv2.connectedComponents(fg, connectivity=connectivity)
    hasPeak = np.bincount(comps[peaks > 0].ravel(), minlength=ncomp) > 0
    missing = np.flatnonzero(~hasPeak[1:]) + 1
    if missing.size:
        flatComp = comps.ravel()
        flatDist = dist.ravel()
        order = np.lexsort((np.arange(flatComp.size), -flatDist, flatComp))
        sortedComp = flatComp[order]
        _, first = np.unique(sortedComp, return_index=True)
        bestPixel = np.zeros(ncomp, dtype=np.int64)
        bestPixel[sortedComp[first]] = order[first]
        np.put(peaks, bestPixel[missing], 1)

    num, markers = cv2.connectedComponents(peaks, connectivity=connectivity)
    if num <= 2:
        # single basin => nothing to split
        return (fg * 255).astype(np.uint8), comps.astype(np.int32)

    # renumber markers 1..n by the row-major position of their first pixel
    flatMarkers = markers.ravel()
    ids, firstIdx = np.unique(flatMarkers, return_index=True)
    keep = ids > 0
    scanOrder = ids[keep][np.argsort(firstIdx[keep], kind="stable")]
    lut = np.zeros(num, dtype=np.int32)
    lut[scanOrder] = np.arange(1, scanOrder.size + 1, dtype=np.int32)
    markers = lut[markers]

    labels = watershed(-dist, markers, mask=fg.astype(bool), watershed_line=True).astype(np.int32)
    labels[fg == 0] = 0

    # cut the higher-numbered side wherever two basins are 8-adjacent
    labf = labels.astype(np.float32)
    labf[labels == 0] = np.finfo(np.float32).max
    nbrMin = cv2.erode(labf, np.ones((3, 3), np.uint8), borderType=cv2.BORDER_REPLICATE)
    cut = (labels > 0) & (nbrMin < labf)
    labels[cut] = 0

    separated = (labels > 0).astype(np.uint8) * 255
    return separated, labels.astype(np.int32)


# -------------------------- Detection -----------------------------

def detectRegions(
    binary: np.ndarray,
    minArea: float = 4000,
    maxArea: Optional[float] = 50000,
    minCirc: float = 0.20,
    maxCirc: float = 1.00,
    excludeBorder: bool = True,
    connectivity: int = 8
) -> RegionSet:
    """
    Connected components of binary as candidate regions, filtered by inclusive
    area and circularity ranges. With excludeBorder, components with any pixel
    on the outermost rows/columns are dropped before filtering.
    Ids ascend 1..N in row-major first-pixel order.
    """
    mask = (binary > 0).astype(np.uint8)
    shape = mask.shape
    if excludeBorder:
        mask = (clearBorderTouching(mask, connectivity=connectivity) > 0).astype(np.uint8)

    num, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=connectivity)
    if num <= 1:
        return RegionSet(shape)

    # row-major first-pixel order, independent of the labeling algorithm
    uniq, firstIdx = np.unique(labels.ravel(), return_index=True)
    scanOrder = [int(lbl) for _, lbl in sorted(zip(firstIdx, uniq)) if lbl > 0]

    upperArea = float("inf") if maxArea is None else float(maxArea)
    regions = []
    nextId = 1
    for lbl in scanOrder:
        area = int(stats[lbl, cv2.CC_STAT_AREA])
        if area < minArea or area > upperArea:
            continue
        x = int(stats[lbl, cv2.CC_STAT_LEFT]); y = int(stats[lbl, cv2.CC_STAT_TOP])
        bw = int(stats[lbl, cv2.CC_STAT_WIDTH]); bh = int(stats[lbl, cv2.CC_STAT_HEIGHT])
        crop = labels[y:y+bh, x:x+bw] == lbl
        region = Region.fromMask(nextId, crop, origin="detected", offset=(x, y))
        if region is None or not (minCirc <= region.circularity <= maxCirc):
            continue
        regions.append(region)
        nextId += 1
    return RegionSet(shape, regions)


# -------------------------- Visualization -------------------------

def labelsToColor(labels: np.ndarray, bgGray: Optional[np.ndarray] = None, alpha: float = 0.45) -> np.ndarray:
    """
    Colorize label map. If bgGray provided (uint8), alpha-blend color on top.
    Returns BGR uint8 for display.
    """
    if labels.dtype != np.int32:
        labels = labels.astype(np.int32)
    h, w = labels.shape
    n = int(labels.max())
    if n == 0:
        if bgGray is not None:
            if bgGray.ndim == 2:
                return cv2.cvtColor(bgGray, cv2.COLOR_GRAY2BGR)
            return bgGray.copy()
        return np.zeros((h, w, 3), dtype=np.uint8)

    # Stable random palette
    rng = np.random.default_rng(12345)
    palette = (rng.random((n+1, 3)) * 255).astype(np.uint8)
    palette[0] = (0, 0, 0)

    color = palette[labels]
    if bgGray is not None:
        bg = cv2.cvtColor(bgGray, cv2.COLOR_GRAY2BGR) if bgGray.ndim == 2 else bgGray
        a = float(np.clip(alpha, 0.0, 1.0))
        blended = bg.copy()
        fg = labels > 0
        blended[fg] = cv2.addWeighted(bg, 1.0 - a, color, a, 0.0)[fg]
        return blended
    return color


# -------------------------- Pipeline ------------------------------

def runSegmentationPipeline(
    smoothed: np.ndarray,
    threshold: Threshold,
    sepParams: Dict[str, Any],
    detParams: Dict[str, Any]
) -> Tuple[np.ndarray, RegionSet, Dict[str, Any]]:
    """
    Mask building -> separation (if enabled) -> detection on a smoothed boundary channel.
    Returns (separated_mask_uint8, candidate_regions, meta).
    """
    lower, upper = splitThreshold(threshold)
    binary = buildMask(smoothed, (lower, upper), fill=bool(sepParams.get("fillHoles", True)))

    method = str(sepParams.get("method", "watershed"))
    connectivity = int(detParams.get("connectivity", 8))
    if method == "watershed":
        separated, _ = watershedSeparate(
            binary,
            distanceBlurK=int(sepParams.get("distanceBlurK", 3)),
            peakMinDistance=int(sepParams.get("peakMinDistance", 9)),
            peakRelThreshold=float(sepParams.get("peakRelThreshold", 0.2)),
            connectivity=connectivity
        )
    elif method == "none":
        separated = binary
    else:
        raise ValueError(f"Unknown separation method: {method}")

    regions = detectRegions(
        separated,
        minArea=float(detParams.get("minArea", 4000)),
        maxArea=detParams.get("maxArea", 50000),
        minCirc=float(detParams.get("minCirc", 0.20)),
        maxCirc=float(detParams.get("maxCirc", 1.00)),
        excludeBorder=bool(detParams.get("excludeBorder", True)),
        connectivity=connectivity
    )
    meta = {
        "threshold": (lower, upper),
        "foregroundPx": int(np.count_nonzero(binary)),
        "regionCount": len(regions),
    }
    return separated, regions, meta
