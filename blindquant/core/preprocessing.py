# blindquant/core/preprocessing.py
# Channel model, image loading and boundary smoothing - pure callables with no GUI dependencies
# Safe for headless testing

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

import cv2
import numpy as np
import tifffile

from .errors import InvalidChannelIndex, InvalidImageError, MissingBoundaryChannel

logger = logging.getLogger(__name__)

# Type aliases for clarity
ChannelArray = np.ndarray  # shape (H,W), any numeric dtype
StackArray = np.ndarray  # shape (C,H,W), channel-first
ScaleDict = Dict[str, Union[float, str]]  # e.g., {"unitsPerPx": 0.16, "unitName": "micron"}
ShapeHW = Tuple[int, int]  # (height, width)

TIFF_EXTENSIONS = (".tif", ".tiff")
# Axes letters tifffile uses for a channel-like dimension, in order of preference
_CHANNEL_AXES = ("C", "S", "I", "Q")


# ---------- Data Model ----------

@dataclass(eq=False)
class ChannelImage:
    """
    Multi-channel 2-D raster owned by one batch iteration.

    channels: (C,H,W) pixel buffer, channel-first. Channel indices used by the
    public API are 1-based, so channel(3) is channels[2].
    identity: real path of the file the raster came from.
    label: blinded working alias; empty until the blinding controller assigns one.

    Use as a context manager; leaving the block releases the pixel buffer.
    """
    channels: Optional[StackArray]
    identity: str
    label: str = ""
    calibration: Optional[ScaleDict] = None
    meta: Dict[str, object] = field(default_factory=dict)

    def __post_init__(self):
        if self.channels is None:
            raise InvalidImageError(f"no pixel data for {self.identity!r}")
        arr = np.asarray(self.channels)
        if arr.ndim == 2:
            arr = arr[np.newaxis, :, :]
        if arr.ndim != 3:
            raise InvalidImageError(f"expected a (C,H,W) raster, got shape {arr.shape}")
        self.channels = arr

    # --- access ---

    @property
    def released(self) -> bool:
        return self.channels is None

    @property
    def channelCount(self) -> int:
        self._checkAlive()
        return int(self.channels.shape[0])

    @property
    def shape(self) -> ShapeHW:
        self._checkAlive()
        return (int(self.channels.shape[1]), int(self.channels.shape[2]))

    def channel(self, index: int) -> ChannelArray:
        """Pixel buffer of a 1-based channel index (a view, do not modify)."""
        self._checkAlive()
        index = int(index)
        if index < 1:
            raise InvalidChannelIndex(f"channel index must be >= 1, got {index}")
        if index > self.channelCount:
            raise MissingBoundaryChannel(self.channelCount, index)
        return self.channels[index - 1]

    def requireChannels(self, boundaryChannel: int) -> None:
        """Raise unless the boundary channel exists."""
        self.channel(boundaryChannel)

    # --- lifecycle ---

    def release(self) -> None:
        """Drop the pixel buffer. Safe to call more than once."""
        self.channels = None
        self.meta.clear()

    def _checkAlive(self) -> None:
        if self.channels is None:
            raise RuntimeError(f"image {self.label or '<unlabelled>'} was already released")

    def __enter__(self) -> "ChannelImage":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


# ---------- Discovery ----------

def discoverImages(directory: str, extension: str = ".tif") -> List[str]:
    """Sorted paths of regular files in directory whose extension matches (case-insensitive).
    Everything else is ignored silently."""
    ext = extension.lower()
    if not ext.startswith("."):
        ext = "." + ext
    out: List[str] = []
    for name in sorted(os.listdir(directory)):
        path = os.path.join(directory, name)
        if os.path.isfile(path) and os.path.splitext(name)[1].lower() == ext:
            out.append(path)
    return out


# ---------- Loading ----------

def _toChannelFirst(arr: np.ndarray, axes: str) -> np.ndarray:
    """Reorder a tifffile series to (C,H,W). Singleton non-spatial axes are squeezed;
    any other extra axis (z, time) is rejected because inputs must be flattened."""
    axes = axes.upper()
    if len(axes) != arr.ndim:
        raise InvalidImageError(f"axes {axes!r} do not match array shape {arr.shape}")
    if "Y" not in axes or "X" not in axes:
        raise InvalidImageError(f"no spatial axes in {axes!r}")

    chanAxis = None
    for letter in _CHANNEL_AXES:
        if letter in axes and arr.shape[axes.index(letter)] > 1:
            chanAxis = letter
            break

    keep = [a for a in axes if a in ("Y", "X") or a == chanAxis]
    for i, a in enumerate(axes):
        if a not in keep and arr.shape[i] > 1:
            raise InvalidImageError(
                f"axis {a!r} has size {arr.shape[i]}; z-stacks and time series must be flattened first"
            )
    squeezeIdx = tuple(i for i, a in enumerate(axes) if a not in keep)
    arr = np.squeeze(arr, axis=squeezeIdx) if squeezeIdx else arr
    rest = "".join(a for a in axes if a in keep)

    if chanAxis is None:
        return arr[np.newaxis, ...] if rest.index("Y") < rest.index("X") else arr.T[np.newaxis, ...]
    order = [rest.index(chanAxis), rest.index("Y"), rest.index("X")]
    return np.transpose(arr, order)


def _readTiffCalibration(tif: "tifffile.TiffFile") -> Optional[ScaleDict]:
    """Pixel size from the TIFF XResolution tag (pixels per unit) and the ImageJ unit, if present."""
    try:
        tag = tif.pages[0].tags.get("XResolution")
    except (IndexError, KeyError):
        return None
    if tag is None:
        return None
    num, den = tag.value
    if not num or not den:
        return None
    unitsPerPx = float(den) / float(num)
    ijmeta = tif.imagej_metadata or {}
    unitName = str(ijmeta.get("unit", "") or "")
    # Uncalibrated ImageJ images carry a 1 px/inch resolution and no unit
    if not unitName or unitName in ("pixel", "pixels") or unitsPerPx == 1.0:
        return None
    return {"unitsPerPx": unitsPerPx, "unitName": unitName.replace("\\u00B5", "µ")}


def loadImage(path: str) -> ChannelImage:
    """
    Decode a multi-channel raster into a ChannelImage (channel-first).
    TIFF goes through tifffile (axes-aware, calibration from resolution tags);
    everything else through OpenCV, with colour images reordered to RGB so that
    channel 1 is red.
    """
    ext = os.path.splitext(path)[1].lower()
    calibration = None
    if ext in TIFF_EXTENSIONS:
        with tifffile.TiffFile(path) as tif:
            series = tif.series[0]
            arr = series.asarray()
            stack = _toChannelFirst(arr, series.axes)
            calibration = _readTiffCalibration(tif)
    else:
        img = cv2.imread(path, cv2.IMREAD_UNCHANGED)
        if img is None:
            raise FileNotFoundError(f"Could not read image: {path}")
        if img.ndim == 3:
            if img.shape[2] == 4:
                img = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
            elif img.shape[2] == 3:
                img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
            stack = np.transpose(img, (2, 0, 1))
        else:
            stack = img[np.newaxis, ...]

    logger.debug("loaded image: %d channel(s) of %dx%d", stack.shape[0], stack.shape[2], stack.shape[1])
    return ChannelImage(channels=np.ascontiguousarray(stack), identity=path, calibration=calibration)


# ---------- Boundary smoothing ----------

def smoothBoundary(image: ChannelImage, boundaryChannel: int = 3, sigma: float = 3.0) -> np.ndarray:
    """
    Gaussian-smoothed float32 copy of the boundary channel.
    The image itself is left untouched so measurement channels keep raw values.
    sigma <= 0 disables smoothing.
    """
    src = image.channel(boundaryChannel).astype(np.float32)
    if sigma is None or float(sigma) <= 0:
        return src.copy()
    return cv2.GaussianBlur(src, (0, 0), sigmaX=float(sigma), sigmaY=float(sigma),
                            borderType=cv2.BORDER_REFLECT)
