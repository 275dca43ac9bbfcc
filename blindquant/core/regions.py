# blindquant/core/regions.py
# Region (ROI) records and the per-image region set with its frozen/candidate lifecycle

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .errors import FrozenRegionSetError

Rect = Tuple[int, int, int, int]  # (x0, y0, x1, y1), exclusive end
ShapeHW = Tuple[int, int]
Polygon = Sequence[Tuple[float, float]]  # [(x, y), ...] in pixel coordinates


# ---------- Geometry ----------

def regionGeometry(mask: np.ndarray, offset: Tuple[int, int] = (0, 0)) -> Optional[dict]:
    """
    Geometry of the foreground (nonzero) pixels of mask.
    offset=(x0, y0) maps mask coordinates back into the full image when mask is a crop.
    Returns None for an empty mask.
    """
    m = (mask > 0).astype(np.uint8)
    ys, xs = np.nonzero(m)
    area = int(ys.size)
    if area == 0:
        return None

    # perimeter via external contours (holes ignored); pad so border pixels trace correctly
    padded = cv2.copyMakeBorder(m, 1, 1, 1, 1, cv2.BORDER_CONSTANT, value=0)
    cnts, _ = cv2.findContours(padded, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)
    perimeter = float(sum(cv2.arcLength(c, True) for c in cnts))
    if perimeter > 0:
        circ = min(1.0, (4.0 * math.pi * area) / (perimeter * perimeter))
    else:
        circ = 0.0

    ox, oy = offset
    ys = ys + int(oy)
    xs = xs + int(ox)
    return {
        "area_px": area,
        "perimeter_px": perimeter,
        "circularity": float(circ),
        "bbox": (int(xs.min()), int(ys.min()), int(xs.max()) + 1, int(ys.max()) + 1),
        "centroid": (float(xs.mean()), float(ys.mean())),
        "ys": ys.astype(np.int32),
        "xs": xs.astype(np.int32),
    }


# ---------- Data Model ----------

@dataclass(frozen=True, eq=False)
class Region:
    # identity
    id: int
    origin: str  # "detected" | "manual"

    # pixel-space geometry
    area_px: int
    perimeter_px: float
    circularity: float  # 4*pi*A / P^2, clamped to [0, 1]
    bbox: Rect
    centroid: Tuple[float, float]  # (x, y)

    # covered pixels, read-only
    ys: np.ndarray
    xs: np.ndarray

    @classmethod
    def fromMask(cls, regionId: int, mask: np.ndarray, origin: str = "detected",
                 offset: Tuple[int, int] = (0, 0)) -> Optional["Region"]:
        geo = regionGeometry(mask, offset=offset)
        if geo is None:
            return None
        ys = geo["ys"]; xs = geo["xs"]
        ys.setflags(write=False); xs.setflags(write=False)
        return cls(
            id=int(regionId), origin=origin,
            area_px=geo["area_px"], perimeter_px=geo["perimeter_px"],
            circularity=geo["circularity"], bbox=geo["bbox"], centroid=geo["centroid"],
            ys=ys, xs=xs,
        )

    def pixels(self, channel: np.ndarray) -> np.ndarray:
        """Values of channel under this region (1-D, scan order)."""
        return channel[self.ys, self.xs]


def polygonMask(polygon: Polygon, shape: ShapeHW) -> np.ndarray:
    """Rasterize a closed polygon (x, y vertices) into a uint8 0/255 mask."""
    h, w = shape
    out = np.zeros((h, w), dtype=np.uint8)
    pts = np.round(np.asarray(polygon, dtype=np.float64)).astype(np.int32).reshape(-1, 1, 2)
    if pts.shape[0] >= 3:
        cv2.fillPoly(out, [pts], 255)
    return out


class RegionSet:
    """
    Ordered ROI set for one image.

    Candidate sets accept add/remove; freeze() makes the set immutable, after
    which it is shared unchanged by every channel at measurement time.
    Ids follow creation order and are never reused within a set.
    """

    def __init__(self, shape: ShapeHW, regions: Sequence[Region] = ()):
        self.shape: ShapeHW = (int(shape[0]), int(shape[1]))
        self._regions: List[Region] = sorted(regions, key=lambda r: r.id)
        self._nextId = (max((r.id for r in self._regions), default=0) + 1)
        self._frozen = False

    # --- read access ---

    def __len__(self) -> int:
        return len(self._regions)

    def __iter__(self) -> Iterator[Region]:
        return iter(self._regions)

    def __getitem__(self, idx: int) -> Region:
        return self._regions[idx]

    @property
    def ids(self) -> List[int]:
        return [r.id for r in self._regions]

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, regionId: int) -> Region:
        for r in self._regions:
            if r.id == regionId:
                return r
        raise KeyError(f"no region with id {regionId}")

    def touchesBorder(self, region: Region) -> bool:
        h, w = self.shape
        x0, y0, x1, y1 = region.bbox
        return x0 == 0 or y0 == 0 or x1 >= w or y1 >= h

    def labelMap(self) -> np.ndarray:
        """int32 label image (0 = background, id elsewhere); later ids overwrite overlaps."""
        out = np.zeros(self.shape, dtype=np.int32)
        for r in self._regions:
            out[r.ys, r.xs] = r.id
        return out

    # --- mutation (candidate sets only) ---

    def _checkMutable(self) -> None:
        if self._frozen:
            raise FrozenRegionSetError("region set is frozen; measurements require it unchanged")

    def addMask(self, mask: np.ndarray, origin: str = "manual") -> Optional[Region]:
        """Append a region covering the nonzero pixels of mask. Empty masks add nothing."""
        self._checkMutable()
        if mask.shape[:2] != self.shape:
            raise ValueError(f"mask shape {mask.shape[:2]} does not match image shape {self.shape}")
        region = Region.fromMask(self._nextId, mask, origin=origin)
        if region is None:
            return None
        self._regions.append(region)
        self._nextId += 1
        return region

    def addPolygon(self, polygon: Polygon) -> Optional[Region]:
        return self.addMask(polygonMask(polygon, self.shape), origin="manual")

    def remove(self, regionId: int) -> Region:
        self._checkMutable()
        region = self.get(regionId)
        self._regions.remove(region)
        return region

    def freeze(self) -> "RegionSet":
        self._frozen = True
        return self

    def copy(self) -> "RegionSet":
        """Mutable candidate copy sharing the (read-only) region records."""
        dup = RegionSet(self.shape, self._regions)
        dup._nextId = self._nextId
        return dup
