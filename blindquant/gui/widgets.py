# widgets.py
# Shared GUI utilities for BlindQuant (debounce, dtype helpers, canvas display)

from __future__ import annotations

import tkinter as tk
from typing import Any, Callable, Optional, Tuple

import cv2
import numpy as np
from PIL import Image, ImageTk

# Pillow shim
if hasattr(Image, "Resampling"):
    RESAMPLE_NEAREST = Image.Resampling.NEAREST
else:
    RESAMPLE_NEAREST = getattr(Image, "NEAREST", 0)

# ============================================================================
# Dtype Normalization Helpers
# ============================================================================

def ensure_mask_uint8(mask: Optional[np.ndarray], shape_hw: Optional[Tuple[int, int]] = None) -> np.ndarray:
    """
    Preview masks come in as bool, 0/1, 0/255 or label images; return 0/255 uint8.
    None gives an empty mask of shape_hw; a different shape is resized nearest-neighbour.
    """
    if mask is None:
        if shape_hw is None:
            raise ValueError("ensure_mask_uint8: must provide shape_hw when mask is None")
        return np.zeros(shape_hw, dtype=np.uint8)

    m = mask
    if m.dtype == np.bool_:
        m = m.astype(np.uint8) * 255
    elif m.dtype == np.uint8:
        if m.size and m.max() <= 1:
            m = m * 255
    else:
        m = (m != 0).astype(np.uint8) * 255

    if shape_hw is not None and m.shape[:2] != shape_hw:
        h, w = shape_hw
        m = cv2.resize(m, (w, h), interpolation=cv2.INTER_NEAREST)

    return m


def to_display_gray(channel: np.ndarray) -> np.ndarray:
    """Min/max stretch of any numeric channel to uint8 for display."""
    a = np.asarray(channel)
    if a.dtype == np.uint8:
        return a
    return cv2.normalize(a.astype(np.float32), None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)


def overlay_mask(gray: np.ndarray, mask: np.ndarray, color=(0, 0, 255), alpha: float = 0.45) -> np.ndarray:
    """BGR preview: gray background with mask foreground tinted."""
    bg = cv2.cvtColor(to_display_gray(gray), cv2.COLOR_GRAY2BGR)
    fg = ensure_mask_uint8(mask, bg.shape[:2]) > 0
    tint = np.zeros_like(bg)
    tint[:] = color
    out = bg.copy()
    out[fg] = cv2.addWeighted(bg, 1.0 - alpha, tint, alpha, 0.0)[fg]
    return out


# ============================================================================
# Canvas display
# ============================================================================

def np_to_pil(arr: np.ndarray) -> Image.Image:
    a = np.asarray(arr)
    if a.ndim == 3 and a.shape[2] == 3:
        return Image.fromarray(cv2.cvtColor(a, cv2.COLOR_BGR2RGB), mode="RGB")
    return Image.fromarray(to_display_gray(a), mode="L")


class ImageCanvas(tk.Canvas):
    """
    Canvas that shows one numpy image scaled to fit (never enlarged) and maps
    canvas clicks back to image coordinates.
    """
    def __init__(self, parent: tk.Misc, width: int = 800, height: int = 600, **kw: Any):
        super().__init__(parent, width=width, height=height, background="black",
                         highlightthickness=0, **kw)
        self._photo = None
        self._scale = 1.0
        self._origin = (0, 0)

    def show(self, npImg: np.ndarray) -> None:
        self.update_idletasks()
        cw = max(1, self.winfo_width() if self.winfo_width() > 1 else int(self["width"]))
        ch = max(1, self.winfo_height() if self.winfo_height() > 1 else int(self["height"]))
        pil = np_to_pil(npImg)
        iw, ih = pil.size
        scale = min(cw / float(iw), ch / float(ih), 1.0)
        new_w = max(1, int(round(iw * scale)))
        new_h = max(1, int(round(ih * scale)))
        if (new_w, new_h) != (iw, ih):
            pil = pil.resize((new_w, new_h), resample=RESAMPLE_NEAREST)
        ox = int((cw - new_w) / 2)
        oy = int((ch - new_h) / 2)
        self.delete("image")
        self._photo = ImageTk.PhotoImage(pil)
        self._scale = scale
        self._origin = (ox, oy)
        self.create_image(ox, oy, anchor="nw", image=self._photo, tags="image")
        self.tag_lower("image")

    def toImage(self, cx: float, cy: float) -> Tuple[float, float]:
        ox, oy = self._origin
        return ((cx - ox) / self._scale, (cy - oy) / self._scale)

    def toCanvas(self, x: float, y: float) -> Tuple[float, float]:
        ox, oy = self._origin
        return (ox + x * self._scale, oy + y * self._scale)


# ============================================================================
# Debounce Helper
# ============================================================================


def debounce(widget: tk.Misc, delay_ms: int = 150) -> Callable:
    """Decorator factory: only the last call within delay_ms runs (threshold slider previews)."""
    def _decorator(fn: Callable) -> Callable:
        timer_id_attr = f"_debounce_{id(fn)}"

        def _wrapper(*args: Any, **kwargs: Any) -> None:
            prev_id = getattr(widget, timer_id_attr, None)
            if prev_id is not None:
                try:
                    widget.after_cancel(prev_id)
                except tk.TclError:
                    pass
            new_id = widget.after(delay_ms, lambda: fn(*args, **kwargs))
            setattr(widget, timer_id_attr, new_id)

        return _wrapper
    return _decorator
