# blindquant/gui/__init__.py
# GUI package - tkinter-based operator dialogs
"""
BlindQuant GUI modules.

Submodules:
    interaction - TkInteraction: threshold, revise?, revision parameters,
                  ROI correction and end-of-batch dialogs
    widgets     - Shared GUI utilities (debounce, canvas display, dtype helpers)
"""

from .interaction import TkInteraction
from .widgets import ImageCanvas, debounce, ensure_mask_uint8

__all__ = [
    "TkInteraction",
    "ImageCanvas",
    "debounce",
    "ensure_mask_uint8",
]
