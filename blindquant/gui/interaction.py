# interaction.py
# Tk dialogs for the blocking operator steps: threshold, revise?, revision parameters,
# manual ROI correction and end-of-batch acknowledgment.
# Windows are titled with the working label only.
from __future__ import annotations

import tkinter as tk
from tkinter import filedialog, messagebox, ttk
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np

from ..core.errors import EmptySelection, InteractionClosed, UserAbort
from ..core.interaction import Interaction
from ..core.processing import Threshold, buildMask, labelsToColor, splitThreshold
from ..core.regions import RegionSet
from .widgets import ImageCanvas, debounce, overlay_mask, to_display_gray


class _ModalDialog(tk.Toplevel):
    """Toplevel that blocks until closed. result stays None when the window is closed."""
    def __init__(self, parent: tk.Misc, title: str):
        super().__init__(parent)
        self.title(title)
        self._titleText = title
        self.transient(parent)
        self.result: Any = None
        self.aborted = False
        self.protocol("WM_DELETE_WINDOW", self.destroy)

    def runModal(self) -> Any:
        self.grab_set()
        self.wait_window(self)
        if self.aborted:
            raise UserAbort("operator aborted the batch")
        if self.result is None:
            raise InteractionClosed(self._titleText)
        return self.result

    def abort(self) -> None:
        if messagebox.askyesno("Abort", "Abort the whole batch?", parent=self):
            self.aborted = True
            self.destroy()


# ----------------- Threshold -----------------

class ThresholdDialog(_ModalDialog):
    def __init__(self, parent: tk.Misc, label: str, channel: np.ndarray, suggested: Threshold):
        super().__init__(parent, f"Threshold – {label}")
        self.channel = channel
        self._gray = to_display_gray(channel)
        lower, upper = splitThreshold(suggested)
        lo = float(np.min(channel)); hi = float(np.max(channel))
        self.upper = upper
        self.lowerVar = tk.DoubleVar(value=lower)

        self.canvas = ImageCanvas(self, width=760, height=560)
        self.canvas.pack(side="top", fill="both", expand=True)

        bar = ttk.Frame(self, padding=6); bar.pack(side="bottom", fill="x")
        ttk.Label(bar, text="Lower threshold").pack(side="left")
        ttk.Scale(bar, from_=lo, to=max(hi, lo + 1e-6), orient="horizontal", variable=self.lowerVar,
                  length=360).pack(side="left", padx=6)
        self.valueVar = tk.StringVar()
        ttk.Label(bar, textvariable=self.valueVar, width=12).pack(side="left")
        ttk.Button(bar, text="Abort batch", command=self.abort).pack(side="right", padx=4)
        ttk.Button(bar, text="OK", command=self._onOk).pack(side="right", padx=4)

        self.lowerVar.trace_add("write", lambda *a: self._schedulePreview())
        self._schedulePreview = debounce(self, 120)(self._renderPreview)
        self.after_idle(self._renderPreview)

    def _renderPreview(self) -> None:
        lower = float(self.lowerVar.get())
        self.valueVar.set(f"{lower:.2f}")
        mask = buildMask(self.channel, (lower, self.upper), fill=False)
        self.canvas.show(overlay_mask(self._gray, mask))

    def _onOk(self) -> None:
        lower = float(self.lowerVar.get())
        self.result = lower if self.upper is None else (lower, self.upper)
        self.destroy()


# ----------------- Region preview / revision -----------------

def _regionsPreview(regions: RegionSet, background: np.ndarray) -> np.ndarray:
    gray = to_display_gray(background)
    out = labelsToColor(regions.labelMap(), bgGray=gray, alpha=0.45)
    for r in regions:
        cx, cy = r.centroid
        cv2.putText(out, str(r.id), (int(cx), int(cy)), cv2.FONT_HERSHEY_SIMPLEX, 0.6,
                    (255, 255, 255), 2, cv2.LINE_AA)
    return out


class RevisionParamsDialog(_ModalDialog):
    def __init__(self, parent: tk.Misc, label: str, params: Dict[str, Any]):
        super().__init__(parent, f"Revise detection – {label}")
        lower, upper = splitThreshold(params["threshold"])
        det = params["detection"]
        self.vars = {
            "lower": tk.StringVar(value=f"{lower:g}"),
            "minArea": tk.StringVar(value=str(det["minArea"])),
            "maxArea": tk.StringVar(value=str(det["maxArea"])),
            "minCirc": tk.StringVar(value=str(det["minCirc"])),
            "maxCirc": tk.StringVar(value=str(det["maxCirc"])),
        }
        self.upper = upper
        self.excludeBorderVar = tk.BooleanVar(value=bool(det["excludeBorder"]))
        self.watershedVar = tk.BooleanVar(value=params["separation"]["method"] == "watershed")

        frm = ttk.Frame(self, padding=10); frm.pack(fill="both", expand=True)
        rows = [("Lower threshold", "lower"), ("Min area (px)", "minArea"), ("Max area (px)", "maxArea"),
                ("Min circularity", "minCirc"), ("Max circularity", "maxCirc")]
        for row, (text, key) in enumerate(rows):
            ttk.Label(frm, text=text).grid(row=row, column=0, sticky="e", padx=4, pady=2)
            ttk.Entry(frm, textvariable=self.vars[key], width=12).grid(row=row, column=1, sticky="w")
        ttk.Checkbutton(frm, text="Exclude border regions", variable=self.excludeBorderVar).grid(
            row=len(rows), column=0, columnspan=2, sticky="w", pady=(6, 0))
        ttk.Checkbutton(frm, text="Watershed separation", variable=self.watershedVar).grid(
            row=len(rows) + 1, column=0, columnspan=2, sticky="w")
        btns = ttk.Frame(frm); btns.grid(row=len(rows) + 2, column=0, columnspan=2, pady=(10, 0))
        ttk.Button(btns, text="Detect again", command=self._onOk).pack(side="left", padx=6)
        ttk.Button(btns, text="Cancel", command=self.destroy).pack(side="left", padx=6)

    def _onOk(self) -> None:
        try:
            lower = float(self.vars["lower"].get())
            maxArea = self.vars["maxArea"].get().strip()
            detection = {
                "minArea": float(self.vars["minArea"].get()),
                "maxArea": None if maxArea.lower() in ("", "none", "inf") else float(maxArea),
                "minCirc": float(self.vars["minCirc"].get()),
                "maxCirc": float(self.vars["maxCirc"].get()),
                "excludeBorder": bool(self.excludeBorderVar.get()),
            }
        except ValueError as e:
            messagebox.showerror("Invalid value", str(e), parent=self)
            return
        self.result = {
            "threshold": lower if self.upper is None else (lower, self.upper),
            "detection": detection,
            "separation": {"method": "watershed" if self.watershedVar.get() else "none"},
        }
        self.destroy()


# ----------------- Manual ROI correction -----------------

class RegionEditorDialog(_ModalDialog):
    """
    Remove regions by selecting their ids; add regions by clicking polygon
    vertices on the image and pressing "Add polygon". "Done" freezes the set.
    """
    def __init__(self, parent: tk.Misc, label: str, regions: RegionSet, background: np.ndarray):
        super().__init__(parent, f"Correct ROIs – {label}")
        self.regions = regions
        self.background = background
        self._points: List[Tuple[float, float]] = []

        body = ttk.Frame(self); body.pack(fill="both", expand=True)
        self.canvas = ImageCanvas(body, width=760, height=560)
        self.canvas.pack(side="left", fill="both", expand=True)
        self.canvas.bind("<Button-1>", self._onClick)

        side = ttk.Frame(body, padding=6); side.pack(side="right", fill="y")
        ttk.Label(side, text="Regions").pack(anchor="w")
        self.listbox = tk.Listbox(side, selectmode="extended", height=20, exportselection=False)
        self.listbox.pack(fill="y", expand=True)
        ttk.Button(side, text="Remove selected", command=self._onRemove).pack(fill="x", pady=(6, 2))
        ttk.Button(side, text="Add polygon", command=self._onAddPolygon).pack(fill="x", pady=2)
        ttk.Button(side, text="Clear points", command=self._onClearPoints).pack(fill="x", pady=2)
        ttk.Separator(side).pack(fill="x", pady=6)
        ttk.Button(side, text="Done", command=self._onDone).pack(fill="x", pady=2)
        ttk.Button(side, text="Abort batch", command=self.abort).pack(fill="x", pady=2)

        self.after_idle(self._refresh)

    def _refresh(self) -> None:
        self.listbox.delete(0, "end")
        for r in self.regions:
            self.listbox.insert("end", f"{r.id}  ({r.area_px} px, circ {r.circularity:.2f})")
        self.canvas.show(_regionsPreview(self.regions, self.background))
        self._drawPoints()

    def _drawPoints(self) -> None:
        self.canvas.delete("poly")
        pts = [self.canvas.toCanvas(x, y) for x, y in self._points]
        for cx, cy in pts:
            self.canvas.create_oval(cx - 3, cy - 3, cx + 3, cy + 3, outline="#00eaff", tags="poly")
        if len(pts) >= 2:
            flat = [c for p in pts for c in p]
            self.canvas.create_line(*flat, fill="#00eaff", width=2, tags="poly")

    def _onClick(self, event) -> None:
        x, y = self.canvas.toImage(event.x, event.y)
        h, w = self.regions.shape
        if 0 <= x < w and 0 <= y < h:
            self._points.append((x, y))
            self._drawPoints()

    def _onRemove(self) -> None:
        ids = [self.regions[i].id for i in self.listbox.curselection()]
        for regionId in ids:
            self.regions.remove(regionId)
        self._refresh()

    def _onAddPolygon(self) -> None:
        if len(self._points) < 3:
            messagebox.showinfo("Add polygon", "Click at least three points on the image first.", parent=self)
            return
        self.regions.addPolygon(self._points)
        self._points = []
        self._refresh()

    def _onClearPoints(self) -> None:
        self._points = []
        self._drawPoints()

    def _onDone(self) -> None:
        self.result = self.regions
        self.destroy()


# ----------------- Collaborator -----------------

class TkInteraction(Interaction):
    """Interaction collaborator backed by Tk dialogs; every call blocks until answered."""

    def __init__(self, parent: Optional[tk.Misc] = None):
        self._ownsRoot = parent is None
        self.root = parent if parent is not None else tk.Tk()
        if self._ownsRoot:
            self.root.withdraw()
            self.root.title("BlindQuant")

    def chooseDirectory(self) -> str:
        path = filedialog.askdirectory(parent=self.root, title="Choose the folder with input images")
        if not path:
            raise EmptySelection("no input directory selected")
        return path

    def adjustThreshold(self, label: str, channel: np.ndarray, suggested: Threshold) -> Optional[Threshold]:
        self._background = channel
        return ThresholdDialog(self.root, label, channel, suggested).runModal()

    def askRevise(self, label: str, regions: RegionSet) -> Optional[bool]:
        preview = tk.Toplevel(self.root)
        preview.title(f"Detected ROIs – {label}")
        canvas = ImageCanvas(preview, width=760, height=560)
        canvas.pack(fill="both", expand=True)
        background = getattr(self, "_background", None)
        if background is None:
            background = np.zeros(regions.shape, np.uint8)
        preview.update_idletasks()
        canvas.show(_regionsPreview(regions, background))
        try:
            answer = messagebox.askyesnocancel(
                "Revise mask?", f"{label}: {len(regions)} region(s) detected.\n\nRevise the mask?",
                parent=preview)
        finally:
            preview.destroy()
        if answer is None:
            raise InteractionClosed("revise prompt closed")
        return answer

    def reviseParameters(self, label: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return RevisionParamsDialog(self.root, label, params).runModal()

    def editRegions(self, label: str, regions: RegionSet, background: np.ndarray) -> Optional[RegionSet]:
        return RegionEditorDialog(self.root, label, regions, background).runModal()

    def acknowledge(self, report: Any) -> None:
        messagebox.showinfo("Batch finished", str(report), parent=self.root)

    def close(self) -> None:
        if self._ownsRoot:
            try:
                self.root.destroy()
            except tk.TclError:
                pass
