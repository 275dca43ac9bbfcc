# blindquant/core/interaction.py
# Operator-interaction collaborator: the blocking suspension points of the pipeline
# The base class answers every prompt with its default, which is the headless behaviour

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import numpy as np

from .errors import EmptySelection
from .processing import Threshold
from .regions import RegionSet

logger = logging.getLogger(__name__)


class Interaction:
    """
    Synchronous operator prompts. Each call blocks until the operator answers.

    Implementations only ever receive working labels, never real file names.
    Closing a dialog without confirming should raise InteractionClosed (or
    return None); callers then apply the default answer.
    """

    def chooseDirectory(self) -> str:
        """Input directory for the batch. Cancelling raises EmptySelection."""
        raise EmptySelection("no input directory selected")

    def adjustThreshold(self, label: str, channel: np.ndarray, suggested: Threshold) -> Optional[Threshold]:
        """Confirm or change the threshold for the smoothed boundary channel."""
        return suggested

    def askRevise(self, label: str, regions: RegionSet) -> Optional[bool]:
        """Shown after each detection pass: revise the mask?"""
        return False

    def reviseParameters(self, label: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Changed parameters for the next detection pass, e.g.
        {"threshold": 120, "detection": {"minArea": 3000}}. None keeps the current ones."""
        return None

    def editRegions(self, label: str, regions: RegionSet, background: np.ndarray) -> Optional[RegionSet]:
        """Manual add/remove on a mutable candidate copy; return it, or None to keep the detected set."""
        return None

    def acknowledge(self, report: Any) -> None:
        """End-of-batch acknowledgment."""
        return None


class HeadlessInteraction(Interaction):
    """Non-interactive run: fixed directory and threshold, no revisions, no edits."""

    def __init__(self, directory: Optional[str] = None, threshold: Optional[Threshold] = None):
        self.directory = directory
        self.threshold = threshold

    def chooseDirectory(self) -> str:
        if not self.directory:
            raise EmptySelection("no input directory given for a headless run")
        return self.directory

    def adjustThreshold(self, label: str, channel: np.ndarray, suggested: Threshold) -> Optional[Threshold]:
        return suggested if self.threshold is None else self.threshold

    def acknowledge(self, report: Any) -> None:
        logger.info("batch finished: %s", report)
