# blindquant/core/revision.py
# Detection/revision state machine driven by synchronous operator prompts

from __future__ import annotations

import copy
import enum
import logging
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from .errors import InteractionClosed
from .interaction import Interaction
from .regions import RegionSet

logger = logging.getLogger(__name__)

DetectFn = Callable[[Dict[str, Any]], RegionSet]


class RevisionState(enum.Enum):
    DETECTED = "detected"
    REVISING = "revising"
    ACCEPTED = "accepted"
    FROZEN = "frozen"


def mergeParams(params: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    """New parameter dict: 'threshold' is replaced, 'separation'/'detection' are key-wise updated."""
    out = copy.deepcopy(params)
    for key, val in changes.items():
        if key == "threshold":
            out["threshold"] = val
        elif key in ("separation", "detection"):
            for k, v in (val or {}).items():
                if k not in out[key]:
                    raise ValueError(f"Unknown {key} parameter: {k}")
                out[key][k] = v
        else:
            raise ValueError(f"Unknown revision parameter group: {key}")
    return out


class RevisionController:
    """
    DETECTED -> REVISING -> DETECTED ... until the operator declines revision,
    then ACCEPTED (manual edits) -> FROZEN.

    The loop has no iteration cap; it ends when the operator says no. A prompt
    closed without an answer counts as "no revision" / "no edits".
    """

    def __init__(self, interaction: Interaction, detect: DetectFn, params: Dict[str, Any],
                 label: str, background: Optional[np.ndarray] = None):
        self.interaction = interaction
        self.detect = detect
        self.params = copy.deepcopy(params)
        self.label = label
        self.background = background
        self.state: Optional[RevisionState] = None
        self.history: List[RevisionState] = []
        self.revisions = 0

    def _transition(self, new: RevisionState) -> None:
        logger.info("%s: %s -> %s", self.label,
                    self.state.value if self.state else "start", new.value)
        self.state = new
        self.history.append(new)

    def _ask(self, prompt: Callable[..., Any], *args: Any, default: Any = None) -> Any:
        try:
            answer = prompt(*args)
        except InteractionClosed:
            logger.info("%s: prompt closed without an answer, using default", self.label)
            return default
        return default if answer is None else answer

    def run(self) -> RegionSet:
        regions = self.detect(self.params)
        self._transition(RevisionState.DETECTED)
        while self.state is not RevisionState.FROZEN:
            if self.state is RevisionState.DETECTED:
                logger.info("%s: %d candidate region(s)", self.label, len(regions))
                if self._ask(self.interaction.askRevise, self.label, regions, default=False):
                    self._transition(RevisionState.REVISING)
                else:
                    self._transition(RevisionState.ACCEPTED)

            elif self.state is RevisionState.REVISING:
                changes = self._ask(self.interaction.reviseParameters, self.label,
                                    copy.deepcopy(self.params), default=None)
                if changes:
                    self.params = mergeParams(self.params, changes)
                self.revisions += 1
                regions = self.detect(self.params)
                self._transition(RevisionState.DETECTED)

            elif self.state is RevisionState.ACCEPTED:
                background = self.background if self.background is not None else np.zeros(regions.shape, np.float32)
                edited = self._ask(self.interaction.editRegions, self.label, regions.copy(),
                                   background, default=None)
                if edited is not None:
                    regions = edited
                regions.freeze()
                self._transition(RevisionState.FROZEN)
        logger.info("%s: region set frozen with %d region(s) after %d revision(s)",
                    self.label, len(regions), self.revisions)
        return regions
