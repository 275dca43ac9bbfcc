# blindquant/core/blinding.py
# Working-label <-> real-file mapping that keeps the operator blind to sample identity

from __future__ import annotations

import csv
import logging
import os
import random
import secrets
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import OutputWriteFailure

logger = logging.getLogger(__name__)

LABEL_PREFIX = "blind-"


class BlindingController:
    """
    Append-only table label -> identity, shared by every image of a run.

    Labels are opaque ("blind-" + 8 hex digits) and never contain the real file
    name. Interactive code only ever sees labels; reveal()/outputName() are for
    the output writer.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng
        self._byLabel: Dict[str, str] = {}
        self._byIdentity: Dict[str, str] = {}
        self._notes: Dict[str, Dict[str, object]] = {}

    def __len__(self) -> int:
        return len(self._byLabel)

    def __contains__(self, label: str) -> bool:
        return label in self._byLabel

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(list(self._byLabel.items()))

    def _newToken(self) -> str:
        if self._rng is not None:
            return "%08x" % self._rng.getrandbits(32)
        return secrets.token_hex(4)

    def blind(self, identity: str) -> str:
        """Working label for identity; the same identity always maps to the same label."""
        if identity in self._byIdentity:
            return self._byIdentity[identity]
        base = os.path.splitext(os.path.basename(identity))[0]
        while True:
            token = self._newToken()
            label = LABEL_PREFIX + token
            if label in self._byLabel or label in (identity, base, os.path.basename(identity)):
                continue
            if base and base.lower() in token:
                continue
            break
        self._byLabel[label] = identity
        self._byIdentity[identity] = label
        logger.debug("registered working label %s", label)
        return label

    def reveal(self, label: str) -> str:
        try:
            return self._byLabel[label]
        except KeyError:
            raise KeyError(f"unknown working label {label!r}") from None

    def outputName(self, label: str, ext: str = ".csv") -> str:
        """Output file name derived from the real file name, extension replaced."""
        base = os.path.splitext(os.path.basename(self.reveal(label)))[0]
        return base + ext

    def redact(self, label: str, text: str) -> str:
        """Replace every form of the label's identity in text (full path, file name, stem) with the label."""
        identity = self.reveal(label)
        name = os.path.basename(identity)
        for form in (identity, name, os.path.splitext(name)[0]):
            if form:
                text = text.replace(form, label)
        return text

    def note(self, label: str, **info: object) -> None:
        """Attach reproducibility details (e.g. the confirmed threshold) to a label."""
        self.reveal(label)
        self._notes.setdefault(label, {}).update(info)

    def notes(self, label: str) -> Dict[str, object]:
        return dict(self._notes.get(label, {}))

    @staticmethod
    def shuffled(identities: Sequence[str], seed: Optional[int] = None) -> List[str]:
        """Processing order decoupled from acquisition/file-name order."""
        out = list(identities)
        random.Random(seed).shuffle(out)
        return out

    def save_key_csv(self, path: str) -> None:
        """Write label, identity and notes for every registered image (unblinds the run)."""
        noteKeys = sorted({k for n in self._notes.values() for k in n})
        try:
            with open(path, "w", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                writer.writerow(["Label", "File"] + noteKeys)
                for label, identity in self._byLabel.items():
                    n = self._notes.get(label, {})
                    writer.writerow([label, os.path.basename(identity)] + [n.get(k, "") for k in noteKeys])
        except OSError as e:
            raise OutputWriteFailure(f"could not write blinding key to {path}: {e}") from e
