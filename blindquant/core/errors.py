# blindquant/core/errors.py
# Exception types shared by the core pipeline and the batch boundary

from __future__ import annotations


class BlindQuantError(Exception):
    """Base class for every error raised by blindquant."""


# ---------- Per-image failures (caught by the batch orchestrator) ----------

class PipelineError(BlindQuantError):
    """An image could not be processed; the batch skips it and continues."""


class MissingBoundaryChannel(PipelineError):
    """Image exposes fewer channels than the configured boundary channel index."""

    def __init__(self, channelCount: int, boundaryChannel: int):
        self.channelCount = int(channelCount)
        self.boundaryChannel = int(boundaryChannel)
        super().__init__(
            f"image has {self.channelCount} channel(s); "
            f"boundary channel {self.boundaryChannel} is missing"
        )


class InvalidChannelIndex(PipelineError, ValueError):
    """Channel indices are 1-based; zero or negative values are rejected."""


class InvalidImageError(PipelineError, ValueError):
    """File decoded, but the raster is not a 2-D multi-channel image."""


class OutputWriteFailure(PipelineError, OSError):
    """Result table could not be written to its destination."""


# ---------- Region set ----------

class FrozenRegionSetError(BlindQuantError, RuntimeError):
    """Attempt to mutate a region set after the operator accepted it."""


# ---------- Operator interaction ----------

class InteractionClosed(BlindQuantError):
    """Dialog was closed without confirming; callers fall back to the default answer."""


class UserAbort(BlindQuantError):
    """Operator aborted the whole run."""


class EmptySelection(UserAbort):
    """Operator cancelled the directory or image selection."""
