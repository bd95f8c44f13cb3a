"""Exceptions raised by the scan engine."""

from __future__ import annotations


class ScanError(RuntimeError):
    """Base class for scan engine errors."""


class FrameSourceUnavailableError(ScanError):
    """The frame source cannot deliver frames at all (permission or setup failure).

    This is fatal to a scan session and is the only error that propagates out
    of the engine, so callers can offer an alternative input path.
    """


class ScanAlreadyActiveError(ScanError):
    """A scan was started while another one is still running."""


class ScanNotActiveError(ScanError):
    """A frame was pushed while no continuous scan is running."""
