"""
Per-frame failure kinds raised by the analysis pipeline.

    LyraError (base)
    ├── InvalidFrame
    ├── LinesNotDetected
    ├── IntersectionComputeFailed
    └── FrameCancelled

None of these are fatal to a running worker: the frame is dropped and the
next capture is analyzed from scratch.
"""

from __future__ import annotations

from typing import Any, Optional


class LyraError(Exception):
    """Base exception for analysis failures.

    Attributes:
        message: Human-readable error description
        details: Optional dict with additional error context
    """

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class InvalidFrame(LyraError):
    """Frame cannot be analyzed: empty box or lines outside the image."""


class LinesNotDetected(LyraError):
    """No usable Bahtinov pattern, e.g. the outer lines are parallel."""


class IntersectionComputeFailed(LyraError):
    """Arithmetic on the detected lines produced a non-finite result."""


class FrameCancelled(LyraError):
    """Analysis was abandoned because a newer frame superseded it."""

    def __init__(self, stage: str) -> None:
        super().__init__("Frame analysis cancelled", {"stage": stage})
        self.stage = stage
