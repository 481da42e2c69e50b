"""Shared core data structures used across analysis and orchestration."""

from __future__ import annotations

import math
from typing import Iterator, NamedTuple, Optional

import numpy as np


class Calibration(NamedTuple):
    """Optical constants used to convert pixel offsets to focuser travel."""

    aperture_mm: float
    focal_length_mm: float
    pixel_size_um: float


class IntensityField(NamedTuple):
    """Brightness field; only the inscribed square box holds data."""

    values: np.ndarray  # (height, width) float64
    left: int
    right: int
    top: int
    bottom: int
    center_x: float
    center_y: float

    @property
    def width(self) -> int:
        return int(self.values.shape[1])

    @property
    def height(self) -> int:
        return int(self.values.shape[0])


class ScanProfile(NamedTuple):
    """Brightest row and its mean for each one-degree rotation."""

    rows: np.ndarray
    values: np.ndarray


class LineCandidate(NamedTuple):
    angle_rad: float
    row: float
    value: float


class FitResult(NamedTuple):
    position: float
    degenerate: bool


class Point2D(NamedTuple):
    x: float
    y: float


class GeometricLine(NamedTuple):
    """Line segment through the image; slope is inf (intercept nan) when vertical."""

    start: Point2D
    end: Point2D
    slope: float
    intercept: float

    @classmethod
    def from_points(cls, start: Point2D, end: Point2D) -> "GeometricLine":
        start = Point2D(float(start[0]), float(start[1]))
        end = Point2D(float(end[0]), float(end[1]))
        dx = end.x - start.x
        if dx == 0.0:
            return cls(start, end, math.inf, math.nan)
        slope = (end.y - start.y) / dx
        return cls(start, end, slope, start.y - slope * start.x)

    @property
    def is_vertical(self) -> bool:
        return math.isinf(self.slope)


class BahtinovLineSet(NamedTuple):
    """Detected lines handed to overlay and speech consumers."""

    angles: tuple[float, ...]
    rows: tuple[float, ...]
    values: tuple[float, ...]
    width: int
    height: int

    @classmethod
    def from_candidates(cls, candidates: list[LineCandidate], width: int, height: int) -> "BahtinovLineSet":
        return cls(
            tuple(float(c.angle_rad) for c in candidates),
            tuple(float(c.row) for c in candidates),
            tuple(float(c.value) for c in candidates),
            int(width),
            int(height),
        )

    def __len__(self) -> int:
        return len(self.angles)

    def candidates(self) -> list[LineCandidate]:
        return [LineCandidate(a, r, v) for a, r, v in zip(self.angles, self.rows, self.values)]

    def groups(self) -> Iterator[list[LineCandidate]]:
        """Consecutive triples: one group per Bahtinov pattern."""
        cands = self.candidates()
        for start in range(0, len(cands) - len(cands) % 3, 3):
            yield cands[start:start + 3]


class FocusAssessment(NamedTuple):
    """Focus measurement for one group of three lines."""

    group: int
    distance_px: float
    signed_error_px: float
    error_um: float
    within_critical_focus: bool
    bahtinov_angle_rad: float
    intersection: Point2D
    perpendicular_foot: Point2D


class FocusResult(NamedTuple):
    line_set: BahtinovLineSet
    assessments: tuple[FocusAssessment, ...]
    profile: Optional[ScanProfile] = None  # coarse scan of this frame

    @property
    def primary(self) -> Optional[FocusAssessment]:
        return self.assessments[0] if self.assessments else None
