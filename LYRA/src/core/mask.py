"""Mask-specific line ordering for Bahtinov and Tri-Bahtinov patterns."""

from __future__ import annotations

import logging
import math
from typing import Sequence

from LYRA.src.core.errors import LinesNotDetected
from LYRA.src.core.geometry import line_from_candidate
from LYRA.src.core.types import BahtinovLineSet, LineCandidate, Point2D

logger = logging.getLogger(__name__)


def angle_within(a: float, b: float, degrees: float) -> bool:
    return abs(a - b) < math.radians(degrees)


def angle_between(a: float, b: float, lower_deg: float, upper_deg: float) -> bool:
    diff = abs(a - b)
    return math.radians(lower_deg) < diff < math.radians(upper_deg)


def _reverse(candidate: LineCandidate, height: int) -> LineCandidate:
    # Same physical line described from the opposite direction.
    return LineCandidate(candidate.angle_rad - math.pi, height - candidate.row, candidate.value)


def _sort_with_wrap(lines: list[LineCandidate], height: int, outer_deg: float) -> list[LineCandidate]:
    ordered = sorted(lines, key=lambda c: c.angle_rad)
    if angle_within(ordered[0].angle_rad, ordered[2].angle_rad, outer_deg):
        return ordered

    # The pattern straddles 0/180 degrees: fold the high-angle lines back.
    ordered[-1] = _reverse(ordered[-1], height)
    if not angle_within(ordered[0].angle_rad, ordered[1].angle_rad, 25.0):
        ordered[-2] = _reverse(ordered[-2], height)
    return sorted(ordered, key=lambda c: c.angle_rad)


def arrange_bahtinov(candidates: Sequence[LineCandidate], height: int) -> list[LineCandidate]:
    """Order three lines by angle so the outer pair sits in slots 0 and 2."""
    if len(candidates) < 3:
        raise LinesNotDetected("Bahtinov pattern needs three lines", {"lines": len(candidates)})

    ordered = _sort_with_wrap(list(candidates[:3]), height, 65.0)
    if angle_within(ordered[0].angle_rad, ordered[1].angle_rad, 35.0) and angle_within(
        ordered[1].angle_rad, ordered[2].angle_rad, 35.0
    ):
        return ordered
    raise LinesNotDetected(
        "Lines do not form a Bahtinov pattern",
        {"angles_deg": [round(math.degrees(c.angle_rad), 1) for c in ordered]},
    )


def arrange_tri_bahtinov(candidates: Sequence[LineCandidate], height: int) -> list[LineCandidate]:
    """Order nine lines into three groups whose middle lines are ~60 degrees apart."""
    if len(candidates) != 9:
        raise LinesNotDetected("Tri-Bahtinov pattern needs nine lines", {"lines": len(candidates)})

    ordered = sorted(candidates, key=lambda c: c.angle_rad)
    if not angle_within(ordered[0].angle_rad, ordered[2].angle_rad, 40.0):
        ordered[-1] = _reverse(ordered[-1], height)
        if not angle_within(ordered[0].angle_rad, ordered[1].angle_rad, 25.0):
            ordered[-2] = _reverse(ordered[-2], height)
        ordered.sort(key=lambda c: c.angle_rad)

    if angle_between(ordered[1].angle_rad, ordered[4].angle_rad, 55.0, 65.0) and angle_between(
        ordered[4].angle_rad, ordered[7].angle_rad, 55.0, 65.0
    ):
        return ordered
    raise LinesNotDetected("Lines do not form a Tri-Bahtinov pattern")


def arrange_lines(candidates: Sequence[LineCandidate], height: int) -> list[LineCandidate]:
    """
    Nine lines are tried as a Tri-Bahtinov pattern first; otherwise the three
    brightest (detection order) are arranged as a plain Bahtinov pattern.
    """
    if len(candidates) == 9:
        try:
            return arrange_tri_bahtinov(candidates, height)
        except LinesNotDetected:
            logger.debug("No Tri-Bahtinov pattern; falling back to the three brightest lines")
    return arrange_bahtinov(candidates[:3], height)


class IntersectionValidator:
    """Checks that enough lines pass close to one common crossing point."""

    def __init__(self, required_lines: int = 6, tolerance_px: float = 20.0):
        if required_lines < 2:
            raise ValueError("At least two lines are required.")
        if tolerance_px <= 0:
            raise ValueError("Tolerance must be positive.")
        self.required_lines = int(required_lines)
        self.tolerance_px = float(tolerance_px)

    @staticmethod
    def _normal_form(line) -> tuple[float, float, float]:
        (x1, y1), (x2, y2) = line.start, line.end
        a, b = y2 - y1, x1 - x2
        c = (x2 - x1) * y1 - (y2 - y1) * x1
        s = math.hypot(a, b)
        return a / s, b / s, c / s

    def has_minimum_intersecting_lines(self, line_set: BahtinovLineSet) -> bool:
        if len(line_set) < self.required_lines or line_set.width <= 0 or line_set.height <= 0:
            return False

        center = Point2D((line_set.width + 1.0) / 2.0, (line_set.height + 1.0) / 2.0)
        normals = [
            self._normal_form(line_from_candidate(c, center)) for c in line_set.candidates()
        ]
        eps = max(line_set.width, line_set.height) * 1e-12

        for i, (a1, b1, c1) in enumerate(normals):
            for a2, b2, c2 in normals[i + 1:]:
                det = a1 * b2 - a2 * b1
                if abs(det) < eps:
                    continue
                x = (b1 * c2 - b2 * c1) / det
                y = (c1 * a2 - c2 * a1) / det
                near = sum(1 for a, b, c in normals if abs(a * x + b * y + c) <= self.tolerance_px)
                if near >= self.required_lines:
                    return True
        return False
