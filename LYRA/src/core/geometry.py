"""Focus geometry: line endpoints, intersection, perpendicular offset and focus error."""

from __future__ import annotations

import logging
import math
from typing import Sequence

from LYRA.config import Config
from LYRA.src.core.errors import IntersectionComputeFailed, InvalidFrame, LinesNotDetected
from LYRA.src.core.types import (
    BahtinovLineSet,
    Calibration,
    FocusAssessment,
    GeometricLine,
    LineCandidate,
    Point2D,
)

logger = logging.getLogger(__name__)

VERTICAL_TOLERANCE_RAD = 1e-4
# Empirical critical-focus tolerance (metres per unit f-ratio squared).
CRITICAL_FOCUS_CONSTANT = 8.99999974990351e-7


def canonicalize(group: Sequence[LineCandidate]) -> list[LineCandidate]:
    """Swap lines 0 and 2 when line 0 is vertical so slot 1 stays the reference."""
    lines = list(group)
    if abs(lines[0].angle_rad - math.pi / 2.0) < VERTICAL_TOLERANCE_RAD:
        lines[0], lines[2] = lines[2], lines[0]
    return lines


def line_from_candidate(candidate: LineCandidate, center: Point2D) -> GeometricLine:
    cx, cy = center
    r = min(cx, cy)
    sin_a = math.sin(candidate.angle_rad)
    cos_a = math.cos(candidate.angle_rad)
    offset = candidate.row - cy

    start = Point2D(cx - r * cos_a + offset * sin_a, cy - r * sin_a - offset * cos_a)
    end = Point2D(cx + r * cos_a + offset * sin_a, cy + r * sin_a - offset * cos_a)
    return GeometricLine.from_points(start, end)


def intersect(first: GeometricLine, third: GeometricLine) -> Point2D:
    """Crossing point of two lines from slope and intercept."""
    if first.slope == third.slope or (first.is_vertical and third.is_vertical):
        raise LinesNotDetected("Outer Bahtinov lines are parallel", {"slope": first.slope})

    if first.is_vertical:
        x = first.start.x
        return Point2D(x, third.slope * x + third.intercept)
    if third.is_vertical:
        x = third.start.x
        return Point2D(x, first.slope * x + first.intercept)

    x = (third.intercept - first.intercept) / (first.slope - third.slope)
    return Point2D(x, first.slope * x + first.intercept)


def perpendicular_offset(point: Point2D, line: GeometricLine) -> tuple[float, Point2D]:
    """Distance from `point` to `line` and the foot of the perpendicular."""
    (x1, y1), (x2, y2) = line.start, line.end
    a = y1 - y2
    b = x2 - x1
    c = x1 * y2 - x2 * y1
    norm_sq = a * a + b * b
    if norm_sq == 0.0 or not math.isfinite(norm_sq):
        raise IntersectionComputeFailed("Reference line has no direction")

    d = a * point.x + b * point.y + c
    distance = abs(d) / math.sqrt(norm_sq)
    foot = Point2D(point.x - d * a / norm_sq, point.y - d * b / norm_sq)
    if not (math.isfinite(distance) and math.isfinite(foot.x) and math.isfinite(foot.y)):
        raise IntersectionComputeFailed(
            "Perpendicular distance is not finite", {"x": point.x, "y": point.y}
        )
    return distance, foot


def error_sign(point: Point2D, line: GeometricLine) -> float:
    """Which side of the reference line the intersection lies on: -1, 0 or +1."""
    (sx, sy), (ex, ey) = line.start, line.end
    cross = (point.x - sx) * (ey - sy) - (point.y - sy) * (ex - sx)
    if cross > 0:
        return -1.0
    if cross < 0:
        return 1.0
    return 0.0


def pixels_per_micron(calibration: Calibration, bahtinov_angle_rad: float) -> float:
    aperture_m = calibration.aperture_mm / 1000.0
    focal_m = calibration.focal_length_mm / 1000.0
    return (
        9.0 / 32.0 * aperture_m / (focal_m * calibration.pixel_size_um)
        * (1.0 + math.cos(math.radians(45.0)) * (1.0 + math.tan(bahtinov_angle_rad)))
    )


def focus_error_microns(distance_px: float, bahtinov_angle_rad: float, calibration: Calibration) -> float:
    return distance_px / pixels_per_micron(calibration, bahtinov_angle_rad)


def critical_focus_value(calibration: Calibration) -> float:
    ratio = (calibration.focal_length_mm / 1000.0) / (calibration.aperture_mm / 1000.0)
    return CRITICAL_FOCUS_CONSTANT * ratio * ratio


def within_critical_focus(error_um: float, calibration: Calibration) -> bool:
    return abs(error_um * 1e-6) < abs(critical_focus_value(calibration))


class FocusEvaluator:
    def __init__(self, config: Config):
        self.config = config

    def assess_lines(
        self,
        lines: Sequence[GeometricLine],
        angles: Sequence[float],
        calibration: Calibration,
        group: int = 0,
    ) -> FocusAssessment:
        """Focus error from three lines: outer pair 0/2, reference line 1."""
        if len(lines) != 3 or len(angles) != 3:
            raise InvalidFrame("Focus evaluation needs exactly three lines", {"lines": len(lines)})

        first, second, third = lines
        crossing = intersect(first, third)
        distance, foot = perpendicular_offset(crossing, second)
        signed = error_sign(crossing, second) * distance

        bahtinov_angle = abs(angles[2] - angles[0]) / 2.0
        try:
            error_um = focus_error_microns(distance, bahtinov_angle, calibration)
        except ZeroDivisionError as exc:
            raise IntersectionComputeFailed("Invalid calibration for micron conversion") from exc
        if not math.isfinite(error_um):
            raise IntersectionComputeFailed("Focus error is not finite", {"distance": distance})

        return FocusAssessment(
            group,
            distance,
            signed,
            error_um,
            within_critical_focus(error_um, calibration),
            bahtinov_angle,
            crossing,
            foot,
        )

    def assess_group(
        self,
        group: Sequence[LineCandidate],
        center: Point2D,
        calibration: Calibration,
        index: int = 0,
    ) -> FocusAssessment:
        ordered = canonicalize(group)
        lines = [line_from_candidate(c, center) for c in ordered]
        return self.assess_lines(lines, [c.angle_rad for c in ordered], calibration, index)

    def evaluate(self, line_set: BahtinovLineSet, calibration: Calibration) -> tuple[FocusAssessment, ...]:
        """One assessment per consecutive group of three lines."""
        if len(line_set) == 0 or len(line_set) % 3 != 0:
            raise InvalidFrame(
                "Line count must be a positive multiple of three", {"lines": len(line_set)}
            )
        for row in line_set.rows:
            if not (0.0 <= row < line_set.height):
                raise InvalidFrame("Line row outside image", {"row": row, "height": line_set.height})

        center = Point2D((line_set.width + 1.0) / 2.0, (line_set.height + 1.0) / 2.0)
        results = []
        for index, group in enumerate(line_set.groups()):
            assessment = self.assess_group(group, center, calibration, index)
            logger.debug(
                "Group %d: error %.2f px (%.1f um)%s",
                index,
                assessment.signed_error_px,
                assessment.error_um,
                " within critical focus" if assessment.within_critical_focus else "",
            )
            results.append(assessment)
        return tuple(results)
