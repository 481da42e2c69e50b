"""Rotational line search: coarse scan, angular suppression and subpixel refinement."""

from __future__ import annotations

import logging
import math
from concurrent.futures import Executor

import numpy as np

from LYRA.config import Config
from LYRA.src.core.errors import InvalidFrame
from LYRA.src.core.fitting import fit_peak
from LYRA.src.core.types import IntensityField, LineCandidate, ScanProfile

logger = logging.getLogger(__name__)

DEGREES180 = 180
RADIANS_PER_DEGREE = math.pi / DEGREES180


class LineAnalyzer:
    def __init__(self, config: Config):
        self.config = config

    @staticmethod
    def rotated_row_means(field: IntensityField, angle_rad: float) -> np.ndarray:
        """
        Resample the box rotated by `angle_rad` about the image center and
        return the mean of every row (zero outside the box rows).
        """
        left, right, top, bottom = field.left, field.right, field.top, field.bottom
        cx, cy = field.center_x, field.center_y
        sin_a = math.sin(angle_rad)
        cos_a = math.cos(angle_rad)

        dx = np.arange(left, right, dtype=np.float64) - cx
        dy = np.arange(top, bottom, dtype=np.float64) - cy
        dx_g = dx[np.newaxis, :]
        dy_g = dy[:, np.newaxis]

        rot_x = cx + dx_g * cos_a + dy_g * sin_a
        rot_y = cy - dx_g * sin_a + dy_g * cos_a

        x0 = np.floor(rot_x).astype(np.intp)
        y0 = np.floor(rot_y).astype(np.intp)
        valid = (x0 >= left) & (x0 + 1 < right) & (y0 >= top) & (y0 + 1 < bottom)

        # Out-of-box samples read a clamped neighbour and are masked to zero below.
        x0c = np.clip(x0, left, right - 2)
        y0c = np.clip(y0, top, bottom - 2)
        fx = rot_x - x0
        fy = rot_y - y0

        vals = field.values
        v1 = vals[y0c, x0c]
        v2 = vals[y0c, x0c + 1]
        v3 = vals[y0c + 1, x0c + 1]
        v4 = vals[y0c + 1, x0c]

        resampled = (
            v1 * (1.0 - fx) * (1.0 - fy)
            + v2 * fx * (1.0 - fy)
            + v3 * fx * fy
            + v4 * (1.0 - fx) * fy
        )
        resampled = np.where(valid, resampled, 0.0)

        means = np.zeros(field.height, dtype=np.float64)
        means[top:bottom] = resampled.sum(axis=1) / float(right - left)
        return means

    def _scan_degree(self, field: IntensityField, degree: int, rows: np.ndarray, values: np.ndarray) -> None:
        means = self.rotated_row_means(field, degree * RADIANS_PER_DEGREE)
        box = means[field.top:field.bottom]
        peak = int(np.argmax(box))
        rows[degree] = field.top + peak
        values[degree] = box[peak]

    def coarse_scan(self, field: IntensityField, executor: Executor) -> ScanProfile:
        """Brightest row for every whole degree in [0, 180)."""
        rows = np.zeros(DEGREES180, dtype=np.int64)
        values = np.zeros(DEGREES180, dtype=np.float64)

        # Task d writes only slot d.
        futures = [
            executor.submit(self._scan_degree, field, degree, rows, values)
            for degree in range(DEGREES180)
        ]
        for fut in futures:
            fut.result()

        return ScanProfile(rows, values)

    def select_lines(self, profile: ScanProfile, line_count: int) -> list[LineCandidate]:
        """Greedy pick of the brightest orientations, blanking neighbours each round."""
        values = np.array(profile.values, dtype=np.float64, copy=True)
        window = int(self.config.SUPPRESSION_DEG)
        selected: list[LineCandidate] = []

        for _ in range(int(line_count)):
            best = int(np.argmax(values))
            selected.append(
                LineCandidate(
                    best * RADIANS_PER_DEGREE,
                    float(profile.rows[best]),
                    float(values[best]),
                )
            )
            for j in range(best - window, best + window + 1):
                values[j % DEGREES180] = 0.0

        logger.debug(
            "Selected lines at %s deg",
            ", ".join(f"{math.degrees(c.angle_rad):.0f}" for c in selected),
        )
        return selected

    def _refine_line(self, field: IntensityField, index: int, candidate: LineCandidate, out: list) -> None:
        means = self.rotated_row_means(field, candidate.angle_rad)
        box = means[field.top:field.bottom]
        peak = field.top + int(np.argmax(box))
        fit = fit_peak(means, peak, self.config.FIT_HALF_WIDTH)
        out[index] = LineCandidate(candidate.angle_rad, fit.position, candidate.value)

    def refine_lines(
        self, field: IntensityField, candidates: list[LineCandidate], executor: Executor
    ) -> list[LineCandidate]:
        """Subpixel row for each candidate at its exact angle."""
        refined: list = [None] * len(candidates)
        futures = [
            executor.submit(self._refine_line, field, i, cand, refined)
            for i, cand in enumerate(candidates)
        ]
        for fut in futures:
            fut.result()

        for cand in refined:
            if not (0.0 <= cand.row < field.height) or not math.isfinite(cand.row):
                raise InvalidFrame(
                    "Refined line outside image", {"row": cand.row, "height": field.height}
                )
        return refined
