"""Frame analysis orchestration and diagnostic recording."""

from __future__ import annotations

import csv
import logging
import math
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Optional

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from LYRA.config import Config
from LYRA.src.core.analysis import DEGREES180, LineAnalyzer
from LYRA.src.core.errors import FrameCancelled, InvalidFrame
from LYRA.src.core.geometry import FocusEvaluator
from LYRA.src.core.mask import IntersectionValidator, arrange_lines
from LYRA.src.core.processing import ImageProcessor, PixelBuffer
from LYRA.src.core.types import BahtinovLineSet, Calibration, FocusResult, ScanProfile

matplotlib.use("Agg")

logger = logging.getLogger(__name__)


class FocusPipeline:
    """Runs field build, scan, selection, refinement and geometry for one frame."""

    def __init__(
        self,
        config: Config,
        processor: Optional[ImageProcessor] = None,
        analyzer: Optional[LineAnalyzer] = None,
        evaluator: Optional[FocusEvaluator] = None,
    ):
        self.config = config
        self.processor = processor or ImageProcessor(config)
        self.analyzer = analyzer or LineAnalyzer(config)
        self.evaluator = evaluator or FocusEvaluator(config)
        workers = int(config.SCAN_WORKERS) or (os.cpu_count() or 1)
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="lyra-scan")

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "FocusPipeline":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @staticmethod
    def _check(cancel, stage: str) -> None:
        if cancel is not None and cancel.is_set():
            logger.debug("Analysis cancelled before %s", stage)
            raise FrameCancelled(stage)

    def scan_profile(self, buffer: PixelBuffer, cancel=None) -> ScanProfile:
        """Stages 1-2 only: the coarse 180-degree profile, e.g. for diagnostics."""
        self._check(cancel, "field")
        field = self.processor.build_intensity_field(buffer)
        self._check(cancel, "scan")
        return self.analyzer.coarse_scan(field, self._executor)

    def _detect(self, buffer: PixelBuffer, cancel=None) -> tuple[BahtinovLineSet, ScanProfile]:
        line_count = int(self.config.LINE_COUNT)

        self._check(cancel, "field")
        field = self.processor.build_intensity_field(buffer)

        self._check(cancel, "scan")
        profile = self.analyzer.coarse_scan(field, self._executor)

        self._check(cancel, "select")
        candidates = self.analyzer.select_lines(profile, line_count)
        # Slots must follow mask geometry (outer, middle, outer), not brightness.
        if line_count in (3, 9):
            candidates = arrange_lines(candidates, field.height)

        self._check(cancel, "refine")
        refined = self.analyzer.refine_lines(field, candidates, self._executor)
        return BahtinovLineSet.from_candidates(refined, field.width, field.height), profile

    def detect_lines(self, buffer: PixelBuffer, cancel=None) -> BahtinovLineSet:
        """Stages 1-5: mask-ordered lines with subpixel rows."""
        return self._detect(buffer, cancel)[0]

    def analyze(
        self,
        buffer: PixelBuffer,
        cancel=None,
        calibration: Optional[Calibration] = None,
    ) -> FocusResult:
        """Full analysis of one frame. Raises a LyraError subclass on failure."""
        line_set, profile = self._detect(buffer, cancel)
        if len(line_set) % 3 != 0:
            raise InvalidFrame("Line count must be a multiple of three", {"lines": len(line_set)})

        self._check(cancel, "geometry")
        if len(line_set) == 9:
            validator = IntersectionValidator(
                self.config.INTERSECTION_REQUIRED_LINES, self.config.INTERSECTION_TOLERANCE_PX
            )
            if not validator.has_minimum_intersecting_lines(line_set):
                logger.info("Tri-Bahtinov lines do not share a common crossing point")

        assessments = self.evaluator.evaluate(line_set, calibration or self.config.calibration())
        return FocusResult(line_set, assessments, profile)


class ScanRecorder:
    """Writes the coarse scan profile and the frame result for offline inspection."""

    def __init__(self, config: Config):
        self.config = config

    def save(self, profile: ScanProfile, result: Optional[FocusResult] = None) -> Path:
        out_dir = self.config.diagnostics_dir()
        out_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")

        csv_path = out_dir / f"line_scan_{timestamp}.csv"
        with csv_path.open("w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["Angle_deg", "Brightest_Row", "Row_Mean"])
            for degree in range(DEGREES180):
                writer.writerow([degree, int(profile.rows[degree]), float(profile.values[degree])])

        fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(10, 10))
        degrees = np.arange(DEGREES180)
        ax1.plot(degrees, profile.values, "b.-", ms=4, lw=1.0, label="Brightest row mean")
        ax1.set_title("Rotational Line Scan")
        ax1.set_xlabel("Rotation (deg)")
        ax1.set_ylabel("Row mean")
        ax1.grid(True, which="both", linestyle="-", alpha=0.6)

        ax2.plot(degrees, profile.rows, "g.", ms=4, label="Brightest row")
        ax2.set_xlabel("Rotation (deg)")
        ax2.set_ylabel("Row index")
        ax2.grid(True, which="both", linestyle="-", alpha=0.6)

        if result is not None:
            for angle, row in zip(result.line_set.angles, result.line_set.rows):
                deg = math.degrees(angle) % 180.0
                ax1.axvline(deg, color="r", ls="--", lw=1.0)
                ax2.plot([deg], [row], "rx", ms=8)
            lines = [
                f"Group {a.group}: {a.signed_error_px:+.2f} px, {a.error_um:.1f} um"
                + (" (in focus)" if a.within_critical_focus else "")
                for a in result.assessments
            ]
            ax2.set_title(" | ".join(lines) if lines else "No assessment")

        ax1.legend()
        ax2.legend()
        plt.tight_layout()
        plot_path = out_dir / f"line_scan_{timestamp}.png"
        plt.savefig(plot_path)
        plt.close(fig)

        logger.info("Scan diagnostics saved to %s", plot_path)
        return plot_path
