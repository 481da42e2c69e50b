import math
import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from LYRA.config import Config
from LYRA.src.core.errors import IntersectionComputeFailed, InvalidFrame, LinesNotDetected
from LYRA.src.core.geometry import (
    FocusEvaluator,
    canonicalize,
    critical_focus_value,
    error_sign,
    focus_error_microns,
    intersect,
    line_from_candidate,
    perpendicular_offset,
)
from LYRA.src.core.types import (
    BahtinovLineSet,
    Calibration,
    GeometricLine,
    LineCandidate,
    Point2D,
)


CAL = Calibration(200.0, 1000.0, 3.8)


def seg(x1, y1, x2, y2):
    return GeometricLine.from_points(Point2D(x1, y1), Point2D(x2, y2))


def expected_microns(distance_px, angle_rad, aperture_mm, focal_mm, pixel_um):
    d = aperture_mm / 1000.0
    f = focal_mm / 1000.0
    ppm = 9.0 / 32.0 * d / (f * pixel_um) * (1.0 + math.cos(math.pi / 4.0) * (1.0 + math.tan(angle_rad)))
    return distance_px / ppm


class TestLineGeometry(unittest.TestCase):
    def setUp(self):
        self.evaluator = FocusEvaluator(Config())
        # Outer lines cross at (5, 5).
        self.first = seg(0, 0, 10, 10)
        self.third = seg(0, 10, 10, 0)

    def _assess(self, middle_y):
        middle = seg(0, middle_y, 10, middle_y)
        return self.evaluator.assess_lines([self.first, middle, self.third], [0.0, 0.3, 0.6], CAL)

    def test_intersection(self):
        p = intersect(self.first, self.third)
        self.assertAlmostEqual(p.x, 5.0)
        self.assertAlmostEqual(p.y, 5.0)

    def test_reference_through_crossing(self):
        res = self._assess(5.0)
        self.assertAlmostEqual(res.distance_px, 0.0, places=12)
        self.assertEqual(res.signed_error_px, 0.0)
        self.assertAlmostEqual(res.perpendicular_foot.x, 5.0)
        self.assertAlmostEqual(res.perpendicular_foot.y, 5.0)

    def test_reference_below_crossing(self):
        res = self._assess(6.0)
        self.assertAlmostEqual(res.distance_px, 1.0, places=12)
        self.assertAlmostEqual(res.signed_error_px, -1.0, places=12)
        self.assertAlmostEqual(res.perpendicular_foot.x, 5.0)
        self.assertAlmostEqual(res.perpendicular_foot.y, 6.0)

    def test_reference_above_crossing(self):
        res = self._assess(4.0)
        self.assertAlmostEqual(res.distance_px, 1.0, places=12)
        self.assertAlmostEqual(res.signed_error_px, 1.0, places=12)

    def test_parallel_outer_lines(self):
        middle = seg(0, 5, 10, 5)
        with self.assertRaises(LinesNotDetected):
            self.evaluator.assess_lines(
                [seg(0, 0, 10, 10), middle, seg(0, 5, 10, 15)], [0.0, 0.3, 0.6], CAL
            )

    def test_vertical_outer_line(self):
        p = intersect(seg(3, 0, 3, 10), self.first)
        self.assertEqual((p.x, p.y), (3.0, 3.0))
        p = intersect(self.first, seg(3, 0, 3, 10))
        self.assertEqual((p.x, p.y), (3.0, 3.0))

    def test_two_vertical_lines(self):
        with self.assertRaises(LinesNotDetected):
            intersect(seg(3, 0, 3, 10), seg(7, 0, 7, 10))

    def test_degenerate_reference_line(self):
        with self.assertRaises(IntersectionComputeFailed):
            perpendicular_offset(Point2D(1.0, 1.0), seg(2, 2, 2, 2))

    def test_error_sign_on_line(self):
        self.assertEqual(error_sign(Point2D(3.0, 5.0), seg(0, 5, 10, 5)), 0.0)

    def test_wrong_line_count(self):
        with self.assertRaises(InvalidFrame):
            self.evaluator.assess_lines([self.first, self.third], [0.0, 0.6], CAL)


class TestCandidateLines(unittest.TestCase):
    def test_horizontal_through_center(self):
        line = line_from_candidate(LineCandidate(0.0, 5.5, 1.0), Point2D(5.5, 5.5))
        self.assertAlmostEqual(line.start.x, 0.0)
        self.assertAlmostEqual(line.start.y, 5.5)
        self.assertAlmostEqual(line.end.x, 11.0)
        self.assertAlmostEqual(line.end.y, 5.5)
        self.assertAlmostEqual(line.slope, 0.0)

    def test_row_offset_shifts_line(self):
        line = line_from_candidate(LineCandidate(0.0, 7.5, 1.0), Point2D(5.5, 5.5))
        self.assertAlmostEqual(line.start.y, 3.5)
        self.assertAlmostEqual(line.end.y, 3.5)

    def test_canonicalize_swaps_vertical_first_line(self):
        group = [
            LineCandidate(math.pi / 2.0 + 5e-5, 10.0, 1.0),
            LineCandidate(1.7, 11.0, 1.0),
            LineCandidate(1.9, 12.0, 1.0),
        ]
        out = canonicalize(group)
        self.assertEqual([c.row for c in out], [12.0, 11.0, 10.0])

    def test_canonicalize_leaves_other_lines(self):
        group = [
            LineCandidate(math.pi / 2.0 + 2e-4, 10.0, 1.0),
            LineCandidate(1.7, 11.0, 1.0),
            LineCandidate(1.9, 12.0, 1.0),
        ]
        self.assertEqual(canonicalize(group), group)


class TestFocusError(unittest.TestCase):
    def test_microns_closed_form(self):
        got = focus_error_microns(2.0, 0.3, CAL)
        self.assertAlmostEqual(got, expected_microns(2.0, 0.3, 200.0, 1000.0, 3.8), places=9)

    def test_critical_focus_value(self):
        self.assertAlmostEqual(critical_focus_value(CAL), 8.99999974990351e-7 * 25.0, places=15)

    def test_assessment_units(self):
        evaluator = FocusEvaluator(Config())
        first = seg(0, 0, 10, 10)
        third = seg(0, 10, 10, 0)

        far = evaluator.assess_lines([first, seg(0, 7, 10, 7), third], [0.0, 0.3, 0.6], CAL)
        expected = expected_microns(2.0, 0.3, 200.0, 1000.0, 3.8)
        self.assertAlmostEqual(far.bahtinov_angle_rad, 0.3)
        self.assertAlmostEqual(far.error_um, expected, places=9)
        self.assertEqual(far.within_critical_focus, abs(expected * 1e-6) < 2.25e-5)
        self.assertFalse(far.within_critical_focus)

        near = evaluator.assess_lines([first, seg(0, 5.5, 10, 5.5), third], [0.0, 0.3, 0.6], CAL)
        self.assertTrue(near.within_critical_focus)

    def test_zero_pixel_size_rejected(self):
        evaluator = FocusEvaluator(Config())
        lines = [seg(0, 0, 10, 10), seg(0, 6, 10, 6), seg(0, 10, 10, 0)]
        with self.assertRaises(IntersectionComputeFailed):
            evaluator.assess_lines(lines, [0.0, 0.3, 0.6], Calibration(200.0, 0.0, 3.8))


class TestEvaluate(unittest.TestCase):
    def setUp(self):
        self.evaluator = FocusEvaluator(Config())

    def _line_set(self, degrees, rows, size=101):
        return BahtinovLineSet(
            tuple(math.radians(d) for d in degrees), tuple(rows), (1.0,) * len(rows), size, size
        )

    def test_centered_group(self):
        res = self.evaluator.evaluate(self._line_set((62, 80, 98), (51.0, 51.0, 51.0)), CAL)
        self.assertEqual(len(res), 1)
        self.assertAlmostEqual(res[0].distance_px, 0.0, places=9)
        self.assertAlmostEqual(res[0].intersection.x, 51.0, places=9)
        self.assertAlmostEqual(res[0].intersection.y, 51.0, places=9)

    def test_middle_offset_distance(self):
        res = self.evaluator.evaluate(self._line_set((62, 80, 98), (51.0, 53.0, 51.0)), CAL)
        self.assertAlmostEqual(res[0].distance_px, 2.0, places=9)

    def test_rejects_partial_group(self):
        with self.assertRaises(InvalidFrame):
            self.evaluator.evaluate(self._line_set((62, 80, 98, 120), (51.0,) * 4), CAL)
        with self.assertRaises(InvalidFrame):
            self.evaluator.evaluate(self._line_set((), ()), CAL)

    def test_rejects_row_outside_image(self):
        with self.assertRaises(InvalidFrame):
            self.evaluator.evaluate(self._line_set((62, 80, 98), (51.0, 101.0, 51.0)), CAL)


if __name__ == "__main__":
    unittest.main()
