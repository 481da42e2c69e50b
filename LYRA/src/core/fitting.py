"""Least-squares parabola fit used to place a peak between samples."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from LYRA.src.core.types import FitResult

logger = logging.getLogger(__name__)

PIVOT_EPS = 1e-18
CURVATURE_EPS = 1e-12


def _solve_3x3(m: np.ndarray, v: np.ndarray) -> Optional[np.ndarray]:
    """Gaussian elimination with partial pivoting. Returns None when singular."""
    a = np.array(m, dtype=np.float64)
    b = np.array(v, dtype=np.float64)
    n = 3

    for col in range(n):
        pivot = col + int(np.argmax(np.abs(a[col:, col])))
        if abs(a[pivot, col]) < PIVOT_EPS:
            return None
        if pivot != col:
            a[[col, pivot]] = a[[pivot, col]]
            b[[col, pivot]] = b[[pivot, col]]
        for row in range(col + 1, n):
            factor = a[row, col] / a[col, col]
            a[row, col:] -= factor * a[col, col:]
            b[row] -= factor * b[col]

    x = np.zeros(n, dtype=np.float64)
    for row in range(n - 1, -1, -1):
        x[row] = (b[row] - np.dot(a[row, row + 1:], x[row + 1:])) / a[row, row]
    return x


def fit_peak(samples, estimate: int, half_width: int) -> FitResult:
    """
    Subpixel peak of `samples` near `estimate`.

    Fits y = a*x^2 + b*x + c over [estimate - half_width, estimate + half_width]
    (clamped to the array) and returns the vertex. When the window is too short,
    the normal equations are singular, or the curvature is not a real maximum,
    the discrete argmax of the window is returned with degenerate=True.
    """
    y_all = np.asarray(samples, dtype=np.float64)
    n = y_all.size
    if n == 0:
        raise ValueError("fit_peak needs at least one sample")

    half_width = max(1, int(half_width))
    est = min(max(int(estimate), 0), n - 1)
    lo = max(0, est - half_width)
    hi = min(n - 1, est + half_width)

    window = y_all[lo:hi + 1]
    fallback = float(lo + int(np.argmax(window)))

    if window.size < 3:
        logger.debug("Peak fit fallback at %d: window of %d samples", est, window.size)
        return FitResult(fallback, True)

    # Offsets from the estimate keep the normal equations well conditioned.
    x = np.arange(lo, hi + 1, dtype=np.float64) - est
    s0 = float(window.size)
    s1 = float(np.sum(x))
    s2 = float(np.sum(x ** 2))
    s3 = float(np.sum(x ** 3))
    s4 = float(np.sum(x ** 4))
    normal = np.array([[s4, s3, s2], [s3, s2, s1], [s2, s1, s0]])
    rhs = np.array([np.dot(x ** 2, window), np.dot(x, window), np.sum(window)])

    coeffs = _solve_3x3(normal, rhs)
    if coeffs is None:
        logger.debug("Peak fit fallback at %d: singular normal equations", est)
        return FitResult(fallback, True)

    a, b, _ = coeffs
    if a >= 0.0 or abs(a) < CURVATURE_EPS:
        logger.debug("Peak fit fallback at %d: curvature %.3g is not a maximum", est, a)
        return FitResult(fallback, True)

    vertex = est + (-b / (2.0 * a))
    return FitResult(float(min(max(vertex, lo), hi)), False)
