import logging
import math
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence

import matplotlib.image as mpimg
import numpy as np

from LYRA.config import Config
from LYRA.src.core.processing import PixelBuffer

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    @abstractmethod
    def get_frame(self) -> Optional[PixelBuffer]: pass
    @abstractmethod
    def close(self) -> None: pass


def center_square(img: np.ndarray) -> np.ndarray:
    h, w = img.shape[:2]
    side = min(h, w)
    y0 = (h - side) // 2
    x0 = (w - side) // 2
    return img[y0:y0 + side, x0:x0 + side]


def to_rgb8(img: np.ndarray) -> np.ndarray:
    """Normalize grayscale / RGBA / float images to (H, W, 3) uint8."""
    arr = np.asarray(img)
    if arr.dtype.kind == "f":
        arr = np.clip(arr * 255.0 if arr.max(initial=0.0) <= 1.0 else arr, 0, 255)
    arr = arr.astype(np.uint8)
    if arr.ndim == 2:
        arr = np.stack([arr, arr, arr], axis=2)
    return np.ascontiguousarray(arr[:, :, :3])


class ImageFileSource(FrameSource):
    """Serves the same still image on every call, cropped to a centered square."""

    def __init__(self, path: Path):
        self.path = Path(path)
        img = mpimg.imread(str(self.path))
        self._buffer = PixelBuffer.from_array(to_rgb8(center_square(img)))
        logger.info("Loaded %s (%dx%d)", self.path.name, self._buffer.width, self._buffer.height)

    def get_frame(self) -> Optional[PixelBuffer]:
        return self._buffer

    def close(self) -> None:
        pass


def render_bahtinov_star(
    size: int,
    angles_deg: Sequence[float],
    offsets_px: Sequence[float],
    amplitudes: Sequence[float],
    spike_sigma: float = 1.2,
    core_amplitude: float = 120.0,
    core_sigma: float = 3.0,
    background: float = 8.0,
    noise: float = 3.0,
    seed: Optional[int] = 0,
) -> np.ndarray:
    """
    Synthetic Bahtinov star as an (size, size, 3) uint8 image.

    Each spike is a Gaussian ridge whose rotated row (as seen by the line
    scanner at that angle) sits at `center_y + offset`.
    """
    cx = cy = (size + 1.0) / 2.0
    yy, xx = np.mgrid[0:size, 0:size].astype(np.float64)
    dx = xx - cx
    dy = yy - cy

    img = np.full((size, size), background, dtype=np.float64)
    img += core_amplitude * np.exp(-(dx ** 2 + dy ** 2) / (2.0 * core_sigma ** 2))
    for angle, offset, amp in zip(angles_deg, offsets_px, amplitudes):
        theta = math.radians(angle)
        dist = dx * math.sin(theta) + dy * math.cos(theta) - offset
        img += amp * np.exp(-(dist ** 2) / (2.0 * spike_sigma ** 2))

    if noise > 0:
        rng = np.random.default_rng(seed)
        img += rng.normal(0.0, noise, img.shape)

    gray = np.clip(img, 0, 255).astype(np.uint8)
    return np.stack([gray, gray, gray], axis=2)


class MockStarSource(FrameSource):
    """Bahtinov star whose middle spike moves with a simulated focuser."""

    def __init__(self, config: Config = Config(), size: int = 240):
        logger.info("--- Initializing MOCK star source ---")
        self.config = config
        self.size = size
        self.angles_deg = (62.0, 80.0, 98.0)
        # The middle spike is the brightest with a real mask.
        self.amplitudes = (115.0, 160.0, 130.0)
        self.focus_position_um = 0.0
        self.best_focus_um = 40.0
        self.px_per_um = 0.05
        self._frame_index = 0

    def move_focuser(self, position_um: float) -> None:
        self.focus_position_um = float(position_um)

    @property
    def middle_offset_px(self) -> float:
        return (self.focus_position_um - self.best_focus_um) * self.px_per_um

    def get_frame(self) -> Optional[PixelBuffer]:
        self._frame_index += 1
        img = render_bahtinov_star(
            self.size,
            self.angles_deg,
            (0.0, self.middle_offset_px, 0.0),
            self.amplitudes,
            seed=self._frame_index,
        )
        time.sleep(0.01)  # Simulate capture latency
        return PixelBuffer.from_array(img)

    def close(self) -> None:
        logger.info("MOCK star source closed.")
