"""Pixel buffer access and intensity field construction."""

from __future__ import annotations

import hashlib
import logging
import math

import numpy as np

from LYRA.config import Config
from LYRA.src.core.errors import InvalidFrame
from LYRA.src.core.types import IntensityField

logger = logging.getLogger(__name__)

# 3 / 255: a full-white RGB pixel maps to sqrt(9) = 3
DIVISION_FACTOR = 3.0 / 255.0
EDGE_MARGIN_PX = 8.0

CHANNEL_INDEX = {"RED": 0, "GREEN": 1, "BLUE": 2}


class PixelBuffer:
    """Bounds-checked view over a packed row-major RGB(A) buffer."""

    def __init__(self, data, width: int, height: int, stride: int, bytes_per_pixel: int = 3):
        if bytes_per_pixel not in (3, 4):
            raise ValueError(f"Unsupported bytes per pixel: {bytes_per_pixel}")
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid buffer size {width}x{height}")
        if stride < width * bytes_per_pixel:
            raise ValueError(f"Stride {stride} too small for width {width}")

        raw = np.frombuffer(data, dtype=np.uint8)
        if raw.size < stride * height:
            raise ValueError(f"Buffer holds {raw.size} bytes, expected {stride * height}")

        self.width = int(width)
        self.height = int(height)
        self.stride = int(stride)
        self.bytes_per_pixel = int(bytes_per_pixel)
        rows = raw[: stride * height].reshape(height, stride)
        self._pixels = rows[:, : width * bytes_per_pixel].reshape(height, width, bytes_per_pixel)

    @classmethod
    def from_array(cls, img: np.ndarray) -> "PixelBuffer":
        """Wrap a (height, width, 3|4) uint8 array."""
        if img.ndim != 3 or img.shape[2] not in (3, 4):
            raise ValueError(f"Expected (H, W, 3|4) array, got shape {img.shape}")
        arr = np.ascontiguousarray(img, dtype=np.uint8)
        h, w, bpp = arr.shape
        return cls(arr.tobytes(), w, h, w * bpp, bpp)

    def get_pixel(self, x: int, y: int) -> tuple[int, int, int]:
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"Pixel ({x}, {y}) outside {self.width}x{self.height} buffer")
        px = self._pixels[y, x]
        return int(px[0]), int(px[1]), int(px[2])

    def rgb(self) -> np.ndarray:
        """Read-only (height, width, 3) view of the colour channels."""
        view = self._pixels[:, :, :3]
        view.flags.writeable = False
        return view


def frame_digest(buffer: PixelBuffer) -> bytes:
    """SHA-256 of the visible pixels, used to skip frames that did not change."""
    h = hashlib.sha256()
    h.update(f"{buffer.width}x{buffer.height}".encode())
    h.update(np.ascontiguousarray(buffer.rgb()).tobytes())
    return h.digest()


def inscribed_box(width: int, height: int) -> tuple[int, int, int, int]:
    """Square box whose every rotation about the image center stays in bounds."""
    edge_offset = 0.5 * math.sqrt(2.0) * min(width, height) - EDGE_MARGIN_PX
    left = int(0.5 * (width - edge_offset))
    right = int(0.5 * (width + edge_offset))
    top = int(0.5 * (height - edge_offset))
    bottom = int(0.5 * (height + edge_offset))
    return left, right, top, bottom


class ImageProcessor:
    def __init__(self, config: Config):
        self.config = config

    def build_intensity_field(self, buffer: PixelBuffer) -> IntensityField:
        """Square-root compressed brightness inside the inscribed box."""
        width, height = buffer.width, buffer.height
        left, right, top, bottom = inscribed_box(width, height)
        if right - left < 2 or bottom - top < 2:
            raise InvalidFrame(
                "Image too small for line detection", {"width": width, "height": height}
            )

        box = buffer.rgb()[top:bottom, left:right]
        mode = self.config.CHANNEL_MODE.upper()
        if mode in CHANNEL_INDEX:
            level = box[:, :, CHANNEL_INDEX[mode]].astype(np.float64)
        else:
            if mode != "SUM":
                logger.warning("Unknown CHANNEL_MODE '%s'. Falling back to SUM.", mode)
            level = box.sum(axis=2, dtype=np.float64)

        values = np.zeros((height, width), dtype=np.float64)
        values[top:bottom, left:right] = np.sqrt(level * DIVISION_FACTOR)
        values.flags.writeable = False

        return IntensityField(
            values,
            left,
            right,
            top,
            bottom,
            (width + 1.0) / 2.0,
            (height + 1.0) / 2.0,
        )
