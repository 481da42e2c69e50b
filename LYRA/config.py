"""LYRA settings: optics calibration and detection parameters, stored as JSON."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

from LYRA.src.core.types import Calibration

logger = logging.getLogger(__name__)


@dataclass
class Config:
    # Optics
    APERTURE_MM: float = 200.0
    FOCAL_LENGTH_MM: float = 1000.0
    PIXEL_SIZE_UM: float = 3.8

    # Line detection
    LINE_COUNT: int = 3
    CHANNEL_MODE: str = "SUM"  # SUM, RED, GREEN, BLUE
    SUPPRESSION_DEG: int = 5
    FIT_HALF_WIDTH: int = 2
    SCAN_WORKERS: int = 0  # 0 = one per CPU

    # Tri-Bahtinov intersection check
    INTERSECTION_REQUIRED_LINES: int = 6
    INTERSECTION_TOLERANCE_PX: float = 20.0

    # Capture
    CAPTURE_INTERVAL_MS: int = 150

    # Diagnostics
    DIAGNOSTICS_DIR: str = ""

    @staticmethod
    def default_path() -> Path:
        return Path.home() / ".lyra_config.json"

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        cfg = cls()
        cfg_path = path or cls.default_path()
        if not cfg_path.exists():
            return cfg

        try:
            data = json.loads(cfg_path.read_text())
        except Exception:
            logger.exception("Failed to read config file: %s", cfg_path)
            return cfg

        for f in fields(cfg):
            if f.name not in data:
                continue
            raw = data[f.name]
            try:
                if f.type in (bool, "bool"):
                    val = bool(raw)
                elif f.type in (int, "int"):
                    val = int(raw)
                elif f.type in (float, "float"):
                    val = float(raw)
                else:
                    val = raw
                setattr(cfg, f.name, val)
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid config value for %s", f.name)

        cfg.normalize()
        return cfg

    def save(self, path: Optional[Path] = None) -> None:
        cfg_path = path or self.default_path()
        cfg_path.write_text(json.dumps(asdict(self), indent=2, sort_keys=True))

    def normalize(self) -> None:
        self.LINE_COUNT = max(1, int(self.LINE_COUNT))
        self.SUPPRESSION_DEG = max(0, min(89, int(self.SUPPRESSION_DEG)))
        self.FIT_HALF_WIDTH = max(1, int(self.FIT_HALF_WIDTH))
        self.SCAN_WORKERS = max(0, int(self.SCAN_WORKERS))
        self.CAPTURE_INTERVAL_MS = max(10, int(self.CAPTURE_INTERVAL_MS))
        self.INTERSECTION_REQUIRED_LINES = max(2, int(self.INTERSECTION_REQUIRED_LINES))
        if self.INTERSECTION_TOLERANCE_PX <= 0:
            logger.warning("INTERSECTION_TOLERANCE_PX must be positive; using 20.0")
            self.INTERSECTION_TOLERANCE_PX = 20.0
        mode = str(self.CHANNEL_MODE).upper()
        if mode not in ("SUM", "RED", "GREEN", "BLUE"):
            logger.warning("Unknown CHANNEL_MODE '%s'. Falling back to SUM.", self.CHANNEL_MODE)
            mode = "SUM"
        self.CHANNEL_MODE = mode

    def calibration(self) -> Calibration:
        return Calibration(
            float(self.APERTURE_MM),
            float(self.FOCAL_LENGTH_MM),
            float(self.PIXEL_SIZE_UM),
        )

    def diagnostics_dir(self) -> Path:
        if self.DIAGNOSTICS_DIR:
            return Path(self.DIAGNOSTICS_DIR).expanduser()
        return Path(__file__).resolve().parent / "diagnostics"
