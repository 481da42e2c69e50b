import argparse
import logging
import math
import signal
import sys
from pathlib import Path

from LYRA.config import Config
from LYRA.src.core.algorithms import FocusPipeline, ScanRecorder
from LYRA.src.core.errors import LyraError
from LYRA.src.core.types import FocusResult

logger = logging.getLogger("LYRA")


def format_result(result: FocusResult) -> str:
    lines = []
    for i, (angle, row) in enumerate(zip(result.line_set.angles, result.line_set.rows)):
        lines.append(f"  line {i}: {math.degrees(angle):7.2f} deg  row {row:8.3f}")
    for a in result.assessments:
        lines.append(
            f"  group {a.group}: error {a.signed_error_px:+.2f} px  {a.error_um:.2f} um  "
            f"{'WITHIN' if a.within_critical_focus else 'outside'} critical focus"
        )
    return "\n".join(lines)


def build_config(args) -> Config:
    config = Config.load(Path(args.config)) if args.config else Config.load()
    if args.lines is not None:
        config.LINE_COUNT = args.lines
    if args.aperture is not None:
        config.APERTURE_MM = args.aperture
    if args.focal_length is not None:
        config.FOCAL_LENGTH_MM = args.focal_length
    if args.pixel_size is not None:
        config.PIXEL_SIZE_UM = args.pixel_size
    config.normalize()
    return config


def save_failed_scan(pipeline: FocusPipeline, frame, config: Config) -> None:
    try:
        profile = pipeline.scan_profile(frame)
    except LyraError as exc:
        logger.warning("No scan to save: %s", exc)
        return
    print(f"Diagnostics: {ScanRecorder(config).save(profile)}")


def run_analyze(args, config: Config) -> int:
    from LYRA.src.drivers.capture import ImageFileSource

    source = ImageFileSource(Path(args.image))
    frame = source.get_frame()
    with FocusPipeline(config) as pipeline:
        try:
            result = pipeline.analyze(frame)
        except LyraError as exc:
            print(f"Analysis failed: {exc}")
            if args.save_diagnostics:
                save_failed_scan(pipeline, frame, config)
            return 1

        print(f"{Path(args.image).name}:")
        print(format_result(result))
        if args.save_diagnostics:
            path = ScanRecorder(config).save(result.profile, result)
            print(f"Diagnostics: {path}")
    return 0


def run_live(args, config: Config) -> int:
    from PyQt5 import QtCore

    from LYRA.src.core.worker import FocusWorker
    from LYRA.src.drivers.capture import ImageFileSource, MockStarSource

    if args.sim:
        source = MockStarSource(config)
    elif args.image:
        source = ImageFileSource(Path(args.image))
    else:
        print("live mode needs --sim or an IMAGE to watch")
        return 2

    app = QtCore.QCoreApplication(sys.argv)
    worker = FocusWorker(source, config)
    worker.status_msg.connect(lambda msg: logger.info(msg))
    worker.frame_failed.connect(lambda msg: logger.warning("Frame rejected: %s", msg))
    worker.focus_update.connect(
        lambda assessments: [
            logger.info(
                "group %d: %+.2f px %.2f um%s",
                a.group,
                a.signed_error_px,
                a.error_um,
                " (critical focus)" if a.within_critical_focus else "",
            )
            for a in assessments
        ]
    )

    def shutdown(*_):
        print("Closing application...")
        worker.stop()
        result = worker.last_result
        if args.save_diagnostics and result is not None:
            worker.recorder.save(result.profile, result)
        source.close()
        app.quit()

    signal.signal(signal.SIGINT, shutdown)
    # Let the Python interpreter run so SIGINT is delivered.
    timer = QtCore.QTimer()
    timer.timeout.connect(lambda: None)
    timer.start(200)

    worker.start()
    return app.exec_()


def main():
    parser = argparse.ArgumentParser(prog="lyra", description="Bahtinov mask focus analysis")
    parser.add_argument("mode", choices=["analyze", "live"], help="Analyze one image or watch a source")
    parser.add_argument("image", nargs="?", help="Image file (PNG/JPEG)")
    parser.add_argument("--sim", action="store_true", help="Use the simulated star source in live mode")
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--lines", type=int, help="Number of lines to detect (3 or 9)")
    parser.add_argument("--aperture", type=float, help="Aperture in mm")
    parser.add_argument("--focal-length", type=float, help="Focal length in mm")
    parser.add_argument("--pixel-size", type=float, help="Pixel size in microns")
    parser.add_argument("--save-diagnostics", action="store_true", help="Write scan CSV and plot")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = build_config(args)

    if args.mode == "analyze":
        if not args.image:
            parser.error("analyze needs an IMAGE")
        sys.exit(run_analyze(args, config))
    sys.exit(run_live(args, config))


if __name__ == "__main__":
    main()
