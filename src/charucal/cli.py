#!/usr/bin/env python3
"""
charucal CLI - camera calibration with a ChArUco board.

Usage:
    charucal calibrate OUTFILE [options]  - Capture frames and calibrate
    charucal board OUTFILE [options]      - Write a printable board image
    charucal --help                       - Show this help

While capturing, press 'c' to add the current frame and 'ESC' to finish
and calibrate. With video input, any other key steps to the next frame.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

import cv2

from . import logger as log_setup
from .board import generate_board_image
from .calibration import CalibrationPipeline
from .config import load_detector_parameters, load_project_config
from .detection import CornerInterpolator, FiducialDetector
from .exceptions import CharucalError, ConfigurationError, PersistenceError
from .persistence import write_camera_parameters
from .session import CaptureSession, KeyboardCommands, PreviewWindow, VideoSource, review_corners
from .types import (
    BoardModel,
    CalibrationFlags,
    CalibrationResult,
    CalibrationSettings,
    CaptureConfig,
    ProjectConfig,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Argument Parsing
# ============================================================================


def _add_board_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("board")
    group.add_argument("-w", "--squares-x", type=int, help="Number of squares in X direction")
    group.add_argument("-H", "--squares-y", type=int, help="Number of squares in Y direction")
    group.add_argument("--square-length", type=float, help="Square side length (in meters)")
    group.add_argument("--marker-length", type=float, help="Marker side length (in meters)")
    group.add_argument(
        "-d", "--dictionary",
        help="Dictionary name (DICT_6X6_250) or id: DICT_4X4_50=0, DICT_4X4_100=1, "
        "DICT_4X4_250=2, DICT_4X4_1000=3, DICT_5X5_50=4, DICT_5X5_100=5, DICT_5X5_250=6, "
        "DICT_5X5_1000=7, DICT_6X6_50=8, DICT_6X6_100=9, DICT_6X6_250=10, DICT_6X6_1000=11, "
        "DICT_7X7_50=12, DICT_7X7_100=13, DICT_7X7_250=14, DICT_7X7_1000=15, "
        "DICT_ARUCO_ORIGINAL=16",
    )
    group.add_argument("--legacy-pattern", action="store_true", default=None,
                       help="Use the pre-4.6 OpenCV board layout")
    group.add_argument("--config", type=Path, help="TOML project configuration")


def build_calibrate_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="charucal calibrate",
        description="Calibration using a ChArUco board",
    )
    parser.add_argument("outfile", type=Path, nargs="?",
                        help="Output file with calibrated camera parameters")
    _add_board_arguments(parser)

    capture = parser.add_argument_group("capture")
    capture.add_argument("-v", "--video", type=Path,
                         help="Input from video file, if omitted, input comes from camera")
    capture.add_argument("--camera", type=int, help="Camera id if input doesn't come from video")
    capture.add_argument("--resolution", type=int, nargs=2, metavar=("WIDTH", "HEIGHT"),
                         help="Requested camera resolution")
    capture.add_argument("--wait-ms", type=int, help="Per-frame key wait for live cameras")
    capture.add_argument("--detector-params", type=Path, help="File of marker detector parameters")
    capture.add_argument("--refine", action="store_true", default=None,
                         help="Apply refind strategy")

    calib = parser.add_argument_group("calibration")
    calib.add_argument("--zero-tangent", action="store_true",
                       help="Assume zero tangential distortion")
    calib.add_argument("-a", "--aspect-ratio", type=float,
                       help="Fix aspect ratio (fx/fy) to this value")
    calib.add_argument("--fix-principal-point", action="store_true",
                       help="Fix the principal point at the center")
    calib.add_argument("--show-corners", action="store_true", default=None,
                       help="Show detected chessboard corners after calibration")

    parser.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument("--log-file", type=Path, help="Also write a debug log to this file")
    return parser


def build_board_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="charucal board",
        description="Write a printable ChArUco board image",
    )
    parser.add_argument("outfile", type=Path, help="Output image file")
    _add_board_arguments(parser)
    parser.add_argument("--width", type=int, default=700, help="Image width in pixels")
    parser.add_argument("--height", type=int, default=900, help="Image height in pixels")
    parser.add_argument("--margin", type=int, default=50, help="Margin in pixels")
    parser.add_argument("--border-bits", type=int, default=1, help="Marker border bits")
    return parser


def _board_from_args(args: argparse.Namespace, base: BoardModel | None) -> BoardModel:
    """Command line board options override the config file's [board]."""
    values = {
        "squares_x": args.squares_x,
        "squares_y": args.squares_y,
        "square_length": args.square_length,
        "marker_length": args.marker_length,
        "dictionary": args.dictionary,
        "legacy_pattern": args.legacy_pattern,
    }
    overrides = {key: value for key, value in values.items() if value is not None}

    if base is not None:
        return replace(base, **overrides)

    missing = [
        f"--{key.replace('_', '-')}"
        for key in ("squares_x", "squares_y", "square_length", "marker_length", "dictionary")
        if key not in overrides
    ]
    if missing:
        raise ConfigurationError(f"Missing board settings: {', '.join(missing)}")
    return BoardModel(**overrides)


def config_from_args(args: argparse.Namespace) -> ProjectConfig:
    """
    Merge the optional TOML config with command line options.

    Raises:
        ConfigurationError: If board geometry is incomplete or invalid
    """
    base = load_project_config(args.config) if args.config else None

    try:
        board = _board_from_args(args, base.board if base else None)

        settings = base.calibration if base else CalibrationSettings()
        flags = settings.flags
        aspect_ratio = settings.aspect_ratio
        if args.aspect_ratio is not None:
            flags |= CalibrationFlags.FIX_ASPECT_RATIO
            aspect_ratio = args.aspect_ratio
        if args.zero_tangent:
            flags |= CalibrationFlags.ZERO_TANGENT_DIST
        if args.fix_principal_point:
            flags |= CalibrationFlags.FIX_PRINCIPAL_POINT
        settings = replace(settings, flags=flags, aspect_ratio=aspect_ratio)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    capture = base.capture if base else CaptureConfig()
    capture_overrides = {
        "video_path": args.video,
        "camera_id": args.camera,
        "resolution": tuple(args.resolution) if args.resolution else None,
        "wait_ms": args.wait_ms,
        "refine_strategy": args.refine,
        "show_corners": args.show_corners,
    }
    capture = replace(
        capture, **{key: value for key, value in capture_overrides.items() if value is not None}
    )

    output_path = args.outfile or (base.output_path if base else None)
    if output_path is None:
        raise ConfigurationError("No output file given")

    return ProjectConfig(
        board=board,
        calibration=settings,
        capture=capture,
        output_path=output_path,
        detector_parameters=args.detector_params or (base.detector_parameters if base else None),
    )


# ============================================================================
# Commands
# ============================================================================


def run_calibration(config: ProjectConfig) -> CalibrationResult:
    """
    Full run: capture, calibrate, save.

    Raises:
        ConfigurationError: Detector parameters cannot be loaded
        NoDataError: No frame committed
        InsufficientCalibrationData: Too few frames with board corners
        PersistenceError: Output file cannot be written
    """
    parameters = None
    if config.detector_parameters is not None:
        parameters = load_detector_parameters(config.detector_parameters)

    capture = config.capture
    board = config.board

    detector = FiducialDetector(board, parameters)
    interpolator = CornerInterpolator(board)
    window = PreviewWindow()

    if capture.video_path is not None:
        source = VideoSource(capture.video_path)
        wait_ms = 0  # Any key advances to the next video frame
    else:
        source = VideoSource(capture.camera_id, capture.resolution)
        wait_ms = capture.wait_ms
    commands = KeyboardCommands(wait_ms)

    try:
        with source:
            session = CaptureSession(
                source,
                commands,
                detector,
                refine=capture.refine_strategy,
                renderer=window,
                corner_preview=interpolator,
            )
            store = session.run()

        pipeline = CalibrationPipeline(board, config.calibration, interpolator=interpolator)
        result = pipeline.run(store)

        if not write_camera_parameters(config.output_path, result):
            raise PersistenceError(
                f"Cannot save output file: {config.output_path}", path=config.output_path
            )

        print(f"Rep Error: {result.board_error}")
        print(f"Rep Error Aruco: {result.marker_error}")
        print(f"Calibration saved to {config.output_path}")

        if capture.show_corners:
            corner_sets = [
                interpolator(observation, result.camera_matrix, result.distortion)
                for observation in store
            ]
            review_corners(store, corner_sets, window, KeyboardCommands(wait_ms))
    finally:
        window.close()

    return result


def calibrate_main(argv: list[str]) -> int:
    args = build_calibrate_parser().parse_args(argv)
    log_setup.configure(args.log_level, args.log_file)

    try:
        config = config_from_args(args)
        run_calibration(config)
    except CharucalError as e:
        logger.error(str(e))
        return 1
    return 0


def board_main(argv: list[str]) -> int:
    args = build_board_parser().parse_args(argv)
    log_setup.configure("INFO")

    try:
        base = load_project_config(args.config).board if args.config else None
        board = _board_from_args(args, base)
    except (CharucalError, ValueError) as e:
        logger.error(str(e))
        return 1

    image = generate_board_image(board, args.width, args.height, args.margin, args.border_bits)
    if not cv2.imwrite(str(args.outfile), image):
        logger.error(f"Cannot write board image: {args.outfile}")
        return 1

    print(f"Board image saved to {args.outfile}")
    return 0


def main():
    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help"):
        print(__doc__)
        print("Commands:")
        print("  calibrate   Capture frames interactively and calibrate the camera")
        print("  board       Generate a printable ChArUco board image")
        print()
        return 0

    command = sys.argv[1]
    argv = sys.argv[2:]

    if command == "calibrate":
        return calibrate_main(argv)

    elif command == "board":
        return board_main(argv)

    else:
        print(f"Unknown command: {command}")
        print("Run 'charucal --help' for usage")
        return 1


if __name__ == "__main__":
    sys.exit(main())
