"""
Configuration loading/saving.

Pure functions operating on dataclasses.
- TOML for project configuration
- TOML or OpenCV FileStorage (YAML/XML/JSON) for detector parameters
"""

from __future__ import annotations

from pathlib import Path

import cv2
import rtoml

from .exceptions import ConfigurationError
from .types import (
    FLAG_NAMES,
    BoardModel,
    CalibrationFlags,
    CalibrationSettings,
    CaptureConfig,
    ProjectConfig,
)


# ============================================================================
# TOML Project Configuration
# ============================================================================

BOARD_KEYS = ("squares_x", "squares_y", "square_length", "marker_length", "dictionary")


def _resolve(base: Path, value: str | None) -> Path | None:
    """Paths in a config file are relative to the file's directory."""
    if not value:
        return None
    path = Path(value)
    return path if path.is_absolute() else base / path


def _parse_flags(names: list[str]) -> CalibrationFlags:
    flags = CalibrationFlags.NONE
    for name in names:
        try:
            flags |= FLAG_NAMES[name.lower()]
        except KeyError:
            raise ConfigurationError(
                f"Unknown calibration flag {name!r} (expected one of {sorted(FLAG_NAMES)})"
            ) from None
    return flags


def load_project_config(path: Path) -> ProjectConfig:
    """
    Load project configuration from TOML file.

    Board geometry has no defaults; every [board] key is required.

    Args:
        path: Path to config.toml file

    Returns:
        ProjectConfig dataclass

    Raises:
        ConfigurationError: If the file is missing, malformed or incomplete
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}", path=path)

    try:
        data = rtoml.load(path)
    except rtoml.TomlParsingError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}", path=path) from e

    base = path.parent

    board_data = data.get("board", {})
    missing = [key for key in BOARD_KEYS if key not in board_data]
    if missing:
        raise ConfigurationError(
            f"Missing board settings in {path}: {', '.join(missing)}", path=path
        )

    calibration_data = data.get("calibration", {})
    capture_data = data.get("capture", {})

    try:
        board = BoardModel(
            squares_x=int(board_data["squares_x"]),
            squares_y=int(board_data["squares_y"]),
            square_length=float(board_data["square_length"]),
            marker_length=float(board_data["marker_length"]),
            dictionary=board_data["dictionary"],
            legacy_pattern=bool(board_data.get("legacy_pattern", False)),
        )

        calibration = CalibrationSettings(
            flags=_parse_flags(calibration_data.get("flags", [])),
            aspect_ratio=calibration_data.get("aspect_ratio"),
            min_frames=calibration_data.get("min_frames", 4),
            min_corners_per_frame=calibration_data.get("min_corners_per_frame", 4),
            workers=calibration_data.get("workers", 1),
        )

        resolution = capture_data.get("resolution", [1280, 720])
        capture = CaptureConfig(
            camera_id=capture_data.get("camera_id", 0),
            video_path=_resolve(base, capture_data.get("video")),
            resolution=tuple(resolution) if resolution else None,
            wait_ms=capture_data.get("wait_ms", 20),
            refine_strategy=capture_data.get("refine_strategy", False),
            show_corners=capture_data.get("show_corners", False),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}", path=path) from e

    return ProjectConfig(
        board=board,
        calibration=calibration,
        capture=capture,
        output_path=_resolve(base, data.get("output")),
        detector_parameters=_resolve(base, data.get("detector_parameters")),
    )


def save_project_config(config: ProjectConfig, path: Path) -> None:
    """
    Save project configuration to TOML file.

    Args:
        config: ProjectConfig dataclass
        path: Path to save config.toml
    """
    board = config.board
    settings = config.calibration
    capture = config.capture

    calibration = {
        "flags": [name for name, flag in FLAG_NAMES.items() if settings.flags & flag],
        "min_frames": settings.min_frames,
        "min_corners_per_frame": settings.min_corners_per_frame,
        "workers": settings.workers,
    }
    if settings.aspect_ratio is not None:
        calibration["aspect_ratio"] = settings.aspect_ratio

    data = {
        "board": {
            "squares_x": board.squares_x,
            "squares_y": board.squares_y,
            "square_length": board.square_length,
            "marker_length": board.marker_length,
            "dictionary": board.dictionary,
            "legacy_pattern": board.legacy_pattern,
        },
        "calibration": calibration,
        "capture": {
            "camera_id": capture.camera_id,
            "video": str(capture.video_path) if capture.video_path else "",
            "resolution": list(capture.resolution) if capture.resolution else [],
            "wait_ms": capture.wait_ms,
            "refine_strategy": capture.refine_strategy,
            "show_corners": capture.show_corners,
        },
    }
    if config.output_path is not None:
        data["output"] = str(config.output_path)
    if config.detector_parameters is not None:
        data["detector_parameters"] = str(config.detector_parameters)

    # Ensure parent directory exists
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        rtoml.dump(data, f)


# ============================================================================
# Detector Parameters
# ============================================================================

DETECTOR_PARAMETER_KEYS = (
    "adaptiveThreshWinSizeMin",
    "adaptiveThreshWinSizeMax",
    "adaptiveThreshWinSizeStep",
    "adaptiveThreshConstant",
    "minMarkerPerimeterRate",
    "maxMarkerPerimeterRate",
    "polygonalApproxAccuracyRate",
    "minCornerDistanceRate",
    "minDistanceToBorder",
    "minMarkerDistanceRate",
    "cornerRefinementMethod",
    "cornerRefinementWinSize",
    "cornerRefinementMaxIterations",
    "cornerRefinementMinAccuracy",
    "markerBorderBits",
    "perspectiveRemovePixelPerCell",
    "perspectiveRemoveIgnoredMarginPerCell",
    "maxErroneousBitsInBorderRate",
    "minOtsuStdDev",
    "errorCorrectionRate",
)


def _set_parameter(params: cv2.aruco.DetectorParameters, key: str, value, path: Path) -> None:
    # Keep the attribute's own type (int for window sizes, float for rates)
    current = getattr(params, key)
    try:
        setattr(params, key, type(current)(value))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {key} in {path}: {value!r}", path=path
        ) from e


def load_detector_parameters(path: Path) -> cv2.aruco.DetectorParameters:
    """
    Load marker detector tuning parameters.

    .toml files are read with rtoml; anything else is opened with
    cv2.FileStorage (the format of OpenCV's detector_params.yml). Keys
    absent from the file keep OpenCV defaults.

    Raises:
        ConfigurationError: If the file cannot be opened or holds unknown keys
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Detector parameter file not found: {path}", path=path)

    params = cv2.aruco.DetectorParameters()

    if path.suffix.lower() == ".toml":
        try:
            data = rtoml.load(path)
        except rtoml.TomlParsingError as e:
            raise ConfigurationError(f"Invalid TOML in {path}: {e}", path=path) from e

        unknown = sorted(set(data) - set(DETECTOR_PARAMETER_KEYS))
        if unknown:
            raise ConfigurationError(
                f"Unknown detector parameters in {path}: {', '.join(unknown)}", path=path
            )
        for key, value in data.items():
            _set_parameter(params, key, value, path)
        return params

    try:
        fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    except cv2.error as e:
        raise ConfigurationError(f"Cannot open detector parameters {path}: {e}", path=path) from e
    if not fs.isOpened():
        raise ConfigurationError(f"Cannot open detector parameters {path}", path=path)

    try:
        for key in DETECTOR_PARAMETER_KEYS:
            node = fs.getNode(key)
            if node.empty():
                continue
            _set_parameter(params, key, node.real(), path)
    finally:
        fs.release()

    return params
