"""
Camera parameter files.

Written with cv2.FileStorage so OpenCV tools can read them directly. The
format follows the file extension (.yml/.yaml, .xml or .json).
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path

import cv2
import numpy as np

from .types import CalibrationFlags, CalibrationResult, CameraParameters

logger = logging.getLogger(__name__)

FLAG_LABELS = (
    (CalibrationFlags.USE_INTRINSIC_GUESS, "+use_intrinsic_guess"),
    (CalibrationFlags.FIX_ASPECT_RATIO, "+fix_aspectRatio"),
    (CalibrationFlags.FIX_PRINCIPAL_POINT, "+fix_principal_point"),
    (CalibrationFlags.ZERO_TANGENT_DIST, "+zero_tangent_dist"),
)


def format_flags(flags: CalibrationFlags | int) -> str:
    """Human-readable summary, e.g. 'flags: +fix_aspectRatio+zero_tangent_dist'."""
    flags = CalibrationFlags(flags)
    return "flags: " + "".join(label for flag, label in FLAG_LABELS if flags & flag)


def write_camera_parameters(path: Path, result: CalibrationResult) -> bool:
    """
    Save calibration results.

    The document is written to a temporary sibling and moved into place,
    so a failed write never leaves a partial file at path.

    Args:
        path: Destination file; the extension selects the format
        result: CalibrationResult to save

    Returns:
        True on success, False if the destination cannot be written
    """
    path = Path(path)
    tmp_path = path.with_name(f".{path.stem}.tmp{path.suffix}")

    try:
        fs = cv2.FileStorage(str(tmp_path), cv2.FILE_STORAGE_WRITE)
    except cv2.error as e:
        logger.error(f"Cannot open {path} for writing: {e}")
        return False
    if not fs.isOpened():
        logger.error(f"Cannot open {path} for writing")
        return False

    flags = CalibrationFlags(result.flags)
    width, height = result.image_size

    try:
        fs.write("calibration_time", datetime.now().strftime("%c"))
        fs.write("image_width", int(width))
        fs.write("image_height", int(height))
        if flags & CalibrationFlags.FIX_ASPECT_RATIO:
            fs.write("aspectRatio", float(result.aspect_ratio))
        if flags != 0:
            if path.suffix.lower() == ".json":
                # JSON has no comment syntax
                fs.write("flags_summary", format_flags(flags))
            else:
                fs.writeComment(format_flags(flags))
        fs.write("flags", int(flags))
        fs.write("camera_matrix", np.asarray(result.camera_matrix, dtype=np.float64))
        fs.write(
            "distortion_coefficients",
            np.asarray(result.distortion, dtype=np.float64).reshape(-1, 1),
        )
        fs.write("avg_reprojection_error", float(result.board_error))
        fs.release()
        os.replace(tmp_path, path)
    except (cv2.error, OSError) as e:
        logger.error(f"Cannot write {path}: {e}")
        fs.release()
        tmp_path.unlink(missing_ok=True)
        return False

    logger.info(f"Camera parameters written to {path}")
    return True


def read_camera_parameters(path: Path) -> CameraParameters:
    """
    Load a parameter file written by write_camera_parameters.

    Raises:
        FileNotFoundError: If the file does not exist or cannot be parsed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Camera parameter file not found: {path}")

    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    if not fs.isOpened():
        raise FileNotFoundError(f"Cannot read camera parameter file: {path}")

    try:
        aspect_node = fs.getNode("aspectRatio")
        aspect_ratio = None if aspect_node.empty() else float(aspect_node.real())

        return CameraParameters(
            calibration_time=fs.getNode("calibration_time").string(),
            image_size=(
                int(fs.getNode("image_width").real()),
                int(fs.getNode("image_height").real()),
            ),
            flags=CalibrationFlags(int(fs.getNode("flags").real())),
            aspect_ratio=aspect_ratio,
            camera_matrix=fs.getNode("camera_matrix").mat(),
            distortion=fs.getNode("distortion_coefficients").mat().reshape(-1),
            avg_reprojection_error=float(fs.getNode("avg_reprojection_error").real()),
        )
    finally:
        fs.release()
