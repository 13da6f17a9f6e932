"""
Core data structures for charucal.

All types are frozen dataclasses for immutability.
Logic is in separate modules - these are data containers only.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np


# ============================================================================
# Board Geometry
# ============================================================================

# Name -> OpenCV predefined dictionary id (cv2.aruco.DICT_* values).
DICTIONARY_IDS = {
    "DICT_4X4_50": 0,
    "DICT_4X4_100": 1,
    "DICT_4X4_250": 2,
    "DICT_4X4_1000": 3,
    "DICT_5X5_50": 4,
    "DICT_5X5_100": 5,
    "DICT_5X5_250": 6,
    "DICT_5X5_1000": 7,
    "DICT_6X6_50": 8,
    "DICT_6X6_100": 9,
    "DICT_6X6_250": 10,
    "DICT_6X6_1000": 11,
    "DICT_7X7_50": 12,
    "DICT_7X7_100": 13,
    "DICT_7X7_250": 14,
    "DICT_7X7_1000": 15,
    "DICT_ARUCO_ORIGINAL": 16,
    "DICT_APRILTAG_16h5": 17,
    "DICT_APRILTAG_25h9": 18,
    "DICT_APRILTAG_36h10": 19,
    "DICT_APRILTAG_36h11": 20,
}


def resolve_dictionary(value: str | int) -> str:
    """
    Normalize a dictionary reference to its name.

    Accepts a name ("DICT_6X6_250"), an OpenCV integer id (10), or the
    integer id as a string ("10").
    """
    if isinstance(value, str) and value in DICTIONARY_IDS:
        return value

    try:
        dict_id = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Unknown ArUco dictionary: {value!r}") from None

    for name, known_id in DICTIONARY_IDS.items():
        if known_id == dict_id:
            return name
    raise ValueError(f"Unknown ArUco dictionary id: {dict_id}")


@dataclass(frozen=True)
class BoardModel:
    """
    Geometry of a ChArUco board.

    Lengths are in meters. Created once and shared read-only by the
    capture session and the calibration pipeline.
    """

    squares_x: int  # Squares in X direction
    squares_y: int  # Squares in Y direction
    square_length: float
    marker_length: float
    dictionary: str | int
    legacy_pattern: bool = False

    def __post_init__(self):
        if self.squares_x < 2 or self.squares_y < 2:
            raise ValueError(
                f"Board needs at least 2x2 squares, got {self.squares_x}x{self.squares_y}"
            )
        if self.square_length <= 0 or self.marker_length <= 0:
            raise ValueError("Square and marker lengths must be positive")
        if self.marker_length >= self.square_length:
            raise ValueError(
                f"Marker length ({self.marker_length}) must be smaller than "
                f"square length ({self.square_length})"
            )
        object.__setattr__(self, "dictionary", resolve_dictionary(self.dictionary))

    @property
    def dictionary_id(self) -> int:
        """OpenCV predefined dictionary id."""
        return DICTIONARY_IDS[self.dictionary]

    @property
    def inner_corner_count(self) -> int:
        """Number of chessboard corners (squares intersections)."""
        return (self.squares_x - 1) * (self.squares_y - 1)

    @property
    def marker_count(self) -> int:
        """Number of ArUco markers printed on the board."""
        return (self.squares_x * self.squares_y) // 2


# ============================================================================
# Observations
# ============================================================================


@dataclass(frozen=True, slots=True)
class FrameObservation:
    """
    Markers detected in one committed frame.

    marker_ids[i] identifies the quad marker_corners[i].
    """

    marker_ids: np.ndarray  # (n,) int32 marker identifiers
    marker_corners: tuple[np.ndarray, ...]  # n arrays of (4, 2) image points
    image: np.ndarray  # Raw frame, kept for corner interpolation
    image_size: tuple[int, int]  # (width, height)

    def __post_init__(self):
        if len(self.marker_ids) != len(self.marker_corners):
            raise ValueError(
                f"{len(self.marker_ids)} marker ids but "
                f"{len(self.marker_corners)} corner quads"
            )
        if len(np.unique(self.marker_ids)) != len(self.marker_ids):
            raise ValueError("Duplicate marker ids within a frame")
        for quad in self.marker_corners:
            if quad.shape != (4, 2):
                raise ValueError(f"Marker corners must be (4, 2), got {quad.shape}")

    @classmethod
    def create(
        cls,
        marker_ids,
        marker_corners,
        image: np.ndarray,
    ) -> "FrameObservation":
        """
        Build an observation from raw detector output.

        Accepts ids shaped (n,) or (n, 1) and corners shaped (1, 4, 2) or
        (4, 2) as returned by cv2.aruco. Arrays are copied and frozen.
        """
        ids = np.asarray(marker_ids, dtype=np.int32).reshape(-1).copy()
        ids.flags.writeable = False

        quads = []
        for corners in marker_corners:
            quad = np.asarray(corners, dtype=np.float32).reshape(4, 2).copy()
            quad.flags.writeable = False
            quads.append(quad)

        height, width = image.shape[:2]
        return cls(
            marker_ids=ids,
            marker_corners=tuple(quads),
            image=image,
            image_size=(int(width), int(height)),
        )

    @property
    def marker_count(self) -> int:
        return len(self.marker_ids)


@dataclass(frozen=True, slots=True)
class PointPacket:
    """
    Interpolated chessboard corners for a single frame.

    obj_loc is only populated when board geometry was attached.
    """

    point_id: np.ndarray  # (n,) board-relative corner identifiers
    img_loc: np.ndarray  # (n, 2) image coordinates (x, y)
    obj_loc: np.ndarray | None = None  # (n, 3) board-frame coordinates

    @classmethod
    def empty(cls) -> "PointPacket":
        return cls(
            point_id=np.array([], dtype=np.int32),
            img_loc=np.array([], dtype=np.float32).reshape(0, 2),
        )

    @property
    def count(self) -> int:
        return len(self.point_id)

    @property
    def is_empty(self) -> bool:
        return self.count == 0


# ============================================================================
# Calibration
# ============================================================================


class CalibrationFlags(enum.IntFlag):
    """Solver policies. Values match OpenCV's CALIB_* constants."""

    NONE = 0
    USE_INTRINSIC_GUESS = 1
    FIX_ASPECT_RATIO = 2
    FIX_PRINCIPAL_POINT = 4
    ZERO_TANGENT_DIST = 8


# Names used in configuration files
FLAG_NAMES = {
    "use_intrinsic_guess": CalibrationFlags.USE_INTRINSIC_GUESS,
    "fix_aspect_ratio": CalibrationFlags.FIX_ASPECT_RATIO,
    "fix_principal_point": CalibrationFlags.FIX_PRINCIPAL_POINT,
    "zero_tangent_dist": CalibrationFlags.ZERO_TANGENT_DIST,
}


@dataclass(frozen=True, slots=True)
class CalibrationSettings:
    """
    Solver flags and data thresholds for the calibration pipeline.

    aspect_ratio is fx/fy and is required when FIX_ASPECT_RATIO is set.
    """

    flags: CalibrationFlags = CalibrationFlags.NONE
    aspect_ratio: float | None = None
    min_frames: int = 4  # Frames with usable corner sets needed for refinement
    min_corners_per_frame: int = 4
    workers: int = 1  # Threads for per-frame corner interpolation

    def __post_init__(self):
        object.__setattr__(self, "flags", CalibrationFlags(self.flags))
        if self.flags & CalibrationFlags.FIX_ASPECT_RATIO:
            if self.aspect_ratio is None:
                raise ValueError("FIX_ASPECT_RATIO requires an aspect_ratio value")
        if self.aspect_ratio is not None and self.aspect_ratio <= 0:
            raise ValueError(f"aspect_ratio must be positive, got {self.aspect_ratio}")
        if self.min_frames < 1:
            raise ValueError("min_frames must be at least 1")
        if self.min_corners_per_frame < 1:
            raise ValueError("min_corners_per_frame must be at least 1")
        if self.workers < 1:
            raise ValueError("workers must be at least 1")

    @property
    def fixes_aspect_ratio(self) -> bool:
        return bool(self.flags & CalibrationFlags.FIX_ASPECT_RATIO)


@dataclass(frozen=True, slots=True)
class CalibrationResult:
    """
    Output of the two-stage calibration.

    rvecs/tvecs/frame_indices are aligned: pose i belongs to store frame
    frame_indices[i].
    """

    camera_matrix: np.ndarray  # 3x3 intrinsic matrix
    distortion: np.ndarray  # Distortion coefficients (k1, k2, p1, p2, k3, ...)
    image_size: tuple[int, int]  # (width, height)
    flags: CalibrationFlags
    aspect_ratio: float | None
    rvecs: tuple[np.ndarray, ...]
    tvecs: tuple[np.ndarray, ...]
    frame_indices: tuple[int, ...]
    failed_frames: tuple[int, ...]
    marker_error: float  # Bootstrap (marker-only) reprojection error
    board_error: float  # Refined (chessboard corner) reprojection error


@dataclass(frozen=True, slots=True)
class CameraParameters:
    """
    Camera parameters as read back from a parameter file.
    """

    calibration_time: str
    image_size: tuple[int, int]
    flags: CalibrationFlags
    aspect_ratio: float | None
    camera_matrix: np.ndarray
    distortion: np.ndarray
    avg_reprojection_error: float


# ============================================================================
# Project Configuration
# ============================================================================


@dataclass(frozen=True, slots=True)
class CaptureConfig:
    """
    Frame source and interactive loop settings.
    Corresponds to TOML [capture] section.
    """

    camera_id: int = 0
    video_path: Path | None = None  # None = live camera
    resolution: tuple[int, int] | None = (1280, 720)  # (width, height) request
    wait_ms: int = 20  # Per-frame command wait; 0 blocks until a key
    refine_strategy: bool = False
    show_corners: bool = False


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    """
    Complete calibration run configuration.
    Loaded from a TOML file.
    """

    board: BoardModel
    calibration: CalibrationSettings = field(default_factory=CalibrationSettings)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    output_path: Path | None = None
    detector_parameters: Path | None = None
