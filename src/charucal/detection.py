"""
Marker detection and ChArUco corner interpolation.

Thin wrappers over cv2.aruco. OpenCV >= 4.7 exposes ArucoDetector and
CharucoDetector; older contrib builds only have the free functions, so
both paths are supported.
"""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from .board import create_charuco_board, get_charuco_object_points, get_dictionary
from .exceptions import CalibrationError
from .types import BoardModel, FrameObservation, PointPacket

INSTRUCTIONS = "Press 'c' to add current frame. 'ESC' to finish and calibrate"


# ============================================================================
# Marker Detection
# ============================================================================


@dataclass(frozen=True, slots=True)
class MarkerDetection:
    """
    ArUco markers found in one frame.

    rejected holds candidate quads that failed decoding; the refind strategy
    reconsiders them using board geometry.
    """

    corners: tuple[np.ndarray, ...]  # n arrays of (4, 2)
    ids: np.ndarray  # (n,) int32
    rejected: tuple[np.ndarray, ...] = ()

    @classmethod
    def empty(cls) -> "MarkerDetection":
        return cls(corners=(), ids=np.array([], dtype=np.int32))

    @property
    def count(self) -> int:
        return len(self.ids)


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def _to_opencv(corners, ids) -> tuple[list[np.ndarray], np.ndarray]:
    """Convert (4, 2) quads and flat ids into the layout cv2.aruco expects."""
    # cv2.aruco treats markerCorners as in/out and rejects read-only arrays
    cv_corners = [np.array(quad, dtype=np.float32).reshape(1, 4, 2) for quad in corners]
    cv_ids = np.array(ids, dtype=np.int32).reshape(-1, 1)
    return cv_corners, cv_ids


def _from_opencv(corners, ids, rejected) -> MarkerDetection:
    if ids is None or len(ids) == 0:
        quads = ()
        flat_ids = np.array([], dtype=np.int32)
    else:
        quads = tuple(np.asarray(c, dtype=np.float32).reshape(4, 2) for c in corners)
        flat_ids = np.asarray(ids, dtype=np.int32).reshape(-1)

    rejected_quads = tuple(
        np.asarray(r, dtype=np.float32).reshape(4, 2) for r in (rejected or ())
    )
    return MarkerDetection(corners=quads, ids=flat_ids, rejected=rejected_quads)


class FiducialDetector:
    """
    Detects board markers in frames.

    Holds the OpenCV dictionary, detector parameters and board object so
    they are built once per session rather than once per frame.
    """

    def __init__(
        self,
        board: BoardModel,
        parameters: cv2.aruco.DetectorParameters | None = None,
    ):
        self.board = board
        self.parameters = parameters if parameters is not None else cv2.aruco.DetectorParameters()
        self.dictionary = get_dictionary(board)
        self._charuco_board = create_charuco_board(board)

        self._detector = None
        if hasattr(cv2.aruco, "ArucoDetector"):
            self._detector = cv2.aruco.ArucoDetector(self.dictionary, self.parameters)

    def detect(self, image: np.ndarray) -> MarkerDetection:
        """
        Detect markers in a BGR or grayscale frame.

        Returns an empty detection (count == 0) when nothing is found.
        """
        gray = _to_gray(image)

        if self._detector is not None:
            corners, ids, rejected = self._detector.detectMarkers(gray)
        else:
            corners, ids, rejected = cv2.aruco.detectMarkers(
                gray, self.dictionary, parameters=self.parameters
            )

        return _from_opencv(corners, ids, rejected)

    def refine(
        self,
        image: np.ndarray,
        detection: MarkerDetection,
        camera_matrix: np.ndarray | None = None,
        distortion: np.ndarray | None = None,
    ) -> MarkerDetection:
        """
        Refind strategy: recover markers among rejected candidates.

        Uses the known board layout to predict where missing markers should
        be. Needs at least one detected marker to anchor the board.
        """
        if detection.count == 0 or not detection.rejected:
            return detection

        gray = _to_gray(image)
        corners, ids = _to_opencv(detection.corners, detection.ids)
        rejected = [np.array(r, dtype=np.float32).reshape(1, 4, 2) for r in detection.rejected]

        if self._detector is not None:
            corners, ids, rejected, _ = self._detector.refineDetectedMarkers(
                gray, self._charuco_board, corners, ids, rejected,
                cameraMatrix=camera_matrix, distCoeffs=distortion,
            )
        else:
            corners, ids, rejected, _ = cv2.aruco.refineDetectedMarkers(
                gray, self._charuco_board, corners, ids, rejected,
                cameraMatrix=camera_matrix, distCoeffs=distortion,
                parameters=self.parameters,
            )

        return _from_opencv(corners, ids, rejected)


# ============================================================================
# Corner Interpolation
# ============================================================================


def interpolate_corners(
    image: np.ndarray,
    marker_corners,
    marker_ids,
    charuco_board: cv2.aruco.CharucoBoard,
    camera_matrix: np.ndarray | None = None,
    distortion: np.ndarray | None = None,
) -> PointPacket:
    """
    Interpolate chessboard corners from detected markers.

    With camera_matrix/distortion the board pose is estimated first, which
    places corners more accurately under lens distortion.

    Args:
        image: Frame the markers were detected in
        marker_corners: Sequence of (4, 2) marker corner quads
        marker_ids: Marker ids matching marker_corners
        charuco_board: OpenCV CharucoBoard
        camera_matrix: Optional 3x3 intrinsic matrix
        distortion: Optional distortion coefficients

    Returns:
        PointPacket with corner ids, image and object locations
        (empty when no corner could be interpolated)

    Raises:
        CalibrationError: If OpenCV rejects the input
    """
    if len(marker_ids) == 0:
        return PointPacket.empty()

    gray = _to_gray(image)
    cv_corners, cv_ids = _to_opencv(marker_corners, marker_ids)

    if camera_matrix is not None:
        camera_matrix = np.array(camera_matrix, dtype=np.float64)
        if distortion is None:
            distortion = np.zeros(5, dtype=np.float64)
        distortion = np.array(distortion, dtype=np.float64)

    try:
        if hasattr(cv2.aruco, "CharucoDetector"):
            charuco_params = cv2.aruco.CharucoParameters()
            if camera_matrix is not None:
                charuco_params.cameraMatrix = camera_matrix
                charuco_params.distCoeffs = distortion
            detector = cv2.aruco.CharucoDetector(charuco_board, charuco_params)
            charuco_corners, charuco_ids, _, _ = detector.detectBoard(
                gray, markerCorners=cv_corners, markerIds=cv_ids
            )
        else:
            _, charuco_corners, charuco_ids = cv2.aruco.interpolateCornersCharuco(
                cv_corners, cv_ids, gray, charuco_board,
                cameraMatrix=camera_matrix, distCoeffs=distortion,
            )
    except cv2.error as e:
        raise CalibrationError(f"ChArUco corner interpolation failed: {e}") from e

    if charuco_ids is None or charuco_corners is None or len(charuco_ids) == 0:
        return PointPacket.empty()

    ids = np.asarray(charuco_ids, dtype=np.int32).reshape(-1)
    img_loc = np.asarray(charuco_corners, dtype=np.float32).reshape(-1, 2)
    obj_loc = get_charuco_object_points(charuco_board)[ids]

    return PointPacket(point_id=ids, img_loc=img_loc, obj_loc=obj_loc)


class CornerInterpolator:
    """
    Corner interpolation bound to one board.

    Callable as interpolator(observation, camera_matrix, distortion).
    """

    def __init__(self, board: BoardModel):
        self.board = board
        self._charuco_board = create_charuco_board(board)

    def __call__(
        self,
        observation: FrameObservation,
        camera_matrix: np.ndarray | None = None,
        distortion: np.ndarray | None = None,
    ) -> PointPacket:
        return interpolate_corners(
            observation.image,
            observation.marker_corners,
            observation.marker_ids,
            self._charuco_board,
            camera_matrix,
            distortion,
        )

    def preview(self, image: np.ndarray, detection: MarkerDetection) -> PointPacket:
        """Interpolate without intrinsics, for live feedback only."""
        return interpolate_corners(
            image, detection.corners, detection.ids, self._charuco_board
        )


# ============================================================================
# Overlay
# ============================================================================


def draw_overlay(
    image: np.ndarray,
    detection: MarkerDetection | None = None,
    corners: PointPacket | None = None,
    text: str | None = INSTRUCTIONS,
) -> np.ndarray:
    """
    Draw detected markers, interpolated corners and instructions.

    Returns an annotated BGR copy; the input frame is left untouched.
    """
    canvas = image.copy()
    if canvas.ndim == 2:
        canvas = cv2.cvtColor(canvas, cv2.COLOR_GRAY2BGR)

    if detection is not None and detection.count > 0:
        cv_corners, cv_ids = _to_opencv(detection.corners, detection.ids)
        cv2.aruco.drawDetectedMarkers(canvas, cv_corners, cv_ids)

    if corners is not None and not corners.is_empty:
        cv2.aruco.drawDetectedCornersCharuco(
            canvas,
            np.asarray(corners.img_loc, dtype=np.float32).reshape(-1, 1, 2),
            np.asarray(corners.point_id, dtype=np.int32).reshape(-1, 1),
        )

    if text:
        cv2.putText(
            canvas, text, (10, 20), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 0, 0), 2
        )

    return canvas
