"""
Two-stage intrinsic calibration.

Stage A bootstraps intrinsics from marker corners only. Stage B
interpolates chessboard corners with those intrinsics and refines the
calibration on the full ChArUco board.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Sequence

import cv2
import numpy as np

from .board import create_charuco_board, get_charuco_object_points, get_marker_object_points
from .detection import CornerInterpolator
from .exceptions import CalibrationError, InsufficientCalibrationData, NoDataError
from .store import ObservationStore
from .types import (
    BoardModel,
    CalibrationFlags,
    CalibrationResult,
    CalibrationSettings,
    FrameObservation,
    PointPacket,
)

logger = logging.getLogger(__name__)

Interpolator = Callable[[FrameObservation, np.ndarray, np.ndarray], PointPacket]


# ============================================================================
# Correspondence Bookkeeping
# ============================================================================


def flatten_observations(
    observations: Sequence[FrameObservation],
) -> tuple[list[np.ndarray], np.ndarray, np.ndarray]:
    """
    Concatenate per-frame marker observations.

    Args:
        observations: Frames in commit order

    Returns:
        (corners, ids, counts): flat list of (4, 2) quads, flat (n,) ids and
        the number of markers each frame contributed, in frame order

    Raises:
        CalibrationError: If counts do not add up to the flat lengths
    """
    corners: list[np.ndarray] = []
    ids: list[int] = []
    counts: list[int] = []

    for observation in observations:
        counts.append(observation.marker_count)
        corners.extend(observation.marker_corners)
        ids.extend(int(i) for i in observation.marker_ids)

    counts_arr = np.asarray(counts, dtype=np.int32)
    ids_arr = np.asarray(ids, dtype=np.int32)

    total = int(counts_arr.sum())
    if total != len(corners) or total != len(ids_arr):
        raise CalibrationError(
            f"Marker counts sum to {total} but {len(corners)} corner quads "
            f"and {len(ids_arr)} ids were concatenated"
        )

    return corners, ids_arr, counts_arr


def segment_by_counts(flat: Sequence, counts: Sequence[int]) -> list[list]:
    """
    Split a flat sequence back into per-frame groups.

    Inverse of the concatenation in flatten_observations.
    """
    if int(np.sum(counts)) != len(flat):
        raise CalibrationError(
            f"Counts sum to {int(np.sum(counts))} for {len(flat)} entries"
        )

    groups = []
    start = 0
    for count in counts:
        groups.append(list(flat[start:start + int(count)]))
        start += int(count)
    return groups


def seed_camera_matrix(settings: CalibrationSettings) -> np.ndarray | None:
    """
    Initial camera matrix handed to the solver.

    With FIX_ASPECT_RATIO the solver keeps fx/fy equal to the ratio of the
    seed's (0, 0) and (1, 1) entries, so the seed is identity with (0, 0)
    set to the requested aspect ratio. Otherwise the solver starts
    unconstrained.
    """
    if not settings.fixes_aspect_ratio:
        return None

    camera_matrix = np.eye(3, dtype=np.float64)
    camera_matrix[0, 0] = settings.aspect_ratio
    return camera_matrix


# ============================================================================
# Solver
# ============================================================================


@dataclass(frozen=True, slots=True)
class SolverOutput:
    """Result of one solver invocation."""

    error: float  # RMS reprojection error in pixels
    camera_matrix: np.ndarray
    distortion: np.ndarray
    rvecs: tuple[np.ndarray, ...]
    tvecs: tuple[np.ndarray, ...]


class OpenCVSolver:
    """
    Calibration solver backed by cv2.calibrateCamera.

    Correspondences are built from the board model: marker corners by
    marker id (Stage A) and chessboard corners by corner id (Stage B).
    """

    def calibrate_markers(
        self,
        board: BoardModel,
        corners: Sequence[np.ndarray],
        ids: np.ndarray,
        counts: np.ndarray,
        image_size: tuple[int, int],
        camera_matrix: np.ndarray | None,
        flags: CalibrationFlags,
    ) -> SolverOutput:
        """
        Calibrate from marker corners treating the board as a marker board.

        corners/ids are flat across frames; counts re-segments them.
        """
        marker_points = get_marker_object_points(create_charuco_board(board))

        obj_points = []
        img_points = []
        for frame_corners, frame_ids in zip(
            segment_by_counts(corners, counts), segment_by_counts(ids, counts)
        ):
            frame_obj = []
            frame_img = []
            for quad, marker_id in zip(frame_corners, frame_ids):
                if int(marker_id) not in marker_points:
                    continue  # Marker from the dictionary but not on this board
                frame_obj.append(marker_points[int(marker_id)])
                frame_img.append(np.asarray(quad, dtype=np.float32).reshape(4, 2))
            if frame_obj:
                obj_points.append(np.concatenate(frame_obj))
                img_points.append(np.concatenate(frame_img))

        if not obj_points:
            raise InsufficientCalibrationData(
                "No committed marker belongs to the board", usable_frames=0, required_frames=1
            )

        return self._calibrate(obj_points, img_points, image_size, camera_matrix, flags)

    def calibrate_board(
        self,
        board: BoardModel,
        corner_sets: Sequence[PointPacket],
        image_size: tuple[int, int],
        camera_matrix: np.ndarray | None,
        flags: CalibrationFlags,
    ) -> SolverOutput:
        """Calibrate from per-frame interpolated chessboard corners."""
        board_points = get_charuco_object_points(create_charuco_board(board))

        obj_points = [board_points[packet.point_id] for packet in corner_sets]
        img_points = [
            np.asarray(packet.img_loc, dtype=np.float32).reshape(-1, 2)
            for packet in corner_sets
        ]

        return self._calibrate(obj_points, img_points, image_size, camera_matrix, flags)

    def _calibrate(self, obj_points, img_points, image_size, camera_matrix, flags) -> SolverOutput:
        if camera_matrix is not None:
            camera_matrix = np.array(camera_matrix, dtype=np.float64)

        try:
            error, matrix, dist, rvecs, tvecs = cv2.calibrateCamera(
                obj_points,
                img_points,
                tuple(image_size),
                camera_matrix,
                None,
                flags=int(flags),
            )
        except cv2.error as e:
            raise CalibrationError(f"Camera calibration failed: {e}") from e

        return SolverOutput(
            error=float(error),
            camera_matrix=matrix,
            distortion=dist.reshape(-1),
            rvecs=tuple(np.asarray(r).reshape(3) for r in rvecs),
            tvecs=tuple(np.asarray(t).reshape(3) for t in tvecs),
        )


# ============================================================================
# Pipeline
# ============================================================================


@dataclass(frozen=True, slots=True)
class BootstrapResult:
    """Stage A output. Poses are discarded."""

    camera_matrix: np.ndarray
    distortion: np.ndarray
    error: float


class CalibrationPipeline:
    """
    Runs both calibration stages over a frozen ObservationStore.

    Args:
        board: Board geometry
        settings: Flags, aspect ratio and data thresholds
        solver: Object with calibrate_markers/calibrate_board (OpenCVSolver by default)
        interpolator: Callable (observation, camera_matrix, distortion) -> PointPacket
            (CornerInterpolator by default)
    """

    def __init__(
        self,
        board: BoardModel,
        settings: CalibrationSettings | None = None,
        solver=None,
        interpolator: Interpolator | None = None,
    ):
        self.board = board
        self.settings = settings if settings is not None else CalibrationSettings()
        self.solver = solver if solver is not None else OpenCVSolver()
        self.interpolator = interpolator if interpolator is not None else CornerInterpolator(board)

    def run(self, store: ObservationStore) -> CalibrationResult:
        """
        Calibrate from every committed frame.

        Raises:
            RuntimeError: If the store is still accepting frames
            NoDataError: If no frame was committed
            InsufficientCalibrationData: If too few frames yield board corners
        """
        if not store.is_frozen:
            raise RuntimeError("Observation store must be frozen before calibration")
        if store.count() == 0:
            raise NoDataError("Not enough captures for calibration: no frame was committed")

        image_size = store.image_size
        logger.info(f"Calibrating from {store.count()} frames at {image_size[0]}x{image_size[1]}")

        bootstrap = self.bootstrap(store)
        logger.info(f"Marker calibration done, reprojection error: {bootstrap.error:.4f}")

        corner_sets = self.interpolate(store, bootstrap)

        usable = []
        failed = []
        for index, packet in enumerate(corner_sets):
            if packet.count >= self.settings.min_corners_per_frame:
                usable.append(index)
            else:
                failed.append(index)
                if packet.is_empty:
                    reason = "no corners interpolated"
                else:
                    reason = (
                        f"{packet.count} corners interpolated, below the minimum of "
                        f"{self.settings.min_corners_per_frame} per frame"
                    )
                logger.warning(f"Frame {index} excluded from board calibration: {reason}")

        if len(usable) < self.settings.min_frames:
            raise InsufficientCalibrationData(
                f"Not enough corners for calibration: {len(usable)} usable frames "
                f"(need at least {self.settings.min_frames})",
                usable_frames=len(usable),
                required_frames=self.settings.min_frames,
            )

        refined = self.solver.calibrate_board(
            self.board,
            [corner_sets[i] for i in usable],
            image_size,
            seed_camera_matrix(self.settings),
            self.settings.flags,
        )
        logger.info(f"Board calibration done, reprojection error: {refined.error:.4f}")

        return CalibrationResult(
            camera_matrix=refined.camera_matrix,
            distortion=refined.distortion,
            image_size=image_size,
            flags=self.settings.flags,
            aspect_ratio=self.settings.aspect_ratio if self.settings.fixes_aspect_ratio else None,
            rvecs=tuple(refined.rvecs),
            tvecs=tuple(refined.tvecs),
            frame_indices=tuple(usable),
            failed_frames=tuple(failed),
            marker_error=bootstrap.error,
            board_error=refined.error,
        )

    def bootstrap(self, store: ObservationStore) -> BootstrapResult:
        """Stage A: marker-only calibration."""
        corners, ids, counts = flatten_observations(list(store))

        output = self.solver.calibrate_markers(
            self.board,
            corners,
            ids,
            counts,
            store.image_size,
            seed_camera_matrix(self.settings),
            self.settings.flags,
        )
        return BootstrapResult(
            camera_matrix=output.camera_matrix,
            distortion=output.distortion,
            error=output.error,
        )

    def interpolate(self, store: ObservationStore, bootstrap: BootstrapResult) -> list[PointPacket]:
        """
        Stage B interpolation of every frame with the bootstrap intrinsics.

        Returns one PointPacket per stored frame, in store order.
        """
        def interpolate_one(observation: FrameObservation) -> PointPacket:
            return self.interpolator(observation, bootstrap.camera_matrix, bootstrap.distortion)

        if self.settings.workers > 1:
            with ThreadPoolExecutor(max_workers=self.settings.workers) as executor:
                return list(executor.map(interpolate_one, store))

        return [interpolate_one(observation) for observation in store]
