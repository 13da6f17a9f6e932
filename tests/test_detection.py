"""
Tests for charucal.detection.
"""

import cv2
import numpy as np
import pytest

from charucal.board import create_charuco_board, generate_board_image
from charucal.detection import (
    CornerInterpolator,
    FiducialDetector,
    MarkerDetection,
    draw_overlay,
    interpolate_corners,
)
from charucal.exceptions import CalibrationError
from charucal.types import BoardModel, FrameObservation, PointPacket


@pytest.fixture
def board_model():
    return BoardModel(
        squares_x=5,
        squares_y=4,
        square_length=0.04,
        marker_length=0.03,
        dictionary="DICT_4X4_50",
    )


@pytest.fixture
def board_image(board_model):
    gray = generate_board_image(board_model, width=800, height=600)
    return cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)


class TestMarkerDetection:
    def test_empty(self):
        detection = MarkerDetection.empty()
        assert detection.count == 0
        assert detection.corners == ()


class TestFiducialDetector:
    def test_detect_in_synthetic_image(self, board_model, board_image):
        """Detection should work on a clean synthetic board image."""
        detection = FiducialDetector(board_model).detect(board_image)

        assert detection.count > 0
        assert len(detection.corners) == detection.count
        assert all(quad.shape == (4, 2) for quad in detection.corners)
        assert set(detection.ids.tolist()) <= set(range(board_model.marker_count))

    def test_detect_grayscale(self, board_model, board_image):
        gray = cv2.cvtColor(board_image, cv2.COLOR_BGR2GRAY)
        detection = FiducialDetector(board_model).detect(gray)
        assert detection.count > 0

    def test_detect_empty_on_blank_image(self, board_model):
        blank = np.zeros((480, 640, 3), dtype=np.uint8)
        detection = FiducialDetector(board_model).detect(blank)
        assert detection.count == 0
        assert detection.ids.dtype == np.int32

    def test_custom_parameters(self, board_model, board_image):
        params = cv2.aruco.DetectorParameters()
        params.cornerRefinementMethod = cv2.aruco.CORNER_REFINE_SUBPIX
        detector = FiducialDetector(board_model, params)
        assert detector.parameters is params
        assert detector.detect(board_image).count > 0

    def test_refine_without_markers_is_noop(self, board_model, board_image):
        detector = FiducialDetector(board_model)
        empty = MarkerDetection.empty()
        assert detector.refine(board_image, empty) is empty

    def test_refine_keeps_detected_markers(self, board_model, board_image):
        detector = FiducialDetector(board_model)
        detection = detector.detect(board_image)
        if not detection.rejected:
            pytest.skip("No rejected candidates to refine")

        refined = detector.refine(board_image, detection)
        assert refined.count >= detection.count


class TestInterpolateCorners:
    def test_interpolate_from_detection(self, board_model, board_image):
        detection = FiducialDetector(board_model).detect(board_image)
        if detection.count == 0:
            pytest.skip("No markers detected in synthetic image")

        packet = interpolate_corners(
            board_image, detection.corners, detection.ids, create_charuco_board(board_model)
        )

        assert packet.count > 0
        assert packet.img_loc.shape == (packet.count, 2)
        assert packet.obj_loc.shape == (packet.count, 3)
        assert packet.point_id.max() < board_model.inner_corner_count

    def test_no_markers_gives_empty_packet(self, board_model, board_image):
        packet = interpolate_corners(
            board_image, (), np.array([], dtype=np.int32), create_charuco_board(board_model)
        )
        assert packet.is_empty

    def test_corner_interpolator_with_intrinsics(self, board_model, board_image):
        detection = FiducialDetector(board_model).detect(board_image)
        if detection.count == 0:
            pytest.skip("No markers detected in synthetic image")

        observation = FrameObservation.create(detection.ids, detection.corners, board_image)
        camera_matrix = np.array([[800.0, 0, 400], [0, 800.0, 300], [0, 0, 1]])
        interpolator = CornerInterpolator(board_model)

        without = interpolator(observation)
        with_intrinsics = interpolator(observation, camera_matrix, np.zeros(5))

        assert without.count > 0
        assert isinstance(with_intrinsics, PointPacket)
        assert with_intrinsics.count > 0

    def test_interpolator_leaves_stored_observation_untouched(self, board_model, board_image):
        """Stored observations are read-only; interpolation works on copies."""
        detection = FiducialDetector(board_model).detect(board_image)
        if detection.count == 0:
            pytest.skip("No markers detected in synthetic image")

        observation = FrameObservation.create(detection.ids, detection.corners, board_image)
        assert not observation.marker_ids.flags.writeable
        ids_before = observation.marker_ids.copy()
        corners_before = [quad.copy() for quad in observation.marker_corners]

        camera_matrix = np.array([[800.0, 0, 400], [0, 800.0, 300], [0, 0, 1]])
        interpolator = CornerInterpolator(board_model)

        assert interpolator(observation).count > 0
        assert interpolator(observation, camera_matrix, np.zeros(5)).count > 0

        np.testing.assert_array_equal(observation.marker_ids, ids_before)
        for quad, before in zip(observation.marker_corners, corners_before):
            assert not quad.flags.writeable
            np.testing.assert_array_equal(quad, before)

    def test_opencv_failure_raises_calibration_error(self, board_model, board_image, monkeypatch):
        detection = FiducialDetector(board_model).detect(board_image)
        if detection.count == 0:
            pytest.skip("No markers detected in synthetic image")

        def _failing(*args, **kwargs):
            raise cv2.error("bad input")

        monkeypatch.setattr(cv2.aruco, "CharucoDetector", _failing, raising=False)
        monkeypatch.setattr(cv2.aruco, "interpolateCornersCharuco", _failing, raising=False)

        with pytest.raises(CalibrationError, match="interpolation failed"):
            interpolate_corners(
                board_image, detection.corners, detection.ids, create_charuco_board(board_model)
            )

    def test_preview(self, board_model, board_image):
        detection = FiducialDetector(board_model).detect(board_image)
        packet = CornerInterpolator(board_model).preview(board_image, detection)
        assert packet.count == 0 or packet.img_loc.shape[1] == 2


class TestDrawOverlay:
    def test_returns_annotated_copy(self, board_model, board_image):
        detection = FiducialDetector(board_model).detect(board_image)
        original = board_image.copy()

        canvas = draw_overlay(board_image, detection)

        assert canvas.shape == board_image.shape
        assert np.array_equal(board_image, original)
        assert not np.array_equal(canvas, original)

    def test_grayscale_input_becomes_bgr(self):
        gray = np.zeros((100, 200), dtype=np.uint8)
        canvas = draw_overlay(gray)
        assert canvas.shape == (100, 200, 3)

    def test_no_text(self):
        blank = np.zeros((100, 200, 3), dtype=np.uint8)
        canvas = draw_overlay(blank, text=None)
        assert not canvas.any()
