"""
Pytest configuration and shared fixtures.
"""

import tempfile
from pathlib import Path

import cv2
import numpy as np
import pytest

IMAGE_SIZE = (1280, 720)  # (width, height)

# Board poses for synthetic views: (rvec, tvec). Tilted in different
# directions so the planar calibration is well conditioned.
SYNTHETIC_POSES = [
    ([0.3, 0.0, 0.0], [-0.10, -0.14, 0.60]),
    ([-0.3, 0.1, 0.0], [-0.08, -0.12, 0.65]),
    ([0.0, 0.35, 0.05], [-0.12, -0.14, 0.55]),
    ([0.1, -0.3, 0.0], [-0.10, -0.16, 0.62]),
    ([0.25, 0.25, 0.1], [-0.09, -0.13, 0.58]),
]


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that's cleaned up after test."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def sample_intrinsics_matrix():
    """Typical camera intrinsics matrix."""
    return np.array([
        [800.0, 0.0, 640.0],
        [0.0, 800.0, 360.0],
        [0.0, 0.0, 1.0],
    ], dtype=np.float64)


@pytest.fixture
def sample_distortion():
    """Typical distortion coefficients (k1, k2, p1, p2, k3)."""
    return np.array([0.1, -0.25, 0.001, -0.001, 0.1], dtype=np.float64)


@pytest.fixture
def sample_board():
    """5x7 board, 4cm squares, 2cm markers."""
    from charucal.types import BoardModel
    return BoardModel(
        squares_x=5,
        squares_y=7,
        square_length=0.04,
        marker_length=0.02,
        dictionary="DICT_6X6_250",
    )


@pytest.fixture
def blank_frame():
    width, height = IMAGE_SIZE
    return np.zeros((height, width, 3), dtype=np.uint8)


@pytest.fixture
def make_observation(blank_frame):
    """Factory for observations with arbitrary marker ids."""
    from charucal.types import FrameObservation

    def _make(ids, image=None):
        corners = [
            np.array([[10, 10], [20, 10], [20, 20], [10, 20]], dtype=np.float32) + 30 * i
            for i in range(len(ids))
        ]
        return FrameObservation.create(ids, corners, blank_frame if image is None else image)

    return _make


class SyntheticViews:
    """
    Board views rendered through a known camera.

    observations[i] holds the projected marker corners of pose i and
    corner_sets[i] the matching projected chessboard corners.
    """

    def __init__(self, board, camera_matrix, distortion, poses=SYNTHETIC_POSES):
        from charucal.board import (
            create_charuco_board,
            get_charuco_object_points,
            get_marker_object_points,
        )
        from charucal.types import FrameObservation, PointPacket

        charuco_board = create_charuco_board(board)
        marker_points = get_marker_object_points(charuco_board)
        corner_points = get_charuco_object_points(charuco_board)

        width, height = IMAGE_SIZE
        self.observations = []
        self.corner_sets = []
        self.poses = []

        for rvec, tvec in poses:
            rvec = np.array(rvec, dtype=np.float64)
            tvec = np.array(tvec, dtype=np.float64)

            ids = sorted(marker_points)
            quads = []
            for marker_id in ids:
                projected, _ = cv2.projectPoints(
                    marker_points[marker_id].astype(np.float64),
                    rvec, tvec, camera_matrix, distortion,
                )
                quads.append(projected.reshape(4, 2))

            projected, _ = cv2.projectPoints(
                corner_points.astype(np.float64), rvec, tvec, camera_matrix, distortion,
            )

            frame = np.zeros((height, width, 3), dtype=np.uint8)
            self.observations.append(FrameObservation.create(ids, quads, frame))
            self.corner_sets.append(PointPacket(
                point_id=np.arange(len(corner_points), dtype=np.int32),
                img_loc=projected.reshape(-1, 2).astype(np.float32),
                obj_loc=corner_points,
            ))
            self.poses.append((rvec, tvec))

    def interpolator(self):
        """Interpolator returning the projected corners of each view."""
        lookup = {id(obs): packet for obs, packet in zip(self.observations, self.corner_sets)}

        def _interpolate(observation, camera_matrix, distortion):
            return lookup[id(observation)]

        return _interpolate


@pytest.fixture
def synthetic_views(sample_board, sample_intrinsics_matrix):
    """Five distortion-free views of the sample board."""
    return SyntheticViews(sample_board, sample_intrinsics_matrix, np.zeros(5))


@pytest.fixture
def frozen_store(synthetic_views):
    """Frozen store holding the synthetic views in order."""
    from charucal.store import ObservationStore
    store = ObservationStore()
    for observation in synthetic_views.observations:
        store.append(observation)
    store.freeze()
    return store


def render_board_views(board, camera_matrix, poses=SYNTHETIC_POSES, pixels_per_square=60):
    """
    Warp a generated board image into camera frames.

    Board pixel (u, v) sits at board point (u, v) * square_length /
    pixels_per_square, so the image maps into each frame through the
    homography K [r1 r2 t] S.
    """
    from charucal.board import generate_board_image

    board_image = generate_board_image(
        board,
        width=board.squares_x * pixels_per_square,
        height=board.squares_y * pixels_per_square,
        margin=0,
    )
    scale = board.square_length / pixels_per_square
    to_board = np.diag([scale, scale, 1.0])

    frames = []
    for rvec, tvec in poses:
        rotation, _ = cv2.Rodrigues(np.array(rvec, dtype=np.float64))
        extrinsic = np.column_stack([rotation[:, 0], rotation[:, 1], tvec])
        homography = camera_matrix @ extrinsic @ to_board

        gray = cv2.warpPerspective(
            board_image, homography, IMAGE_SIZE,
            flags=cv2.INTER_LINEAR, borderValue=200,
        )
        frames.append(cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR))
    return frames


@pytest.fixture
def rendered_board():
    """5x7 board with 4x4 markers, large enough in rendered frames to detect."""
    from charucal.types import BoardModel
    return BoardModel(
        squares_x=5,
        squares_y=7,
        square_length=0.04,
        marker_length=0.02,
        dictionary="DICT_4X4_50",
    )


@pytest.fixture
def render_camera_matrix():
    return np.array([
        [900.0, 0.0, 640.0],
        [0.0, 900.0, 360.0],
        [0.0, 0.0, 1.0],
    ], dtype=np.float64)


@pytest.fixture
def rendered_frames(rendered_board, render_camera_matrix):
    """Five camera frames of the rendered board seen from different poses."""
    return render_board_views(rendered_board, render_camera_matrix)
