"""
ChArUco board creation and geometry lookups.

Pure functions - no classes, no state. OpenCV board objects are derived
from an immutable BoardModel on demand.
"""

from __future__ import annotations

import cv2
import numpy as np

from .types import DICTIONARY_IDS, BoardModel


# ============================================================================
# ArUco Dictionary Reference
# ============================================================================

ARUCO_DICTIONARIES = {name: getattr(cv2.aruco, name) for name in DICTIONARY_IDS}


def get_dictionary(board: BoardModel) -> cv2.aruco.Dictionary:
    """Get the predefined ArUco dictionary referenced by a board."""
    return cv2.aruco.getPredefinedDictionary(ARUCO_DICTIONARIES[board.dictionary])


# ============================================================================
# Board Creation
# ============================================================================


def create_charuco_board(board: BoardModel) -> cv2.aruco.CharucoBoard:
    """
    Create an OpenCV CharucoBoard from a board model.

    Args:
        board: BoardModel with board geometry

    Returns:
        cv2.aruco.CharucoBoard object
    """
    charuco_board = cv2.aruco.CharucoBoard(
        size=(board.squares_x, board.squares_y),
        squareLength=board.square_length,
        markerLength=board.marker_length,
        dictionary=get_dictionary(board),
    )

    charuco_board.setLegacyPattern(board.legacy_pattern)

    return charuco_board


def generate_board_image(
    board: BoardModel,
    width: int = 700,
    height: int = 900,
    margin: int = 50,
    border_bits: int = 1,
) -> np.ndarray:
    """
    Generate a printable image of the board.

    Args:
        board: BoardModel with board geometry
        width: Image width in pixels
        height: Image height in pixels
        margin: White margin around the board in pixels
        border_bits: Marker border width in bits

    Returns:
        Grayscale image as numpy array
    """
    charuco_board = create_charuco_board(board)
    return charuco_board.generateImage(
        (width, height), marginSize=margin, borderBits=border_bits
    )


# ============================================================================
# Object Points
# ============================================================================


def get_charuco_object_points(charuco_board: cv2.aruco.CharucoBoard) -> np.ndarray:
    """
    Get the 3D object points for all chessboard corners on the board.

    Row i is the corner with board-relative id i.

    Args:
        charuco_board: OpenCV CharucoBoard

    Returns:
        (n, 3) float32 array of corner positions in board frame
    """
    return np.asarray(charuco_board.getChessboardCorners(), dtype=np.float32).reshape(-1, 3)


def get_marker_object_points(charuco_board: cv2.aruco.CharucoBoard) -> dict[int, np.ndarray]:
    """
    Get the 3D corners of every marker on the board, keyed by marker id.

    Corner order matches the order cv2.aruco reports detected corners
    (clockwise from top-left).

    Args:
        charuco_board: OpenCV CharucoBoard

    Returns:
        Dict mapping marker id to a (4, 3) float32 array
    """
    ids = np.asarray(charuco_board.getIds()).reshape(-1)
    obj_points = charuco_board.getObjPoints()

    return {
        int(marker_id): np.asarray(points, dtype=np.float32).reshape(4, 3)
        for marker_id, points in zip(ids, obj_points)
    }
