# charucal - Interactive ChArUco camera calibration

__version__ = "0.1.0"

# Core types
from charucal.types import (
    BoardModel,
    FrameObservation,
    PointPacket,
    CalibrationFlags,
    CalibrationSettings,
    CalibrationResult,
    CameraParameters,
    CaptureConfig,
    ProjectConfig,
)

# Errors
from charucal.exceptions import (
    CharucalError,
    ConfigurationError,
    CalibrationError,
    NoDataError,
    InsufficientCalibrationData,
    PersistenceError,
    StoreFrozenError,
)

# Board and detection
from charucal.board import (
    create_charuco_board,
    generate_board_image,
)
from charucal.detection import (
    FiducialDetector,
    CornerInterpolator,
    interpolate_corners,
)

# Session and calibration
from charucal.store import ObservationStore
from charucal.session import CaptureSession
from charucal.calibration import CalibrationPipeline

# Configuration and output
from charucal.config import (
    load_project_config,
    save_project_config,
    load_detector_parameters,
)
from charucal.persistence import (
    write_camera_parameters,
    read_camera_parameters,
)

__all__ = [
    # Core types
    "BoardModel",
    "FrameObservation",
    "PointPacket",
    "CalibrationFlags",
    "CalibrationSettings",
    "CalibrationResult",
    "CameraParameters",
    "CaptureConfig",
    "ProjectConfig",
    # Errors
    "CharucalError",
    "ConfigurationError",
    "CalibrationError",
    "NoDataError",
    "InsufficientCalibrationData",
    "PersistenceError",
    "StoreFrozenError",
    # Board and detection
    "create_charuco_board",
    "generate_board_image",
    "FiducialDetector",
    "CornerInterpolator",
    "interpolate_corners",
    # Session and calibration
    "ObservationStore",
    "CaptureSession",
    "CalibrationPipeline",
    # Configuration and output
    "load_project_config",
    "save_project_config",
    "load_detector_parameters",
    "write_camera_parameters",
    "read_camera_parameters",
]
