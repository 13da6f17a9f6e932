"""Custom exception classes for charucal."""

from __future__ import annotations


class CharucalError(Exception):
    """Base exception for all charucal errors."""

    pass


class ConfigurationError(CharucalError):
    """Raised when a configuration or detector parameter file is missing or invalid."""

    def __init__(self, message: str, path=None):
        self.path = path
        super().__init__(message)


class CalibrationError(CharucalError):
    """Base exception for calibration-related errors."""

    pass


class NoDataError(CalibrationError):
    """Raised when the session ended without any committed frame."""

    pass


class InsufficientCalibrationData(CalibrationError):
    """Raised when too few frames yield board corners for refinement."""

    def __init__(self, message: str, usable_frames: int = 0, required_frames: int = 0):
        self.usable_frames = usable_frames
        self.required_frames = required_frames
        super().__init__(message)


class PersistenceError(CharucalError):
    """Raised when calibration results cannot be written."""

    def __init__(self, message: str, path=None):
        self.path = path
        super().__init__(message)


class StoreFrozenError(CharucalError):
    """Raised when appending to an observation store after the session ended."""

    pass
