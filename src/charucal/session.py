"""
Interactive capture session.

The session pulls frames from a frame source, detects markers, shows the
overlay and waits a bounded time for a command. Frame and command sources
are swappable so the same loop runs against a live camera, a video file or
a scripted test.
"""

from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import Iterable, Iterator, Sequence

import cv2
import numpy as np

from .detection import CornerInterpolator, FiducialDetector, MarkerDetection, draw_overlay
from .exceptions import CalibrationError
from .store import ObservationStore
from .types import FrameObservation, PointPacket

logger = logging.getLogger(__name__)

ESC_KEY = 27
COMMIT_KEY = "c"


class SessionState(enum.Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    AWAITING_COMMAND = "awaiting_command"
    FINISHED = "finished"


class Command(enum.Enum):
    COMMIT = "commit"
    ABORT = "abort"
    NEXT = "next"


# ============================================================================
# Frame Sources
# ============================================================================


class VideoSource:
    """
    Frames from a camera index or a video file via cv2.VideoCapture.

    read() returns None once the source is exhausted or unavailable.
    """

    def __init__(
        self,
        source: int | str | Path = 0,
        resolution: tuple[int, int] | None = None,
    ):
        self.source = source
        self.is_file = isinstance(source, (str, Path))
        self._cap = cv2.VideoCapture(str(source) if self.is_file else source)

        if not self._cap.isOpened():
            logger.error(f"Cannot open video source: {source}")
        elif resolution is not None and not self.is_file:
            width, height = resolution
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

    def read(self) -> np.ndarray | None:
        if not self._cap.isOpened():
            return None
        ret, frame = self._cap.read()
        if not ret or frame is None:
            return None
        return frame

    def release(self) -> None:
        self._cap.release()

    def __enter__(self) -> "VideoSource":
        return self

    def __exit__(self, *exc) -> None:
        self.release()


class IterableSource:
    """Frames from any iterable of images (image lists, generators, tests)."""

    def __init__(self, frames: Iterable[np.ndarray]):
        self._frames: Iterator[np.ndarray] = iter(frames)

    def read(self) -> np.ndarray | None:
        return next(self._frames, None)

    def release(self) -> None:
        pass


# ============================================================================
# Command Sources
# ============================================================================


class KeyboardCommands:
    """
    Commands from OpenCV window key presses.

    wait_ms bounds the wait per frame; 0 blocks until a key is pressed,
    which steps through video files one frame per key.
    """

    def __init__(self, wait_ms: int = 20, commit_key: str = COMMIT_KEY, abort_key: int = ESC_KEY):
        self.wait_ms = wait_ms
        self.commit_key = ord(commit_key)
        self.abort_key = abort_key

    def next_command(self) -> Command | None:
        key = cv2.waitKey(self.wait_ms)
        if key == -1:
            return None
        key &= 0xFF
        if key == self.abort_key:
            return Command.ABORT
        if key == self.commit_key:
            return Command.COMMIT
        return Command.NEXT


class ScriptedCommands:
    """
    Commands from a prepared sequence, one per frame.

    None entries (and an exhausted script) behave like an expired wait.
    """

    def __init__(self, commands: Iterable[Command | None]):
        self._commands = iter(commands)

    def next_command(self) -> Command | None:
        return next(self._commands, None)


# ============================================================================
# Preview
# ============================================================================


class PreviewWindow:
    """OpenCV window for the live overlay."""

    def __init__(self, name: str = "out"):
        self.name = name
        self._opened = False

    def show(self, image: np.ndarray) -> None:
        cv2.imshow(self.name, image)
        self._opened = True

    def close(self) -> None:
        if self._opened:
            cv2.destroyWindow(self.name)
            self._opened = False


# ============================================================================
# Session
# ============================================================================


class CaptureSession:
    """
    Interactive loop collecting marker observations.

    Idle -> Detecting -> AwaitingCommand -> Idle ... -> Finished.
    Commits go to the session's ObservationStore, which is frozen when the
    session finishes.

    Args:
        frames: Object with read() -> image or None
        commands: Object with next_command() -> Command or None
        detector: FiducialDetector (or anything with detect/refine)
        store: Store to fill; a new one is created if omitted
        refine: Apply the refind strategy after each detection
        renderer: Optional object with show(image) for the overlay
        corner_preview: Optional CornerInterpolator for drawing live corners
    """

    def __init__(
        self,
        frames,
        commands,
        detector: FiducialDetector,
        store: ObservationStore | None = None,
        refine: bool = False,
        renderer=None,
        corner_preview: CornerInterpolator | None = None,
    ):
        self.frames = frames
        self.commands = commands
        self.detector = detector
        self.store = store if store is not None else ObservationStore()
        self.refine = refine
        self.renderer = renderer
        self.corner_preview = corner_preview

        self.state = SessionState.IDLE
        self.frames_seen = 0
        self._frame: np.ndarray | None = None
        self._detection: MarkerDetection | None = None
        self._cancelled = False

    @property
    def is_finished(self) -> bool:
        return self.state is SessionState.FINISHED

    def cancel(self) -> None:
        """Finish at the next idle point."""
        self._cancelled = True

    def run(self) -> ObservationStore:
        """Step until finished, then return the frozen store."""
        while not self.is_finished:
            self.step()
        return self.store

    def step(self) -> SessionState:
        """Perform one state transition and return the new state."""
        if self.state is SessionState.IDLE:
            self._acquire()
        elif self.state is SessionState.DETECTING:
            self._detect()
        elif self.state is SessionState.AWAITING_COMMAND:
            self._handle(self.commands.next_command())
        return self.state

    def _acquire(self) -> None:
        if self._cancelled:
            self._finish()
            return

        frame = self.frames.read()
        if frame is None:
            logger.info("Frame source exhausted")
            self._finish()
            return

        self.frames_seen += 1
        self._frame = frame
        self.state = SessionState.DETECTING

    def _detect(self) -> None:
        detection = self.detector.detect(self._frame)
        if self.refine:
            detection = self.detector.refine(self._frame, detection)
        self._detection = detection

        if self.renderer is not None:
            corners = None
            if self.corner_preview is not None and detection.count > 0:
                try:
                    corners = self.corner_preview.preview(self._frame, detection)
                except CalibrationError as e:
                    logger.debug(f"Corner preview unavailable: {e}")
            self.renderer.show(draw_overlay(self._frame, detection, corners))

        self.state = SessionState.AWAITING_COMMAND

    def _handle(self, command: Command | None) -> None:
        if command is Command.ABORT:
            self._finish()
            return

        if command is Command.COMMIT:
            if self._detection.count > 0:
                self._commit()
            else:
                logger.info("No markers detected, frame not captured")

        self._frame = None
        self._detection = None
        self.state = SessionState.IDLE

    def _commit(self) -> None:
        observation = FrameObservation.create(
            self._detection.ids, self._detection.corners, self._frame
        )
        try:
            index = self.store.append(observation)
        except ValueError as e:
            logger.warning(f"Frame not captured: {e}")
            return
        width, height = observation.image_size
        logger.info(
            f"Frame captured ({index + 1} total): {observation.marker_count} markers, "
            f"{width}x{height}"
        )

    def _finish(self) -> None:
        self.state = SessionState.FINISHED
        self.store.freeze()
        logger.info(f"Capture session finished with {self.store.count()} committed frames")


def review_corners(
    store: ObservationStore,
    corner_sets: Sequence[PointPacket],
    renderer,
    commands,
) -> None:
    """
    Replay committed frames with their interpolated corners drawn.

    Stops early on an ABORT command.
    """
    for observation, corners in zip(store, corner_sets):
        renderer.show(draw_overlay(observation.image, corners=corners, text=None))
        if commands.next_command() is Command.ABORT:
            break
