"""
Observation store - committed frames of a capture session.

Append-only while the session runs, read-only once frozen. Insertion order
is the frame index used by the calibration pipeline.
"""

from __future__ import annotations

from typing import Iterator

from .exceptions import StoreFrozenError
from .types import FrameObservation


class ObservationStore:
    """Ordered accumulator of FrameObservation."""

    def __init__(self):
        self._frames: list[FrameObservation] = []
        self._frozen = False

    def append(self, observation: FrameObservation) -> int:
        """
        Append a committed frame.

        Returns:
            Index of the appended frame

        Raises:
            StoreFrozenError: If the store was already frozen
            ValueError: If the frame size differs from earlier frames
        """
        if self._frozen:
            raise StoreFrozenError("Cannot append to a frozen observation store")

        size = self.image_size
        if size is not None and observation.image_size != size:
            raise ValueError(
                f"Frame size {observation.image_size} does not match "
                f"earlier frames {size}"
            )

        self._frames.append(observation)
        return len(self._frames) - 1

    def freeze(self) -> None:
        """Mark the store read-only. Idempotent."""
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def count(self) -> int:
        return len(self._frames)

    def at(self, index: int) -> FrameObservation:
        return self._frames[index]

    @property
    def image_size(self) -> tuple[int, int] | None:
        """(width, height) shared by all frames, None while empty."""
        if not self._frames:
            return None
        return self._frames[0].image_size

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[FrameObservation]:
        return iter(self._frames)
