"""
Displace — Preview Sink
Secondary surface that mirrors the current displacement map so it can be
inspected next to the rendered output. Optionally mirrors to a PNG on disk.
"""

from pathlib import Path

import cv2
import numpy as np

from core.engine_models import PreviewInterpolation
from core.image_io import ensure_rgba, frame_to_data_url, save_frame
from core.safety import validate_dimensions, validate_frame

_CV2_INTERPOLATION = {
    PreviewInterpolation.NEAREST: cv2.INTER_NEAREST,
    PreviewInterpolation.BILINEAR: cv2.INTER_LINEAR,
}


class PreviewSink:
    """Owns an (h, w, 4) uint8 surface and blits incoming frames into it."""

    def __init__(self, width: int, height: int, interpolation="nearest",
                 path: str | Path | None = None):
        self.width, self.height = validate_dimensions(width, height)
        self.interpolation = PreviewInterpolation(interpolation)
        self.path = Path(path) if path else None
        self.frames_shown = 0
        self._surface = np.zeros((self.height, self.width, 4), dtype=np.uint8)

    def show(self, frame: np.ndarray) -> None:
        """Scale a frame to the viewport and draw it."""
        validate_frame(frame)
        frame = ensure_rgba(frame)
        h, w = frame.shape[:2]
        if (w, h) == (self.width, self.height):
            self._surface[:] = frame
        else:
            self._surface[:] = cv2.resize(
                frame, (self.width, self.height),
                interpolation=_CV2_INTERPOLATION[self.interpolation],
            )
        self.frames_shown += 1
        if self.path is not None:
            save_frame(self._surface, self.path)

    def clear(self) -> None:
        self._surface[:] = 0

    @property
    def surface(self) -> np.ndarray:
        return self._surface.copy()

    def to_data_url(self) -> str:
        """Current surface as a PNG data URL."""
        return frame_to_data_url(self._surface)
