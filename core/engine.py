"""
Displace — Displacement Engine
Holds the current base image, displacement map and strength, and renders the
warped output on demand.

State is derived from the two buffer slots:
  EMPTY       no base image        render() is a no-op
  IMAGE_ONLY  base image, no map   render() copies the base image
  READY       both set             render() runs the displacement kernel

Asynchronous decodes are ordered per slot by a monotonic request token: a
completion is applied only if no newer set-call was issued for the same slot,
so the last *issued* request wins even if an older decode finishes later.
"""

import logging
import threading
from concurrent.futures import Future
from enum import Enum

import numpy as np
from pydantic import ValidationError

from core.assets import AssetLoader, is_async_reference
from core.engine_models import EngineSettings
from core.preview import PreviewSink
from core.safety import (
    ConstructionError,
    DecodeError,
    EngineClosedError,
    clamp_strength,
)
from effects.displace import displace

logger = logging.getLogger(__name__)

BASE_SLOT = "base"
MAP_SLOT = "map"


class EngineState(str, Enum):
    """Readiness of the engine, derived from which buffers are present."""
    EMPTY = "empty"
    IMAGE_ONLY = "image_only"
    READY = "ready"


class UpdateChannel:
    """Single-subscriber notification fired after every render that produced output."""

    def __init__(self, callback=None):
        self._callback = None
        if callback is not None:
            self.subscribe(callback)

    def subscribe(self, callback) -> None:
        """Register the subscriber, replacing any previous one."""
        if not callable(callback):
            raise TypeError(f"Update callback must be callable, got {type(callback).__name__}")
        self._callback = callback

    def unsubscribe(self) -> None:
        self._callback = None

    @property
    def subscribed(self) -> bool:
        return self._callback is not None

    def emit(self) -> None:
        if self._callback is not None:
            self._callback()


class DisplacementEngine:
    """Map-driven displacement renderer bound to a fixed output size.

    Args:
        width, height: Output size. Every adopted buffer is resampled to it.
        strength: Initial displacement strength (0-100, clamped).
        preview: Optional PreviewSink that mirrors the displacement map.
        on_update: Optional zero-argument callback fired after each render.
        on_error: Optional callback receiving DecodeError from background decodes.
        loader: AssetLoader to use (default: one sized to the engine).
        target: Optional writable (H, W, 4) uint8 array that receives each render.
        workers: Threads used by the displacement kernel.
        resample: Filter for resizing decoded assets ('nearest', 'bilinear', 'lanczos').

    Raises:
        ConstructionError: If the settings are invalid or the target surface is unusable.
    """

    def __init__(self, width: int, height: int, strength: float = 50.0, *,
                 preview: PreviewSink | None = None, on_update=None, on_error=None,
                 loader: AssetLoader | None = None, target: np.ndarray | None = None,
                 workers: int = 1, resample: str = "bilinear"):
        try:
            settings = EngineSettings(
                width=width, height=height, strength=strength,
                workers=workers, resample=resample,
            )
        except ValidationError as e:
            raise ConstructionError(f"Invalid engine settings: {e}") from e
        self._check_target(target, settings.width, settings.height)
        if on_error is not None and not callable(on_error):
            raise ConstructionError("on_error must be callable")
        if loader is not None and (loader.width, loader.height) != (settings.width, settings.height):
            raise ConstructionError(
                f"Loader decodes to {loader.width}x{loader.height}, "
                f"engine is {settings.width}x{settings.height}"
            )
        try:
            self.updates = UpdateChannel(on_update)
        except TypeError as e:
            raise ConstructionError(str(e)) from e

        self.settings = settings
        self._width = settings.width
        self._height = settings.height
        self._strength = settings.strength
        self._workers = settings.workers
        self._target = target
        self._preview = preview
        self._on_error = on_error
        self._owns_loader = loader is None
        self._loader = loader or AssetLoader(settings.width, settings.height,
                                             resample=settings.resample)

        self._lock = threading.RLock()
        self._preview_lock = threading.Lock()
        self._base_image = None
        self._displacement_map = None
        self._tokens = {BASE_SLOT: 0, MAP_SLOT: 0}
        self._closed = False

    @classmethod
    def from_settings(cls, settings: EngineSettings, **kwargs) -> "DisplacementEngine":
        """Build an engine from an EngineSettings model.

        A PreviewSink is created from preview_size unless one is passed in.
        """
        if kwargs.get("preview") is None and settings.preview_size is not None:
            pw, ph = settings.preview_size
            kwargs["preview"] = PreviewSink(pw, ph, interpolation=settings.preview_interpolation)
        return cls(
            settings.width, settings.height, settings.strength,
            workers=settings.workers, resample=settings.resample.value, **kwargs,
        )

    @staticmethod
    def _check_target(target, width, height):
        if target is None:
            return
        if not isinstance(target, np.ndarray):
            raise ConstructionError(f"Target surface must be a numpy array, got {type(target).__name__}")
        if target.shape != (height, width, 4) or target.dtype != np.uint8:
            raise ConstructionError(
                f"Target surface must be ({height}, {width}, 4) uint8, "
                f"got {target.shape} {target.dtype}"
            )
        if not target.flags.writeable:
            raise ConstructionError("Target surface is read-only")

    # --- Properties ---

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> EngineState:
        self._check_open()
        with self._lock:
            if self._base_image is None:
                return EngineState.EMPTY
            if self._displacement_map is None:
                return EngineState.IMAGE_ONLY
            return EngineState.READY

    @property
    def base_image(self) -> np.ndarray | None:
        """Copy of the adopted base image, or None."""
        self._check_open()
        with self._lock:
            return None if self._base_image is None else self._base_image.copy()

    @property
    def displacement_map(self) -> np.ndarray | None:
        """Copy of the adopted displacement map, or None."""
        self._check_open()
        with self._lock:
            return None if self._displacement_map is None else self._displacement_map.copy()

    @property
    def preview(self) -> PreviewSink | None:
        return self._preview

    # --- Set operations ---

    def set_base_image(self, source) -> Future | None:
        """Adopt a new base image.

        Arrays and PIL images are adopted immediately (no render).
        Strings, paths and bytes are decoded in the background; on success the
        image is adopted and rendered, on failure the error channel is told and
        the previous image stays.

        Returns:
            For background decodes, a Future that resolves to True once the
            image is adopted, or False if it was superseded or failed.
            None for in-memory sources.

        Raises:
            DecodeError: If an in-memory source can't be converted.
        """
        return self._set_slot(BASE_SLOT, source)

    def set_displacement_map(self, source) -> Future | None:
        """Adopt a new displacement map, push it to the preview sink and render.

        Same source handling as set_base_image.
        """
        return self._set_slot(MAP_SLOT, source)

    def _set_slot(self, slot: str, source) -> Future | None:
        self._check_open()
        if is_async_reference(source):
            with self._lock:
                self._tokens[slot] += 1
                token = self._tokens[slot]
            settled = Future()

            def _complete(decode_future):
                try:
                    settled.set_result(self._on_decoded(slot, token, decode_future))
                except Exception as e:
                    settled.set_exception(e)
                    raise

            self._loader.load_async(source).add_done_callback(_complete)
            return settled

        buffer = self._check_buffer(slot, self._loader.load(source))
        with self._lock:
            self._tokens[slot] += 1
            token = self._tokens[slot]
            self._adopt(slot, buffer)
        if slot == MAP_SLOT:
            self._push_preview(token, buffer)
            self._render()
        return None

    def _on_decoded(self, slot: str, token: int, future: Future) -> bool:
        """Apply a finished decode. Returns True if the buffer was adopted.

        Callbacks, preview pushes and the render run after the lock is released.
        """
        if future.cancelled():
            return False
        error = future.exception()
        buffer = None
        if error is None:
            try:
                buffer = self._check_buffer(slot, future.result())
            except DecodeError as e:
                error = e
        elif not isinstance(error, DecodeError):
            error = DecodeError(f"{slot} decode failed: {error}")

        with self._lock:
            if self._closed or token != self._tokens[slot]:
                logger.debug(
                    "Discarding stale %s decode (request %d, current %d)",
                    slot, token, self._tokens[slot],
                )
                return False
            if error is None:
                self._adopt(slot, buffer)

        if error is not None:
            self._report(error)
            return False
        if slot == MAP_SLOT:
            self._push_preview(token, buffer)
        self._render()
        return True

    def _check_buffer(self, slot: str, buffer) -> np.ndarray:
        expected = (self._height, self._width, 4)
        if (not isinstance(buffer, np.ndarray) or buffer.shape != expected
                or buffer.dtype != np.uint8):
            got = getattr(buffer, "shape", type(buffer).__name__)
            raise DecodeError(f"Decoded {slot} must be {expected} uint8, got {got}")
        return buffer

    def _adopt(self, slot: str, buffer: np.ndarray) -> None:
        if slot == BASE_SLOT:
            self._base_image = buffer
        else:
            self._displacement_map = buffer

    def _push_preview(self, token: int, buffer: np.ndarray) -> None:
        with self._preview_lock:
            # A newer map may have been adopted while this one waited
            if self._preview is not None and token == self._tokens[MAP_SLOT]:
                self._preview.show(buffer)

    def _report(self, error: DecodeError) -> None:
        logger.error("Image decode failed: %s", error)
        on_error = self._on_error
        if on_error is not None:
            on_error(error)

    # --- Strength ---

    def set_strength(self, amount: float) -> None:
        """Set displacement strength, clamped to [0, 100]. Does not render."""
        self._check_open()
        self._strength = clamp_strength(amount)

    def get_strength(self) -> float:
        self._check_open()
        return self._strength

    # --- Preview ---

    def attach_preview(self, sink: PreviewSink) -> None:
        """Attach a preview sink; the current map (if any) is shown right away."""
        self._check_open()
        with self._preview_lock:
            self._preview = sink
            with self._lock:
                current = self._displacement_map
            if current is not None:
                sink.show(current)

    def detach_preview(self) -> None:
        self._check_open()
        with self._preview_lock:
            self._preview = None

    # --- Render ---

    def render(self) -> np.ndarray | None:
        """Render the current state.

        Returns:
            A new (H, W, 4) uint8 array owned by the caller, or None when no
            base image is set (no notification is fired in that case).
        """
        self._check_open()
        return self._render()

    def _render(self) -> np.ndarray | None:
        with self._lock:
            if self._closed or self._base_image is None:
                return None
            if self._displacement_map is None:
                output = self._base_image.copy()
            else:
                output = displace(self._base_image, self._displacement_map,
                                  self._strength, workers=self._workers)
            if self._target is not None:
                self._target[:] = output
        self.updates.emit()
        return output

    # --- Lifecycle ---

    def close(self) -> None:
        """Release buffers and callbacks. Idempotent; the engine is unusable afterwards."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            # Invalidate in-flight decodes
            self._tokens[BASE_SLOT] += 1
            self._tokens[MAP_SLOT] += 1
            self._base_image = None
            self._displacement_map = None
            self._target = None
            self._on_error = None
            self.updates.unsubscribe()
        with self._preview_lock:
            self._preview = None
        if self._owns_loader:
            self._loader.shutdown(wait=False)

    def _check_open(self) -> None:
        if self._closed:
            raise EngineClosedError("DisplacementEngine has been closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        status = "closed" if self._closed else self.state.value
        return (f"DisplacementEngine({self._width}x{self._height}, "
                f"strength={self._strength}, {status})")
