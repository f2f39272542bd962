"""
Displace — Asset Loader
Turns image references into engine-sized (H, W, 4) uint8 RGBA buffers.

Accepted references:
  - numpy arrays (greyscale, RGB, RGBA; uint8)
  - PIL images
  - encoded bytes (PNG, JPEG, ...)
  - data URLs (data:image/png;base64,...)
  - http(s):// and file:// URLs
  - filesystem paths

Decoding can run synchronously (load) or on a worker thread (load_async).
Every failure surfaces as DecodeError.
"""

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from urllib.parse import urlparse, unquote

import numpy as np
import requests
from PIL import Image

from core.engine_models import ResampleFilter
from core.image_io import DATA_URL_PREFIX, decode_bytes, decode_data_url, ensure_rgba
from core.safety import DecodeError, SafetyError, validate_dimensions, validate_frame

logger = logging.getLogger(__name__)

_PIL_FILTERS = {
    ResampleFilter.NEAREST: Image.NEAREST,
    ResampleFilter.BILINEAR: Image.BILINEAR,
    ResampleFilter.LANCZOS: Image.LANCZOS,
}

DEFAULT_TIMEOUT = 30  # seconds, network fetches only


def is_async_reference(source) -> bool:
    """True for references that need I/O to decode (strings, paths, bytes)."""
    return isinstance(source, (str, os.PathLike, bytes, bytearray))


class AssetLoader:
    """Decode and resample image references to a fixed output size."""

    def __init__(self, width: int, height: int, resample="bilinear",
                 max_workers: int = 2, timeout: float = DEFAULT_TIMEOUT):
        try:
            self.width, self.height = validate_dimensions(width, height)
        except SafetyError as e:
            raise ValueError(str(e))
        self.resample = ResampleFilter(resample)
        self.timeout = timeout
        self._max_workers = max_workers
        self._executor = None

    # --- Synchronous decode ---

    def load(self, source) -> np.ndarray:
        """Decode a reference into an (H, W, 4) uint8 buffer at the loader size.

        Raises:
            DecodeError: If the reference can't be read, decoded or resampled.
        """
        try:
            if isinstance(source, np.ndarray):
                return self._from_array(source)
            if isinstance(source, Image.Image):
                return self.resize(source)
            if isinstance(source, (bytes, bytearray)):
                return self.resize(decode_bytes(bytes(source)))
            if isinstance(source, (str, os.PathLike)):
                return self.resize(self._open_reference(source))
        except SafetyError as e:
            raise DecodeError(str(e)) from e
        raise DecodeError(f"Unsupported image source type: {type(source).__name__}")

    def resize(self, image: Image.Image) -> np.ndarray:
        """Convert a PIL image to RGBA and resample it to the loader size."""
        try:
            img = image.convert("RGBA")
            if img.size != (self.width, self.height):
                img = img.resize((self.width, self.height), _PIL_FILTERS[self.resample])
            return np.array(img, dtype=np.uint8)
        except (OSError, ValueError) as e:
            raise DecodeError(f"Could not resample image: {e}")

    def _from_array(self, frame: np.ndarray) -> np.ndarray:
        validate_frame(frame)
        h, w = frame.shape[:2]
        if (w, h) == (self.width, self.height):
            return ensure_rgba(frame)
        return self.resize(Image.fromarray(ensure_rgba(frame)))

    def _open_reference(self, ref) -> Image.Image:
        if isinstance(ref, os.PathLike):
            return self._open_path(Path(ref))
        if ref.startswith(DATA_URL_PREFIX):
            return decode_data_url(ref)
        scheme = urlparse(ref).scheme.lower()
        if scheme in ("http", "https"):
            return self._fetch(ref)
        if scheme == "file":
            return self._open_path(Path(unquote(urlparse(ref).path)))
        return self._open_path(Path(ref))

    def _open_path(self, path: Path) -> Image.Image:
        if not path.is_file():
            raise DecodeError(f"Image file not found: {path}")
        try:
            return decode_bytes(path.read_bytes())
        except OSError as e:
            raise DecodeError(f"Could not read {path}: {e}")

    def _fetch(self, url: str) -> Image.Image:
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise DecodeError(f"Download failed for {url}: {e}")
        return decode_bytes(response.content)

    # --- Asynchronous decode ---

    def load_async(self, source) -> Future:
        """Decode on a worker thread. The future resolves to a buffer or raises DecodeError."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="displace-decode"
            )
        logger.debug("Queueing decode of %s", type(source).__name__)
        return self._executor.submit(self.load, source)

    def shutdown(self, wait: bool = True):
        """Stop the worker pool. Safe to call repeatedly."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
