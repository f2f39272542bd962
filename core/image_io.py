"""
Displace — Frame I/O
Converts between files, data URLs, PIL images and (H, W, 4) uint8 RGBA arrays.
"""

import base64
import binascii
from io import BytesIO
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from core.safety import DecodeError, validate_asset_size, validate_dimensions

DATA_URL_PREFIX = "data:"


def ensure_rgba(frame: np.ndarray) -> np.ndarray:
    """Return an (H, W, 4) uint8 copy of a greyscale, RGB or RGBA frame.

    Missing alpha is filled with 255 (opaque). Greyscale is replicated into RGB.
    """
    if frame.ndim == 2:
        frame = np.stack([frame, frame, frame], axis=2)
    if frame.shape[2] == 4:
        return frame.copy()
    h, w = frame.shape[:2]
    alpha = np.full((h, w, 1), 255, dtype=np.uint8)
    return np.concatenate([frame[:, :, :3], alpha], axis=2)


def load_frame(frame_path) -> np.ndarray:
    """Load an image file as a numpy array (H, W, 4) uint8 RGBA."""
    img = Image.open(str(frame_path)).convert("RGBA")
    return np.array(img)


def save_frame(array: np.ndarray, output_path):
    """Save a numpy array (H, W, 3|4) as PNG."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    img = Image.fromarray(np.clip(array, 0, 255).astype(np.uint8))
    img.save(str(output_path))


def decode_data_url(url: str) -> Image.Image:
    """Decode a base64 `data:image/...` URL into a PIL image.

    Raises:
        DecodeError: If the URL is malformed or the payload isn't an image.
    """
    if not url.startswith(DATA_URL_PREFIX) or "," not in url:
        raise DecodeError(f"Not a data URL: {url[:40]!r}")
    header, payload = url[len(DATA_URL_PREFIX):].split(",", 1)
    if not header.endswith(";base64"):
        raise DecodeError("Only base64-encoded data URLs are supported")
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 payload in data URL: {e}")
    return decode_bytes(raw)


def decode_bytes(raw: bytes) -> Image.Image:
    """Decode an encoded image (PNG, JPEG, ...) held in memory.

    Raises:
        DecodeError: If Pillow can't identify or load the payload.
        SafetyError: If the payload or its pixel size exceeds the limits.
    """
    validate_asset_size(len(raw))
    try:
        img = Image.open(BytesIO(raw))
        # Header size is known before the pixels are decoded
        validate_dimensions(*img.size)
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise DecodeError(f"Could not decode image data: {e}")
    return img


def frame_to_data_url(frame: np.ndarray) -> str:
    """Convert numpy frame to base64 data URL for img tag.
    RGBA frames are encoded as PNG, RGB frames as JPEG."""
    has_alpha = frame.ndim == 3 and frame.shape[2] == 4
    img = Image.fromarray(frame)

    buf = BytesIO()
    if has_alpha:
        img.save(buf, format="PNG", optimize=True)
        b64 = base64.b64encode(buf.getvalue()).decode()
        return f"data:image/png;base64,{b64}"
    else:
        img.save(buf, format="JPEG", quality=90)
        b64 = base64.b64encode(buf.getvalue()).decode()
        return f"data:image/jpeg;base64,{b64}"
