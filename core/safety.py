"""
Displace — Errors & Resource Guards
Centralized checks run before a buffer is adopted by the engine.
Prevents oversized surfaces, oversized assets, and malformed pixel buffers.
"""

import math

import numpy as np

# --- Configurable Limits ---
MAX_DIMENSION = 8192       # Maximum width or height of any surface
MAX_ASSET_MB = 64          # Maximum encoded asset size
ALLOWED_CHANNELS = {3, 4}  # RGB or RGBA (2D greyscale is handled separately)


class EngineError(Exception):
    """Base class for displacement engine errors."""
    pass


class ConstructionError(EngineError):
    """Raised when the engine cannot be built (bad size, unusable target surface)."""
    pass


class DecodeError(EngineError):
    """Raised when an asset reference can't be decoded or resampled."""
    pass


class EngineClosedError(EngineError):
    """Raised when an operation is attempted on a closed engine."""
    pass


class SafetyError(EngineError):
    """Raised when a resource limit check fails."""
    pass


def validate_dimensions(width, height) -> tuple[int, int]:
    """Check that a surface size is usable.

    Returns:
        (width, height) as ints.

    Raises:
        SafetyError: If either side is not a positive int within MAX_DIMENSION.
    """
    for label, value in (("width", width), ("height", height)):
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
            raise SafetyError(f"{label} must be an integer, got {type(value).__name__}")
        if value < 1:
            raise SafetyError(f"{label} must be at least 1, got {value}")
        if value > MAX_DIMENSION:
            raise SafetyError(
                f"{label} is {value}px, exceeds {MAX_DIMENSION}px limit. "
                f"Resize the surface before rendering."
            )
    return int(width), int(height)


def validate_frame(frame) -> np.ndarray:
    """Check that an array looks like a pixel buffer.

    Accepts (H, W), (H, W, 3) or (H, W, 4) uint8 arrays.

    Raises:
        SafetyError: If dtype, rank, channel count or size is off.
    """
    if not isinstance(frame, np.ndarray):
        raise SafetyError(f"Expected numpy array, got {type(frame).__name__}")
    if frame.dtype != np.uint8:
        raise SafetyError(f"Pixel buffers must be uint8, got {frame.dtype}")
    if frame.ndim == 3:
        if frame.shape[2] not in ALLOWED_CHANNELS:
            raise SafetyError(
                f"Unsupported channel count {frame.shape[2]}. "
                f"Supported: {', '.join(str(c) for c in sorted(ALLOWED_CHANNELS))}"
            )
    elif frame.ndim != 2:
        raise SafetyError(f"Pixel buffers must be 2D or 3D, got {frame.ndim}D")
    h, w = frame.shape[:2]
    validate_dimensions(w, h)
    return frame


def validate_asset_size(num_bytes: int) -> None:
    """Reject encoded assets larger than MAX_ASSET_MB.

    Raises:
        SafetyError: If the payload is too large.
    """
    size_mb = num_bytes / (1024 * 1024)
    if size_mb > MAX_ASSET_MB:
        raise SafetyError(
            f"Asset is {size_mb:.0f}MB, exceeds {MAX_ASSET_MB}MB limit. "
            f"Use a smaller or more compressed image."
        )


def clamp_strength(amount) -> float:
    """Clamp a displacement strength into [0, 100].

    Raises:
        ValueError: If amount is NaN or not numeric.
    """
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValueError(f"Strength must be numeric, got {amount!r}")
    if math.isnan(value):
        raise ValueError("Strength must not be NaN")
    return max(0.0, min(100.0, value))
