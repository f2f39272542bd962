"""
Displace — Displacement Kernel
Map-driven pixel displacement in the style of After Effects' Displacement Map.
Red channel drives horizontal offset, green drives vertical, 128 is neutral.
"""

from concurrent.futures import ThreadPoolExecutor

import numpy as np

from core.safety import clamp_strength

NEUTRAL = 128


def _check_shapes(frame: np.ndarray, displacement_map: np.ndarray) -> None:
    if frame.ndim != 3 or frame.shape[2] not in (3, 4):
        raise ValueError(f"frame must be (H, W, 3|4), got {frame.shape}")
    if displacement_map.ndim != 3 or displacement_map.shape[2] < 2:
        raise ValueError(
            f"displacement_map must be (H, W, C) with C >= 2, got {displacement_map.shape}"
        )
    if displacement_map.shape[:2] != frame.shape[:2]:
        raise ValueError(
            f"displacement_map is {displacement_map.shape[1]}x{displacement_map.shape[0]}, "
            f"frame is {frame.shape[1]}x{frame.shape[0]}"
        )


def _rows_coordinates(displacement_map, strength, y0, y1):
    """Source index grids for output rows [y0, y1)."""
    h, w = displacement_map.shape[:2]
    band = displacement_map[y0:y1]
    disp_x = (band[:, :, 0].astype(np.float64) - NEUTRAL) * strength / NEUTRAL
    disp_y = (band[:, :, 1].astype(np.float64) - NEUTRAL) * strength / NEUTRAL

    y_coords, x_coords = np.mgrid[y0:y1, 0:w]
    src_x = np.clip(x_coords + disp_x, 0, w - 1)
    src_y = np.clip(y_coords + disp_y, 0, h - 1)
    return np.floor(src_y).astype(np.intp), np.floor(src_x).astype(np.intp)


def sample_coordinates(displacement_map: np.ndarray, strength: float = 50.0):
    """Compute the integer source coordinates for every output pixel.

    Args:
        displacement_map: (H, W, C) uint8 array, C >= 2.
        strength: Displacement strength (0-100).

    Returns:
        (src_y, src_x) integer arrays of shape (H, W).
    """
    strength = clamp_strength(strength)
    h = displacement_map.shape[0]
    return _rows_coordinates(displacement_map, strength, 0, h)


def _row_bands(height: int, workers: int) -> list[tuple[int, int]]:
    workers = max(1, min(int(workers), height))
    edges = np.linspace(0, height, workers + 1).astype(int)
    return [(int(a), int(b)) for a, b in zip(edges[:-1], edges[1:]) if b > a]


def displace(frame: np.ndarray, displacement_map: np.ndarray,
             strength: float = 50.0, workers: int = 1) -> np.ndarray:
    """Warp a frame through a displacement map.

    Each output pixel (x, y) samples the frame at
    (x + (R - 128) * strength / 128, y + (G - 128) * strength / 128),
    clamped to the frame edges and floored to the nearest pixel.
    All channels (alpha included) are copied from the sampled pixel.

    Args:
        frame: (H, W, 3|4) uint8 array.
        displacement_map: (H, W, C) uint8 array with C >= 2, same H and W.
        strength: Displacement strength (0-100). 100 moves a saturated
            channel roughly 100 pixels.
        workers: Number of threads; rows are split into disjoint bands.

    Returns:
        New array with the frame's shape and dtype.
    """
    _check_shapes(frame, displacement_map)
    strength = clamp_strength(strength)
    h = frame.shape[0]
    result = np.empty_like(frame)

    def _render_band(band):
        y0, y1 = band
        src_y, src_x = _rows_coordinates(displacement_map, strength, y0, y1)
        result[y0:y1] = frame[src_y, src_x]

    bands = _row_bands(h, workers)
    if len(bands) == 1:
        _render_band(bands[0])
    else:
        with ThreadPoolExecutor(max_workers=len(bands)) as executor:
            # list() surfaces worker exceptions
            list(executor.map(_render_band, bands))

    return result
