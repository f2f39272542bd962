"""
Displace — Displacement Map Generators
Procedural maps to feed the displacement kernel. Every generator returns an
(H, W, 4) uint8 RGBA array where R/G = 128 means "no displacement".
"""

import numpy as np

from effects.displace import NEUTRAL

DIRECTIONS = ("horizontal", "vertical", "both")
BLOCK_UNIT = 4  # pixels per block_size step


def neutral_map(width: int, height: int) -> np.ndarray:
    """Uniform map that leaves every pixel in place."""
    dmap = np.zeros((height, width, 4), dtype=np.uint8)
    dmap[:, :, 0] = NEUTRAL
    dmap[:, :, 1] = NEUTRAL
    dmap[:, :, 3] = 255
    return dmap


def broken_map(width: int, height: int, noise_density: float = 0.5,
               direction: str = "both", block_size: int = 5, seed: int = 42,
               frame_index: int = 0, animation_speed: float = 1.0) -> np.ndarray:
    """Shattered-glass block noise map.

    The surface is cut into square blocks; a random subset of blocks gets a
    random red and/or green value, the rest stay neutral.

    Args:
        width, height: Map size in pixels.
        noise_density: Fraction of blocks that get displaced (0.0-1.0).
        direction: 'horizontal' (R only), 'vertical' (G only), or 'both'.
        block_size: Block size factor (1-10); blocks are block_size * 4 px.
        seed: Random seed for reproducibility.
        frame_index: Animation step supplied by the host's own timer.
        animation_speed: Phase multiplier for frame_index (0-5). 0 freezes the pattern.

    Returns:
        (H, W, 4) uint8 map.
    """
    if direction not in DIRECTIONS:
        raise ValueError(f"Unknown direction: {direction}. Available: {', '.join(DIRECTIONS)}")
    noise_density = max(0.0, min(1.0, float(noise_density)))
    block_size = max(1, min(10, int(block_size)))
    animation_speed = max(0.0, min(5.0, float(animation_speed)))

    phase = int(frame_index * animation_speed)
    rng = np.random.RandomState((int(seed) + phase * 7919) % (2 ** 32))

    block = block_size * BLOCK_UNIT
    rows = -(-height // block)
    cols = -(-width // block)

    active = rng.random_sample((rows, cols)) < noise_density
    red = rng.randint(0, 256, (rows, cols))
    green = rng.randint(0, 256, (rows, cols))
    red = np.where(active, red, NEUTRAL)
    green = np.where(active, green, NEUTRAL)
    if direction == "horizontal":
        green[:] = NEUTRAL
    elif direction == "vertical":
        red[:] = NEUTRAL

    # Expand block grid to pixels, crop the overhang
    red_px = np.repeat(np.repeat(red, block, axis=0), block, axis=1)[:height, :width]
    green_px = np.repeat(np.repeat(green, block, axis=0), block, axis=1)[:height, :width]

    dmap = neutral_map(width, height)
    dmap[:, :, 0] = red_px.astype(np.uint8)
    dmap[:, :, 1] = green_px.astype(np.uint8)
    return dmap


def map_from_frame(frame: np.ndarray) -> np.ndarray:
    """Use an arbitrary image as a displacement map.

    Greyscale frames drive both axes equally. RGB frames get an opaque alpha.
    """
    if frame.dtype != np.uint8:
        raise ValueError(f"Map source must be uint8, got {frame.dtype}")
    if frame.ndim == 2:
        frame = np.stack([frame, frame, frame], axis=2)
    if frame.ndim != 3 or frame.shape[2] not in (3, 4):
        raise ValueError(f"Map source must be (H, W), (H, W, 3) or (H, W, 4), got {frame.shape}")
    if frame.shape[2] == 4:
        return frame.copy()
    h, w = frame.shape[:2]
    alpha = np.full((h, w, 1), 255, dtype=np.uint8)
    return np.concatenate([frame, alpha], axis=2)
