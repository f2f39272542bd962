"""
Displace — Effects Registry
Provides a uniform interface over the displacement kernel and map generators.
Every effect is a function: (frame: np.ndarray, displacement_map, **params) -> np.ndarray
Every map generator is a function: (width, height, **params) -> np.ndarray
"""

from effects.displace import displace, sample_coordinates
from effects.maps import neutral_map, broken_map, map_from_frame

# Master registry: name -> (function, default_params, description)
EFFECTS = {
    # === DISTORTION ===
    "displace": {
        "fn": displace,
        "category": "distortion",
        "params": {"strength": 50.0, "workers": 1},
        "description": "Offset pixels by a displacement map (R = horizontal, G = vertical, 128 = none)",
    },
}

MAPS = {
    "neutral": {
        "fn": neutral_map,
        "category": "maps",
        "params": {},
        "description": "Uniform mid-grey map (no displacement)",
    },
    "broken": {
        "fn": broken_map,
        "category": "maps",
        "params": {
            "noise_density": 0.5,
            "direction": "both",
            "block_size": 5,
            "seed": 42,
            "frame_index": 0,
            "animation_speed": 1.0,
        },
        "description": "Shattered block noise (horizontal/vertical/both, animated by frame_index)",
    },
}


def _lookup(registry: dict, kind: str, name: str):
    if name not in registry:
        available = ", ".join(sorted(registry.keys()))
        raise ValueError(f"Unknown {kind}: {name}. Available: {available}")
    entry = registry[name]
    return entry["fn"], entry["params"].copy()


def get_effect(name: str):
    """Get an effect by name. Returns (fn, default_params).

    Raises ValueError if effect doesn't exist.
    """
    return _lookup(EFFECTS, "effect", name)


def get_map(name: str):
    """Get a map generator by name. Returns (fn, default_params)."""
    return _lookup(MAPS, "map", name)


def apply_effect(frame, effect_name: str, displacement_map, **params):
    """Apply a named effect to a frame with given params."""
    fn, defaults = get_effect(effect_name)
    merged = {**defaults, **params}
    return fn(frame, displacement_map, **merged)


def generate_map(map_name: str, width: int, height: int, **params):
    """Build a displacement map with a named generator."""
    fn, defaults = get_map(map_name)
    merged = {**defaults, **params}
    return fn(width, height, **merged)


def _listing(registry: dict, category: str = None) -> list[dict]:
    results = []
    for name, entry in registry.items():
        if category and entry.get("category") != category:
            continue
        results.append({
            "name": name,
            "description": entry["description"],
            "params": entry["params"],
            "category": entry.get("category", "other"),
        })
    return results


def list_effects(category: str = None) -> list[dict]:
    """List all available effects with descriptions.

    Args:
        category: Optional filter — only return effects in this category.
    """
    return _listing(EFFECTS, category)


def list_maps() -> list[dict]:
    """List all available map generators with descriptions."""
    return _listing(MAPS)


__all__ = [
    "EFFECTS", "MAPS",
    "displace", "sample_coordinates",
    "neutral_map", "broken_map", "map_from_frame",
    "get_effect", "get_map", "apply_effect", "generate_map",
    "list_effects", "list_maps",
]
