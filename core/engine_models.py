"""
Displace -- Engine Settings Models

Pydantic models for the host-facing configuration surface of the
displacement engine. Output size is fixed at construction; everything
else can be changed later through engine methods.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from core.safety import MAX_DIMENSION, clamp_strength


class ResampleFilter(str, Enum):
    """Filter used when a decoded asset is resized to the engine size."""
    NEAREST = "nearest"
    BILINEAR = "bilinear"  # Browser canvas drawImage default
    LANCZOS = "lanczos"


class PreviewInterpolation(str, Enum):
    """Filter used when the preview sink blits a map into its surface."""
    NEAREST = "nearest"
    BILINEAR = "bilinear"


class EngineSettings(BaseModel):
    """Construction-time configuration for DisplacementEngine."""

    width: int = Field(ge=1, le=MAX_DIMENSION)
    height: int = Field(ge=1, le=MAX_DIMENSION)
    strength: float = 50.0
    resample: ResampleFilter = ResampleFilter.BILINEAR
    workers: int = Field(default=1, ge=1, le=16)
    preview_size: tuple[int, int] | None = None
    preview_interpolation: PreviewInterpolation = PreviewInterpolation.NEAREST

    @field_validator("strength", mode="before")
    @classmethod
    def _clamp_strength(cls, v):
        if v is None:
            return 50.0
        return clamp_strength(v)

    @model_validator(mode="after")
    def _check_preview_size(self) -> EngineSettings:
        if self.preview_size is not None:
            pw, ph = self.preview_size
            if not (1 <= pw <= MAX_DIMENSION and 1 <= ph <= MAX_DIMENSION):
                raise ValueError(
                    f"preview_size must be within 1..{MAX_DIMENSION} per side, "
                    f"got {self.preview_size}"
                )
        return self
