"""Pydantic request models for the Iconforge API.

FastAPI uses these models for request validation and OpenAPI documentation.
Validation failures are reported through the standard error envelope by the
handlers in :mod:`iconforge.api.main`.

Models
------
GenerateImageRequest
    Payload for ``POST /api/generate-image`` - a single image generation.
IconSetRequest
    Payload for ``POST /api/icons/generate`` - a full icon set.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from iconforge.core.icon_prompts import DEFAULT_STYLE

ImageSize = Literal["1024x1024", "1792x1024", "1024x1792"]
ImageQuality = Literal["standard", "hd"]
ImageStyle = Literal["vivid", "natural"]
PresetStyle = Literal["Sticker", "Pastels", "Business", "Cartoon", "3D Model", "Gradient"]


class GenerateImageRequest(BaseModel):
    """Request body for the ``POST /api/generate-image`` endpoint.

    Attributes:
        prompt: Text prompt, 1-4000 characters after trimming.
        size: Output dimensions preset.
        quality: ``"hd"`` for maximum output quality.
        style: ``"vivid"`` or ``"natural"``.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    prompt: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description="Prompt describing the image to generate.",
    )
    size: ImageSize = Field(
        default="1024x1024",
        description="Size must be one of: 1024x1024, 1792x1024, 1024x1792.",
    )
    quality: ImageQuality = Field(
        default="standard",
        description="Quality must be either standard or hd.",
    )
    style: ImageStyle = Field(
        default="vivid",
        description="Style must be either vivid or natural.",
    )


class IconSetRequest(BaseModel):
    """Request body for the ``POST /api/icons/generate`` endpoint.

    Attributes:
        prompt: Icon subject, e.g. ``"coffee cup"``.
        style: Preset visual style.
        colors: Brand colours as ``#RRGGBB`` strings.  Malformed entries are
            ignored and at most four are used.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    prompt: str = Field(
        ...,
        min_length=1,
        max_length=1000,
        description="Icon subject.",
    )
    style: PresetStyle = Field(
        default=DEFAULT_STYLE,
        description="Preset style name.",
    )
    colors: list[str] = Field(
        default_factory=list,
        description="Brand colours (#RRGGBB), up to four.",
    )
