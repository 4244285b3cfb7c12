"""Icon prompt compilation.

An icon prompt is composed from the user's subject, a preset style
enhancement, an optional brand colour palette, and a fixed single-icon
boilerplate that keeps FLUX from drawing icon sheets or collections.

Template Structure::

    ONE single [Subject] icon only [Style Enhancement][ using color palette: ...],
    [Fixed: single-icon / transparent background boilerplate]

Colours must be ``#RRGGBB`` hex strings.  Anything else is dropped silently,
and at most :data:`MAX_COLORS` colours are used.

Usage
-----
::

    prompt = build_icon_prompt("rocket", "Sticker", ["#FF0000", "#00FF00"])
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Preset styles.
# Keys are the style names shown to users; values are appended after the
# subject to steer the model towards that look.
# ---------------------------------------------------------------------------

STYLE_PROMPTS: dict[str, str] = {
    "Sticker": "as a single sticker design with bold outlines and vibrant colors, one item only",
    "Pastels": "in soft pastel colors with gentle gradients, one single item only",
    "Business": "in a professional corporate style with clean lines, one single item only",
    "Cartoon": "as a single cartoon illustration with playful style, one item only",
    "3D Model": "as a single detailed 3D rendered object, one item only",
    "Gradient": "with smooth gradient colors and minimalist design, one single item only",
}

PRESET_STYLES: tuple[str, ...] = tuple(STYLE_PROMPTS)

DEFAULT_STYLE = "Sticker"

MAX_COLORS = 4

_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")

_SINGLE_ICON_BOILERPLATE = (
    "ONLY ONE object, simple flat icon, isolated on transparent background, "
    "NO multiple items, NO collections, just one single item, vector style, clean, "
    "minimalist, professional icon design, transparent PNG, centered, no shadows, "
    "no background, THERE SHOULD BE ONLY ONE ICON IN THE IMAGE THAT YOU GENERATED. "
    "NOT MULTIPLE OR EVEN ICON PACK"
)


def filter_colors(colors: list[str] | None) -> list[str]:
    """Keep only well-formed ``#RRGGBB`` colours, capped at :data:`MAX_COLORS`."""
    if not colors:
        return []
    valid = [color.strip() for color in colors if color and _HEX_COLOR.match(color.strip())]
    return valid[:MAX_COLORS]


def build_icon_prompt(prompt: str, style: str, colors: list[str] | None = None) -> str:
    """Compile the prompt sent to the model for one icon.

    Args:
        prompt: The icon subject (e.g. ``"coffee cup"``).
        style: One of :data:`PRESET_STYLES`.
        colors: Optional brand colours as ``#RRGGBB`` strings.

    Returns:
        The full prompt string.

    Raises:
        ValueError: If *style* is not a preset style.
    """
    if style not in STYLE_PROMPTS:
        raise ValueError(f"Unknown style: {style}")

    style_enhancement = STYLE_PROMPTS[style]

    palette = filter_colors(colors)
    color_enhancement = f" using color palette: {', '.join(palette)}" if palette else ""

    return (
        f"ONE single {prompt.strip()} icon only {style_enhancement}{color_enhancement}, "
        f"{_SINGLE_ICON_BOILERPLATE}"
    )
