"""
Background Synthesis

Renders the base layer of a composite from a small fixed palette.

White is a flat fill; the pastel entries are two-stop radial gradients from
white at the canvas centre to the tint at the corners
(radius = sqrt(cx^2 + cy^2)), so every corner reaches the tint exactly.

`none` is not a colour: it means the cropped original photo IS the
background, which the renderer handles itself.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

import numpy as np

from .bitmap import Bitmap

RGB = Tuple[int, int, int]

WHITE_RGB = (255, 255, 255)


class BackgroundChoice(str, Enum):
    NONE = "none"
    WHITE = "white"
    BLUE = "blue"
    GRAY = "gray"
    PINK = "pink"
    YELLOW = "yellow"
    PURPLE = "purple"


@dataclass(frozen=True)
class PaletteEntry:
    kind: str  # "flat" | "radial"
    center: RGB
    edge: RGB


def _hex(value: str) -> RGB:
    value = value.lstrip("#")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)


PALETTE: Dict[BackgroundChoice, PaletteEntry] = {
    BackgroundChoice.WHITE: PaletteEntry("flat", WHITE_RGB, WHITE_RGB),
    BackgroundChoice.BLUE: PaletteEntry("radial", WHITE_RGB, _hex("#bfdbfe")),
    BackgroundChoice.GRAY: PaletteEntry("radial", WHITE_RGB, _hex("#d1d5db")),
    BackgroundChoice.PINK: PaletteEntry("radial", WHITE_RGB, _hex("#fbcfe8")),
    BackgroundChoice.YELLOW: PaletteEntry("radial", WHITE_RGB, _hex("#fef3c7")),
    BackgroundChoice.PURPLE: PaletteEntry("radial", WHITE_RGB, _hex("#e9d5ff")),
}

# Identifiers used by older clients
LEGACY_CHOICES = {
    "REMOVE_BG_WHITE": BackgroundChoice.WHITE,
    "REMOVE_BG_BLUE": BackgroundChoice.BLUE,
    "REMOVE_BG_GRAY": BackgroundChoice.GRAY,
    "REMOVE_BG_PINK": BackgroundChoice.PINK,
    "REMOVE_BG_YELLOW": BackgroundChoice.YELLOW,
    "REMOVE_BG_PURPLE": BackgroundChoice.PURPLE,
}


def parse_background_choice(value) -> BackgroundChoice:
    """
    Parse a background identifier from a form field or CLI argument.

    Accepts enum values case-insensitively, legacy REMOVE_BG_* identifiers,
    and empty / None for `none`.

    Raises:
        ValueError: If the identifier is unknown
    """
    if isinstance(value, BackgroundChoice):
        return value
    if value is None:
        return BackgroundChoice.NONE

    raw = str(value).strip()
    if not raw:
        return BackgroundChoice.NONE
    if raw.upper() in LEGACY_CHOICES:
        return LEGACY_CHOICES[raw.upper()]

    try:
        return BackgroundChoice(raw.lower())
    except ValueError:
        valid = ", ".join(c.value for c in BackgroundChoice)
        raise ValueError(f"Unknown background: {value}. Valid options: {valid}")


def radial_distance(width: int, height: int) -> np.ndarray:
    """Normalised distance from the canvas centre (1.0 at the corners), float32 (H, W)."""
    cx = width / 2
    cy = height / 2
    radius = np.hypot(cx, cy)

    # Pixel centres
    xs = (np.arange(width, dtype=np.float64) + 0.5 - cx) ** 2
    ys = (np.arange(height, dtype=np.float64) + 0.5 - cy) ** 2
    distance = np.sqrt(ys[:, np.newaxis] + xs[np.newaxis, :]) / radius
    return np.clip(distance, 0.0, 1.0).astype(np.float32)


def synthesize_background(choice: BackgroundChoice, width: int, height: int) -> Bitmap:
    """
    Render an opaque palette background.

    Raises:
        ValueError: For BackgroundChoice.NONE (the renderer draws the original instead)
    """
    choice = parse_background_choice(choice)
    if choice is BackgroundChoice.NONE:
        raise ValueError("Background 'none' has no synthesized layer; draw the original photo instead")

    entry = PALETTE[choice]
    if entry.kind == "flat":
        return Bitmap.blank(width, height, entry.center + (255,))

    t = radial_distance(width, height)
    out = np.empty((height, width, 4), dtype=np.uint8)
    for channel in range(3):
        start = float(entry.center[channel])
        span = float(entry.edge[channel]) - start
        out[:, :, channel] = np.rint(start + span * t).astype(np.uint8)
    out[:, :, 3] = 255

    return Bitmap.from_array(out)
