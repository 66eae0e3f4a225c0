"""
Chroma Key Extraction

Turns a generated foreground rendered on pure green (#00FF00) into a cutout
with per-pixel alpha.

For every pixel: diff = G - max(R, B)
    diff > high              -> alpha 0 (key)
    low < diff <= high       -> soft rim: alpha falls off across the band and
                                green is clamped down to max(R, B) (despill)
    diff <= low              -> subject interior, left exactly as it was

Interior pixels are never despilled: green clothing or green eyes would shift
colour otherwise. The price is that strongly green subject areas can fall
into the key band; that ambiguity is not detected, only tuned for via
ChromaKeyConfig.
"""

from typing import Optional

import numpy as np

from .bitmap import Bitmap
from .render_config import ChromaKeyConfig, DEFAULT_CHROMA_CONFIG


def key_difference(pixels: np.ndarray) -> np.ndarray:
    """G - max(R, B) per pixel as int16 (H, W)."""
    rgb = pixels[:, :, :3].astype(np.int16)
    max_rb = np.maximum(rgb[:, :, 0], rgb[:, :, 2])
    return rgb[:, :, 1] - max_rb


def key_alpha(diff: np.ndarray, config: ChromaKeyConfig = DEFAULT_CHROMA_CONFIG) -> np.ndarray:
    """
    Alpha (uint8) implied by the key difference alone.

    Non-increasing in diff: 255 up to `low`, falling across the band,
    0 above `high`.
    """
    low = config.low_threshold
    high = config.high_threshold

    t = (diff.astype(np.float64) - low) / float(high - low)
    t = np.clip(t, 0.0, 1.0)
    alpha = np.floor(255.0 * np.power(1.0 - t, config.falloff_exponent))

    # Anything inside the band stays strictly translucent
    in_band = (diff > low) & (diff <= high)
    alpha = np.where(in_band, np.minimum(alpha, 254.0), alpha)
    alpha = np.where(diff > high, 0.0, alpha)
    alpha = np.where(diff <= low, 255.0, alpha)
    return alpha.astype(np.uint8)


def extract_foreground(bitmap: Bitmap, config: Optional[ChromaKeyConfig] = None) -> Bitmap:
    """
    Key out the background colour of a generated foreground.

    Args:
        bitmap: Foreground on the key colour (any existing alpha is kept and
                combined with the key alpha)
        config: Thresholds; defaults to the tuned constants

    Returns:
        New same-size bitmap with alpha
    """
    config = config or DEFAULT_CHROMA_CONFIG

    out = bitmap.copy_pixels()
    diff = key_difference(out)
    max_rb = np.maximum(out[:, :, 0], out[:, :, 2])

    hard = diff > config.high_threshold
    band = (diff > config.low_threshold) & ~hard

    alpha = key_alpha(diff, config)

    # Combine with incoming alpha only where the key applies
    keyed = hard | band
    existing = out[:, :, 3].astype(np.uint16)
    combined = (existing * alpha.astype(np.uint16) + 127) // 255
    out[:, :, 3] = np.where(keyed, combined, out[:, :, 3]).astype(np.uint8)

    # Despill the translucent rim only
    out[:, :, 1] = np.where(band, max_rb, out[:, :, 1])

    return Bitmap.from_array(out)


def key_coverage(bitmap: Bitmap) -> float:
    """Fraction of pixels that are fully transparent."""
    alpha = bitmap.pixels[:, :, 3]
    return float(np.count_nonzero(alpha == 0)) / alpha.size
