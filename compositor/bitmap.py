"""
Bitmap - RGBA8 pixel buffers shared by every render stage

A Bitmap is an immutable (height, width, 4) uint8 RGBA array. Stages never
write into a bitmap they did not allocate: constructors copy, and the array
handed out by `pixels` is flagged read-only.

Colour order is RGBA throughout the engine. OpenCV's BGR(A) order only
appears at the decode/encode boundary in this module.

Environment Variables:
    DEBUG_RENDER: Set to "1" to save intermediate layers
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from .errors import BitmapError, DecodeError

# Debug
DEBUG_ENABLED = os.getenv("DEBUG_RENDER", "0") == "1"
DEBUG_OUTPUT_DIR = "outputs/debug_render"

# Rows per float32 working block in composite_over (bounds peak memory at print size)
COMPOSITE_CHUNK_ROWS = 512

RgbaColor = Tuple[int, int, int, int]


@dataclass(frozen=True, eq=False)
class Bitmap:
    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise BitmapError(f"Bitmap size must be positive, got {self.width}x{self.height}")

        pixels = self.pixels
        if pixels.dtype != np.uint8:
            raise BitmapError(f"Bitmap buffer must be uint8, got {pixels.dtype}")
        if pixels.shape != (self.height, self.width, 4):
            raise BitmapError(
                f"Bitmap buffer shape {pixels.shape} does not match "
                f"{self.width}x{self.height} RGBA"
            )
        if not pixels.flags["C_CONTIGUOUS"]:
            raise BitmapError("Bitmap buffer must be C-contiguous")

        pixels.flags.writeable = False

    @classmethod
    def from_array(cls, array: np.ndarray) -> "Bitmap":
        """Build a bitmap from an (H, W, 4) uint8 array. The array is copied."""
        if array.ndim != 3 or array.shape[2] != 4:
            raise BitmapError(f"Expected (H, W, 4) RGBA array, got shape {array.shape}")
        data = np.ascontiguousarray(array, dtype=np.uint8).copy()
        return cls(width=data.shape[1], height=data.shape[0], pixels=data)

    @classmethod
    def blank(cls, width: int, height: int, color: RgbaColor = (0, 0, 0, 0)) -> "Bitmap":
        """Build a bitmap filled with a single RGBA colour."""
        if width <= 0 or height <= 0:
            raise BitmapError(f"Bitmap size must be positive, got {width}x{height}")
        data = np.empty((height, width, 4), dtype=np.uint8)
        data[:, :] = color
        return cls(width=width, height=height, pixels=data)

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def aspect(self) -> float:
        return self.width / self.height

    @property
    def buffer(self) -> bytes:
        """Raw RGBA8 bytes, row-major. Length is always width*height*4."""
        return self.pixels.tobytes()

    def copy_pixels(self) -> np.ndarray:
        """Writable copy of the pixel array for a stage to work in."""
        return self.pixels.copy()


# =============================================================================
# Decode / Encode
# =============================================================================

def decode_bitmap(data: bytes) -> Bitmap:
    """
    Decode PNG/JPEG/WebP bytes into an RGBA bitmap.

    Orientation is assumed to be corrected already by the ingestion layer.

    Raises:
        DecodeError: If the bytes are empty or not a decodable image
    """
    if not data:
        raise DecodeError("Empty image bytes provided")

    buf = np.frombuffer(data, dtype=np.uint8)
    try:
        img = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED)
    except cv2.error as e:
        raise DecodeError(f"Could not decode image: {e}") from e

    if img is None:
        raise DecodeError("Could not decode image (unsupported or corrupt data)")

    if img.dtype == np.uint16:
        img = (img // 257).astype(np.uint8)
    elif img.dtype != np.uint8:
        raise DecodeError(f"Unsupported image depth: {img.dtype}")

    if img.ndim == 2:
        rgba = cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
    elif img.shape[2] == 3:
        rgba = cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)
    elif img.shape[2] == 4:
        rgba = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
    else:
        raise DecodeError(f"Unsupported channel count: {img.shape[2]}")

    return Bitmap.from_array(rgba)


def encode_png(bitmap: Bitmap) -> bytes:
    """Encode a bitmap as PNG bytes (alpha preserved)."""
    bgra = cv2.cvtColor(bitmap.pixels, cv2.COLOR_RGBA2BGRA)
    ok, encoded = cv2.imencode(".png", bgra)
    if not ok:
        raise RuntimeError("PNG encoding failed")
    return encoded.tobytes()


# =============================================================================
# Resampling
# =============================================================================
# Filtering runs on premultiplied alpha. On straight alpha, transparent
# neighbours (RGB 0) would drag partly covered edge pixels towards black.
# =============================================================================

def premultiply(pixels: np.ndarray) -> np.ndarray:
    """Straight-alpha uint8 RGBA -> premultiplied float32 RGBA (0..255 scale)."""
    out = pixels.astype(np.float32)
    out[:, :, :3] *= out[:, :, 3:4] / np.float32(255.0)
    return out


def unpremultiply(pixels: np.ndarray) -> np.ndarray:
    """Premultiplied float32 RGBA -> straight-alpha uint8 RGBA."""
    alpha = pixels[:, :, 3:4]
    rgb = np.zeros(pixels.shape[:2] + (3,), dtype=np.float32)
    np.divide(pixels[:, :, :3] * np.float32(255.0), alpha, out=rgb, where=alpha > 0)

    out = np.empty(pixels.shape, dtype=np.uint8)
    out[:, :, :3] = np.rint(np.clip(rgb, 0.0, 255.0))
    out[:, :, 3] = np.rint(np.clip(pixels[:, :, 3], 0.0, 255.0))
    return out


def warp_rgba(pixels: np.ndarray, matrix: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Bilinear affine warp of an RGBA array; everything mapped from outside
    the source is transparent.
    """
    warped = cv2.warpAffine(
        premultiply(pixels),
        matrix,
        (width, height),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=(0, 0, 0, 0),
    )
    return unpremultiply(warped)


def resize_bitmap(bitmap: Bitmap, width: int, height: int) -> Bitmap:
    """Resize to an exact size (aspect is not preserved)."""
    if (width, height) == bitmap.size:
        return Bitmap.from_array(bitmap.pixels)

    shrinking = width < bitmap.width and height < bitmap.height
    interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR
    resized = cv2.resize(premultiply(bitmap.pixels), (width, height), interpolation=interpolation)
    return Bitmap.from_array(unpremultiply(resized))


def cover_fit(bitmap: Bitmap, width: int, height: int) -> Bitmap:
    """
    Scale to fill width x height completely, cropping the overflow evenly
    (CSS object-fit: cover).
    """
    scale = max(width / bitmap.width, height / bitmap.height)

    # Source window that maps onto the target, centred
    src_w = min(bitmap.width, max(1, int(round(width / scale))))
    src_h = min(bitmap.height, max(1, int(round(height / scale))))
    x0 = (bitmap.width - src_w) // 2
    y0 = (bitmap.height - src_h) // 2

    window = Bitmap.from_array(bitmap.pixels[y0:y0 + src_h, x0:x0 + src_w])
    return resize_bitmap(window, width, height)


# =============================================================================
# Compositing
# =============================================================================

def composite_over(base: Bitmap, layer: Bitmap, opacity: float = 1.0) -> Bitmap:
    """
    Draw `layer` over `base` (source-over, straight alpha).

    Both bitmaps must have the same size.
    """
    if base.size != layer.size:
        raise BitmapError(f"Cannot composite {layer.size} layer onto {base.size} base")

    out = base.copy_pixels()
    if opacity <= 0:
        return Bitmap.from_array(out)

    # Only the bounding box of visible layer pixels can change
    rows = np.flatnonzero(layer.pixels[:, :, 3].any(axis=1))
    if rows.size == 0:
        return Bitmap.from_array(out)
    cols = np.flatnonzero(layer.pixels[:, :, 3].any(axis=0))
    x0, x1 = int(cols[0]), int(cols[-1]) + 1

    for top in range(int(rows[0]), int(rows[-1]) + 1, COMPOSITE_CHUNK_ROWS):
        bottom = min(top + COMPOSITE_CHUNK_ROWS, int(rows[-1]) + 1)
        dst = out[top:bottom, x0:x1].astype(np.float32) / 255.0
        src = layer.pixels[top:bottom, x0:x1].astype(np.float32) / 255.0

        src_a = src[:, :, 3:4] * np.float32(opacity)
        dst_a = dst[:, :, 3:4]

        out_a = src_a + dst_a * (1.0 - src_a)
        out_rgb = src[:, :, :3] * src_a + dst[:, :, :3] * dst_a * (1.0 - src_a)
        np.divide(out_rgb, out_a, out=out_rgb, where=out_a > 0)

        chunk = np.concatenate([out_rgb, out_a], axis=2)
        out[top:bottom, x0:x1] = np.rint(np.clip(chunk, 0.0, 1.0) * 255.0).astype(np.uint8)

    return Bitmap.from_array(out)


def fill_layer(width: int, height: int, color: Tuple[int, int, int], coverage: np.ndarray, alpha: float) -> Bitmap:
    """
    Build a single-colour layer whose alpha is `coverage * alpha`.

    Args:
        coverage: float (H, W) mask in [0, 1]
        alpha: colour opacity in [0, 1]
    """
    layer = np.zeros((height, width, 4), dtype=np.uint8)
    layer[:, :, :3] = color
    layer[:, :, 3] = np.rint(np.clip(coverage, 0.0, 1.0) * alpha * 255.0).astype(np.uint8)
    return Bitmap.from_array(layer)


def _debug_save(bitmap: Bitmap, filename: str, force: bool = False, output_dir: Optional[str] = None):
    """Save an intermediate layer as PNG when debug mode is enabled"""
    if not DEBUG_ENABLED and not force:
        return

    output_dir = output_dir or DEBUG_OUTPUT_DIR
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, filename)

    with open(path, "wb") as f:
        f.write(encode_png(bitmap))
    print(f"  [DEBUG] Saved: {path}")
