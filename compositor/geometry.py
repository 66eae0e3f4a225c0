"""
Crop / Rotate Geometry

Maps a crop rectangle chosen on a "fit-to-container" display of a photo back
onto the photo's own pixels and renders the rotated crop at any resolution.

The crop rectangle is expressed as fractions of the CONTAINER, not of the
image: the image is shown scaled to fit entirely inside the container
(object-fit: contain), centred, and the user drags a rectangle over that.
Rotation pivots around the source image's own centre, which is how the
rotation is previewed while cropping.

Example:
    >>> editor = CropEditor(container_width=600, container_height=800)
    >>> crop = editor.initial_crop()
    >>> crop = editor.drag(crop, dx=0.05, dy=0.0)
    >>> crop = editor.rotate(crop, 3.5)
    >>> cropped = crop_and_rotate(source, crop, 600, 800)
"""

import math
from dataclasses import dataclass, replace
from typing import Optional, Tuple

import cv2
import numpy as np

from .bitmap import Bitmap, premultiply, unpremultiply
from .errors import GeometryError

# =============================================================================
# Constants
# =============================================================================

# Pixel width / height of the crop; the generation model only accepts 3:4
DEFAULT_ASPECT_RATIO = 3 / 4

MIN_CROP_WIDTH = 0.1

# Rotation slider range per mode (degrees)
ROTATION_LIMITS = {
    "fine": 15.0,
    "wide": 45.0,
}

# Initial crop: 60% of the container width, at most 80% of its height
INITIAL_CROP_WIDTH = 0.6
INITIAL_CROP_MAX_HEIGHT = 0.8

# Below this output/native ratio, pre-reduce with INTER_AREA before warping
AREA_PREFILTER_RATIO = 0.5

# Float tolerance for bounds checks on fractions
_EPS = 1e-9


@dataclass(frozen=True)
class CropRegion:
    """Crop rectangle in container fractions plus a rotation in degrees."""
    x: float
    y: float
    width: float
    height: float
    rotation_degrees: float = 0.0

    def __post_init__(self):
        for name in ("x", "y", "width", "height", "rotation_degrees"):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise GeometryError(f"CropRegion.{name} must be finite, got {value}")
        if self.width <= 0 or self.height <= 0:
            raise GeometryError(f"CropRegion size must be positive, got {self.width}x{self.height}")
        if self.x < -_EPS or self.y < -_EPS:
            raise GeometryError(f"CropRegion origin must be >= 0, got ({self.x}, {self.y})")
        if self.x + self.width > 1 + _EPS or self.y + self.height > 1 + _EPS:
            raise GeometryError(
                f"CropRegion exceeds container: x+width={self.x + self.width}, "
                f"y+height={self.y + self.height}"
            )


@dataclass(frozen=True)
class FitBox:
    """Where a fit-without-cropping image lands inside its container (pixels)."""
    visual_width: float
    visual_height: float
    offset_x: float
    offset_y: float


def fit_contain(natural_width: int, natural_height: int, container_width: float, container_height: float) -> FitBox:
    """
    Scale an image to fit entirely inside a container, centred, aspect preserved.
    """
    if natural_width <= 0 or natural_height <= 0:
        raise GeometryError(f"Image size must be positive, got {natural_width}x{natural_height}")
    if container_width <= 0 or container_height <= 0:
        raise GeometryError(f"Container size must be positive, got {container_width}x{container_height}")

    img_aspect = natural_width / natural_height
    container_aspect = container_width / container_height

    if img_aspect > container_aspect:
        visual_w = float(container_width)
        visual_h = container_width / img_aspect
        offset_x = 0.0
        offset_y = (container_height - visual_h) / 2
    else:
        visual_h = float(container_height)
        visual_w = container_height * img_aspect
        offset_y = 0.0
        offset_x = (container_width - visual_w) / 2

    return FitBox(visual_w, visual_h, offset_x, offset_y)


# =============================================================================
# Crop editing (the mutation boundary: every result is valid and aspect-locked)
# =============================================================================

class CropEditor:
    """
    Applies drag / resize / rotate gestures to a CropRegion.

    Every operation returns a new region that stays inside the container and
    keeps pixel width / height equal to the aspect constant. Deltas are
    fractions of the container, measured from where the gesture started.
    """

    def __init__(
        self,
        container_width: float,
        container_height: float,
        aspect_ratio: float = DEFAULT_ASPECT_RATIO,
        rotation_mode: str = "fine",
        min_width: float = MIN_CROP_WIDTH,
    ):
        if container_width <= 0 or container_height <= 0:
            raise GeometryError(f"Container size must be positive, got {container_width}x{container_height}")
        if aspect_ratio <= 0:
            raise GeometryError(f"Aspect ratio must be positive, got {aspect_ratio}")
        if rotation_mode not in ROTATION_LIMITS:
            raise GeometryError(
                f"Unknown rotation mode: {rotation_mode}. Valid modes: {', '.join(ROTATION_LIMITS)}"
            )

        self.container_width = float(container_width)
        self.container_height = float(container_height)
        self.aspect_ratio = aspect_ratio
        self.rotation_mode = rotation_mode
        self.rotation_limit = ROTATION_LIMITS[rotation_mode]
        self.min_width = min_width

    # Fraction conversions under the aspect lock
    def _height_for_width(self, width: float) -> float:
        return (width * self.container_width / self.aspect_ratio) / self.container_height

    def _width_for_height(self, height: float) -> float:
        return (height * self.container_height * self.aspect_ratio) / self.container_width

    def pixel_aspect(self, crop: CropRegion) -> float:
        """Pixel width / height of a crop inside this container."""
        return (crop.width * self.container_width) / (crop.height * self.container_height)

    def initial_crop(self) -> CropRegion:
        width = INITIAL_CROP_WIDTH
        height = self._height_for_width(width)
        if height > INITIAL_CROP_MAX_HEIGHT:
            height = INITIAL_CROP_MAX_HEIGHT
            width = self._width_for_height(height)
        return CropRegion(x=(1 - width) / 2, y=(1 - height) / 2, width=width, height=height)

    def drag(self, start: CropRegion, dx: float, dy: float) -> CropRegion:
        """Move the crop; the origin is clamped to [0, 1 - size]."""
        x = min(max(start.x + dx, 0.0), 1.0 - start.width)
        y = min(max(start.y + dy, 0.0), 1.0 - start.height)
        return replace(start, x=max(x, 0.0), y=max(y, 0.0))

    def resize(self, start: CropRegion, dx: float, dy: float = 0.0) -> CropRegion:
        """
        Resize from the bottom-right handle.

        Height is always derived from width; at the right edge width is
        clamped, at the bottom edge height is clamped and width re-derived.
        `dy` is accepted for gesture symmetry but the width drives the size.
        """
        width = max(self.min_width, start.width + dx)
        height = self._height_for_width(width)

        if start.x + width > 1:
            width = 1 - start.x
            height = self._height_for_width(width)

        if start.y + height > 1:
            height = 1 - start.y
            width = self._width_for_height(height)

        return replace(start, width=width, height=height)

    def rotate(self, start: CropRegion, degrees: float) -> CropRegion:
        """Set the rotation, clamped to the mode's range."""
        limit = self.rotation_limit
        return replace(start, rotation_degrees=min(max(float(degrees), -limit), limit))

    def clamp(
        self,
        x: float,
        y: float,
        width: float,
        height: Optional[float] = None,
        rotation_degrees: float = 0.0,
    ) -> CropRegion:
        """
        Turn untrusted crop values (e.g. from an HTTP form) into a valid,
        aspect-locked region. Height is re-derived from width.
        """
        values = (x, y, width, rotation_degrees) + ((height,) if height is not None else ())
        if not all(math.isfinite(v) for v in values):
            raise GeometryError("Crop values must be finite numbers")

        width = min(max(width, self.min_width), 1.0)
        height = self._height_for_width(width)
        if height > 1:
            height = 1.0
            width = self._width_for_height(height)

        x = min(max(x, 0.0), 1.0 - width)
        y = min(max(y, 0.0), 1.0 - height)

        region = CropRegion(x=max(x, 0.0), y=max(y, 0.0), width=width, height=height)
        return self.rotate(region, rotation_degrees)


# =============================================================================
# Rendering the crop
# =============================================================================

def _translation(tx: float, ty: float) -> np.ndarray:
    return np.array([[1.0, 0.0, tx], [0.0, 1.0, ty], [0.0, 0.0, 1.0]])


def crop_pixel_size(
    source_width: int,
    source_height: int,
    crop: CropRegion,
    container_width: float,
    container_height: float,
) -> Tuple[float, float]:
    """Native (source-pixel) size of a crop, unrounded."""
    fit = fit_contain(source_width, source_height, container_width, container_height)
    scale = source_width / fit.visual_width
    return crop.width * container_width * scale, crop.height * container_height * scale


def crop_transform_matrix(
    source_width: int,
    source_height: int,
    crop: CropRegion,
    container_width: float,
    container_height: float,
    output_width: int,
    output_height: int,
) -> np.ndarray:
    """
    2x3 affine matrix mapping source coordinates onto output coordinates.

    Coordinates are continuous (pixel i covers [i, i+1)), the way a canvas
    drawImage call sees them.

    Composition (applied right to left to a source point s):
        translate by -source_centre          (pivot at the image's own centre)
        translate by centre-to-centre delta  (crop centre -> canvas centre)
        rotate by rotation_degrees
        translate by +native_canvas_centre
        scale native canvas -> output size
    """
    fit = fit_contain(source_width, source_height, container_width, container_height)

    # Crop rectangle in container pixels
    px_x = crop.x * container_width
    px_y = crop.y * container_height
    px_w = crop.width * container_width
    px_h = crop.height * container_height

    scale = source_width / fit.visual_width

    # Native canvas size (source-pixel units)
    canvas_w = px_w * scale
    canvas_h = px_h * scale

    # Offset from crop centre to image centre, in source pixels
    delta_x = (fit.offset_x + fit.visual_width / 2 - (px_x + px_w / 2)) * scale
    delta_y = (fit.offset_y + fit.visual_height / 2 - (px_y + px_h / 2)) * scale

    theta = math.radians(crop.rotation_degrees)
    cos_t = math.cos(theta)
    sin_t = math.sin(theta)
    translate = _translation

    rotate = np.array([[cos_t, -sin_t, 0.0], [sin_t, cos_t, 0.0], [0.0, 0.0, 1.0]])
    to_output = np.array([
        [output_width / canvas_w, 0.0, 0.0],
        [0.0, output_height / canvas_h, 0.0],
        [0.0, 0.0, 1.0],
    ])

    matrix = (
        to_output
        @ translate(canvas_w / 2, canvas_h / 2)
        @ rotate
        @ translate(delta_x, delta_y)
        @ translate(-source_width / 2, -source_height / 2)
    )
    return matrix[:2, :]


def crop_and_rotate(
    source: Bitmap,
    crop: CropRegion,
    container_width: float,
    container_height: float,
    output_size: Optional[Tuple[int, int]] = None,
) -> Bitmap:
    """
    Render the rotated content inside a crop rectangle.

    Args:
        source: Full-resolution source bitmap
        crop: Crop in container fractions (+ rotation)
        container_width, container_height: Size of the display container
        output_size: (width, height); None renders at native source resolution

    Returns:
        New bitmap; areas the rotation pulls in from outside the source are
        transparent.
    """
    native_w, native_h = crop_pixel_size(source.width, source.height, crop, container_width, container_height)

    if output_size is None:
        out_w = max(1, int(round(native_w)))
        out_h = max(1, int(round(native_h)))
    else:
        out_w, out_h = output_size
        if out_w <= 0 or out_h <= 0:
            raise GeometryError(f"Output size must be positive, got {out_w}x{out_h}")

    matrix = crop_transform_matrix(
        source.width, source.height, crop,
        container_width, container_height,
        out_w, out_h,
    )

    full = np.vstack([matrix, [0.0, 0.0, 1.0]])
    pixels = premultiply(source.pixels)
    reduction = min(out_w / native_w, out_h / native_h)

    if reduction < AREA_PREFILTER_RATIO:
        # Pre-reduce so bilinear warping doesn't alias on big downscales
        pre_w = max(1, int(round(source.width * reduction * 2)))
        pre_h = max(1, int(round(source.height * reduction * 2)))
        pixels = cv2.resize(pixels, (pre_w, pre_h), interpolation=cv2.INTER_AREA)
        full = full @ np.diag([source.width / pre_w, source.height / pre_h, 1.0])

    # Continuous coordinates -> OpenCV pixel-centre indices
    full = _translation(-0.5, -0.5) @ full @ _translation(0.5, 0.5)

    warped = cv2.warpAffine(
        pixels,
        full[:2, :],
        (out_w, out_h),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=(0, 0, 0, 0),
    )

    print(
        f"  [GEOMETRY] crop {source.width}x{source.height} -> {out_w}x{out_h} "
        f"(rotation {crop.rotation_degrees:.1f}°, native {native_w:.0f}x{native_h:.0f})"
    )
    return Bitmap.from_array(unpremultiply(warped))
