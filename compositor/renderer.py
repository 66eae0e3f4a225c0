"""
Composite Renderer

Single entry point that turns a CompositeSpec into the final portrait bitmap.
Preview and print use exactly the same code path; only the tier profile
(default size, border blur/width, safe-area guide) differs.

Layer order (fixed):
    1. Background   - cover-fitted original (background "none") or palette
    2. Foreground   - validated, resized, chroma-keyed, healed, source-over
    3. Border       - drop shadow + thin stroke around the frame
    4. Guide        - preview only: dashed safe-area rectangle, 3% inset

The render is a pure function of its inputs: no state survives the call and
identical inputs give byte-identical output on the same OpenCV build.

Environment Variables:
    DEBUG_RENDER: Set to "1" to save every layer to outputs/debug_render
"""

import math
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from .anchors import AnchorLocator
from .background import BackgroundChoice, parse_background_choice, synthesize_background
from .bitmap import Bitmap, _debug_save, composite_over, cover_fit, fill_layer, resize_bitmap
from .chroma_key import extract_foreground, key_coverage
from .errors import ForegroundMismatchError, GeometryError
from .geometry import CropRegion, crop_and_rotate
from .healing import heal_regions
from .render_config import DEFAULT_RENDER_CONFIG, BorderConfig, RenderConfig

# =============================================================================
# Resolution tiers
# =============================================================================


class ResolutionTier(str, Enum):
    PREVIEW = "preview"
    PRINT = "print"


@dataclass(frozen=True)
class TierProfile:
    width: int
    height: int
    shadow_blur: float
    stroke_width: int
    safe_area_guide: bool


TIER_PROFILES: Dict[ResolutionTier, TierProfile] = {
    ResolutionTier.PREVIEW: TierProfile(width=800, height=1067, shadow_blur=10, stroke_width=4, safe_area_guide=True),
    ResolutionTier.PRINT: TierProfile(width=2700, height=3600, shadow_blur=60, stroke_width=20, safe_area_guide=False),
}

# Smallest generated foreground side we accept
MIN_FOREGROUND_SIDE = 64

MAX_OUTPUT_SIDE = 6000


# =============================================================================
# Render inputs
# =============================================================================

@dataclass(frozen=True)
class SourceCrop:
    """A full source photo plus the crop the user chose on it."""
    source: Bitmap
    region: CropRegion
    container_width: float
    container_height: float


@dataclass(frozen=True)
class CompositeSpec:
    """
    Everything one render needs. Built fresh per call, never mutated.

    The original is given either already cropped (`original`) or as a
    `source_crop` that the renderer crops at output resolution. Exactly one
    of the two must be set.
    """
    background: BackgroundChoice
    output_width: int
    output_height: int
    tier: ResolutionTier = ResolutionTier.PREVIEW
    foreground: Optional[Bitmap] = None
    original: Optional[Bitmap] = None
    source_crop: Optional[SourceCrop] = None

    def __post_init__(self):
        object.__setattr__(self, "background", parse_background_choice(self.background))
        object.__setattr__(self, "tier", ResolutionTier(self.tier))

        if (self.original is None) == (self.source_crop is None):
            raise ValueError("CompositeSpec needs exactly one of 'original' or 'source_crop'")
        if not (0 < self.output_width <= MAX_OUTPUT_SIDE and 0 < self.output_height <= MAX_OUTPUT_SIDE):
            raise GeometryError(
                f"Output size must be within 1..{MAX_OUTPUT_SIDE}, "
                f"got {self.output_width}x{self.output_height}"
            )

    @classmethod
    def for_tier(cls, tier: ResolutionTier, **kwargs) -> "CompositeSpec":
        """Build a spec at the tier's default output size."""
        profile = TIER_PROFILES[ResolutionTier(tier)]
        return cls(tier=tier, output_width=profile.width, output_height=profile.height, **kwargs)

    @property
    def profile(self) -> TierProfile:
        return TIER_PROFILES[self.tier]

    @property
    def output_size(self) -> Tuple[int, int]:
        return self.output_width, self.output_height


def resolve_original(spec: CompositeSpec) -> Bitmap:
    """The original photo covering the output frame exactly."""
    width, height = spec.output_size
    if spec.source_crop is not None:
        crop = spec.source_crop
        return crop_and_rotate(
            crop.source,
            crop.region,
            crop.container_width,
            crop.container_height,
            output_size=(width, height),
        )
    return cover_fit(spec.original, width, height)


def validate_foreground_dimensions(
    foreground: Bitmap,
    output_width: int,
    output_height: int,
    tolerance: float = DEFAULT_RENDER_CONFIG.foreground_aspect_tolerance,
):
    """
    Check a generated foreground can be stretched onto the output frame.

    Raises:
        ForegroundMismatchError: If it is too small or its aspect differs
            from the output's by more than `tolerance` (relative)
    """
    if min(foreground.width, foreground.height) < MIN_FOREGROUND_SIDE:
        raise ForegroundMismatchError(
            f"Foreground too small: {foreground.width}x{foreground.height} "
            f"(minimum side {MIN_FOREGROUND_SIDE}px)"
        )

    expected = output_width / output_height
    mismatch = abs(foreground.aspect / expected - 1.0)
    if mismatch > tolerance:
        raise ForegroundMismatchError(
            f"Foreground aspect {foreground.aspect:.4f} does not match output aspect "
            f"{expected:.4f} ({mismatch * 100:.1f}% off, tolerance {tolerance * 100:.1f}%)"
        )


# =============================================================================
# Decoration
# =============================================================================

def draw_border(base: Bitmap, shadow_blur: float, stroke_width: int, config: BorderConfig) -> Bitmap:
    """
    Drop shadow + thin stroke along the frame edge.

    The stroke is centred on the canvas edge, so only its inner half is
    visible. The shadow is the full stroke band blurred with
    sigma = shadow_blur / 2 and clipped to the canvas.
    """
    w, h = base.size
    half = max(1, int(round(stroke_width / 2)))
    out = base

    if shadow_blur > 0 and config.shadow_alpha > 0:
        sigma = shadow_blur / 2
        pad = int(math.ceil(3 * sigma)) + half
        band = np.zeros((h + 2 * pad, w + 2 * pad), dtype=np.float32)
        band[pad - half:pad + h + half, pad - half:pad + w + half] = 1.0
        band[pad + half:pad + h - half, pad + half:pad + w - half] = 0.0

        shadow = cv2.GaussianBlur(band, (0, 0), sigmaX=sigma, sigmaY=sigma)
        shadow = shadow[pad:pad + h, pad:pad + w]
        out = composite_over(out, fill_layer(w, h, config.color, shadow, config.shadow_alpha))

    if config.stroke_alpha > 0:
        stroke = np.zeros((h, w), dtype=np.float32)
        stroke[:half, :] = 1.0
        stroke[h - half:, :] = 1.0
        stroke[:, :half] = 1.0
        stroke[:, w - half:] = 1.0
        out = composite_over(out, fill_layer(w, h, config.color, stroke, config.stroke_alpha))

    return out


def _dashed_line(mask: np.ndarray, start: Tuple[int, int], end: Tuple[int, int], dash: int, gap: int, width: int):
    length = math.hypot(end[0] - start[0], end[1] - start[1])
    if length == 0:
        return
    ux = (end[0] - start[0]) / length
    uy = (end[1] - start[1]) / length

    pos = 0.0
    while pos < length:
        stop = min(pos + dash, length)
        p0 = (int(round(start[0] + ux * pos)), int(round(start[1] + uy * pos)))
        p1 = (int(round(start[0] + ux * stop)), int(round(start[1] + uy * stop)))
        cv2.line(mask, p0, p1, 255, thickness=width, lineType=cv2.LINE_8)
        pos += dash + gap


def draw_safe_area_guide(base: Bitmap, config: BorderConfig) -> Bitmap:
    """Dashed rectangle inset by `guide_inset` of each dimension."""
    w, h = base.size
    ix = int(round(w * config.guide_inset))
    iy = int(round(h * config.guide_inset))
    x0, y0, x1, y1 = ix, iy, w - 1 - ix, h - 1 - iy
    if x1 <= x0 or y1 <= y0:
        return base

    mask = np.zeros((h, w), dtype=np.uint8)
    for start, end in (
        ((x0, y0), (x1, y0)),
        ((x1, y0), (x1, y1)),
        ((x1, y1), (x0, y1)),
        ((x0, y1), (x0, y0)),
    ):
        _dashed_line(mask, start, end, config.guide_dash, config.guide_gap, config.guide_width)

    coverage = mask.astype(np.float32) / 255.0
    return composite_over(base, fill_layer(w, h, config.guide_color, coverage, config.guide_alpha))


# =============================================================================
# Main Function
# =============================================================================

def render_with_metrics(
    spec: CompositeSpec,
    config: Optional[RenderConfig] = None,
    locator: Optional[AnchorLocator] = None,
) -> Tuple[Bitmap, Dict]:
    """
    Render a composite.

    Args:
        spec: Render inputs
        config: Tuned constants (defaults to DEFAULT_RENDER_CONFIG)
        locator: Anchor strategy for healing (defaults to DarkestRegionLocator)

    Returns:
        (output_bitmap, metrics_dict)

    Raises:
        GeometryError: Invalid crop or output size
        ForegroundMismatchError: Foreground cannot cover the output frame
    """
    config = config or DEFAULT_RENDER_CONFIG
    start_time = time.time()
    width, height = spec.output_size
    profile = spec.profile

    print(f"\n{'='*60}")
    print(f"[RENDER] {spec.tier.value} {width}x{height}, background={spec.background.value}, "
          f"foreground={'yes' if spec.foreground is not None else 'no'}")
    print(f"{'='*60}")

    metrics: Dict = {
        "tier": spec.tier.value,
        "width": width,
        "height": height,
        "background": spec.background.value,
        "foreground": spec.foreground is not None,
    }

    # Validate before doing any pixel work
    if spec.foreground is not None:
        validate_foreground_dimensions(spec.foreground, width, height, config.foreground_aspect_tolerance)

    original = resolve_original(spec)

    # ==========================================================================
    # Step 1: Background
    # ==========================================================================
    print("\n[STEP 1] Background...")
    if spec.background is BackgroundChoice.NONE:
        canvas = original
        print("  Original photo (cover fit)")
    else:
        canvas = synthesize_background(spec.background, width, height)
        print(f"  Palette: {spec.background.value}")
    _debug_save(canvas, "01_background.png")

    # ==========================================================================
    # Step 2: Foreground (key + heal)
    # ==========================================================================
    if spec.foreground is not None:
        print("\n[STEP 2] Foreground...")
        foreground = resize_bitmap(spec.foreground, width, height)
        cutout = extract_foreground(foreground, config.chroma)
        coverage = key_coverage(cutout)
        metrics["key_coverage"] = round(coverage * 100, 2)
        print(f"  Keyed out: {coverage * 100:.1f}%")
        _debug_save(cutout, "02_cutout.png")

        healed, heal_metrics = heal_regions(cutout, original, config, locator)
        metrics["heal"] = heal_metrics
        _debug_save(healed, "03_healed.png")

        canvas = composite_over(canvas, healed)
    else:
        print("\n[STEP 2] Foreground: none")

    # ==========================================================================
    # Step 3: Border
    # ==========================================================================
    print(f"\n[STEP 3] Border (blur={profile.shadow_blur}, stroke={profile.stroke_width})...")
    canvas = draw_border(canvas, profile.shadow_blur, profile.stroke_width, config.border)

    # ==========================================================================
    # Step 4: Safe-area guide (preview only)
    # ==========================================================================
    if profile.safe_area_guide:
        print("\n[STEP 4] Safe-area guide...")
        canvas = draw_safe_area_guide(canvas, config.border)
    _debug_save(canvas, "04_final.png")

    elapsed = time.time() - start_time
    metrics["processing_time_ms"] = round(elapsed * 1000, 1)
    print(f"\n[RENDER] Done in {elapsed * 1000:.0f}ms")

    return canvas, metrics


def render(
    spec: CompositeSpec,
    config: Optional[RenderConfig] = None,
    locator: Optional[AnchorLocator] = None,
) -> Bitmap:
    """Render a composite (see render_with_metrics)."""
    output, _ = render_with_metrics(spec, config, locator)
    return output


def _for_tier(spec: CompositeSpec, tier: ResolutionTier) -> CompositeSpec:
    profile = TIER_PROFILES[tier]
    return replace(spec, tier=tier, output_width=profile.width, output_height=profile.height)


def render_preview(spec: CompositeSpec, config: Optional[RenderConfig] = None, locator: Optional[AnchorLocator] = None) -> Bitmap:
    """Render at the preview tier's default size."""
    return render(_for_tier(spec, ResolutionTier.PREVIEW), config, locator)


def render_print(spec: CompositeSpec, config: Optional[RenderConfig] = None, locator: Optional[AnchorLocator] = None) -> Bitmap:
    """Render at the print tier's default size."""
    return render(_for_tier(spec, ResolutionTier.PRINT), config, locator)
