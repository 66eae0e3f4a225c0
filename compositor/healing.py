"""
Region Healing - Landmark-Anchored Identity Preservation

Generative re-rendering drifts facial likeness. This module blends the
ORIGINAL photo's eyes and mouth back into the AI cutout, in small feathered
discs, after aligning the original onto the AI face.

Alignment is a two-point similarity transform from the original's eye pair
onto the AI image's eye pair:
    scale    = |ai_right - ai_left| / |orig_right - orig_left|
    rotation = angle(ai eye vector) - angle(orig eye vector)
    translation maps the original eye midpoint onto the AI eye midpoint

Masks are centred on the AI image's own anchors and sized from its eye
distance, so they follow the face when the generator moves or rescales it.
Fixed-position masks misalign as soon as the face shifts and are not used.

If anchors are missing or the transform is implausible the heal is skipped
and the cutout is returned unchanged; it is never patched with a guess.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from .anchors import AnchorLocator, AnchorPoint, DarkestRegionLocator, FaceAnchors
from .bitmap import Bitmap, _debug_save, composite_over, resize_bitmap, warp_rgba
from .render_config import DEFAULT_RENDER_CONFIG, HealConfig, RenderConfig

EyePair = Tuple[AnchorPoint, AnchorPoint]


@dataclass(frozen=True)
class SimilarityTransform:
    """Uniform scale + rotation (radians) + translation."""
    scale: float
    rotation: float
    tx: float
    ty: float

    @property
    def rotation_degrees(self) -> float:
        return math.degrees(self.rotation)

    def matrix(self) -> np.ndarray:
        """2x3 float64 matrix for an affine warp."""
        a = self.scale * math.cos(self.rotation)
        b = self.scale * math.sin(self.rotation)
        return np.array([[a, -b, self.tx], [b, a, self.ty]], dtype=np.float64)

    def apply(self, point: AnchorPoint) -> AnchorPoint:
        m = self.matrix()
        return AnchorPoint(
            x=m[0, 0] * point.x + m[0, 1] * point.y + m[0, 2],
            y=m[1, 0] * point.x + m[1, 1] * point.y + m[1, 2],
        )


def estimate_similarity(source: EyePair, target: EyePair) -> SimilarityTransform:
    """
    Similarity transform that maps the source eye pair onto the target pair.

    Raises:
        ValueError: If either pair is degenerate (eyes coincide)
    """
    sx = source[1].x - source[0].x
    sy = source[1].y - source[0].y
    tx = target[1].x - target[0].x
    ty = target[1].y - target[0].y

    source_len = math.hypot(sx, sy)
    target_len = math.hypot(tx, ty)
    if source_len < 1e-6 or target_len < 1e-6:
        raise ValueError("Degenerate eye pair: eyes coincide")

    scale = target_len / source_len
    rotation = math.atan2(ty, tx) - math.atan2(sy, sx)
    # Normalise to (-pi, pi]
    rotation = math.atan2(math.sin(rotation), math.cos(rotation))

    source_mid = ((source[0].x + source[1].x) / 2, (source[0].y + source[1].y) / 2)
    target_mid = ((target[0].x + target[1].x) / 2, (target[0].y + target[1].y) / 2)

    a = scale * math.cos(rotation)
    b = scale * math.sin(rotation)
    return SimilarityTransform(
        scale=scale,
        rotation=rotation,
        tx=target_mid[0] - (a * source_mid[0] - b * source_mid[1]),
        ty=target_mid[1] - (b * source_mid[0] + a * source_mid[1]),
    )


def _draw_disc(
    mask: np.ndarray,
    center: AnchorPoint,
    radius_x: float,
    radius_y: float,
    profile: Tuple[Tuple[float, float], ...],
):
    """Max-combine one elliptical radial-gradient disc into mask (in place)."""
    h, w = mask.shape
    x0 = max(0, int(math.floor(center.x - radius_x)))
    x1 = min(w, int(math.ceil(center.x + radius_x)) + 1)
    y0 = max(0, int(math.floor(center.y - radius_y)))
    y1 = min(h, int(math.ceil(center.y + radius_y)) + 1)
    if x1 <= x0 or y1 <= y0:
        return

    xs = (np.arange(x0, x1, dtype=np.float64) - center.x) / radius_x
    ys = (np.arange(y0, y1, dtype=np.float64) - center.y) / radius_y
    r = np.sqrt(xs[np.newaxis, :] ** 2 + ys[:, np.newaxis] ** 2)

    stops_r = [stop[0] for stop in profile]
    stops_v = [stop[1] for stop in profile]
    disc = np.interp(r, stops_r, stops_v, right=0.0).astype(np.float32)

    np.maximum(mask[y0:y1, x0:x1], disc, out=mask[y0:y1, x0:x1])


def build_heal_mask(width: int, height: int, anchors: FaceAnchors, config: HealConfig) -> np.ndarray:
    """
    Soft protection mask (float32 H x W in [0, 1]) around the given anchors.

    Disc radii are proportional to the anchors' own eye distance. The mouth
    disc is only drawn when a mouth anchor exists.
    """
    mask = np.zeros((height, width), dtype=np.float32)
    eye_distance = anchors.eye_distance
    if eye_distance is None:
        return mask

    eye_rx = config.eye_radius * eye_distance
    eye_ry = eye_rx * config.eye_aspect
    for eye in anchors.eye_pair:
        _draw_disc(mask, eye, eye_rx, eye_ry, config.profile)

    if anchors.mouth is not None:
        mouth_rx = config.mouth_radius * eye_distance
        _draw_disc(mask, anchors.mouth, mouth_rx, mouth_rx * config.mouth_aspect, config.profile)

    return mask


def _skip(cutout: Bitmap, metrics: Dict, reason: str) -> Tuple[Bitmap, Dict]:
    print(f"  [HEAL] Skipped: {reason}")
    metrics["healed"] = False
    metrics["reason"] = reason
    return Bitmap.from_array(cutout.pixels), metrics


def heal_regions(
    cutout: Bitmap,
    original: Bitmap,
    config: Optional[RenderConfig] = None,
    locator: Optional[AnchorLocator] = None,
) -> Tuple[Bitmap, Dict]:
    """
    Blend the original's eyes/mouth into the AI cutout.

    Args:
        cutout: Keyed AI foreground (RGBA)
        original: Original photo covering the same frame (resized if needed)
        config: Render configuration (anchor + heal sections are used)
        locator: Anchor strategy; defaults to DarkestRegionLocator

    Returns:
        (healed_bitmap, metrics_dict)
    """
    config = config or DEFAULT_RENDER_CONFIG
    locator = locator or DarkestRegionLocator(config.anchors)
    heal_cfg = config.heal

    if original.size != cutout.size:
        original = resize_bitmap(original, cutout.width, cutout.height)

    ai_anchors = locator.locate(cutout)
    original_anchors = locator.locate(original)

    metrics: Dict = {
        "healed": False,
        "reason": None,
        "ai_anchors": ai_anchors.found(),
        "original_anchors": original_anchors.found(),
    }

    if ai_anchors.eye_pair is None:
        return _skip(cutout, metrics, "ai_eyes_not_found")
    if original_anchors.eye_pair is None:
        return _skip(cutout, metrics, "original_eyes_not_found")

    try:
        transform = estimate_similarity(original_anchors.eye_pair, ai_anchors.eye_pair)
    except ValueError:
        return _skip(cutout, metrics, "degenerate_eye_pair")
    metrics["scale"] = round(transform.scale, 4)
    metrics["rotation_degrees"] = round(transform.rotation_degrees, 3)
    metrics["translation"] = (round(transform.tx, 2), round(transform.ty, 2))

    if not (heal_cfg.min_scale <= transform.scale <= heal_cfg.max_scale):
        return _skip(cutout, metrics, "implausible_scale")
    if abs(transform.rotation_degrees) > heal_cfg.max_rotation_degrees:
        return _skip(cutout, metrics, "implausible_rotation")

    mask = build_heal_mask(cutout.width, cutout.height, ai_anchors, heal_cfg)

    aligned = warp_rgba(original.pixels, transform.matrix(), cutout.width, cutout.height)

    # Alpha-intersect the aligned original with the mask
    masked_alpha = aligned[:, :, 3].astype(np.float32) * mask
    aligned[:, :, 3] = np.rint(masked_alpha).astype(np.uint8)
    patch = Bitmap.from_array(aligned)
    _debug_save(patch, "heal_patch.png")

    healed = composite_over(cutout, patch)

    anchors_used: List[str] = ["left_eye", "right_eye"]
    if ai_anchors.mouth is not None:
        anchors_used.append("mouth")

    metrics["healed"] = True
    metrics["anchors_used"] = anchors_used
    metrics["mask_coverage"] = round(float(np.count_nonzero(mask)) / mask.size * 100, 2)

    print(
        f"  [HEAL] Healed {', '.join(anchors_used)} "
        f"(scale={transform.scale:.3f}, rotation={transform.rotation_degrees:.2f}°)"
    )
    return healed, metrics
