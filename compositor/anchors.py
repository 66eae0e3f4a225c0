"""
Facial Anchor Location

Estimates eye and mouth positions on a near-frontal, centred portrait.

This is a heuristic, NOT a trained detector: it downsamples the bitmap and
takes the darkest pixel (pupil / mouth line) inside fixed sub-rectangles of
the frame. Callers must not rely on it for better than ~5% of face width.

The search sits behind the AnchorLocator interface so a landmark model can
replace it without touching the alignment and healing code.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from .bitmap import Bitmap
from .render_config import AnchorConfig

# Luminance (R+G+B) assigned to transparent pixels so keyed-out areas never win
TRANSPARENT_LUMINANCE = 765.0
TRANSPARENT_ALPHA_CUTOFF = 128


@dataclass(frozen=True)
class AnchorPoint:
    """Pixel-index coordinates in the analysed bitmap."""
    x: float
    y: float


@dataclass(frozen=True)
class FaceAnchors:
    left_eye: Optional[AnchorPoint] = None
    right_eye: Optional[AnchorPoint] = None
    mouth: Optional[AnchorPoint] = None

    @property
    def eye_pair(self) -> Optional[Tuple[AnchorPoint, AnchorPoint]]:
        if self.left_eye is None or self.right_eye is None:
            return None
        return self.left_eye, self.right_eye

    @property
    def eye_distance(self) -> Optional[float]:
        pair = self.eye_pair
        if pair is None:
            return None
        return math.hypot(pair[1].x - pair[0].x, pair[1].y - pair[0].y)

    def found(self) -> List[str]:
        """Names of the anchors that were located."""
        names = []
        for name in ("left_eye", "right_eye", "mouth"):
            if getattr(self, name) is not None:
                names.append(name)
        return names


class AnchorLocator(ABC):
    """Strategy interface for facial anchor estimation."""

    @abstractmethod
    def locate(self, bitmap: Bitmap) -> FaceAnchors:
        """Return whatever anchors could be located; missing ones are None."""
        raise NotImplementedError


class DarkestRegionLocator(AnchorLocator):
    """
    Darkest-pixel-in-region search.

    Eyes are searched in fixed boxes in the upper-left and upper-right of the
    frame; the mouth box is derived from the located eyes (below the eye
    midpoint, sized in eye distances).
    """

    def __init__(self, config: Optional[AnchorConfig] = None):
        self.config = config or AnchorConfig()

    def _luminance(self, bitmap: Bitmap) -> Tuple[np.ndarray, np.ndarray]:
        aw, ah = self.config.analysis_size
        small = cv2.resize(bitmap.pixels, (aw, ah), interpolation=cv2.INTER_AREA)

        luminance = small[:, :, :3].astype(np.float32).sum(axis=2)
        transparent = small[:, :, 3] < TRANSPARENT_ALPHA_CUTOFF
        luminance[transparent] = TRANSPARENT_LUMINANCE

        # Light smoothing so single noisy pixels don't win
        luminance = cv2.GaussianBlur(luminance, (3, 3), 0)
        return luminance, transparent

    def _darkest(
        self,
        luminance: np.ndarray,
        transparent: np.ndarray,
        box: Tuple[float, float, float, float],
    ) -> Optional[Tuple[int, int]]:
        """Darkest analysis pixel inside a box of analysis-pixel bounds, or None."""
        ah, aw = luminance.shape
        x0 = int(max(0, math.floor(box[0])))
        y0 = int(max(0, math.floor(box[1])))
        x1 = int(min(aw, math.ceil(box[2])))
        y1 = int(min(ah, math.ceil(box[3])))
        if x1 - x0 < 2 or y1 - y0 < 2:
            return None

        region = luminance[y0:y1, x0:x1]
        if transparent[y0:y1, x0:x1].mean() > self.config.max_transparent_fraction:
            return None

        region_min = float(region.min())
        if float(region.mean()) - region_min < self.config.min_contrast:
            return None

        # argmin returns the first minimum in row-major order: deterministic
        idx = int(np.argmin(region))
        ry, rx = divmod(idx, region.shape[1])
        return x0 + rx, y0 + ry

    def locate(self, bitmap: Bitmap) -> FaceAnchors:
        cfg = self.config
        aw, ah = cfg.analysis_size
        sx = bitmap.width / aw
        sy = bitmap.height / ah

        luminance, transparent = self._luminance(bitmap)

        def box_px(box):
            return box[0] * aw, box[1] * ah, box[2] * aw, box[3] * ah

        def to_full(point: Tuple[int, int]) -> AnchorPoint:
            return AnchorPoint(x=(point[0] + 0.5) * sx - 0.5, y=(point[1] + 0.5) * sy - 0.5)

        left = self._darkest(luminance, transparent, box_px(cfg.left_eye_box))
        right = self._darkest(luminance, transparent, box_px(cfg.right_eye_box))

        if left is None or right is None:
            return FaceAnchors(
                left_eye=to_full(left) if left else None,
                right_eye=to_full(right) if right else None,
            )

        left_eye = to_full(left)
        right_eye = to_full(right)

        # Plausibility of the pair in full-resolution space
        dx = right_eye.x - left_eye.x
        dy = right_eye.y - left_eye.y
        distance = math.hypot(dx, dy)
        tilt = abs(math.degrees(math.atan2(dy, dx)))
        distance_fraction = distance / bitmap.width

        if (
            dx <= 0
            or not (cfg.min_eye_distance <= distance_fraction <= cfg.max_eye_distance)
            or tilt > cfg.max_eye_tilt_degrees
        ):
            return FaceAnchors()

        # Mouth: below the eye midpoint, in analysis pixels
        eye_dist_a = math.hypot(right[0] - left[0], right[1] - left[1])
        mid_x = (left[0] + right[0]) / 2
        eye_y = (left[1] + right[1]) / 2
        below_top, below_bottom = cfg.mouth_below_eyes
        mouth_box = (
            mid_x - cfg.mouth_half_width * eye_dist_a,
            eye_y + below_top * eye_dist_a,
            mid_x + cfg.mouth_half_width * eye_dist_a + 1,
            eye_y + below_bottom * eye_dist_a,
        )
        mouth = self._darkest(luminance, transparent, mouth_box)

        return FaceAnchors(
            left_eye=left_eye,
            right_eye=right_eye,
            mouth=to_full(mouth) if mouth else None,
        )
