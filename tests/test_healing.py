"""
Tests for landmark-anchored region healing

Run with:
    pytest tests/test_healing.py -v
"""

import math

import pytest
import numpy as np
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from compositor.anchors import AnchorLocator, AnchorPoint, FaceAnchors
from compositor.bitmap import Bitmap
from compositor.healing import SimilarityTransform, build_heal_mask, estimate_similarity, heal_regions
from compositor.render_config import HealConfig

ORIGINAL_SKIN = (220, 190, 170)
AI_SKIN = (200, 170, 150)


def create_synthetic_face(width=300, height=400, eyes=((100, 150), (200, 150)), mouth=(150, 260), skin=ORIGINAL_SKIN) -> Bitmap:
    """Flat skin with radially darkening spots at the eye/mouth positions"""
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[:, :, :3] = skin
    pixels[:, :, 3] = 255

    yy, xx = np.mgrid[0:height, 0:width].astype(np.float64)
    spots = [(eye, 12.0) for eye in eyes]
    if mouth is not None:
        spots.append((mouth, 14.0))

    for (cx, cy), radius in spots:
        dist = np.hypot(xx - cx, yy - cy)
        inside = dist < radius
        for c in range(3):
            shade = 20.0 + dist * (skin[c] - 20.0) / radius
            channel = pixels[:, :, c].astype(np.float64)
            pixels[:, :, c] = np.where(inside, np.minimum(channel, shade), channel).astype(np.uint8)

    return Bitmap.from_array(pixels)


def transform_point(point, scale, rotation, tx, ty):
    x, y = point
    c, s = math.cos(rotation), math.sin(rotation)
    return AnchorPoint(scale * (c * x - s * y) + tx, scale * (s * x + c * y) + ty)


class FixedLocator(AnchorLocator):
    """Returns pre-set anchors per bitmap (keyed by identity)"""

    def __init__(self, mapping):
        self.mapping = mapping

    def locate(self, bitmap):
        for candidate, anchors in self.mapping:
            if candidate is bitmap:
                return anchors
        return self.mapping[-1][1]


class TestEstimateSimilarity:
    """Anchor alignment correctness"""

    @pytest.mark.parametrize("scale,degrees,tx,ty", [
        (1.0, 0.0, 0.0, 0.0),
        (1.2, 10.0, 15.0, -8.0),
        (0.8, -7.5, -20.0, 30.0),
        (1.5, 179.0, 5.0, 5.0),
    ])
    def test_recovers_known_transform(self, scale, degrees, tx, ty):
        rotation = math.radians(degrees)
        src = (AnchorPoint(100, 150), AnchorPoint(200, 150))
        dst = tuple(transform_point((p.x, p.y), scale, rotation, tx, ty) for p in src)

        transform = estimate_similarity(src, dst)

        assert transform.scale == pytest.approx(scale, abs=1e-9)
        assert transform.rotation_degrees == pytest.approx(degrees, abs=1e-9)
        assert transform.tx == pytest.approx(tx, abs=1e-6)
        assert transform.ty == pytest.approx(ty, abs=1e-6)

    def test_maps_source_eyes_onto_target_eyes(self):
        src = (AnchorPoint(90, 140), AnchorPoint(210, 160))
        dst = (AnchorPoint(110, 150), AnchorPoint(205, 149))

        transform = estimate_similarity(src, dst)

        for s, d in zip(src, dst):
            mapped = transform.apply(s)
            assert mapped.x == pytest.approx(d.x, abs=1e-9)
            assert mapped.y == pytest.approx(d.y, abs=1e-9)

    def test_rotation_is_normalised(self):
        # Source vector at 170°, target at -170°: the short way round is +20°
        src = (AnchorPoint(0, 0), AnchorPoint(math.cos(math.radians(170)), math.sin(math.radians(170))))
        dst = (AnchorPoint(0, 0), AnchorPoint(math.cos(math.radians(-170)), math.sin(math.radians(-170))))

        transform = estimate_similarity(src, dst)

        assert transform.rotation_degrees == pytest.approx(20.0, abs=1e-9)

    def test_degenerate_pair_raises(self):
        with pytest.raises(ValueError):
            estimate_similarity((AnchorPoint(5, 5), AnchorPoint(5, 5)), (AnchorPoint(0, 0), AnchorPoint(1, 0)))

    def test_matrix_shape(self):
        matrix = SimilarityTransform(1.0, 0.0, 3.0, 4.0).matrix()

        assert matrix.shape == (2, 3)
        assert np.allclose(matrix, [[1, 0, 3], [0, 1, 4]])


class TestHealMask:
    """Test the soft protection mask"""

    def setup_method(self):
        self.anchors = FaceAnchors(AnchorPoint(100, 150), AnchorPoint(200, 150), AnchorPoint(150, 260))
        self.config = HealConfig()

    def test_mask_range_and_shape(self):
        mask = build_heal_mask(300, 400, self.anchors, self.config)

        assert mask.shape == (400, 300)
        assert mask.dtype == np.float32
        assert mask.min() >= 0.0
        assert mask.max() <= 1.0

    def test_mask_profile(self):
        mask = build_heal_mask(300, 400, self.anchors, self.config)
        eye_rx = self.config.eye_radius * 100

        assert mask[150, 100] == pytest.approx(1.0)
        assert mask[150, int(100 + eye_rx * 0.5)] == pytest.approx(0.9, abs=1e-6)
        assert mask[150, int(100 + eye_rx) + 1] == 0.0
        assert mask[260, 150] == pytest.approx(1.0)
        assert mask[5, 5] == 0.0

    def test_mask_scales_with_eye_distance(self):
        wide = FaceAnchors(AnchorPoint(60, 150), AnchorPoint(240, 150))
        narrow = FaceAnchors(AnchorPoint(120, 150), AnchorPoint(180, 150))

        wide_mask = build_heal_mask(300, 400, wide, self.config)
        narrow_mask = build_heal_mask(300, 400, narrow, self.config)

        assert np.count_nonzero(wide_mask) > np.count_nonzero(narrow_mask)

    def test_no_mouth_disc_without_mouth_anchor(self):
        anchors = FaceAnchors(AnchorPoint(100, 150), AnchorPoint(200, 150))
        mask = build_heal_mask(300, 400, anchors, self.config)

        assert mask[260, 150] == 0.0

    def test_no_eyes_gives_empty_mask(self):
        mask = build_heal_mask(300, 400, FaceAnchors(), self.config)

        assert not mask.any()

    def test_disc_clipped_at_canvas_edge(self):
        anchors = FaceAnchors(AnchorPoint(0, 0), AnchorPoint(100, 0))
        mask = build_heal_mask(120, 80, anchors, self.config)

        assert mask[0, 0] == pytest.approx(1.0)


class TestHealRegions:
    """Test the full heal on synthetic faces"""

    def test_heals_shifted_ai_face(self):
        original = create_synthetic_face()
        cutout = create_synthetic_face(eyes=((110, 156), (210, 156)), mouth=(160, 266), skin=AI_SKIN)

        healed, metrics = heal_regions(cutout, original)

        assert metrics["healed"] is True
        assert metrics["scale"] == pytest.approx(1.0, abs=0.08)
        assert metrics["translation"][0] == pytest.approx(10, abs=5)
        assert metrics["translation"][1] == pytest.approx(6, abs=5)
        assert metrics["anchors_used"] == ["left_eye", "right_eye", "mouth"]

        # Near the AI eye the original's detail dominates
        near_eye = healed.pixels[156, 130]
        assert near_eye[0] > 212
        assert near_eye[3] == 255

        # Far from every anchor the AI cutout is untouched
        assert tuple(healed.pixels[395, 5]) == AI_SKIN + (255,)

    def test_original_is_resized_to_cutout(self):
        original = create_synthetic_face(width=600, height=800, eyes=((200, 300), (400, 300)), mouth=(300, 520))
        cutout = create_synthetic_face(skin=AI_SKIN)

        healed, metrics = heal_regions(cutout, original)

        assert healed.size == cutout.size
        assert metrics["healed"] is True
        assert metrics["scale"] == pytest.approx(1.0, abs=0.08)

    def test_skips_when_ai_eyes_missing(self):
        original = create_synthetic_face()
        cutout = Bitmap.blank(300, 400)

        healed, metrics = heal_regions(cutout, original)

        assert metrics["healed"] is False
        assert metrics["reason"] == "ai_eyes_not_found"
        assert np.array_equal(healed.pixels, cutout.pixels)

    def test_skips_when_original_eyes_missing(self):
        original = Bitmap.blank(300, 400, ORIGINAL_SKIN + (255,))
        cutout = create_synthetic_face(skin=AI_SKIN)

        healed, metrics = heal_regions(cutout, original)

        assert metrics["healed"] is False
        assert metrics["reason"] == "original_eyes_not_found"
        assert np.array_equal(healed.pixels, cutout.pixels)

    def test_skips_implausible_scale(self):
        original = create_synthetic_face()
        cutout = create_synthetic_face(skin=AI_SKIN)
        locator = FixedLocator([
            (cutout, FaceAnchors(AnchorPoint(50, 150), AnchorPoint(250, 150))),
            (original, FaceAnchors(AnchorPoint(130, 150), AnchorPoint(170, 150))),
        ])

        healed, metrics = heal_regions(cutout, original, locator=locator)

        assert metrics["healed"] is False
        assert metrics["reason"] == "implausible_scale"
        assert np.array_equal(healed.pixels, cutout.pixels)

    def test_heals_scaled_and_rotated_ai_face(self):
        """AI face 1.2x larger and turned 5° about the eye midpoint"""
        scale, rotation = 1.2, math.radians(5.0)
        tx = 150 - scale * (math.cos(rotation) * 150 - math.sin(rotation) * 150)
        ty = 150 - scale * (math.sin(rotation) * 150 + math.cos(rotation) * 150)
        ai_left, ai_right, ai_mouth = (
            transform_point(p, scale, rotation, tx, ty) for p in [(100, 150), (200, 150), (150, 260)]
        )

        original = create_synthetic_face()
        cutout = create_synthetic_face(
            eyes=((ai_left.x, ai_left.y), (ai_right.x, ai_right.y)),
            mouth=(ai_mouth.x, ai_mouth.y),
            skin=AI_SKIN,
        )

        healed, metrics = heal_regions(cutout, original)

        assert metrics["healed"] is True
        assert metrics["scale"] == pytest.approx(1.2, abs=0.05)
        assert metrics["rotation_degrees"] == pytest.approx(5.0, abs=2.5)

        # The original's left eye lands on the AI left eye
        mapped = transform_point(
            (100, 150), metrics["scale"], math.radians(metrics["rotation_degrees"]), *metrics["translation"]
        )
        assert mapped.x == pytest.approx(ai_left.x, abs=2.0)
        assert mapped.y == pytest.approx(ai_left.y, abs=2.0)

        eye_x, eye_y = int(round(ai_left.x)), int(round(ai_left.y))
        assert healed.pixels[eye_y, eye_x, 0] < 100
        # Inside the eye disc but off the spot: original skin
        assert healed.pixels[eye_y, eye_x - 20, 0] > 212

    def test_skips_degenerate_eye_pair(self):
        original = create_synthetic_face()
        cutout = create_synthetic_face(skin=AI_SKIN)
        coincident = FaceAnchors(AnchorPoint(150, 150), AnchorPoint(150, 150))
        locator = FixedLocator([(cutout, coincident), (original, coincident)])

        healed, metrics = heal_regions(cutout, original, locator=locator)

        assert metrics["healed"] is False
        assert metrics["reason"] == "degenerate_eye_pair"
        assert np.array_equal(healed.pixels, cutout.pixels)

    def test_skips_implausible_rotation(self):
        original = create_synthetic_face()
        cutout = create_synthetic_face(skin=AI_SKIN)
        locator = FixedLocator([
            (cutout, FaceAnchors(AnchorPoint(100, 100), AnchorPoint(170, 170))),
            (original, FaceAnchors(AnchorPoint(100, 150), AnchorPoint(200, 150))),
        ])

        _, metrics = heal_regions(cutout, original, locator=locator)

        assert metrics["healed"] is False
        assert metrics["reason"] == "implausible_rotation"

    def test_pluggable_locator_identity_transform(self):
        original = create_synthetic_face()
        cutout = create_synthetic_face(skin=AI_SKIN)
        anchors = FaceAnchors(AnchorPoint(100, 150), AnchorPoint(200, 150))
        locator = FixedLocator([(cutout, anchors), (original, anchors)])

        healed, metrics = heal_regions(cutout, original, locator=locator)

        assert metrics["healed"] is True
        assert metrics["scale"] == pytest.approx(1.0)
        assert metrics["rotation_degrees"] == pytest.approx(0.0)
        assert metrics["anchors_used"] == ["left_eye", "right_eye"]
        # Eye centre comes straight from the original
        assert np.array_equal(healed.pixels[150, 100], original.pixels[150, 100])

    def test_inputs_are_not_modified(self):
        original = create_synthetic_face()
        cutout = create_synthetic_face(eyes=((110, 156), (210, 156)), mouth=(160, 266), skin=AI_SKIN)
        before = cutout.pixels.copy()

        heal_regions(cutout, original)

        assert np.array_equal(cutout.pixels, before)
