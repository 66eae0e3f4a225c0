"""
Tests for crop / rotate geometry

Run with:
    pytest tests/test_geometry.py -v
"""

import pytest
import numpy as np
import cv2
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from compositor.bitmap import Bitmap
from compositor.errors import GeometryError
from compositor.geometry import (
    CropEditor,
    CropRegion,
    crop_and_rotate,
    crop_pixel_size,
    fit_contain,
    DEFAULT_ASPECT_RATIO,
    MIN_CROP_WIDTH,
)


def create_gradient_source(width: int, height: int) -> Bitmap:
    """Smooth RGBA gradient: R follows x, G follows y"""
    xs = np.linspace(0, 255, width)
    ys = np.linspace(0, 255, height)
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[:, :, 0] = np.rint(xs)[np.newaxis, :]
    pixels[:, :, 1] = np.rint(ys)[:, np.newaxis]
    pixels[:, :, 2] = 100
    pixels[:, :, 3] = 255
    return Bitmap.from_array(pixels)


class TestFitContain:
    """Test fit-without-cropping placement"""

    def test_same_aspect_fills_container(self):
        fit = fit_contain(1200, 1600, 600, 800)

        assert fit.visual_width == pytest.approx(600)
        assert fit.visual_height == pytest.approx(800)
        assert fit.offset_x == pytest.approx(0)
        assert fit.offset_y == pytest.approx(0)

    def test_wide_image_is_letterboxed(self):
        fit = fit_contain(1600, 1200, 600, 800)

        assert fit.visual_width == pytest.approx(600)
        assert fit.visual_height == pytest.approx(450)
        assert fit.offset_y == pytest.approx(175)

    def test_tall_image_is_pillarboxed(self):
        fit = fit_contain(500, 2000, 600, 800)

        assert fit.visual_height == pytest.approx(800)
        assert fit.visual_width == pytest.approx(200)
        assert fit.offset_x == pytest.approx(200)

    def test_invalid_sizes_raise(self):
        with pytest.raises(GeometryError):
            fit_contain(0, 100, 600, 800)
        with pytest.raises(GeometryError):
            fit_contain(100, 100, 600, 0)


class TestCropRegion:
    """Test crop region bounds"""

    def test_valid_region(self):
        region = CropRegion(0.15, 0.1, 0.7, 0.8)
        assert region.rotation_degrees == 0.0

    @pytest.mark.parametrize("values", [
        (-0.1, 0.0, 0.5, 0.5),
        (0.0, -0.1, 0.5, 0.5),
        (0.6, 0.0, 0.5, 0.5),
        (0.0, 0.6, 0.5, 0.5),
        (0.0, 0.0, 0.0, 0.5),
        (0.0, 0.0, 0.5, -0.5),
        (float("nan"), 0.0, 0.5, 0.5),
    ])
    def test_invalid_region_raises(self, values):
        with pytest.raises(GeometryError):
            CropRegion(*values)


class TestCropEditor:
    """Test aspect-locked crop editing"""

    def test_initial_crop_is_centered_and_locked(self):
        editor = CropEditor(600, 800)
        crop = editor.initial_crop()

        assert crop.width == pytest.approx(0.6)
        assert crop.x == pytest.approx(0.2)
        assert editor.pixel_aspect(crop) == pytest.approx(DEFAULT_ASPECT_RATIO)

    def test_initial_crop_respects_height_limit(self):
        editor = CropEditor(1000, 500)
        crop = editor.initial_crop()

        assert crop.height == pytest.approx(0.8)
        assert editor.pixel_aspect(crop) == pytest.approx(DEFAULT_ASPECT_RATIO)

    def test_drag_clamps_to_container(self):
        editor = CropEditor(600, 800)
        crop = editor.initial_crop()

        moved = editor.drag(crop, dx=5.0, dy=-5.0)

        assert moved.x == pytest.approx(1.0 - crop.width)
        assert moved.y == pytest.approx(0.0)
        assert moved.width == crop.width
        assert moved.height == crop.height

    def test_resize_clamps_at_right_edge(self):
        editor = CropEditor(600, 800)
        crop = editor.drag(editor.initial_crop(), dx=0.1, dy=0.0)

        grown = editor.resize(crop, dx=1.0)

        assert grown.x + grown.width <= 1.0 + 1e-9
        assert grown.y + grown.height <= 1.0 + 1e-9
        assert editor.pixel_aspect(grown) == pytest.approx(DEFAULT_ASPECT_RATIO)

    def test_resize_respects_minimum_width(self):
        editor = CropEditor(600, 800)
        shrunk = editor.resize(editor.initial_crop(), dx=-5.0)

        assert shrunk.width == pytest.approx(MIN_CROP_WIDTH)

    def test_rotate_clamps_to_mode(self):
        fine = CropEditor(600, 800, rotation_mode="fine")
        wide = CropEditor(600, 800, rotation_mode="wide")
        crop = fine.initial_crop()

        assert fine.rotate(crop, 30).rotation_degrees == 15.0
        assert fine.rotate(crop, -30).rotation_degrees == -15.0
        assert wide.rotate(crop, 30).rotation_degrees == 30.0
        assert wide.rotate(crop, 90).rotation_degrees == 45.0

    def test_unknown_rotation_mode_raises(self):
        with pytest.raises(GeometryError):
            CropEditor(600, 800, rotation_mode="free")

    @pytest.mark.parametrize("container", [(600, 800), (1000, 500), (450, 900)])
    def test_aspect_lock_holds_for_random_edit_sequences(self, container):
        """Random drag/resize sequences never break bounds or the aspect lock"""
        rng = np.random.default_rng(1234)
        editor = CropEditor(*container)
        crop = editor.initial_crop()

        for _ in range(500):
            if rng.random() < 0.5:
                crop = editor.drag(crop, dx=rng.uniform(-0.4, 0.4), dy=rng.uniform(-0.4, 0.4))
            else:
                crop = editor.resize(crop, dx=rng.uniform(-0.3, 0.3))

            assert editor.pixel_aspect(crop) == pytest.approx(DEFAULT_ASPECT_RATIO, rel=1e-9)
            assert crop.x >= 0.0 and crop.y >= 0.0
            assert crop.x + crop.width <= 1.0 + 1e-9
            assert crop.y + crop.height <= 1.0 + 1e-9

    def test_clamp_untrusted_values(self):
        editor = CropEditor(600, 800)
        crop = editor.clamp(x=0.9, y=-0.2, width=0.5, rotation_degrees=99)

        assert crop.x == pytest.approx(0.5)
        assert crop.y == pytest.approx(0.0)
        assert crop.rotation_degrees == 15.0
        assert editor.pixel_aspect(crop) == pytest.approx(DEFAULT_ASPECT_RATIO)

    def test_clamp_rejects_non_finite(self):
        editor = CropEditor(600, 800)
        with pytest.raises(GeometryError):
            editor.clamp(x=float("inf"), y=0.0, width=0.5)


class TestCropAndRotate:
    """Test rendering of the crop"""

    def test_crop_pixel_size(self):
        region = CropRegion(0.15, 0.1, 0.7, 0.8)
        w, h = crop_pixel_size(1200, 1600, region, 600, 800)

        assert w == pytest.approx(840)
        assert h == pytest.approx(1280)

    def test_full_frame_native_reproduces_source(self):
        source = create_gradient_source(120, 160)
        region = CropRegion(0.0, 0.0, 1.0, 1.0)

        out = crop_and_rotate(source, region, 120, 160)

        assert out.size == (120, 160)
        diff = np.abs(out.pixels.astype(int) - source.pixels.astype(int))
        assert diff.max() <= 1

    def test_full_frame_scaled_is_not_distorted(self):
        """0° full-frame crop at half size matches a plain area downscale"""
        source = create_gradient_source(120, 160)
        region = CropRegion(0.0, 0.0, 1.0, 1.0)

        out = crop_and_rotate(source, region, 120, 160, output_size=(60, 80))
        expected = cv2.resize(source.pixels, (60, 80), interpolation=cv2.INTER_AREA)

        diff = np.abs(out.pixels.astype(int) - expected.astype(int))
        assert diff.max() <= 2

        # Corners sampled from the source corners
        for y, x in [(0, 0), (0, 59), (79, 0), (79, 59)]:
            assert abs(int(out.pixels[y, x, 0]) - int(expected[y, x, 0])) <= 2
            assert out.pixels[y, x, 3] == 255

    def test_center_crop_scenario(self):
        """1200x1600 source, crop {0.15, 0.1, 0.7, 0.8} -> centre region at 800x1067"""
        source = create_gradient_source(1200, 1600)
        region = CropRegion(0.15, 0.1, 0.7, 0.8)

        out = crop_and_rotate(source, region, 600, 800, output_size=(800, 1067))
        expected = cv2.resize(
            source.pixels[160:1440, 180:1020], (800, 1067), interpolation=cv2.INTER_LINEAR
        )

        assert out.size == (800, 1067)
        diff = np.abs(out.pixels.astype(int) - expected.astype(int))
        assert diff.max() <= 2

    def test_rotation_180_flips_source(self):
        source = create_gradient_source(40, 60)
        region = CropRegion(0.0, 0.0, 1.0, 1.0, rotation_degrees=180.0)

        out = crop_and_rotate(source, region, 40, 60)
        expected = source.pixels[::-1, ::-1]

        diff = np.abs(out.pixels.astype(int) - expected.astype(int))
        assert diff.max() <= 1

    def test_rotation_exposes_transparent_corners(self):
        source = create_gradient_source(120, 160)
        region = CropRegion(0.0, 0.0, 1.0, 1.0, rotation_degrees=45.0)

        out = crop_and_rotate(source, region, 120, 160)

        assert out.pixels[0, 0, 3] == 0
        assert out.pixels[159, 119, 3] == 0
        assert out.pixels[80, 60, 3] == 255

    def test_rotated_edges_keep_source_colour(self):
        """Partly covered edge pixels stay white instead of fading to black"""
        source = Bitmap.blank(400, 400, (255, 255, 255, 255))
        region = CropRegion(0.0, 0.0, 1.0, 1.0, rotation_degrees=10.0)

        out = crop_and_rotate(source, region, 400, 400)

        alpha = out.pixels[:, :, 3]
        edge = (alpha > 0) & (alpha < 255)
        assert edge.any()
        assert out.pixels[:, :, :3][edge].min() >= 250

    def test_source_is_not_modified(self):
        source = create_gradient_source(120, 160)
        before = source.pixels.copy()

        crop_and_rotate(source, CropRegion(0.1, 0.1, 0.5, 0.5, 10.0), 120, 160, output_size=(30, 40))

        assert np.array_equal(source.pixels, before)

    def test_invalid_output_size_raises(self):
        source = create_gradient_source(120, 160)
        with pytest.raises(GeometryError):
            crop_and_rotate(source, CropRegion(0, 0, 1, 1), 120, 160, output_size=(0, 10))
