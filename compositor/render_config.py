"""
Render Configuration

All empirically tuned constants of the compositing engine live here, grouped
into one RenderConfig that is passed into the extractor, locator, healer and
renderer. Defaults are the tuned values; RenderConfig.from_env() lets an
operator override the most sensitive ones without a code change.

Environment Variables:
    CHROMA_LOW_THRESHOLD: Start of the soft key band (default 10)
    CHROMA_HIGH_THRESHOLD: Hard key threshold (default 45)
    CHROMA_FALLOFF_EXPONENT: Alpha falloff exponent inside the band (default 1.0)
    HEAL_EYE_RADIUS: Eye disc radius as a fraction of eye distance (default 0.40)
    HEAL_MOUTH_RADIUS: Mouth disc radius as a fraction of eye distance (default 0.60)
    FOREGROUND_ASPECT_TOLERANCE: Allowed relative aspect mismatch (default 0.03)
"""

from dataclasses import dataclass, field, replace
from typing import Tuple

from .env_config import get_float_env

# =============================================================================
# Chroma key
# =============================================================================
# diff = G - max(R, B)
#   diff > HIGH            -> fully transparent
#   LOW < diff <= HIGH     -> soft edge band, green despilled
#   diff <= LOW            -> subject interior, untouched
#
# Raising LOW keeps more greenish subject pixels opaque but lets more key
# leak into the rim; lowering HIGH cuts more aggressively into green fabrics.
# =============================================================================
KEY_COLOR_RGB = (0, 255, 0)
CHROMA_LOW_THRESHOLD = 10
CHROMA_HIGH_THRESHOLD = 45
CHROMA_FALLOFF_EXPONENT = 1.0

# =============================================================================
# Anchor search (fractions of the analysed bitmap; boxes are x0, y0, x1, y1)
# =============================================================================
ANALYSIS_SIZE = (150, 200)  # 3:4, matches the crop aspect
LEFT_EYE_BOX = (0.22, 0.25, 0.49, 0.50)
RIGHT_EYE_BOX = (0.51, 0.25, 0.78, 0.50)
MOUTH_BELOW_EYES = (0.70, 1.40)     # vertical band, in eye distances below the eye line
MOUTH_HALF_WIDTH = 0.55             # in eye distances either side of the eye midpoint
MIN_ANCHOR_CONTRAST = 45.0          # region mean - region min, luminance as R+G+B
MAX_TRANSPARENT_FRACTION = 0.5
MIN_EYE_DISTANCE = 0.10             # fraction of bitmap width
MAX_EYE_DISTANCE = 0.55
MAX_EYE_TILT_DEGREES = 25.0

# =============================================================================
# Healing
# =============================================================================
HEAL_EYE_RADIUS = 0.40              # disc radius in eye distances
HEAL_EYE_ASPECT = 0.83              # vertical / horizontal radius
HEAL_MOUTH_RADIUS = 0.60
HEAL_MOUTH_ASPECT = 0.67
HEAL_PROFILE = ((0.0, 1.0), (0.5, 0.9), (1.0, 0.0))  # (normalised radius, opacity)
HEAL_MIN_SCALE = 0.6
HEAL_MAX_SCALE = 1.6
HEAL_MAX_ROTATION_DEGREES = 20.0

# =============================================================================
# Border and guides
# =============================================================================
BORDER_COLOR_RGB = (0, 0, 0)
BORDER_SHADOW_ALPHA = 0.10
BORDER_STROKE_ALPHA = 0.05
SAFE_AREA_INSET = 0.03
SAFE_AREA_DASH = 12
SAFE_AREA_GAP = 8
SAFE_AREA_COLOR_RGB = (107, 114, 128)
SAFE_AREA_ALPHA = 0.6
SAFE_AREA_LINE_WIDTH = 1

FOREGROUND_ASPECT_TOLERANCE = 0.03

Box = Tuple[float, float, float, float]


@dataclass(frozen=True)
class ChromaKeyConfig:
    key_color: Tuple[int, int, int] = KEY_COLOR_RGB
    low_threshold: int = CHROMA_LOW_THRESHOLD
    high_threshold: int = CHROMA_HIGH_THRESHOLD
    falloff_exponent: float = CHROMA_FALLOFF_EXPONENT

    def __post_init__(self):
        if not (0 <= self.low_threshold < self.high_threshold <= 255):
            raise ValueError(
                f"chroma thresholds must satisfy 0 <= low < high <= 255, "
                f"got low={self.low_threshold}, high={self.high_threshold}"
            )
        if self.falloff_exponent <= 0:
            raise ValueError(f"falloff_exponent must be > 0, got {self.falloff_exponent}")


@dataclass(frozen=True)
class AnchorConfig:
    analysis_size: Tuple[int, int] = ANALYSIS_SIZE
    left_eye_box: Box = LEFT_EYE_BOX
    right_eye_box: Box = RIGHT_EYE_BOX
    mouth_below_eyes: Tuple[float, float] = MOUTH_BELOW_EYES
    mouth_half_width: float = MOUTH_HALF_WIDTH
    min_contrast: float = MIN_ANCHOR_CONTRAST
    max_transparent_fraction: float = MAX_TRANSPARENT_FRACTION
    min_eye_distance: float = MIN_EYE_DISTANCE
    max_eye_distance: float = MAX_EYE_DISTANCE
    max_eye_tilt_degrees: float = MAX_EYE_TILT_DEGREES


@dataclass(frozen=True)
class HealConfig:
    eye_radius: float = HEAL_EYE_RADIUS
    eye_aspect: float = HEAL_EYE_ASPECT
    mouth_radius: float = HEAL_MOUTH_RADIUS
    mouth_aspect: float = HEAL_MOUTH_ASPECT
    profile: Tuple[Tuple[float, float], ...] = HEAL_PROFILE
    min_scale: float = HEAL_MIN_SCALE
    max_scale: float = HEAL_MAX_SCALE
    max_rotation_degrees: float = HEAL_MAX_ROTATION_DEGREES

    def __post_init__(self):
        if self.eye_radius <= 0 or self.mouth_radius <= 0:
            raise ValueError("heal disc radii must be > 0")
        if not (0 < self.min_scale <= 1.0 <= self.max_scale):
            raise ValueError(
                f"heal scale bounds must bracket 1.0, got [{self.min_scale}, {self.max_scale}]"
            )


@dataclass(frozen=True)
class BorderConfig:
    color: Tuple[int, int, int] = BORDER_COLOR_RGB
    shadow_alpha: float = BORDER_SHADOW_ALPHA
    stroke_alpha: float = BORDER_STROKE_ALPHA
    guide_inset: float = SAFE_AREA_INSET
    guide_dash: int = SAFE_AREA_DASH
    guide_gap: int = SAFE_AREA_GAP
    guide_color: Tuple[int, int, int] = SAFE_AREA_COLOR_RGB
    guide_alpha: float = SAFE_AREA_ALPHA
    guide_width: int = SAFE_AREA_LINE_WIDTH


@dataclass(frozen=True)
class RenderConfig:
    chroma: ChromaKeyConfig = field(default_factory=ChromaKeyConfig)
    anchors: AnchorConfig = field(default_factory=AnchorConfig)
    heal: HealConfig = field(default_factory=HealConfig)
    border: BorderConfig = field(default_factory=BorderConfig)
    foreground_aspect_tolerance: float = FOREGROUND_ASPECT_TOLERANCE

    @classmethod
    def from_env(cls) -> "RenderConfig":
        """
        Build a config from the tuned defaults plus environment overrides.

        Raises:
            ConfigError: If an override is not a number
            ValueError: If the resulting thresholds are inconsistent
        """
        base = cls()
        chroma = replace(
            base.chroma,
            low_threshold=int(get_float_env("CHROMA_LOW_THRESHOLD", base.chroma.low_threshold)),
            high_threshold=int(get_float_env("CHROMA_HIGH_THRESHOLD", base.chroma.high_threshold)),
            falloff_exponent=get_float_env("CHROMA_FALLOFF_EXPONENT", base.chroma.falloff_exponent),
        )
        heal = replace(
            base.heal,
            eye_radius=get_float_env("HEAL_EYE_RADIUS", base.heal.eye_radius),
            mouth_radius=get_float_env("HEAL_MOUTH_RADIUS", base.heal.mouth_radius),
        )
        return replace(
            base,
            chroma=chroma,
            heal=heal,
            foreground_aspect_tolerance=get_float_env(
                "FOREGROUND_ASPECT_TOLERANCE", base.foreground_aspect_tolerance
            ),
        )


DEFAULT_RENDER_CONFIG = RenderConfig()
DEFAULT_CHROMA_CONFIG = DEFAULT_RENDER_CONFIG.chroma
