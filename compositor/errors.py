"""
Render Error Taxonomy

Every failure inside a render call aborts the whole call. Nothing here is
retried automatically; the caller decides whether to offer a retry.

    RenderError
    ├── DecodeError              source or foreground bytes could not be decoded
    ├── GeometryError            crop rectangle outside [0, 1] or degenerate
    └── ForegroundMismatchError  generated foreground has the wrong shape

    GenerationError              the image generation service failed (not a
                                 render failure; raised before rendering starts)

Anchor-location failures are deliberately NOT exceptions: the healer skips
the affected anchor and reports it in its metrics dict.
"""


class RenderError(Exception):
    """Base class for failures that abort a render call."""
    pass


class DecodeError(RenderError):
    """Raised when image bytes cannot be decoded into a bitmap."""
    pass


class GeometryError(RenderError):
    """Raised when a crop region violates its bounds."""
    pass


class ForegroundMismatchError(RenderError):
    """Raised when the foreground's dimensions don't match the output frame."""
    pass


class BitmapError(ValueError):
    """Raised when a pixel buffer doesn't satisfy the bitmap invariant."""
    pass


class GenerationError(RuntimeError):
    """Raised when the image generation service call fails."""
    pass
