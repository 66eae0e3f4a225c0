"""
Upload validation helpers for the HTTP layer.

Environment Variables:
    MAX_UPLOAD_BYTES: Largest accepted upload (default 15MB)
"""

from typing import Tuple

from .env_config import get_int_env

DEFAULT_MAX_UPLOAD_BYTES = 15 * 1024 * 1024  # 15MB

IMAGE_MAGIC_BYTES = {
    b'\xff\xd8\xff': 'image/jpeg',
    b'\x89PNG\r\n\x1a\n': 'image/png',
    b'RIFF': 'image/webp',  # WebP starts with RIFF....WEBP
}


def get_max_upload_bytes() -> int:
    return get_int_env("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES)


def validate_image_bytes(content: bytes) -> Tuple[bool, str, str]:
    """
    Validate image content by checking magic bytes.

    Returns:
        Tuple of (is_valid, detected_type, error_message)
    """
    if len(content) < 12:
        return False, "", "File too small to be a valid image"

    detected_type = None
    for magic, mime_type in IMAGE_MAGIC_BYTES.items():
        if content[:len(magic)] == magic:
            detected_type = mime_type
            break

    # Special case for WebP (check for WEBP after RIFF)
    if detected_type == "image/webp" and content[8:12] != b"WEBP":
        detected_type = None

    if not detected_type:
        return False, "", "Invalid image format (magic bytes check failed)"

    return True, detected_type, ""
