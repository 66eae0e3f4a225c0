"""
Gemini Image Generation Client

Asks the Gemini image model to re-render the subject of a cropped portrait
(optionally in formal mourning clothing) on a pure #00FF00 key background,
keeping the subject's position, scale and 3:4 framing. The compositing
engine keys the green out and heals the face afterwards.

The call is opaque and may fail or take a long time. Nothing here retries;
the caller decides whether to offer a retry.

Environment Variables:
    GEMINI_API_KEY: API key (required for generation)
    GEMINI_BASE_URL: API base URL (optional, defaults to production)
    GEMINI_MODEL: Image model name (optional)
    GENERATION_TIMEOUT_SECONDS: Request timeout (optional, default 120)
    DEBUG_GENERATE: Set to "1" to enable debug output
"""

import base64
import os
import time
from enum import Enum
from typing import Optional, Tuple

import requests

from .env_config import ConfigError, get_env, get_int_env, sanitize_url
from .errors import GenerationError

# =============================================================================
# Configuration
# =============================================================================

GEMINI_PRODUCTION_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-flash-image"
DEFAULT_TIMEOUT_SECONDS = 120
OUTPUT_ASPECT_RATIO = "3:4"

# Longest custom instruction passed through to the prompt
MAX_INSTRUCTION_LENGTH = 500

# Debug flag
DEBUG_ENABLED = os.getenv("DEBUG_GENERATE", "0") == "1"


class ClothingStyle(str, Enum):
    SUIT_MENS = "SUIT_MENS"
    SUIT_WOMENS = "SUIT_WOMENS"
    KIMONO_MENS = "KIMONO_MENS"
    KIMONO_WOMENS = "KIMONO_WOMENS"


# Family crest rules shared by both kimono styles
KAMON_INSTRUCTION = (
    "The family crests (kamon) on the chest must be the formal Japanese design: a traditional "
    "pattern inside a white perfect circle, symmetric and clean. Never add letters, numbers, "
    "logos or invented geometric shapes."
)

CLOTHING_PROMPTS = {
    ClothingStyle.SUIT_MENS: (
        "Change the clothing to a black single-breasted Japanese funeral suit with a white "
        "dress shirt and a plain black tie."
    ),
    ClothingStyle.SUIT_WOMENS: (
        "Change the clothing to Japanese women's black formal wear: a tailored black jacket "
        "over a black blouse with a white pearl necklace."
    ),
    ClothingStyle.KIMONO_MENS: (
        "Change the clothing to a traditional black montsuki haori with a large white round "
        f"haori-himo at the centre and a clean white inner collar. {KAMON_INSTRUCTION} "
        "Do not draw the hakama or anything below the original crop."
    ),
    ClothingStyle.KIMONO_WOMENS: (
        "Change the clothing to a women's black mourning kimono (kuro montsuki) in matte silk "
        f"with a clean white han-eri shown symmetrically at the collar. {KAMON_INSTRUCTION} "
        "Do not draw the obi or anything below the original bust-up framing."
    ),
}

KEEP_CLOTHING_PROMPT = "Keep the person's clothing exactly as it is."

BASE_PROMPT = """You are a compositing technician preparing memorial portraits.
Follow these rules strictly.

SUBJECT AND FRAMING (must not change)
1. Do not enhance, sharpen or upscale. Keep the blur, noise and grain of the person exactly as in the input.
2. Do not retouch. No skin smoothing, no wrinkle removal.
3. Do not redraw the face, hair or expression.
4. Keep the person's size, head position and shoulder line exactly where they are. Keep the bust-up framing.

TASK
1. Replace the background with a perfectly uniform pure green (#00FF00) with no gradient, shadow or texture.
2. {clothing}
{instruction}
OUTPUT
A {aspect} image of the same person at the same scale on pure #00FF00. A changed face is a failure."""


def _get_api_key() -> Optional[str]:
    """Get Gemini API key from environment (strip whitespace/newlines)"""
    return get_env("GEMINI_API_KEY")


def _get_base_url() -> str:
    """Get Gemini API base URL from environment or use production default"""
    return sanitize_url(get_env("GEMINI_BASE_URL", default=GEMINI_PRODUCTION_URL))


def _get_model() -> str:
    return get_env("GEMINI_MODEL", default=DEFAULT_MODEL)


def _get_timeout() -> int:
    return get_int_env("GENERATION_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)


def _detect_mime_type(image_bytes: bytes) -> str:
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if image_bytes[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


def build_prompt(clothing: Optional[ClothingStyle] = None, instruction: Optional[str] = None) -> str:
    """
    Build the generation prompt.

    Custom instructions are appended as a third task item; they cannot
    override the subject/framing rules.
    """
    clothing_text = CLOTHING_PROMPTS[ClothingStyle(clothing)] if clothing else KEEP_CLOTHING_PROMPT

    instruction_text = ""
    if instruction and instruction.strip():
        cleaned = instruction.strip()[:MAX_INSTRUCTION_LENGTH]
        instruction_text = (
            f'3. Additional request: "{cleaned}" '
            "(ignored if it would change the person's face or image quality)\n"
        )

    return BASE_PROMPT.format(clothing=clothing_text, instruction=instruction_text, aspect=OUTPUT_ASPECT_RATIO)


def _extract_image(payload: dict) -> Tuple[bytes, str]:
    """
    Pull the first inline image out of a generateContent response.

    Raises:
        GenerationError: If the payload holds no image
    """
    candidates = payload.get("candidates") or []
    if not candidates:
        feedback = payload.get("promptFeedback")
        raise GenerationError(f"No candidates returned from image model (feedback: {feedback})")

    parts = (candidates[0].get("content") or {}).get("parts") or []
    for part in parts:
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and inline.get("data"):
            mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            try:
                return base64.b64decode(inline["data"]), mime_type
            except (ValueError, TypeError) as e:
                raise GenerationError(f"Image model returned invalid base64 data: {e}")

    finish_reason = candidates[0].get("finishReason")
    raise GenerationError(f"Generated image part not found (finishReason: {finish_reason})")


# =============================================================================
# Main API Functions
# =============================================================================

def generate_foreground(
    image_bytes: bytes,
    *,
    clothing: Optional[ClothingStyle] = None,
    instruction: Optional[str] = None,
    timeout: Optional[int] = None,
) -> Tuple[bytes, dict]:
    """
    Re-render a cropped portrait on the green key background.

    Args:
        image_bytes: Cropped original (PNG/JPEG/WebP bytes)
        clothing: Optional clothing replacement
        instruction: Optional free-text request
        timeout: Request timeout in seconds (default from env)

    Returns:
        Tuple of (image_bytes, metadata_dict)

    Raises:
        ValueError: If the API key is not configured or the input is empty
        GenerationError: If the request fails or returns no image
    """
    api_key = _get_api_key()
    if not api_key:
        raise ValueError(
            "Gemini API key not configured. "
            "Set GEMINI_API_KEY environment variable."
        )

    if not image_bytes:
        raise ValueError("Empty image bytes provided")

    timeout = timeout or _get_timeout()
    model = _get_model()
    api_url = f"{_get_base_url()}/models/{model}:generateContent"
    prompt = build_prompt(clothing, instruction)

    body = {
        "contents": [{
            "parts": [
                {"text": prompt},
                {"inline_data": {
                    "mime_type": _detect_mime_type(image_bytes),
                    "data": base64.b64encode(image_bytes).decode("ascii"),
                }},
            ],
        }],
        "generationConfig": {
            "responseModalities": ["IMAGE"],
            "imageConfig": {"aspectRatio": OUTPUT_ASPECT_RATIO},
        },
    }

    headers = {
        "x-goog-api-key": api_key,
        "Content-Type": "application/json",
    }

    if DEBUG_ENABLED:
        print(f"[GENERATE] Sending request to {api_url}")
        print(f"[GENERATE] Image size: {len(image_bytes)} bytes, clothing={clothing}")

    start_time = time.time()

    try:
        response = requests.post(api_url, headers=headers, json=body, timeout=timeout)
    except requests.exceptions.Timeout:
        raise GenerationError(f"Image generation request timed out after {timeout}s")
    except requests.exceptions.ConnectionError as e:
        raise GenerationError(f"Could not connect to image generation API: {e}")

    elapsed = time.time() - start_time

    if response.status_code != 200:
        error_msg = f"Image generation API error: HTTP {response.status_code}"
        try:
            error_msg += f" - {response.json()}"
        except ValueError:
            error_msg += f" - {response.text[:500]}"

        print(f"[GENERATE] ERROR: {error_msg}")
        raise GenerationError(error_msg)

    try:
        payload = response.json()
    except ValueError:
        raise GenerationError("Image generation API returned a non-JSON response")

    result_bytes, mime_type = _extract_image(payload)

    metadata = {
        "success": True,
        "model": model,
        "input_size_bytes": len(image_bytes),
        "output_size_bytes": len(result_bytes),
        "output_mime_type": mime_type,
        "processing_time_ms": round(elapsed * 1000, 1),
        "clothing": ClothingStyle(clothing).value if clothing else None,
        "has_instruction": bool(instruction and instruction.strip()),
    }

    print(f"[GENERATE] Success: {len(result_bytes)} bytes in {elapsed * 1000:.0f}ms (model {model})")

    return result_bytes, metadata


def parse_clothing_style(value: Optional[str]) -> Optional[ClothingStyle]:
    """
    Parse a clothing identifier; empty / None means keep the clothing.

    Raises:
        ValueError: If the identifier is unknown
    """
    if value is None or not str(value).strip():
        return None
    try:
        return ClothingStyle(str(value).strip().upper())
    except ValueError:
        valid = ", ".join(c.value for c in ClothingStyle)
        raise ValueError(f"Unknown clothing style: {value}. Valid options: {valid}")


def check_api_configuration() -> dict:
    """
    Check image generation configuration status.

    Returns:
        Dict with configuration status (without exposing full key)
    """
    api_key = _get_api_key()

    status = {
        "api_configured": bool(api_key),
        "api_key_length": len(api_key) if api_key else 0,
        "api_key_prefix": api_key[:6] + "..." if api_key and len(api_key) > 10 else None,
        "base_url": _get_base_url(),
        "model": _get_model(),
    }

    try:
        status["timeout_seconds"] = _get_timeout()
    except ConfigError as e:
        status["timeout_seconds"] = None
        status["timeout_error"] = str(e)

    return status


# =============================================================================
# Testing
# =============================================================================

if __name__ == "__main__":
    import sys

    print("Gemini Image Generation Client - Configuration Check")
    print("=" * 50)

    config = check_api_configuration()
    for key, value in config.items():
        print(f"  {key}: {value}")

    if not config["api_configured"]:
        print("\n⚠️  API key not configured!")
        print("   Set GEMINI_API_KEY environment variable")
        sys.exit(1)

    print("\n✅ API configured and ready")
