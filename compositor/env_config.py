"""
Environment Configuration Helper

Reads the compositor's settings from the environment (generation API key,
usage webhook, render tuning overrides). Values pasted into dashboards often
carry trailing newlines or slashes, so everything is sanitized on read.

Usage:
    from compositor.env_config import get_env, get_float_env, get_config_summary
"""

import os
from typing import Optional, Dict, Any
from urllib.parse import urlparse


class ConfigError(Exception):
    """Raised when a required configuration is missing or invalid."""
    pass


def get_env(
    name: str,
    default: Optional[str] = None,
    required: bool = False,
    strip: bool = True
) -> Optional[str]:
    """
    Get environment variable with robust sanitization.

    Args:
        name: Environment variable name
        default: Default value if not set
        required: Raise ConfigError if missing/empty
        strip: Strip whitespace/newlines (default True)

    Returns:
        Sanitized value or default

    Raises:
        ConfigError: If required and missing/empty after sanitization
    """
    value = os.getenv(name, "")

    if strip and value:
        # Remove all leading/trailing whitespace including newlines
        value = value.strip()
        value = value.replace('\n', '').replace('\r', '')

    if not value:
        if required:
            raise ConfigError(f"Required environment variable '{name}' is not set or empty")
        return default

    return value


def get_float_env(name: str, default: float) -> float:
    """
    Get a float environment variable.

    Raises:
        ConfigError: If the variable is set but not a number
    """
    raw = get_env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"Environment variable '{name}' must be a number, got '{raw}'")


def get_int_env(name: str, default: int) -> int:
    """
    Get an integer environment variable.

    Raises:
        ConfigError: If the variable is set but not an integer
    """
    raw = get_env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"Environment variable '{name}' must be an integer, got '{raw}'")


def sanitize_url(url: str) -> str:
    """
    Sanitize a URL by removing whitespace and trailing slashes.
    """
    if not url:
        return url

    url = url.strip().replace('\n', '').replace('\r', '')
    url = url.rstrip('/')

    return url


def validate_webhook_url(url: str) -> tuple[str, list[str]]:
    """
    Validate and sanitize USAGE_WEBHOOK_URL.

    Returns:
        Tuple of (sanitized_url, list_of_warnings)
    """
    warnings = []

    if not url:
        return url, []

    original = url
    url = sanitize_url(url)

    if url != original:
        warnings.append("USAGE_WEBHOOK_URL contained whitespace/newlines or trailing slash, sanitized")

    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https'):
        warnings.append(f"USAGE_WEBHOOK_URL has unusual scheme: {parsed.scheme}")
    elif parsed.scheme == 'http' and parsed.hostname not in ('localhost', '127.0.0.1'):
        warnings.append("USAGE_WEBHOOK_URL uses plain http outside localhost")

    return url, warnings


def get_usage_webhook_url() -> tuple[Optional[str], list[str]]:
    """
    Get and validate USAGE_WEBHOOK_URL.

    Returns:
        Tuple of (sanitized_url or None, list_of_warnings)
    """
    raw_url = get_env("USAGE_WEBHOOK_URL")
    if not raw_url:
        return None, []
    return validate_webhook_url(raw_url)


def get_config_summary() -> Dict[str, Any]:
    """
    Get a non-secret configuration summary for debugging.

    Returns dict with:
    - generation_configured: bool
    - generation_model: model name
    - generation_base_url: API base URL
    - generation_timeout_error: message if GENERATION_TIMEOUT_SECONDS is invalid
    - usage_webhook_configured: bool
    - usage_webhook_host: host only
    - usage_warnings: list of warnings
    - debug_render: bool
    """
    from .generation_client import check_api_configuration

    generation = check_api_configuration()
    webhook_url, webhook_warnings = get_usage_webhook_url()

    summary = {
        "generation_configured": generation["api_configured"],
        "generation_model": generation["model"],
        "generation_base_url": generation["base_url"],
        "generation_timeout_error": generation.get("timeout_error"),
        "usage_webhook_configured": bool(webhook_url),
        "usage_webhook_host": urlparse(webhook_url).hostname if webhook_url else None,
        "usage_warnings": webhook_warnings,
        "debug_render": get_env("DEBUG_RENDER", default="0") == "1",
    }

    return summary


def validate_all_config() -> tuple[bool, list[str]]:
    """
    Validate all configuration on startup.

    Returns:
        Tuple of (all_valid, list_of_messages)
    """
    from .render_config import RenderConfig

    messages = []
    all_valid = True

    # Render tuning overrides must parse and be self-consistent
    try:
        config = RenderConfig.from_env()
        chroma = config.chroma
        messages.append(
            f"✅ Chroma key thresholds: low={chroma.low_threshold}, high={chroma.high_threshold}, "
            f"exponent={chroma.falloff_exponent}"
        )
    except (ConfigError, ValueError) as e:
        all_valid = False
        messages.append(f"❌ Render config: {e}")

    summary = get_config_summary()

    if summary["generation_configured"]:
        messages.append(f"✅ Image generation configured (model: {summary['generation_model']})")
    else:
        messages.append("⚠️ GEMINI_API_KEY not set - /api/generate will return 503")

    if summary["generation_timeout_error"]:
        all_valid = False
        messages.append(f"❌ Generation timeout: {summary['generation_timeout_error']}")

    if summary["usage_webhook_configured"]:
        messages.append(f"✅ Usage webhook configured (host: {summary['usage_webhook_host']})")
    else:
        messages.append("ℹ️ USAGE_WEBHOOK_URL not set - print exports are not reported")
    messages.extend([f"⚠️ Usage: {w}" for w in summary["usage_warnings"]])

    if summary["debug_render"]:
        messages.append("ℹ️ DEBUG_RENDER enabled - intermediate layers saved to outputs/debug_render")

    return all_valid, messages


def startup_validation():
    """Run startup validation and print results."""
    print("=" * 60)
    print("🔧 Configuration Validation")
    print("=" * 60)

    _, messages = validate_all_config()
    for msg in messages:
        print(f"  {msg}")

    print("=" * 60)
