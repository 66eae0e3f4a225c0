"""
Export usage reporting.

Called once after every successful print-tier render. When USAGE_WEBHOOK_URL
is set the export is POSTed there; otherwise nothing is recorded. Failures
are returned in the result dict and never raised into the render path.

Environment Variables:
    USAGE_WEBHOOK_URL: Endpoint that receives export events (optional)
    USAGE_WEBHOOK_TIMEOUT_SECONDS: Request timeout (optional, default 5)
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from .env_config import get_int_env, get_usage_webhook_url

DEFAULT_TIMEOUT_SECONDS = 5


def is_usage_configured() -> bool:
    """Check if export reporting is configured."""
    url, _ = get_usage_webhook_url()
    return bool(url)


def report_export(
    client_id: Optional[str],
    width: int,
    height: int,
    *,
    timeout: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Report one print export.

    Args:
        client_id: Caller identifier (tenant / browser session), may be None
        width, height: Pixel size of the exported bitmap

    Returns:
        {
            "success": bool,
            "reported": bool,
            "error": str (optional)
        }
    """
    url, _ = get_usage_webhook_url()
    if not url:
        return {"success": True, "reported": False}

    payload = {
        "client_id": client_id,
        "width": width,
        "height": height,
        "rendered_at": datetime.now(timezone.utc).isoformat(),
    }
    timeout = timeout or get_int_env("USAGE_WEBHOOK_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)

    try:
        response = requests.post(url, json=payload, timeout=timeout)
    except requests.exceptions.RequestException as e:
        print(f"[USAGE] ⚠️ Export report failed: {e}")
        return {"success": False, "reported": False, "error": str(e)}

    if response.status_code >= 400:
        error = f"HTTP {response.status_code}"
        print(f"[USAGE] ⚠️ Export report rejected: {error}")
        return {"success": False, "reported": False, "error": error}

    print(f"[USAGE] Export reported for client={client_id} ({width}x{height})")
    return {"success": True, "reported": True}
