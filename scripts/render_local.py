#!/usr/bin/env python3
"""
Render a composite from files on disk, without the HTTP service.

Environment variables:
    RENDER_BACKGROUND: Background choice (default: none)
    RENDER_TIER: preview or print (default: preview)
    RENDER_OUTPUT: Output PNG path (default: outputs/render_<tier>.png)
    DEBUG_RENDER: Set to "1" to also save every intermediate layer

Usage:
    # Original only
    python3 scripts/render_local.py cropped.png

    # Original + generated foreground on a pastel background, print size
    RENDER_BACKGROUND=blue RENDER_TIER=print python3 scripts/render_local.py cropped.png foreground.png
"""

import os
import sys
import json
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from compositor.bitmap import decode_bitmap, encode_png
from compositor.env_config import ConfigError
from compositor.errors import RenderError
from compositor.render_config import RenderConfig
from compositor.renderer import CompositeSpec, render_with_metrics


def _load(path: str):
    with open(path, "rb") as f:
        return decode_bitmap(f.read())


def main() -> int:
    if len(sys.argv) < 2:
        print(__doc__)
        return 2

    background = os.getenv("RENDER_BACKGROUND", "none")
    tier = os.getenv("RENDER_TIER", "preview")
    output_path = os.getenv("RENDER_OUTPUT", f"outputs/render_{tier}.png")

    try:
        original = _load(sys.argv[1])
        foreground = _load(sys.argv[2]) if len(sys.argv) > 2 else None

        spec = CompositeSpec.for_tier(
            tier,
            background=background,
            original=original,
            foreground=foreground,
        )
        output, metrics = render_with_metrics(spec, RenderConfig.from_env())
    except (OSError, RenderError, ConfigError, ValueError) as e:
        print(f"❌ Render failed: {e}")
        return 1

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    with open(output_path, "wb") as f:
        f.write(encode_png(output))

    print(f"\n✅ Saved: {output_path}")
    print(json.dumps(metrics, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
