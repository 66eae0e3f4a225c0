from fastapi import FastAPI, File, Form, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from typing import Optional
from dotenv import load_dotenv


# Load environment variables
load_dotenv()

from compositor.background import parse_background_choice
from compositor.bitmap import decode_bitmap, encode_png
from compositor.env_config import ConfigError, get_config_summary, startup_validation
from compositor.errors import DecodeError, ForegroundMismatchError, GenerationError, GeometryError
from compositor.generation_client import check_api_configuration, generate_foreground, parse_clothing_style
from compositor.geometry import CropEditor, crop_and_rotate
from compositor.render_config import RenderConfig
from compositor.renderer import (
    TIER_PROFILES, CompositeSpec, ResolutionTier, SourceCrop,
    render_with_metrics, validate_foreground_dimensions,
)
from compositor.sequencing import get_render_sequencer
from compositor.uploads import get_max_upload_bytes, validate_image_bytes
from compositor.usage_client import report_export

PIPELINE_VERSION = "1.0.0"

app = FastAPI()


# ============================================================================
# STARTUP & HEALTH
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Validate configuration on startup."""
    startup_validation()


@app.get("/api/health", response_class=JSONResponse)
async def health():
    """
    Basic health check endpoint for load balancers and uptime monitoring.
    Returns minimal info without exposing internals.
    """
    return JSONResponse({
        "status": "ok",
        "service": "memorial-portrait-compositor",
        "version": PIPELINE_VERSION
    })


@app.get("/api/config-check", response_class=JSONResponse)
async def config_check():
    """
    Configuration check endpoint for debugging.

    Returns non-secret configuration summary:
    - generation: configured flag, model, base URL, timeout error if any
    - usage: webhook configured flag, host, warnings
    - debug_render: bool
    """
    summary = get_config_summary()

    return JSONResponse({
        "generation": {
            "configured": summary["generation_configured"],
            "model": summary["generation_model"],
            "base_url": summary["generation_base_url"],
            "timeout_error": summary["generation_timeout_error"]
        },
        "usage": {
            "configured": summary["usage_webhook_configured"],
            "host": summary["usage_webhook_host"],
            "warnings": summary["usage_warnings"]
        },
        "debug_render": summary["debug_render"]
    })


# ============================================================================
# HELPERS
# ============================================================================

def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


async def _read_image(upload: UploadFile, field: str):
    """
    Read and validate an uploaded image.

    Returns:
        (content_bytes, error_response) - exactly one is None
    """
    content = await upload.read()

    if len(content) == 0:
        return None, _error(f"Empty file uploaded for '{field}'", 400)

    max_bytes = get_max_upload_bytes()
    if len(content) > max_bytes:
        return None, _error(f"File too large for '{field}', maximum {max_bytes // (1024 * 1024)}MB", 413)

    is_valid, _, validation_error = validate_image_bytes(content)
    if not is_valid:
        return None, _error(f"Invalid file format for '{field}': {validation_error}", 400)

    return content, None


def _png_response(png: bytes, headers: Optional[dict] = None) -> Response:
    return Response(content=png, media_type="image/png", headers=headers or {})


def _load_render_config() -> RenderConfig:
    try:
        return RenderConfig.from_env()
    except (ConfigError, ValueError) as e:
        print(f"⚠️ [APP] Invalid render config, using defaults: {e}")
        return RenderConfig()


# ============================================================================
# CROP
# ============================================================================

class CropGestureRequest(BaseModel):
    container_width: float
    container_height: float
    gesture: str  # "initial", "drag", "resize" or "rotate"
    x: float = 0.0
    y: float = 0.0
    width: float = 0.6
    rotation: float = 0.0
    rotation_mode: str = "fine"
    dx: float = 0.0
    dy: float = 0.0
    degrees: float = 0.0


@app.post("/api/crop/gesture", response_class=JSONResponse)
async def crop_gesture(request: CropGestureRequest):
    """
    Apply one crop editing gesture and return the resulting region.

    The starting region is clamped first, so any client state is accepted.
    """
    try:
        editor = CropEditor(request.container_width, request.container_height, rotation_mode=request.rotation_mode)

        if request.gesture == "initial":
            region = editor.initial_crop()
        else:
            start = editor.clamp(request.x, request.y, request.width, rotation_degrees=request.rotation)
            if request.gesture == "drag":
                region = editor.drag(start, request.dx, request.dy)
            elif request.gesture == "resize":
                region = editor.resize(start, request.dx, request.dy)
            elif request.gesture == "rotate":
                region = editor.rotate(start, request.degrees)
            else:
                return _error(f"Unknown gesture: {request.gesture}", 400)
    except GeometryError as e:
        return _error(str(e), 422)

    return JSONResponse({
        "success": True,
        "region": {
            "x": region.x,
            "y": region.y,
            "width": region.width,
            "height": region.height,
            "rotation": region.rotation_degrees
        },
        "rotation_limit": editor.rotation_limit
    })


@app.post("/api/crop")
async def crop_photo(
    photo: UploadFile = File(...),
    x: float = Form(...),
    y: float = Form(...),
    width: float = Form(...),
    rotation: float = Form(0.0),
    container_width: float = Form(...),
    container_height: float = Form(...),
    rotation_mode: str = Form("fine"),
):
    """
    Crop + rotate an uploaded photo at native resolution.

    Crop values are container fractions; they are clamped and aspect-locked
    before rendering, so the response headers carry the region actually used.
    """
    content, error = await _read_image(photo, "photo")
    if error:
        return error

    try:
        editor = CropEditor(container_width, container_height, rotation_mode=rotation_mode)
        region = editor.clamp(x, y, width, rotation_degrees=rotation)
        source = await run_in_threadpool(decode_bitmap, content)
        cropped = await run_in_threadpool(crop_and_rotate, source, region, container_width, container_height)
        png = await run_in_threadpool(encode_png, cropped)
    except (DecodeError, GeometryError) as e:
        return _error(str(e), 422)

    print(f"✅ [APP] Crop {source.width}x{source.height} -> {cropped.width}x{cropped.height}")
    return _png_response(png, {
        "X-Crop-Region": f"{region.x:.6f},{region.y:.6f},{region.width:.6f},{region.height:.6f}",
        "X-Crop-Rotation": f"{region.rotation_degrees:.3f}",
        "X-Image-Size": f"{cropped.width}x{cropped.height}",
    })


# ============================================================================
# GENERATE
# ============================================================================

@app.post("/api/generate")
async def generate(
    photo: UploadFile = File(...),
    clothing: Optional[str] = Form(None),
    instruction: Optional[str] = Form(None),
):
    """
    Re-render the cropped original on the green key background.

    The returned foreground is dimension-checked against the uploaded photo
    before it is handed back, so a mis-sized generation never reaches a render.
    """
    status = check_api_configuration()
    if not status["api_configured"]:
        return _error("Image generation is not configured", 503)
    if status.get("timeout_error"):
        return _error(status["timeout_error"], 503)

    content, error = await _read_image(photo, "photo")
    if error:
        return error

    try:
        clothing_style = parse_clothing_style(clothing)
    except ValueError as e:
        return _error(str(e), 400)

    try:
        original = await run_in_threadpool(decode_bitmap, content)
        result_bytes, metadata = await run_in_threadpool(
            generate_foreground, content, clothing=clothing_style, instruction=instruction
        )
        foreground = await run_in_threadpool(decode_bitmap, result_bytes)
        validate_foreground_dimensions(foreground, original.width, original.height)
        png = await run_in_threadpool(encode_png, foreground)
    except GenerationError as e:
        print(f"❌ [GENERATE] {e}")
        return _error("Image generation failed, please try again", 502)
    except (DecodeError, ForegroundMismatchError) as e:
        print(f"❌ [GENERATE] Unusable result: {e}")
        return _error(str(e), 422)

    return _png_response(png, {
        "X-Generation-Model": metadata["model"],
        "X-Generation-Time-Ms": str(metadata["processing_time_ms"]),
        "X-Image-Size": f"{foreground.width}x{foreground.height}",
    })


# ============================================================================
# RENDER
# ============================================================================

@app.post("/api/render")
async def render_composite(
    original: UploadFile = File(...),
    foreground: Optional[UploadFile] = File(None),
    background: str = Form("none"),
    tier: str = Form("preview"),
    width: Optional[int] = Form(None),
    height: Optional[int] = Form(None),
    client_id: Optional[str] = Form(None),
    crop_x: Optional[float] = Form(None),
    crop_y: Optional[float] = Form(None),
    crop_width: Optional[float] = Form(None),
    crop_rotation: float = Form(0.0),
    container_width: Optional[float] = Form(None),
    container_height: Optional[float] = Form(None),
    rotation_mode: str = Form("fine"),
):
    """
    Render a composite as PNG.

    `original` is the already-cropped photo, unless crop_* and container_*
    fields are sent, in which case it is the full source and is cropped at
    output resolution. With a client_id, a render superseded by a newer
    request from the same client returns 409 instead of a stale frame.
    """
    try:
        background_choice = parse_background_choice(background)
        resolution_tier = ResolutionTier(tier.strip().lower())
    except ValueError as e:
        return _error(str(e), 400)

    profile = TIER_PROFILES[resolution_tier]
    out_w = profile.width if width is None else width
    out_h = profile.height if height is None else height

    original_bytes, error = await _read_image(original, "original")
    if error:
        return error

    foreground_bytes = None
    if foreground is not None and foreground.filename:
        foreground_bytes, error = await _read_image(foreground, "foreground")
        if error:
            return error

    sequencer = get_render_sequencer()
    generation = sequencer.begin(client_id) if client_id else None

    try:
        original_bitmap = await run_in_threadpool(decode_bitmap, original_bytes)
        foreground_bitmap = None
        if foreground_bytes is not None:
            foreground_bitmap = await run_in_threadpool(decode_bitmap, foreground_bytes)

        spec_kwargs = {}
        if crop_width is not None:
            if container_width is None or container_height is None:
                return _error("crop fields require container_width and container_height", 400)
            editor = CropEditor(container_width, container_height, rotation_mode=rotation_mode)
            region = editor.clamp(crop_x or 0.0, crop_y or 0.0, crop_width, rotation_degrees=crop_rotation)
            spec_kwargs["source_crop"] = SourceCrop(original_bitmap, region, container_width, container_height)
        else:
            spec_kwargs["original"] = original_bitmap

        spec = CompositeSpec(
            background=background_choice,
            output_width=out_w,
            output_height=out_h,
            tier=resolution_tier,
            foreground=foreground_bitmap,
            **spec_kwargs,
        )

        output, metrics = await run_in_threadpool(render_with_metrics, spec, _load_render_config())
        png = await run_in_threadpool(encode_png, output)
    except (DecodeError, GeometryError, ForegroundMismatchError) as e:
        print(f"❌ [RENDER] {type(e).__name__}: {e}")
        return _error(str(e), 422)

    if client_id and not sequencer.is_current(client_id, generation):
        print(f"⚠️ [RENDER] Stale render for client {client_id} (generation {generation}) discarded")
        return JSONResponse({
            "success": False,
            "error": "Superseded by a newer render request",
            "generation": generation,
            "latest_generation": sequencer.latest(client_id)
        }, status_code=409)

    headers = {
        "X-Render-Tier": resolution_tier.value,
        "X-Image-Size": f"{output.width}x{output.height}",
        "X-Render-Time-Ms": str(metrics["processing_time_ms"]),
    }
    if generation is not None:
        headers["X-Render-Generation"] = str(generation)
    if "heal" in metrics:
        headers["X-Heal-Applied"] = "1" if metrics["heal"]["healed"] else "0"

    if resolution_tier is ResolutionTier.PRINT:
        usage = await run_in_threadpool(report_export, client_id, output.width, output.height)
        headers["X-Usage-Reported"] = "1" if usage["reported"] else "0"

    return _png_response(png, headers)
