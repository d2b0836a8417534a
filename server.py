"""
Page Stitcher - FastAPI Server
Version: 0.1.0

HTTP trigger for full-page captures, plus run status and cancellation.
"""

import asyncio
import base64
import logging
import os
import time
from datetime import datetime
from typing import Dict, Literal, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from browser_bridge import BrowserBridge
from screenshot_stitcher import ScreenshotStitcher
from ss_modules import CaptureConfig, CaptureRun, FileArtifactSink, LoggingNotifier, RunState
from utils.error_handler import (
    CaptureCancelled,
    PageCaptureError,
    create_error_response,
    create_success_response,
    get_error_with_hint,
    handle_api_error,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='[%(asctime)s] %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

# Configuration (loaded from environment)
STITCH_OUTPUT_DIR = os.getenv("STITCH_OUTPUT_DIR", "data/screenshots")
STITCH_CAPTURE_TIMEOUT = float(os.getenv("STITCH_CAPTURE_TIMEOUT", "15"))
STITCH_MAX_ATTEMPTS = int(os.getenv("STITCH_MAX_ATTEMPTS", "3"))
STITCH_SETTLE_MS = int(os.getenv("STITCH_SETTLE_MS", "250"))
STITCH_RETRY_DELAY_MS = int(os.getenv("STITCH_RETRY_DELAY_MS", "500"))
STITCH_MAX_CANVAS_DIMENSION = int(os.getenv("STITCH_MAX_CANVAS_DIMENSION", "32767"))
STITCH_MAX_CANVAS_AREA = int(os.getenv("STITCH_MAX_CANVAS_AREA", "268435456"))
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "true").lower() == "true"
BROWSER_VIEWPORT_WIDTH = int(os.getenv("BROWSER_VIEWPORT_WIDTH", "1280"))
BROWSER_VIEWPORT_HEIGHT = int(os.getenv("BROWSER_VIEWPORT_HEIGHT", "800"))
BROWSER_DEVICE_SCALE = float(os.getenv("BROWSER_DEVICE_SCALE", "1"))
SERVER_PORT = int(os.getenv("SERVER_PORT", "8080"))

# Create FastAPI app
app = FastAPI(
    title="Page Stitcher API",
    version=VERSION,
    description="Full-page screenshots by scroll-capture-stitch"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log and return detailed validation errors"""
    logger.error(f"[VALIDATION ERROR] {request.method} {request.url}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "detail": jsonable_errors(exc),
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without non-serialisable ctx values"""
    errors = []
    for err in exc.errors():
        errors.append({k: v for k, v in err.items() if k in ("loc", "msg", "type")})
    return errors


# Shared components (configured on startup)
browser_bridge: Optional[BrowserBridge] = None
artifact_sink: Optional[FileArtifactSink] = None
notifier = LoggingNotifier()

# One capture at a time: the browser page's scroll position is shared
capture_lock = asyncio.Lock()

# run_id -> (run, cancel_event)
active_runs: Dict[str, tuple] = {}
finished_runs: Dict[str, CaptureRun] = {}
MAX_FINISHED_RUNS = 50


# Request Models
class FullPageCaptureRequest(BaseModel):
    url: Optional[str] = None
    format: Literal["png", "jpeg"] = "png"
    quality: int = Field(100, ge=1, le=100)
    overlap_px: int = Field(0, ge=0)
    viewport_width: Optional[int] = Field(None, gt=0)
    viewport_height: Optional[int] = Field(None, gt=0)
    run_id: Optional[str] = Field(None, min_length=1, max_length=64)
    save: bool = True
    include_images: bool = True


def build_capture_config(request: FullPageCaptureRequest) -> CaptureConfig:
    """Merge request options over environment defaults"""
    return CaptureConfig(
        format=request.format,
        quality=request.quality,
        overlap_px=request.overlap_px,
        settle_delay_ms=STITCH_SETTLE_MS,
        capture_timeout_s=STITCH_CAPTURE_TIMEOUT,
        max_attempts=STITCH_MAX_ATTEMPTS,
        retry_delay_ms=STITCH_RETRY_DELAY_MS,
        max_canvas_dimension=STITCH_MAX_CANVAS_DIMENSION,
        max_canvas_area=STITCH_MAX_CANVAS_AREA,
    )


def _remember_run(run: CaptureRun):
    finished_runs[run.run_id] = run
    while len(finished_runs) > MAX_FINISHED_RUNS:
        finished_runs.pop(next(iter(finished_runs)))


def _mark_unfinished_run(run: CaptureRun, error: Exception):
    """Close out a run that failed before the stitcher could (e.g. navigation)"""
    if run.state in (RunState.DONE, RunState.FAILED, RunState.ABORTED):
        return
    run.state = RunState.ABORTED if isinstance(error, CaptureCancelled) else RunState.FAILED
    run.error = str(error)
    run.finished_at = time.time()


# Startup and Shutdown Events
@app.on_event("startup")
async def startup_event():
    """Create the browser bridge and artifact sink"""
    global browser_bridge, artifact_sink

    logger.info(f"[Server] Starting Page Stitcher v{VERSION}")

    browser_bridge = BrowserBridge(
        headless=BROWSER_HEADLESS,
        viewport_width=BROWSER_VIEWPORT_WIDTH,
        viewport_height=BROWSER_VIEWPORT_HEIGHT,
        device_scale_factor=BROWSER_DEVICE_SCALE,
    )
    artifact_sink = FileArtifactSink(STITCH_OUTPUT_DIR)
    logger.info(f"[Server] ✅ Artifact sink ready: {STITCH_OUTPUT_DIR}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cancel running captures and close the browser"""
    for run, cancel_event in active_runs.values():
        cancel_event.set()
    if browser_bridge is not None and browser_bridge.is_running:
        await browser_bridge.stop()
    logger.info("[Server] Shutdown complete")


@app.api_route("/api/health", methods=["GET", "HEAD"])
async def health_check():
    """Health check endpoint (GET and HEAD for Docker health checks)"""
    return {
        "status": "ok",
        "version": VERSION,
        "message": "Page Stitcher is running",
        "browser_status": "running" if (browser_bridge and browser_bridge.is_running) else "stopped",
        "active_runs": len(active_runs),
    }


@app.post("/api/screenshot/full-page")
async def capture_full_page(request: FullPageCaptureRequest):
    """Capture the full scrollable page by stitching viewport captures"""
    if browser_bridge is None:
        logger.error("[API] Browser bridge not initialized")
        raise HTTPException(status_code=503, detail="Browser bridge not available")

    if capture_lock.locked():
        return create_error_response(
            PageCaptureError(get_error_with_hint("busy")["error"], code="BUSY"),
            status_code=409,
        )

    run = CaptureRun(run_id=request.run_id) if request.run_id else CaptureRun()
    if run.run_id in active_runs:
        raise HTTPException(status_code=409, detail=f"Run {run.run_id} is already active")

    cancel_event = asyncio.Event()
    active_runs[run.run_id] = (run, cancel_event)

    try:
        async with capture_lock:
            config = build_capture_config(request)
            logger.info(f"[API] Full-page capture {run.run_id}: url={request.url} format={config.format}")

            page = await browser_bridge.open_page(
                url=request.url,
                viewport_width=request.viewport_width,
                viewport_height=request.viewport_height,
                capture_timeout_s=config.capture_timeout_s,
            )
            stitcher = ScreenshotStitcher(
                page,
                sink=artifact_sink if request.save else None,
                notifier=notifier,
            )
            result = await stitcher.capture_full_page(config, cancel_event=cancel_event, run=run)

    except (PageCaptureError, ValueError) as e:
        _mark_unfinished_run(run, e)
        return handle_api_error(e)
    except Exception as e:
        _mark_unfinished_run(run, e)
        logger.error(f"[API] Full-page capture failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    finally:
        active_runs.pop(run.run_id, None)
        _remember_run(run)

    artifacts = []
    for i, artifact in enumerate(result["artifacts"]):
        entry = {
            "filename": artifact.filename,
            "format": artifact.format,
            "mime_type": artifact.mime_type,
            "part_index": artifact.part_index,
            "width": artifact.width,
            "height": artifact.height,
            "size_bytes": len(artifact.payload),
        }
        if i < len(result["locations"]):
            entry["location"] = result["locations"][i]
        if request.include_images:
            entry["image"] = base64.b64encode(artifact.payload).decode('utf-8')
        artifacts.append(entry)

    logger.info(f"[API] Full-page capture {run.run_id} done: {len(artifacts)} artifact(s)")
    return create_success_response(
        data={
            "artifacts": artifacts,
            "metadata": result["metadata"],
            "timestamp": datetime.now().isoformat(),
        },
        message="Full page screenshot captured",
    )


@app.get("/api/screenshot/runs/{run_id}")
async def get_run_status(run_id: str):
    """Status of an active or recently finished run"""
    if run_id in active_runs:
        run, _ = active_runs[run_id]
    elif run_id in finished_runs:
        run = finished_runs[run_id]
    else:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return create_success_response(data=run.to_dict())


@app.post("/api/screenshot/runs/{run_id}/cancel")
async def cancel_run(run_id: str):
    """Ask a running capture to stop at the next tile boundary"""
    if run_id not in active_runs:
        if run_id in finished_runs:
            run = finished_runs[run_id]
            raise HTTPException(status_code=409, detail=f"Run {run_id} already {run.state.value}")
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")

    run, cancel_event = active_runs[run_id]
    cancel_event.set()
    logger.info(f"[API] Cancellation requested for run {run_id} (state {run.state.value})")
    return create_success_response(
        data={"run_id": run_id, "state": run.state.value},
        message="Cancellation requested; capture stops at the next tile",
    )


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=SERVER_PORT)
