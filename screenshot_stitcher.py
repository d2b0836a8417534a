"""
Page Stitcher - Screenshot Stitcher
Captures a full scrollable page as one image (or a few, when the page is
larger than a canvas may be):
1. Measure document and viewport
2. Plan row-major tiles, optionally overlapping vertically
3. Scroll to each tile, settle, capture (with timeout + retries)
4. Composite tiles onto bounded canvases, last tile wins in overlaps
5. Encode artifacts and hand them to the sink

The page's scroll position is restored whatever happens.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from ss_modules import (
    ArtifactSink,
    CaptureConfig,
    CaptureOrchestrator,
    CaptureRun,
    DimensionAnalyzer,
    ImageComposer,
    LoggingNotifier,
    Notifier,
    PageController,
    ResultPackager,
    RunState,
    TilePlanner,
)
from utils.error_handler import CaptureCancelled, get_user_friendly_message

logger = logging.getLogger(__name__)


class ScreenshotStitcher:
    """
    Full-page screenshot pipeline for one host page.
    """

    def __init__(
        self,
        page: PageController,
        sink: Optional[ArtifactSink] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[CaptureConfig] = None,
    ):
        """
        Initialize screenshot stitcher

        Args:
            page: PageController for the page to capture
            sink: Where finished artifacts go (None keeps them in memory only)
            notifier: User-facing status messages
            config: Default CaptureConfig, overridable per capture
        """
        self.page = page
        self.sink = sink
        self.notifier = notifier or LoggingNotifier()
        self.config = config or CaptureConfig()
        self.planner = TilePlanner()

        logger.info("[ScreenshotStitcher] Initialized")

    async def capture_full_page(
        self,
        config: Optional[CaptureConfig] = None,
        cancel_event: Optional[asyncio.Event] = None,
        run: Optional[CaptureRun] = None,
    ) -> Dict[str, Any]:
        """
        Capture the whole page.

        Args:
            config: Overrides the stitcher's default CaptureConfig
            cancel_event: Set it to abort at the next tile boundary
            run: Run record to update (created if not given)

        Returns:
            Dictionary with:
                - artifacts: List of FinalArtifact
                - locations: Where the sink stored them (may be empty)
                - metadata: Capture statistics

        Raises:
            PageCaptureError subclasses; the user has already been notified
        """
        config = config or self.config
        run = run or CaptureRun()
        start_time = time.time()

        logger.info(f"[ScreenshotStitcher] Starting full-page capture (run {run.run_id}, {config.format})")
        self.notifier.info("Capturing full page screenshot...")

        orchestrator = CaptureOrchestrator(self.page, config)
        analyzer = DimensionAnalyzer(self.page, config)
        composer = ImageComposer(config)
        packager = ResultPackager(self.sink, filename_prefix=config.filename_prefix)

        try:
            # === STEP 1: Measure ===
            doc, viewport = await analyzer.measure()

            # === STEP 2: Plan ===
            tiles = self.planner.plan(doc, viewport, config.overlap_px)

            # === STEP 3: Capture ===
            captured = await orchestrator.run(tiles, viewport, cancel_event=cancel_event, run=run)

            # === STEP 4: Composite ===
            run.state = RunState.STITCHING
            canvases = await asyncio.to_thread(composer.composite, captured, doc)
            del captured

            # === STEP 5: Package ===
            artifacts = await asyncio.to_thread(packager.package, canvases, config.format, config.quality)
            locations = packager.persist(artifacts)

        except Exception as e:
            if isinstance(e, CaptureCancelled):
                run.state = RunState.ABORTED
            else:
                run.state = RunState.FAILED
            run.error = str(e)
            run.finished_at = time.time()
            logger.error(f"[ScreenshotStitcher] Capture failed: {e}")
            self.notifier.error(get_user_friendly_message(e))
            raise

        run.state = RunState.DONE
        run.finished_at = time.time()
        duration_ms = int((run.finished_at - start_time) * 1000)
        metrics = analyzer.last_metrics

        metadata = {
            "run_id": run.run_id,
            "state": run.state.value,
            "tile_count": len(tiles),
            "capture_count": run.captured_count,
            "attempt_count": len(run.attempts),
            "retry_count": sum(1 for a in run.attempts if a.error_kind),
            "scale": orchestrator.scale,
            "document": {"width": doc.width, "height": doc.height},
            "viewport": {"width": viewport.width, "height": viewport.height},
            "canvas_count": len(artifacts),
            "format": config.format,
            "quality": config.quality,
            "overlap_px": config.overlap_px,
            "duration_ms": duration_ms,
            "title": metrics.title if metrics else None,
            "url": metrics.url if metrics else None,
        }

        logger.info(
            f"[ScreenshotStitcher] Complete: {len(tiles)} tiles -> {len(artifacts)} artifact(s) in {duration_ms}ms"
        )
        if len(artifacts) > 1:
            self.notifier.success(f"Full page screenshot captured in {len(artifacts)} parts!")
        else:
            self.notifier.success("Full page screenshot captured and downloaded!")

        return {
            "artifacts": artifacts,
            "locations": locations,
            "metadata": metadata,
        }
