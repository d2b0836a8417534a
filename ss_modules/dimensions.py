"""
Screenshot Stitcher Dimensions Module

Works out how big the document really is. Pages disagree with themselves
about their size (body vs root, scroll vs offset), so every candidate is
collected and the largest plausible one wins per axis.
"""

import logging
from typing import Optional, Tuple

from utils.error_handler import MeasurementError

from .device import PageController
from .models import CaptureConfig, DocumentExtent, PageMetrics, ViewportExtent

logger = logging.getLogger(__name__)


class DimensionAnalyzer:
    """Measures document and viewport extents of a page"""

    def __init__(self, page: PageController, config: Optional[CaptureConfig] = None):
        self.page = page
        self.config = config or CaptureConfig()
        self.last_metrics: Optional[PageMetrics] = None

    async def measure(self) -> Tuple[DocumentExtent, ViewportExtent]:
        """
        Measure the page under capture styling.

        Never raises: a page that cannot be measured is treated as exactly
        one viewport.
        """
        metrics = None
        try:
            await self.page.inject_capture_styles(
                hide_scrollbars=self.config.hide_scrollbars,
                freeze_animations=self.config.freeze_animations,
            )
            metrics = await self.page.measure_page()
            self.last_metrics = metrics
            return self.reconcile(metrics)

        except Exception as e:
            error = e if isinstance(e, MeasurementError) else MeasurementError(f"Could not measure page: {e}")
            viewport = self._fallback_viewport(metrics)
            logger.warning(
                f"[DimensionAnalyzer] {error.message} - falling back to single viewport "
                f"{viewport.width}x{viewport.height}"
            )
            return DocumentExtent(viewport.width, viewport.height), viewport

        finally:
            try:
                await self.page.remove_capture_styles()
            except Exception as e:
                logger.warning(f"[DimensionAnalyzer] Failed to remove capture styles: {e}")

    def reconcile(self, metrics: PageMetrics) -> Tuple[DocumentExtent, ViewportExtent]:
        """Reduce raw candidates to (document, viewport) extents"""
        if metrics.viewport_width <= 0 or metrics.viewport_height <= 0:
            raise MeasurementError(
                f"Invalid viewport {metrics.viewport_width}x{metrics.viewport_height}"
            )
        viewport = ViewportExtent(metrics.viewport_width, metrics.viewport_height)

        width_candidates = [metrics.viewport_width, metrics.root_client_width]
        if not metrics.overflow_x_hidden:
            width_candidates += [
                metrics.root_scroll_width,
                metrics.root_offset_width,
                metrics.body_scroll_width,
                metrics.body_offset_width,
            ]

        height_candidates = [metrics.viewport_height, metrics.root_client_height]
        if not metrics.overflow_y_hidden:
            height_candidates += [
                metrics.root_scroll_height,
                metrics.root_offset_height,
                metrics.body_scroll_height,
                metrics.body_offset_height,
            ]

        doc_width = max(int(c or 0) for c in width_candidates)
        doc_height = max(int(c or 0) for c in height_candidates)

        if doc_width <= 0:
            doc_width = viewport.width
        if doc_height <= 0:
            doc_height = viewport.height

        document = DocumentExtent(doc_width, doc_height)
        logger.info(
            f"[DimensionAnalyzer] Document {document.width}x{document.height}, "
            f"viewport {viewport.width}x{viewport.height}"
            + (" (overflow-x hidden)" if metrics.overflow_x_hidden else "")
            + (" (overflow-y hidden)" if metrics.overflow_y_hidden else "")
        )
        return document, viewport

    def _fallback_viewport(self, metrics: Optional[PageMetrics]) -> ViewportExtent:
        if metrics and metrics.viewport_width > 0 and metrics.viewport_height > 0:
            return ViewportExtent(metrics.viewport_width, metrics.viewport_height)
        return ViewportExtent(
            self.config.fallback_viewport_width,
            self.config.fallback_viewport_height,
        )
