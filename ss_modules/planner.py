"""
Screenshot Stitcher Planner Module

Turns document/viewport extents into the ordered list of tiles to capture.
"""

import logging
from typing import List

from .models import DocumentExtent, Tile, ViewportExtent

logger = logging.getLogger(__name__)


class TilePlanner:
    """Plans a gap-free, row-major tiling of the document"""

    def plan(self, doc: DocumentExtent, viewport: ViewportExtent, overlap_px: int = 0) -> List[Tile]:
        """
        Plan capture tiles.

        Rows advance by (viewport height - overlap_px) so that a fixed header
        in the next row's capture lands on top of the previous row's tail.
        Columns advance by the full viewport width. The last row and column
        are clipped to the document edge.

        Args:
            doc: Full scrollable size
            viewport: Visible window size
            overlap_px: Vertical overlap between consecutive rows

        Returns:
            Tiles ordered by origin_y, then origin_x

        Raises:
            ValueError: On non-positive extents or an overlap that leaves no progress
        """
        if viewport.width <= 0 or viewport.height <= 0:
            raise ValueError(f"Viewport must be positive, got {viewport.width}x{viewport.height}")
        if doc.width <= 0 or doc.height <= 0:
            raise ValueError(f"Document must be positive, got {doc.width}x{doc.height}")
        if overlap_px < 0:
            raise ValueError(f"overlap_px must be >= 0, got {overlap_px}")

        # Fast path: nothing to scroll
        if doc.width <= viewport.width and doc.height <= viewport.height:
            logger.info(f"[TilePlanner] Page fits viewport - single tile {viewport.width}x{viewport.height}")
            return [Tile(index=0, origin_x=0, origin_y=0, width=viewport.width, height=viewport.height)]

        if overlap_px >= viewport.height:
            raise ValueError(
                f"overlap_px ({overlap_px}) must be smaller than the viewport height ({viewport.height})"
            )

        row_spans = self._spans(doc.height, viewport.height, viewport.height - overlap_px)
        col_spans = self._spans(doc.width, viewport.width, viewport.width)

        tiles = []
        for y, h in row_spans:
            for x, w in col_spans:
                tiles.append(Tile(index=len(tiles), origin_x=x, origin_y=y, width=w, height=h))

        logger.info(
            f"[TilePlanner] {len(tiles)} tiles ({len(row_spans)} rows x {len(col_spans)} cols) "
            f"for {doc.width}x{doc.height} doc, viewport {viewport.width}x{viewport.height}, overlap {overlap_px}px"
        )
        return tiles

    @staticmethod
    def _spans(total: int, size: int, step: int) -> List[tuple]:
        """(origin, length) pairs covering [0, total) with windows of `size` every `step`"""
        spans = []
        origin = 0
        while True:
            length = min(size, total - origin)
            spans.append((origin, length))
            if origin + length >= total:
                break
            origin += step
        return spans
