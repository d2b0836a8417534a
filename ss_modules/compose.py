"""
Screenshot Stitcher Compose Module

Contains the image composition step:
- plan_canvases: split output space into canvases within host size limits
- composite: paint captured tiles onto those canvases in capture order
"""

import io
import logging
import math
from typing import List, Optional, Tuple

from PIL import Image, ImageColor

from utils.error_handler import CompositionError, DecodeError

from .models import CaptureConfig, CapturedTile, CompositeCanvas, DocumentExtent

logger = logging.getLogger(__name__)

# Pixels a tile may fall short of its raster by through scale rounding
ROUNDING_SLACK_PX = 1


class ImageComposer:
    """Composes captured tiles into one or more bounded canvases."""

    def __init__(self, config: Optional[CaptureConfig] = None):
        self.config = config or CaptureConfig()

    def composite(self, captured_tiles: List[CapturedTile], doc: DocumentExtent) -> List[CompositeCanvas]:
        """
        Draw all tiles onto freshly allocated canvases.

        Tiles are painted in the order given (capture order), so where two
        tiles overlap the later one wins. Each tile is decoded once and
        pasted into every canvas it intersects.

        Returns:
            Canvases in row-major order

        Raises:
            DecodeError: a tile raster could not be decoded
            CompositionError: nothing to compose, a canvas could not be built,
                or a raster does not cover its tile
        """
        if not captured_tiles:
            raise CompositionError("No captured tiles to compose")

        scale = captured_tiles[0].scale
        total_width, total_height = self._output_size(captured_tiles, doc, scale)
        canvases = self.plan_canvases(total_width, total_height)

        logger.info(
            f"[ImageComposer] Composing {len(captured_tiles)} tiles -> {total_width}x{total_height}px "
            f"on {len(canvases)} canvas(es) (scale {scale:.4f})"
        )

        try:
            background = ImageColor.getrgb(self.config.background_color)[:3]
        except ValueError as e:
            raise CompositionError(f"Invalid background colour {self.config.background_color!r}") from e

        try:
            for canvas in canvases:
                canvas.buffer = Image.new('RGB', (canvas.width, canvas.height), background)
        except (MemoryError, ValueError) as e:
            self._release_all(canvases)
            raise CompositionError(f"Could not allocate canvas: {e}") from e

        try:
            for captured in captured_tiles:
                image = self._decode(captured)
                try:
                    for canvas in canvases:
                        self._draw(image, captured, canvas)
                finally:
                    image.close()
        except (DecodeError, CompositionError):
            self._release_all(canvases)
            raise
        except Exception as e:
            self._release_all(canvases)
            raise CompositionError(f"Failed to draw tiles: {e}") from e

        return canvases

    def plan_canvases(self, total_width: int, total_height: int) -> List[CompositeCanvas]:
        """
        Partition [0, total_width) x [0, total_height) into a grid of canvases
        that each respect max_canvas_dimension and max_canvas_area.
        """
        max_dim = self.config.max_canvas_dimension
        max_area = self.config.max_canvas_area

        if total_width <= 0 or total_height <= 0:
            raise CompositionError(f"Output size must be positive, got {total_width}x{total_height}")

        # Columns first: a canvas must be at most max_dim wide and leave room for >= 1 row
        cols = math.ceil(total_width / min(max_dim, max_area))
        col_width = math.ceil(total_width / cols)

        row_limit = min(max_dim, max_area // col_width)
        rows = math.ceil(total_height / row_limit)
        row_height = math.ceil(total_height / rows)

        canvases = []
        for r in range(rows):
            top = r * row_height
            bottom = min(total_height, top + row_height)
            if top >= bottom:
                continue
            for c in range(cols):
                left = c * col_width
                right = min(total_width, left + col_width)
                if left >= right:
                    continue
                canvases.append(CompositeCanvas(left=left, top=top, right=right, bottom=bottom))

        if len(canvases) > 1:
            logger.info(
                f"[ImageComposer] Output {total_width}x{total_height} exceeds canvas limits "
                f"(max {max_dim}px, {max_area}px²) - split into {rows}x{cols} grid"
            )
        return canvases

    def _output_size(self, captured_tiles: List[CapturedTile], doc: DocumentExtent, scale: float) -> Tuple[int, int]:
        """Scaled bounding box of the document and every tile"""
        width = round(doc.width * scale)
        height = round(doc.height * scale)
        for captured in captured_tiles:
            _, _, right, bottom = captured.scaled_box()
            width = max(width, right)
            height = max(height, bottom)
        return width, height

    def _decode(self, captured: CapturedTile) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(captured.raster))
            image.load()
        except Exception as e:
            raise DecodeError(
                f"Could not decode raster for tile {captured.tile.index}: {e}",
                tile_index=captured.tile.index,
            ) from e

        if image.mode != 'RGB':
            converted = image.convert('RGB')
            image.close()
            image = converted
        return image

    def _draw(self, image: Image.Image, captured: CapturedTile, canvas: CompositeCanvas):
        """Paste the part of a tile that falls inside one canvas"""
        dest_left, dest_top, dest_right, dest_bottom = captured.scaled_box()

        # Clip destination to the canvas rectangle
        left = max(dest_left, canvas.left)
        top = max(dest_top, canvas.top)
        right = min(dest_right, canvas.right)
        bottom = min(dest_bottom, canvas.bottom)
        if left >= right or top >= bottom:
            return

        # Matching source rectangle inside the raster
        src_x, src_y = captured.source_offset()
        src_left = src_x + (left - dest_left)
        src_top = src_y + (top - dest_top)

        # Only scale rounding may leave the region short of the raster
        missing = max(
            0,
            -src_left,
            -src_top,
            src_left + (right - left) - image.width,
            src_top + (bottom - top) - image.height,
        )
        if missing > ROUNDING_SLACK_PX:
            raise CompositionError(
                f"Raster for tile {captured.tile.index} ({image.width}x{image.height}) does not cover "
                f"its region: source ({src_left},{src_top}) {right - left}x{bottom - top}"
            )

        if src_left < 0:
            left -= src_left
            src_left = 0
        if src_top < 0:
            top -= src_top
            src_top = 0
        src_right = min(src_left + (right - left), image.width)
        src_bottom = min(src_top + (bottom - top), image.height)
        if src_left >= src_right or src_top >= src_bottom:
            return

        region = image.crop((src_left, src_top, src_right, src_bottom))
        canvas.buffer.paste(region, (left - canvas.left, top - canvas.top))
        region.close()

    @staticmethod
    def _release_all(canvases: List[CompositeCanvas]):
        for canvas in canvases:
            canvas.release()
