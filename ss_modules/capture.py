"""
Screenshot Stitcher Capture Module

Drives the scroll -> settle -> capture loop over a tile plan.

The document's scroll position is one shared mutable resource, so tiles are
captured strictly one at a time and the original position is put back on
every exit path.
"""

import asyncio
import io
import logging
import time
from typing import List, Optional, Tuple

from PIL import Image

from utils.error_handler import (
    CaptureCancelled,
    CaptureEmptyResponse,
    CaptureFailure,
    CaptureTimeout,
    CaptureTransportError,
    DecodeError,
    PageCaptureError,
    RetryableCaptureError,
    RunTimeout,
)

from .device import PageController
from .models import (
    CaptureAttempt,
    CaptureConfig,
    CapturedTile,
    CaptureRun,
    RunState,
    Tile,
    TileState,
    ViewportExtent,
)

logger = logging.getLogger(__name__)


class CaptureOrchestrator:
    """
    Captures planned tiles one by one.

    Configuration (from CaptureConfig):
        settle_delay_ms / settle_delay_min_ms: wait after scrolling
        capture_timeout_s: bound on a single capture attempt
        max_attempts / retry_delay_ms / retry_backoff: retry policy
        run_timeout_s: optional bound on the whole run
    """

    def __init__(self, page: PageController, config: Optional[CaptureConfig] = None):
        self.page = page
        self.config = config or CaptureConfig()

        # Run-wide device-pixel-ratio / zoom factor, fixed by the first capture
        self.scale: Optional[float] = None

    async def run(
        self,
        tiles: List[Tile],
        viewport: ViewportExtent,
        cancel_event: Optional[asyncio.Event] = None,
        run: Optional[CaptureRun] = None,
    ) -> List[CapturedTile]:
        """
        Capture every tile in order.

        Returns:
            One CapturedTile per planned tile, in plan order

        Raises:
            CaptureFailure: a tile exhausted its attempts, was never scrolled into
                view, or the host raised a non-retryable error
            RunTimeout: run_timeout_s elapsed before the next tile
            CaptureCancelled: cancel_event was set between tiles
            DecodeError: a capture's image header could not be read
        """
        run = run or CaptureRun()
        run.state = RunState.INITIALIZING
        run.tile_states = {tile.index: TileState.PENDING for tile in tiles}
        self.scale = None

        captured: List[CapturedTile] = []
        original_scroll = await self.page.get_scroll_position()
        last_scroll = original_scroll
        start_time = time.time()

        logger.info(
            f"[CaptureOrchestrator] Run {run.run_id}: {len(tiles)} tiles, "
            f"original scroll {original_scroll}"
        )

        try:
            await self.page.inject_capture_styles(
                hide_scrollbars=self.config.hide_scrollbars,
                freeze_animations=self.config.freeze_animations,
            )
            run.state = RunState.IN_PROGRESS

            for tile in tiles:
                # Tile boundary: the only place cancellation and run timeout apply
                if cancel_event is not None and cancel_event.is_set():
                    run.state = RunState.ABORTED
                    logger.info(
                        f"[CaptureOrchestrator] Run {run.run_id} cancelled before tile {tile.index} "
                        f"({len(captured)}/{len(tiles)} captured)"
                    )
                    raise CaptureCancelled(captured=len(captured), planned=len(tiles))

                if self.config.run_timeout_s and time.time() - start_time > self.config.run_timeout_s:
                    logger.error(
                        f"[CaptureOrchestrator] Run {run.run_id} exceeded {self.config.run_timeout_s}s "
                        f"before tile {tile.index} ({len(captured)}/{len(tiles)} captured)"
                    )
                    raise RunTimeout(tile.index, self.config.run_timeout_s, captured=len(captured))

                captured_tile, last_scroll = await self._capture_tile(tile, viewport, last_scroll, run)
                captured.append(captured_tile)

            logger.info(
                f"[CaptureOrchestrator] Run {run.run_id}: captured {len(captured)} tiles "
                f"in {int((time.time() - start_time) * 1000)}ms (scale {self.scale})"
            )
            return captured

        except CaptureCancelled:
            run.state = RunState.ABORTED
            raise

        except Exception:
            run.state = RunState.FAILED
            raise

        finally:
            await self._cleanup(original_scroll)

    async def _capture_tile(
        self,
        tile: Tile,
        viewport: ViewportExtent,
        last_scroll: Tuple[int, int],
        run: CaptureRun,
    ) -> Tuple[CapturedTile, Tuple[int, int]]:
        """Scroll to a tile, let it settle, capture with retries"""
        run.tile_states[tile.index] = TileState.SCROLLING
        await self.page.scroll_to(tile.origin_x, tile.origin_y)
        scroll = await self.page.get_scroll_position()

        # The viewport at the read-back position must contain the whole tile
        if not self._viewport_contains(tile, viewport, scroll):
            run.tile_states[tile.index] = TileState.FAILED
            logger.error(
                f"[CaptureOrchestrator] Tile {tile.index} not reached: requested "
                f"({tile.origin_x},{tile.origin_y}), page is at {scroll}"
            )
            raise CaptureFailure(
                tile.index,
                message=(
                    f"Tile {tile.index} not reached: scrolled to {scroll}, a "
                    f"{viewport.width}x{viewport.height} viewport does not contain the tile at "
                    f"({tile.origin_x},{tile.origin_y}) {tile.width}x{tile.height}"
                ),
                reason="scroll_mismatch",
            )

        run.tile_states[tile.index] = TileState.SETTLING
        moved = max(abs(scroll[0] - last_scroll[0]), abs(scroll[1] - last_scroll[1]))
        if moved <= self.config.settle_tolerance_px:
            delay_ms = min(self.config.settle_delay_min_ms, self.config.settle_delay_ms)
        else:
            delay_ms = self.config.settle_delay_ms
        if delay_ms:
            await asyncio.sleep(delay_ms / 1000)

        logger.debug(
            f"  Tile {tile.index}: origin=({tile.origin_x},{tile.origin_y}) "
            f"size={tile.width}x{tile.height} scroll={scroll} settle={delay_ms}ms"
        )

        run.tile_states[tile.index] = TileState.CAPTURING
        try:
            raster, attempts = await self._capture_with_retry(tile, run)
        except Exception:
            run.tile_states[tile.index] = TileState.FAILED
            raise

        if self.scale is None:
            try:
                self.scale = self._discover_scale(raster, viewport)
            except DecodeError as e:
                e.tile_index = tile.index
                e.details["tile_index"] = tile.index
                run.tile_states[tile.index] = TileState.FAILED
                raise

        run.tile_states[tile.index] = TileState.CAPTURED
        captured_tile = CapturedTile(
            tile=tile,
            raster=raster,
            captured_at=time.time(),
            scale=self.scale,
            scroll_x=scroll[0],
            scroll_y=scroll[1],
            attempts=attempts,
        )
        return captured_tile, scroll

    async def _capture_with_retry(self, tile: Tile, run: CaptureRun) -> Tuple[bytes, List[CaptureAttempt]]:
        """
        Capture the visible area, retrying retryable errors.

        Each attempt is bounded by capture_timeout_s. Attempt n (n >= 2) is
        preceded by a wait of retry_delay_ms * retry_backoff ** (n - 2).
        Anything else the host raises fails the tile at once as a host_error.
        """
        attempts: List[CaptureAttempt] = []

        for attempt in range(1, self.config.max_attempts + 1):
            if attempt > 1:
                delay_ms = self.config.retry_delay_ms * (self.config.retry_backoff ** (attempt - 2))
                if delay_ms:
                    await asyncio.sleep(delay_ms / 1000)

            attempt_start = time.time()
            try:
                raster = await self._capture_once()
                record = CaptureAttempt(
                    tile_index=tile.index,
                    attempt=attempt,
                    latency_ms=int((time.time() - attempt_start) * 1000),
                )
                attempts.append(record)
                run.attempts.append(record)
                if attempt > 1:
                    logger.info(f"  Tile {tile.index}: captured on attempt {attempt}")
                return raster, attempts

            except RetryableCaptureError as e:
                record = CaptureAttempt(
                    tile_index=tile.index,
                    attempt=attempt,
                    latency_ms=int((time.time() - attempt_start) * 1000),
                    error_kind=e.kind,
                    error_message=e.message,
                )
                attempts.append(record)
                run.attempts.append(record)
                logger.warning(
                    f"  Tile {tile.index} attempt {attempt}/{self.config.max_attempts} failed: "
                    f"{e.kind} - {e.message}"
                )

            except PageCaptureError:
                raise

            except Exception as e:
                record = CaptureAttempt(
                    tile_index=tile.index,
                    attempt=attempt,
                    latency_ms=int((time.time() - attempt_start) * 1000),
                    error_kind="host-error",
                    error_message=str(e),
                )
                attempts.append(record)
                run.attempts.append(record)
                logger.error(f"[CaptureOrchestrator] Tile {tile.index}: host raised {type(e).__name__}: {e}")
                raise CaptureFailure(
                    tile.index,
                    attempts,
                    message=f"Tile {tile.index}: host error during capture: {type(e).__name__}: {e}",
                    reason="host_error",
                ) from e

        logger.error(f"[CaptureOrchestrator] Tile {tile.index} exhausted {len(attempts)} attempts")
        raise CaptureFailure(tile.index, attempts)

    async def _capture_once(self) -> bytes:
        """One bounded capture call, with host errors mapped onto the retryable kinds"""
        timeout = self.config.capture_timeout_s
        try:
            raster = await asyncio.wait_for(
                self.page.capture_visible_area(self.config.format, self.config.quality),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise CaptureTimeout(f"Capture timed out after {timeout}s", timeout_s=timeout)
        except RetryableCaptureError:
            raise
        except (ConnectionError, OSError) as e:
            raise CaptureTransportError(f"Capture transport failed: {e}") from e

        if not raster:
            raise CaptureEmptyResponse()
        return raster

    @staticmethod
    def _viewport_contains(tile: Tile, viewport: ViewportExtent, scroll: Tuple[int, int]) -> bool:
        scroll_x, scroll_y = scroll
        return (
            scroll_x <= tile.origin_x
            and scroll_x + viewport.width >= tile.right
            and scroll_y <= tile.origin_y
            and scroll_y + viewport.height >= tile.bottom
        )

    def _discover_scale(self, raster: bytes, viewport: ViewportExtent) -> float:
        """Ratio of captured raster width to planned viewport width"""
        try:
            with Image.open(io.BytesIO(raster)) as img:
                raster_width, raster_height = img.size
        except Exception as e:
            raise DecodeError(f"Could not read captured image header: {e}") from e

        scale = raster_width / viewport.width
        if abs(scale - 1.0) > 1e-6:
            logger.info(
                f"[CaptureOrchestrator] Capture is {raster_width}x{raster_height} for a "
                f"{viewport.width}x{viewport.height} viewport - scale {scale:.4f}"
            )
        return scale

    async def _cleanup(self, original_scroll: Tuple[int, int]):
        """Restore styling and scroll position; errors here are logged, never raised"""
        try:
            await self.page.remove_capture_styles()
        except Exception as e:
            logger.warning(f"[CaptureOrchestrator] Failed to remove capture styles: {e}")

        try:
            await self.page.scroll_to(*original_scroll)
            logger.debug(f"  Restored scroll position {original_scroll}")
        except Exception as e:
            logger.error(f"[CaptureOrchestrator] Failed to restore scroll position {original_scroll}: {e}")
