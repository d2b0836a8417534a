"""
Screenshot Stitcher Models

Geometry, run-state and configuration types shared by the capture pipeline.
Plain dataclasses for the values that flow between stages, pydantic for the
user-facing configuration.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from PIL import Image
from pydantic import BaseModel, Field


class TileState(str, Enum):
    """Per-tile capture state"""
    PENDING = "pending"
    SCROLLING = "scrolling"
    SETTLING = "settling"
    CAPTURING = "capturing"
    CAPTURED = "captured"
    FAILED = "failed"


class RunState(str, Enum):
    """Run-level state"""
    INITIALIZING = "initializing"
    IN_PROGRESS = "in_progress"
    STITCHING = "stitching"
    DONE = "done"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class DocumentExtent:
    """Full scrollable size of the page (CSS pixels)"""
    width: int
    height: int


@dataclass(frozen=True)
class ViewportExtent:
    """Visible window size (CSS pixels)"""
    width: int
    height: int


@dataclass
class PageMetrics:
    """
    Raw size candidates reported by the host page.

    Every field is optional because hosts differ in what they can report;
    the DimensionAnalyzer reconciles whatever is present.
    """
    viewport_width: int = 0
    viewport_height: int = 0
    root_scroll_width: int = 0
    root_scroll_height: int = 0
    root_offset_width: int = 0
    root_offset_height: int = 0
    root_client_width: int = 0
    root_client_height: int = 0
    body_scroll_width: int = 0
    body_scroll_height: int = 0
    body_offset_width: int = 0
    body_offset_height: int = 0
    overflow_x_hidden: bool = False
    overflow_y_hidden: bool = False
    title: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageMetrics":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class Tile:
    """A planned capture region in document coordinates"""
    index: int
    origin_x: int
    origin_y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.origin_x + self.width

    @property
    def bottom(self) -> int:
        return self.origin_y + self.height


@dataclass
class CaptureAttempt:
    """One capture attempt for a tile; error_kind is None on success"""
    tile_index: int
    attempt: int
    latency_ms: int
    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tile_index": self.tile_index,
            "attempt": self.attempt,
            "latency_ms": self.latency_ms,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }


@dataclass
class CapturedTile:
    """
    A tile plus the raster captured for it.

    scroll_x/scroll_y are where the viewport actually was when the raster
    was taken. Hosts clamp scrolling at the document end, so for the last
    row/column this differs from the tile origin.
    """
    tile: Tile
    raster: bytes
    captured_at: float
    scale: float
    scroll_x: int
    scroll_y: int
    attempts: List[CaptureAttempt] = field(default_factory=list)

    def scaled_box(self) -> Tuple[int, int, int, int]:
        """Destination rectangle (left, top, right, bottom) in output pixels"""
        return (
            round(self.tile.origin_x * self.scale),
            round(self.tile.origin_y * self.scale),
            round(self.tile.right * self.scale),
            round(self.tile.bottom * self.scale),
        )

    def source_offset(self) -> Tuple[int, int]:
        """Where the tile's top-left corner sits inside the raster"""
        return (
            round((self.tile.origin_x - self.scroll_x) * self.scale),
            round((self.tile.origin_y - self.scroll_y) * self.scale),
        )


@dataclass
class CompositeCanvas:
    """A bounded output raster owning [left, right) x [top, bottom) of output space"""
    left: int
    top: int
    right: int
    bottom: int
    buffer: Optional[Image.Image] = None

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    def release(self):
        if self.buffer is not None:
            self.buffer.close()
            self.buffer = None


@dataclass
class FinalArtifact:
    """One encoded output image per CompositeCanvas"""
    format: str
    quality: int
    payload: bytes
    filename: str
    width: int
    height: int
    part_index: Optional[int] = None

    @property
    def mime_type(self) -> str:
        return "image/png" if self.format == "png" else "image/jpeg"


@dataclass
class CaptureRun:
    """Bookkeeping for one full-page capture run"""
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: RunState = RunState.INITIALIZING
    tile_states: Dict[int, TileState] = field(default_factory=dict)
    attempts: List[CaptureAttempt] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    error: Optional[str] = None

    @property
    def captured_count(self) -> int:
        return sum(1 for s in self.tile_states.values() if s == TileState.CAPTURED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "tiles_planned": len(self.tile_states),
            "tiles_captured": self.captured_count,
            "attempts": len(self.attempts),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": self.error,
        }


class CaptureConfig(BaseModel):
    """Options for one full-page capture"""
    # Output
    format: Literal["png", "jpeg"] = "png"
    quality: int = Field(100, ge=1, le=100)
    filename_prefix: str = "full-page-screenshot"
    background_color: str = "#ffffff"

    # Tiling
    overlap_px: int = Field(0, ge=0, description="Vertical overlap between rows, masks sticky headers")

    # Settling
    settle_delay_ms: int = Field(250, ge=0)
    settle_delay_min_ms: int = Field(50, ge=0, description="Used when the scroll barely moved")
    settle_tolerance_px: int = Field(2, ge=0)

    # Retry / timeout
    capture_timeout_s: float = Field(15.0, gt=0)
    max_attempts: int = Field(3, ge=1, le=10)
    retry_delay_ms: int = Field(500, ge=0)
    retry_backoff: float = Field(2.0, ge=1.0)
    run_timeout_s: Optional[float] = Field(None, gt=0)

    # Host canvas limits (Chromium defaults)
    max_canvas_dimension: int = Field(32767, ge=1)
    max_canvas_area: int = Field(268435456, ge=1)

    # Page styling during capture
    hide_scrollbars: bool = True
    freeze_animations: bool = True

    # Used only when the page cannot be measured at all
    fallback_viewport_width: int = Field(1280, gt=0)
    fallback_viewport_height: int = Field(800, gt=0)
