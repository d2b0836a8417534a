import asyncio
import io
from typing import Callable, List, Optional, Tuple

import numpy as np
import pytest
from PIL import Image

from ss_modules import CaptureConfig, FinalArtifact, Notifier, PageController, PageMetrics
from ss_modules.device import ArtifactSink

# Never produced by the synthetic document (all channels stay below 200)
SENTINEL_BACKGROUND = "#ff00ff"
HEADER_COLOR = (250, 250, 10)
PAGE_BACKGROUND = (240, 240, 240)


def make_document(width: int, height: int) -> np.ndarray:
    """Deterministic document pixels, distinct per position, channels < 200"""
    ys, xs = np.mgrid[0:height, 0:width]
    doc = np.zeros((height, width, 3), dtype=np.uint8)
    doc[..., 0] = xs % 200
    doc[..., 1] = ys % 200
    doc[..., 2] = ((xs // 200) * 7 + (ys // 200) * 13) % 200
    return doc


class FakePage(PageController):
    """
    Synthetic page: renders a numpy document, clamps scrolling like a
    browser, scales captures by a device pixel ratio, and can inject
    failures per capture call.

    failures: consumed one per capture call; each entry is an exception
    instance, "hang" (sleeps past any sane timeout), b"" (empty response),
    raw bytes (returned as-is) or None (normal capture).
    """

    def __init__(
        self,
        doc_width: int = 400,
        doc_height: int = 1000,
        viewport_width: int = 400,
        viewport_height: int = 300,
        scale: float = 1.0,
        sticky_header_px: int = 0,
        initial_scroll: Tuple[int, int] = (0, 0),
        failures: Optional[list] = None,
        on_capture: Optional[Callable[[int], None]] = None,
    ):
        self.document = make_document(doc_width, doc_height)
        self.doc_width = doc_width
        self.doc_height = doc_height
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.scale = scale
        self.sticky_header_px = sticky_header_px
        self.scroll = initial_scroll
        self.failures = list(failures or [])
        self.on_capture = on_capture

        self.capture_calls = 0
        self.scroll_requests: List[Tuple[int, int]] = []
        self.styles_active = False
        self.style_injections = 0
        self.measure_error: Optional[Exception] = None
        self.metrics_overrides = {}

    # --- PageController ---

    async def capture_visible_area(self, format: str, quality: int) -> bytes:
        self.capture_calls += 1
        call = self.capture_calls
        failure = self.failures.pop(0) if self.failures else None

        if isinstance(failure, Exception):
            raise failure
        if failure == "hang":
            await asyncio.sleep(10)
        if isinstance(failure, bytes):
            return failure

        raster = self.render_viewport(format, quality)
        if self.on_capture:
            self.on_capture(call)
        return raster

    async def scroll_to(self, x: int, y: int) -> None:
        self.scroll_requests.append((x, y))
        max_x = max(0, self.doc_width - self.viewport_width)
        max_y = max(0, self.doc_height - self.viewport_height)
        self.scroll = (min(max(0, x), max_x), min(max(0, y), max_y))

    async def get_scroll_position(self) -> Tuple[int, int]:
        return self.scroll

    async def measure_page(self) -> PageMetrics:
        if self.measure_error:
            raise self.measure_error
        metrics = PageMetrics(
            viewport_width=self.viewport_width,
            viewport_height=self.viewport_height,
            root_scroll_width=max(self.doc_width, self.viewport_width),
            root_scroll_height=max(self.doc_height, self.viewport_height),
            root_client_width=self.viewport_width,
            root_client_height=self.viewport_height,
            body_scroll_width=self.doc_width,
            body_scroll_height=self.doc_height,
            body_offset_width=self.doc_width,
            body_offset_height=self.doc_height,
            title="Fake page",
            url="https://example.test/long",
        )
        for key, value in self.metrics_overrides.items():
            setattr(metrics, key, value)
        return metrics

    async def inject_capture_styles(self, hide_scrollbars: bool, freeze_animations: bool) -> None:
        self.styles_active = True
        self.style_injections += 1

    async def remove_capture_styles(self) -> None:
        self.styles_active = False

    # --- helpers ---

    def render_viewport(self, format: str = "png", quality: int = 100) -> bytes:
        x, y = self.scroll
        view = np.zeros((self.viewport_height, self.viewport_width, 3), dtype=np.uint8)
        view[...] = PAGE_BACKGROUND
        visible = self.document[y:y + self.viewport_height, x:x + self.viewport_width]
        view[:visible.shape[0], :visible.shape[1]] = visible
        if self.sticky_header_px:
            view[:self.sticky_header_px] = HEADER_COLOR

        img = Image.fromarray(view, 'RGB')
        if self.scale != 1.0:
            size = (round(self.viewport_width * self.scale), round(self.viewport_height * self.scale))
            img = img.resize(size, Image.NEAREST)

        buffer = io.BytesIO()
        if format == "jpeg":
            img.save(buffer, format='JPEG', quality=quality)
        else:
            img.save(buffer, format='PNG')
        return buffer.getvalue()

    def expected_image(self) -> np.ndarray:
        """What a perfect stitch of a static page looks like"""
        expected = self.document
        factor = int(self.scale)
        if factor > 1:
            expected = np.repeat(np.repeat(expected, factor, axis=0), factor, axis=1)
        return expected


class RecordingNotifier(Notifier):
    def __init__(self):
        self.messages = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def of_kind(self, kind: str) -> List[str]:
        return [m for k, m in self.messages if k == kind]


class MemorySink(ArtifactSink):
    def __init__(self):
        self.persisted: List[FinalArtifact] = []

    def persist(self, artifacts: List[FinalArtifact]) -> List[str]:
        self.persisted.extend(artifacts)
        return [f"memory://{a.filename}" for a in artifacts]


def stitch_canvases(canvases) -> np.ndarray:
    """Reassemble a canvas grid into one array"""
    width = max(c.right for c in canvases)
    height = max(c.bottom for c in canvases)
    out = np.zeros((height, width, 3), dtype=np.uint8)
    for canvas in canvases:
        out[canvas.top:canvas.bottom, canvas.left:canvas.right] = np.asarray(canvas.buffer)
    return out


@pytest.fixture
def fast_config() -> CaptureConfig:
    """No settling or retry delays, sentinel background"""
    return CaptureConfig(
        settle_delay_ms=0,
        settle_delay_min_ms=0,
        retry_delay_ms=0,
        capture_timeout_s=1.0,
        background_color=SENTINEL_BACKGROUND,
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()
