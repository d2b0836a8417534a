"""
Page Stitcher - Browser Bridge
Runs a Chromium page through Playwright and exposes it to the stitcher as a
PageController (scroll, measure, capture visible area).
"""

import asyncio
import logging
from typing import Optional, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from ss_modules import PageController, PageMetrics
from utils.error_handler import CaptureTimeout, CaptureTransportError

logger = logging.getLogger(__name__)

CAPTURE_STYLE_ID = "page-stitcher-capture-style"

# Gathers every size candidate the DimensionAnalyzer reconciles
MEASURE_PAGE_JS = """
() => {
    const root = document.documentElement;
    const body = document.body || root;
    const rootStyle = getComputedStyle(root);
    const bodyStyle = getComputedStyle(body);
    const hidden = (v) => v === 'hidden' || v === 'clip';
    return {
        viewport_width: window.innerWidth,
        viewport_height: window.innerHeight,
        root_scroll_width: root.scrollWidth,
        root_scroll_height: root.scrollHeight,
        root_offset_width: root.offsetWidth,
        root_offset_height: root.offsetHeight,
        root_client_width: root.clientWidth,
        root_client_height: root.clientHeight,
        body_scroll_width: body.scrollWidth,
        body_scroll_height: body.scrollHeight,
        body_offset_width: body.offsetWidth,
        body_offset_height: body.offsetHeight,
        overflow_x_hidden: hidden(rootStyle.overflowX) || hidden(bodyStyle.overflowX),
        overflow_y_hidden: hidden(rootStyle.overflowY) || hidden(bodyStyle.overflowY),
        title: document.title,
        url: window.location.href
    };
}
"""

INJECT_STYLE_JS = """
([id, css]) => {
    let style = document.getElementById(id);
    if (!style) {
        style = document.createElement('style');
        style.id = id;
        (document.head || document.documentElement).appendChild(style);
    }
    style.textContent = css;
}
"""

REMOVE_STYLE_JS = """
(id) => {
    const style = document.getElementById(id);
    if (style) style.remove();
}
"""

HIDE_SCROLLBARS_CSS = """
html::-webkit-scrollbar, body::-webkit-scrollbar { display: none !important; }
html, body { scrollbar-width: none !important; }
"""

FREEZE_ANIMATIONS_CSS = """
*, *::before, *::after {
    animation-play-state: paused !important;
    transition: none !important;
    caret-color: transparent !important;
}
html { scroll-behavior: auto !important; }
"""


class PlaywrightPageController(PageController):
    """PageController backed by a Playwright page"""

    def __init__(self, page, capture_timeout_s: float = 15.0):
        self.page = page
        self.capture_timeout_s = capture_timeout_s

    async def capture_visible_area(self, format: str, quality: int) -> bytes:
        options = {
            "type": format,
            "full_page": False,
            "timeout": self.capture_timeout_s * 1000,
        }
        if format == "jpeg":
            options["quality"] = quality
        try:
            return await self.page.screenshot(**options)
        except PlaywrightTimeoutError as e:
            raise CaptureTimeout(f"Browser screenshot timed out: {e}", timeout_s=self.capture_timeout_s) from e
        except PlaywrightError as e:
            raise CaptureTransportError(f"Browser screenshot failed: {e}") from e

    async def scroll_to(self, x: int, y: int) -> None:
        await self.page.evaluate("([x, y]) => window.scrollTo(x, y)", [x, y])

    async def get_scroll_position(self) -> Tuple[int, int]:
        x, y = await self.page.evaluate(
            "() => [Math.round(window.scrollX), Math.round(window.scrollY)]"
        )
        return int(x), int(y)

    async def measure_page(self) -> PageMetrics:
        data = await self.page.evaluate(MEASURE_PAGE_JS)
        return PageMetrics.from_dict(data)

    async def inject_capture_styles(self, hide_scrollbars: bool, freeze_animations: bool) -> None:
        css = ""
        if hide_scrollbars:
            css += HIDE_SCROLLBARS_CSS
        if freeze_animations:
            css += FREEZE_ANIMATIONS_CSS
        if css:
            await self.page.evaluate(INJECT_STYLE_JS, [CAPTURE_STYLE_ID, css])

    async def remove_capture_styles(self) -> None:
        await self.page.evaluate(REMOVE_STYLE_JS, CAPTURE_STYLE_ID)


class BrowserBridge:
    """
    Owns the Playwright browser. One page is kept open and reused, since
    captures are serialised anyway.
    """

    def __init__(
        self,
        headless: bool = True,
        viewport_width: int = 1280,
        viewport_height: int = 800,
        device_scale_factor: float = 1.0,
        navigation_timeout_s: float = 30.0,
    ):
        self.headless = headless
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.device_scale_factor = device_scale_factor
        self.navigation_timeout_s = navigation_timeout_s

        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._lock = asyncio.Lock()

        logger.info(
            f"[BrowserBridge] Initialized (headless={headless}, viewport={viewport_width}x{viewport_height}, "
            f"scale={device_scale_factor})"
        )

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def start(self):
        """Launch Chromium if it is not running yet"""
        async with self._lock:
            if self._browser is not None:
                return
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=self.headless)
            logger.info("[BrowserBridge] ✅ Chromium launched")

    async def stop(self):
        """Close page, context, browser and Playwright"""
        async with self._lock:
            for name in ("_page", "_context", "_browser"):
                obj = getattr(self, name)
                if obj is not None:
                    try:
                        await obj.close()
                    except PlaywrightError as e:
                        logger.warning(f"[BrowserBridge] Error closing {name.strip('_')}: {e}")
                    setattr(self, name, None)
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
            logger.info("[BrowserBridge] Stopped")

    async def open_page(
        self,
        url: Optional[str] = None,
        viewport_width: Optional[int] = None,
        viewport_height: Optional[int] = None,
        capture_timeout_s: float = 15.0,
    ) -> PlaywrightPageController:
        """
        Return a controller for the bridge's page, navigating to url if given.

        A viewport change recreates the browser context so the device scale
        factor and viewport stay consistent.
        """
        await self.start()
        width = viewport_width or self.viewport_width
        height = viewport_height or self.viewport_height

        async with self._lock:
            if self._page is not None:
                current = self._page.viewport_size or {}
                if current.get("width") != width or current.get("height") != height:
                    await self._context.close()
                    self._context = None
                    self._page = None

            if self._page is None:
                self._context = await self._browser.new_context(
                    viewport={"width": width, "height": height},
                    device_scale_factor=self.device_scale_factor,
                )
                self._page = await self._context.new_page()
                logger.info(f"[BrowserBridge] New page {width}x{height}")

            if url:
                logger.info(f"[BrowserBridge] Navigating to {url}")
                try:
                    await self._page.goto(url, wait_until="load", timeout=self.navigation_timeout_s * 1000)
                except PlaywrightError as e:
                    raise CaptureTransportError(f"Navigation to {url} failed: {e}") from e
            elif self._page.url == "about:blank":
                raise ValueError("No page loaded yet - provide a url")

            return PlaywrightPageController(self._page, capture_timeout_s=capture_timeout_s)
