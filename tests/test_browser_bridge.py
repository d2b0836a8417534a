from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from browser_bridge import (
    CAPTURE_STYLE_ID,
    INJECT_STYLE_JS,
    MEASURE_PAGE_JS,
    REMOVE_STYLE_JS,
    BrowserBridge,
    PlaywrightPageController,
)
from utils.error_handler import CaptureTimeout, CaptureTransportError


def playwright_page(url="about:blank", width=1280, height=800):
    page = MagicMock()
    page.url = url
    page.viewport_size = {"width": width, "height": height}
    page.screenshot = AsyncMock(return_value=b"\x89PNG...")
    page.evaluate = AsyncMock()
    page.goto = AsyncMock()
    return page


def bridge_with_page(page):
    """BrowserBridge whose 'browser' is already running and hands out page"""
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()
    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)

    bridge = BrowserBridge(viewport_width=1280, viewport_height=800, device_scale_factor=2.0)
    bridge._browser = browser
    return bridge, browser, context


class TestPlaywrightPageController:
    @pytest.mark.asyncio
    async def test_png_capture_is_viewport_only(self):
        page = playwright_page()
        controller = PlaywrightPageController(page, capture_timeout_s=5)

        raster = await controller.capture_visible_area("png", 100)

        assert raster == b"\x89PNG..."
        page.screenshot.assert_awaited_once_with(type="png", full_page=False, timeout=5000)

    @pytest.mark.asyncio
    async def test_jpeg_capture_passes_quality(self):
        page = playwright_page()

        await PlaywrightPageController(page).capture_visible_area("jpeg", 60)

        assert page.screenshot.await_args.kwargs["quality"] == 60

    @pytest.mark.asyncio
    async def test_playwright_timeout_becomes_capture_timeout(self):
        page = playwright_page()
        page.screenshot.side_effect = PlaywrightTimeoutError("Timeout 5000ms exceeded")

        with pytest.raises(CaptureTimeout):
            await PlaywrightPageController(page, capture_timeout_s=5).capture_visible_area("png", 100)

    @pytest.mark.asyncio
    async def test_playwright_error_becomes_transport_error(self):
        page = playwright_page()
        page.screenshot.side_effect = PlaywrightError("Target page, context or browser has been closed")

        with pytest.raises(CaptureTransportError):
            await PlaywrightPageController(page).capture_visible_area("png", 100)

    @pytest.mark.asyncio
    async def test_scroll_and_position(self):
        page = playwright_page()
        page.evaluate.return_value = [10.0, 2400.0]
        controller = PlaywrightPageController(page)

        await controller.scroll_to(0, 2400)
        position = await controller.get_scroll_position()

        assert page.evaluate.await_args_list[0].args[1] == [0, 2400]
        assert position == (10, 2400)

    @pytest.mark.asyncio
    async def test_measure_page(self):
        page = playwright_page()
        page.evaluate.return_value = {
            "viewport_width": 1280,
            "viewport_height": 800,
            "body_scroll_height": 5000,
            "title": "Docs",
            "url": "https://example.test/docs",
        }

        metrics = await PlaywrightPageController(page).measure_page()

        page.evaluate.assert_awaited_once_with(MEASURE_PAGE_JS)
        assert metrics.body_scroll_height == 5000
        assert metrics.title == "Docs"

    @pytest.mark.asyncio
    async def test_capture_styles(self):
        page = playwright_page()
        controller = PlaywrightPageController(page)

        await controller.inject_capture_styles(hide_scrollbars=True, freeze_animations=False)
        await controller.remove_capture_styles()

        inject_call, remove_call = page.evaluate.await_args_list
        assert inject_call.args[0] == INJECT_STYLE_JS
        style_id, css = inject_call.args[1]
        assert style_id == CAPTURE_STYLE_ID
        assert "scrollbar" in css
        assert "animation-play-state" not in css
        assert remove_call.args == (REMOVE_STYLE_JS, CAPTURE_STYLE_ID)

    @pytest.mark.asyncio
    async def test_no_styles_requested(self):
        page = playwright_page()

        await PlaywrightPageController(page).inject_capture_styles(hide_scrollbars=False, freeze_animations=False)

        page.evaluate.assert_not_awaited()


class TestBrowserBridge:
    @pytest.mark.asyncio
    async def test_open_page_navigates(self):
        page = playwright_page()
        bridge, browser, _ = bridge_with_page(page)

        controller = await bridge.open_page(url="https://example.test", capture_timeout_s=3)

        browser.new_context.assert_awaited_once_with(
            viewport={"width": 1280, "height": 800}, device_scale_factor=2.0,
        )
        page.goto.assert_awaited_once()
        assert page.goto.await_args.args[0] == "https://example.test"
        assert controller.page is page
        assert controller.capture_timeout_s == 3

    @pytest.mark.asyncio
    async def test_blank_page_without_url_is_rejected(self):
        bridge, _, _ = bridge_with_page(playwright_page())

        with pytest.raises(ValueError):
            await bridge.open_page()

    @pytest.mark.asyncio
    async def test_navigation_failure_is_transport_error(self):
        page = playwright_page()
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        bridge, _, _ = bridge_with_page(page)

        with pytest.raises(CaptureTransportError):
            await bridge.open_page(url="https://nowhere.invalid")

    @pytest.mark.asyncio
    async def test_viewport_change_recreates_context(self):
        page = playwright_page(url="https://example.test")
        bridge, browser, context = bridge_with_page(page)

        await bridge.open_page()
        await bridge.open_page(viewport_width=800, viewport_height=600)

        context.close.assert_awaited_once()
        assert browser.new_context.await_count == 2
        assert browser.new_context.await_args.kwargs["viewport"] == {"width": 800, "height": 600}

    @pytest.mark.asyncio
    async def test_same_viewport_reuses_page(self):
        page = playwright_page(url="https://example.test")
        bridge, browser, _ = bridge_with_page(page)

        await bridge.open_page()
        await bridge.open_page(viewport_width=1280, viewport_height=800)

        assert browser.new_context.await_count == 1
