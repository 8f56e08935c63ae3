"""
Unit tests for the Playwright-backed browser session
"""

import asyncio
import io
from unittest.mock import AsyncMock, MagicMock, patch

from PIL import Image

from storybook_eyes.config.config import Capabilities
from storybook_eyes.services.browser_session import PlaywrightSessionFactory, scale_screenshot
from tests.conftest import make_png


class TestScaleScreenshot:

    def test_ratio_one_is_untouched(self):
        png = make_png(20, 10)
        assert scale_screenshot(png, 1) is png

    def test_retina_screenshot_halved(self):
        scaled = scale_screenshot(make_png(200, 100), 2)
        with Image.open(io.BytesIO(scaled)) as image:
            assert image.size == (100, 50)

    def test_fractional_ratio(self):
        scaled = scale_screenshot(make_png(150, 75), 1.5)
        with Image.open(io.BytesIO(scaled)) as image:
            assert image.size == (100, 50)


class TestPlaywrightSessionFactory:

    def _playwright(self):
        page = MagicMock()
        page.screenshot = AsyncMock(return_value=b'png')
        page.goto = AsyncMock()
        browser = MagicMock()
        browser.new_page = AsyncMock(return_value=page)
        browser.close = AsyncMock()
        browser_type = MagicMock()
        browser_type.launch = AsyncMock(return_value=browser)
        browser_type.connect = AsyncMock(return_value=browser)
        playwright = MagicMock()
        playwright.chromium = browser_type
        playwright.webkit = browser_type
        playwright.stop = AsyncMock()
        starter = MagicMock()
        starter.start = AsyncMock(return_value=playwright)
        return starter, playwright, browser_type, page

    def test_launches_local_browser(self):
        starter, playwright, browser_type, page = self._playwright()
        factory = PlaywrightSessionFactory(Capabilities(args=['--no-sandbox']))

        async def scenario():
            with patch('storybook_eyes.services.browser_session.async_playwright', return_value=starter):
                async with factory:
                    session = await factory.create_session()
                    await session.navigate('http://localhost:9001/iframe.html')
                    return await session.capture_screenshot()

        assert asyncio.run(scenario()) == b'png'
        browser_type.launch.assert_awaited_once_with(headless=True, args=['--no-sandbox'])
        page.goto.assert_awaited_once()
        page.screenshot.assert_awaited_once_with(full_page=True, type='png')
        playwright.stop.assert_awaited_once()

    def test_connects_to_remote_endpoint(self):
        starter, _, browser_type, _ = self._playwright()
        factory = PlaywrightSessionFactory(Capabilities(browser_name='safari'), remote_endpoint='ws://grid:4444')
        assert factory.browser_type_name == 'webkit'

        async def scenario():
            with patch('storybook_eyes.services.browser_session.async_playwright', return_value=starter):
                async with factory:
                    await factory.create_session()

        asyncio.run(scenario())
        browser_type.connect.assert_awaited_once_with('ws://grid:4444')
        browser_type.launch.assert_not_called()
