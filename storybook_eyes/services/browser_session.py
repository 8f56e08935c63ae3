"""
Browser sessions
The browser-automation side of a test lane, backed by Playwright
"""

import io
from abc import ABC, abstractmethod
from typing import Any, Optional

from PIL import Image
from playwright.async_api import Browser, Page, Playwright, async_playwright

from storybook_eyes.config.config import Capabilities
from storybook_eyes.utils.logger import get_logger

logger = get_logger("storybook_eyes.services.browser_session")

BROWSER_ALIASES = {
    'chrome': 'chromium',
    'chromium': 'chromium',
    'MicrosoftEdge': 'chromium',
    'firefox': 'firefox',
    'safari': 'webkit',
    'webkit': 'webkit',
}
NAVIGATION_TIMEOUT = 30000  # ms


class BrowserSession(ABC):
    """One browser page exclusively owned by a lane"""

    @abstractmethod
    async def navigate(self, url: str):
        pass

    @abstractmethod
    async def set_viewport_size(self, width: int, height: int):
        pass

    @abstractmethod
    async def capture_screenshot(self) -> bytes:
        """PNG bytes of the current page"""

    @abstractmethod
    async def execute_script(self, script: str) -> Any:
        pass

    @abstractmethod
    async def close(self):
        pass


class PlaywrightBrowserSession(BrowserSession):

    def __init__(self, browser: Browser, page: Page, full_page: bool = True):
        self.browser = browser
        self.page = page
        self.full_page = full_page

    async def navigate(self, url: str):
        await self.page.goto(url, wait_until='load', timeout=NAVIGATION_TIMEOUT)

    async def set_viewport_size(self, width: int, height: int):
        await self.page.set_viewport_size({"width": width, "height": height})

    async def capture_screenshot(self) -> bytes:
        return await self.page.screenshot(full_page=self.full_page, type='png')

    async def execute_script(self, script: str) -> Any:
        return await self.page.evaluate(script)

    async def close(self):
        await self.browser.close()


class PlaywrightSessionFactory:
    """
    Creates one browser per session, launched locally or connected to a
    remote endpoint, from a capability descriptor
    """

    def __init__(self, capabilities: Optional[Capabilities] = None,
                 remote_endpoint: Optional[str] = None, full_page: bool = True):
        self.capabilities = capabilities or Capabilities()
        self.remote_endpoint = remote_endpoint
        self.full_page = full_page
        self._playwright: Optional[Playwright] = None

    @property
    def browser_type_name(self) -> str:
        name = self.capabilities.browser_name
        return BROWSER_ALIASES.get(name, name)

    async def start(self):
        if self._playwright is None:
            self._playwright = await async_playwright().start()

    async def create_session(self) -> PlaywrightBrowserSession:
        await self.start()
        browser_type = getattr(self._playwright, self.browser_type_name)

        if self.remote_endpoint:
            logger.debug(f"Connecting {self.browser_type_name} to {self.remote_endpoint}")
            browser = await browser_type.connect(self.remote_endpoint)
        else:
            logger.debug(f"Launching {self.browser_type_name} with {self.capabilities.launch_options()}")
            browser = await browser_type.launch(**self.capabilities.launch_options())

        page = await browser.new_page()
        return PlaywrightBrowserSession(browser, page, full_page=self.full_page)

    async def close(self):
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def scale_screenshot(png: bytes, device_pixel_ratio: float) -> bytes:
    """Resize a screenshot taken at device_pixel_ratio back to CSS pixels"""
    if not device_pixel_ratio or device_pixel_ratio == 1:
        return png

    with Image.open(io.BytesIO(png)) as image:
        size = (
            max(1, round(image.width / device_pixel_ratio)),
            max(1, round(image.height / device_pixel_ratio)),
        )
        scaled = image.resize(size, Image.LANCZOS)
        output = io.BytesIO()
        scaled.save(output, format='PNG')
    return output.getvalue()
