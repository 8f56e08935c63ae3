"""
storybook-eyes Test Configuration and Fixtures
==============================================

Core pytest configuration and shared fixtures for the storybook-eyes test suite.
This file provides:
- Fake browser sessions and diff engines for scheduler/runner tests
- A throwaway Storybook project directory
- PNG helpers
"""

import asyncio
import io
import json
from pathlib import Path
from typing import List, Optional, Sequence

import pytest
from PIL import Image

from storybook_eyes.models import TestResult, ViewportSize
from storybook_eyes.services.browser_session import BrowserSession
from storybook_eyes.services.diff_engine import DiffEngine
from storybook_eyes.utils.shutdown import ShutdownCoordinator

FAKE_USER_AGENT = 'Mozilla/5.0 (X11; Linux x86_64) FakeBrowser/1.0'
FAKE_BATCH_URL = 'file:///tmp/storybook-eyes/batches/fake'

STORY_REGISTRY_JS = """
window.__storybook_stories__ = [
  {kind: 'Button', stories: [{name: 'with text'}, {name: 'with emoji'}]},
  {kind: 'Input', stories: [{name: 'empty'}]}
];
"""


def make_png(width: int = 10, height: int = 10, color=(255, 0, 0, 255)) -> bytes:
    """Solid-color PNG"""
    output = io.BytesIO()
    Image.new('RGBA', (width, height), color).save(output, format='PNG')
    return output.getvalue()


class FakeBrowserSession(BrowserSession):
    """Records every command into a shared event list"""

    def __init__(self, index: int, events: list, user_agent: str = FAKE_USER_AGENT,
                 device_pixel_ratio: float = 1, fail_on: Optional[str] = None):
        self.index = index
        self.events = events
        self.user_agent = user_agent
        self.device_pixel_ratio = device_pixel_ratio
        self.fail_on = fail_on
        self.url = None
        self.closed = False
        self.screenshot = make_png(int(10 * device_pixel_ratio), int(10 * device_pixel_ratio))

    async def navigate(self, url: str):
        self.events.append(('navigate', self.index, url))
        await asyncio.sleep(0)
        if self.fail_on and self.fail_on in url:
            raise RuntimeError(f"navigation to {url} failed")
        self.url = url

    async def set_viewport_size(self, width: int, height: int):
        self.events.append(('viewport', self.index, (width, height)))

    async def capture_screenshot(self) -> bytes:
        await asyncio.sleep(0)
        self.events.append(('capture', self.index, self.url))
        return self.screenshot

    async def execute_script(self, script: str):
        if 'userAgent' in script:
            return self.user_agent
        if 'devicePixelRatio' in script:
            return self.device_pixel_ratio
        return None

    async def close(self):
        self.events.append(('close', self.index, None))
        self.closed = True


class FakeSessionFactory:
    """Async session factory handing out FakeBrowserSession in creation order"""

    def __init__(self, **session_options):
        self.session_options = session_options
        self.events: list = []
        self.sessions: List[FakeBrowserSession] = []

    async def __call__(self) -> FakeBrowserSession:
        session = FakeBrowserSession(len(self.sessions), self.events, **self.session_options)
        self.sessions.append(session)
        return session


class FakeDiffEngine(DiffEngine):
    """Passes everything except test names listed as failing; broken names raise from check_image"""

    def __init__(self, failing: Sequence[str] = (), broken: Sequence[str] = ()):
        super().__init__()
        self.failing = set(failing)
        self.broken = set(broken)
        self.test_name = None
        self.app_name = None
        self.viewport_size: Optional[ViewportSize] = None
        self.screenshots: List[bytes] = []

    async def open(self, app_name, test_name, viewport_size=None):
        self.app_name = app_name
        self.test_name = test_name
        self.viewport_size = viewport_size

    async def check_image(self, screenshot: bytes, tag: str):
        await asyncio.sleep(0)
        if self.test_name in self.broken:
            raise RuntimeError(f"diff service rejected {self.test_name}")
        self.screenshots.append(screenshot)

    async def close(self, throw_on_mismatch: bool = True) -> TestResult:
        failed = self.test_name in self.failing
        return TestResult(
            name=self.test_name,
            viewport_descriptor=str(self.viewport_size) if self.viewport_size else 'default',
            is_new=False,
            is_passed=not failed,
            total_steps=1,
            mismatches=1 if failed else 0,
            missing=0,
            batch_url=FAKE_BATCH_URL,
        )


class FakeDiffEngineFactory:

    def __init__(self, failing: Sequence[str] = (), broken: Sequence[str] = ()):
        self.failing = failing
        self.broken = broken
        self.engines: List[FakeDiffEngine] = []

    def __call__(self) -> FakeDiffEngine:
        engine = FakeDiffEngine(self.failing, self.broken)
        self.engines.append(engine)
        return engine


@pytest.fixture(scope="function")
def session_factory():
    return FakeSessionFactory()


@pytest.fixture(scope="function")
def diff_engine_factory():
    return FakeDiffEngineFactory()


@pytest.fixture(scope="function")
def coordinator():
    """Private shutdown coordinator so tests never touch process-wide handlers"""
    return ShutdownCoordinator()


@pytest.fixture(scope="function")
def storybook_project(tmp_path) -> Path:
    """
    Minimal Storybook 3 project: package.json and .storybook/config.js.
    """
    (tmp_path / 'package.json').write_text(json.dumps({
        'name': 'demo-app',
        'devDependencies': {'@storybook/react': '^3.4.0'},
    }))
    config_dir = tmp_path / '.storybook'
    config_dir.mkdir()
    (config_dir / 'config.js').write_text(
        "import { configure } from '@storybook/react';\n"
        "configure(() => require('../stories'), module);\n"
    )
    return tmp_path


@pytest.fixture(scope="function")
def static_build(storybook_project) -> Path:
    """storybook-static/static with a preview bundle that registers three stories"""
    static_dir = storybook_project / 'storybook-static' / 'static'
    static_dir.mkdir(parents=True)
    (static_dir / 'preview.bundle.js').write_text(STORY_REGISTRY_JS)
    (static_dir / 'vendor.bundle.js').write_text("window.__vendor_loaded__ = true;\n")
    return storybook_project


# Pytest configuration
def pytest_configure(config):
    """
    Pytest configuration hook.
    Sets up test markers.
    """
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """
    Pytest collection hook.
    Automatically mark tests based on their location.
    """
    for item in items:
        path = str(item.fspath)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
        elif "integration" in path:
            item.add_marker(pytest.mark.integration)
