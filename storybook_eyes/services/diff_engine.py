"""
Diff engine sessions
The visual-comparison side of a story test: open, check one image, close with a result.
BaselineDiffEngine keeps baselines on the local filesystem.
"""

import hashlib
import io
import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from PIL import Image

from storybook_eyes.exceptions import DiffMismatchError, StorybookEyesError
from storybook_eyes.models import BatchInfo, TestResult, ViewportSize
from storybook_eyes.utils.async_file_operations import read_bytes, write_bytes
from storybook_eyes.utils.logger import get_logger

logger = get_logger("storybook_eyes.services.diff_engine")

DEFAULT_VIEWPORT_DESCRIPTOR = 'default'


class DiffEngine(ABC):
    """
    One open/check/close round for one story.

    Many instances run concurrently, one per lane in flight, all sharing the
    run's batch.
    """

    def __init__(self):
        self.properties: Dict[str, str] = {}
        self.inferred_environment: Optional[str] = None

    def add_property(self, name: str, value: str):
        self.properties[name] = value

    def set_inferred_environment(self, inferred: Optional[str]):
        self.inferred_environment = inferred

    @abstractmethod
    async def open(self, app_name: Optional[str], test_name: str, viewport_size: Optional[ViewportSize] = None):
        pass

    @abstractmethod
    async def check_image(self, screenshot: bytes, tag: str):
        pass

    @abstractmethod
    async def close(self, throw_on_mismatch: bool = True) -> TestResult:
        pass


DiffEngineFactory = Callable[[], DiffEngine]


def _slugify(value: str) -> str:
    return re.sub(r'[^A-Za-z0-9._-]+', '_', value).strip('_') or 'story'


def _test_file_stem(test_name: str) -> str:
    # Distinct test names never share a file, even when their slugs are equal
    suffix = hashlib.sha1(test_name.encode('utf-8')).hexdigest()[:8]
    return f"{_slugify(test_name)}-{suffix}"


def pixel_digest(png: bytes) -> str:
    """Digest of decoded RGBA pixels plus size, independent of PNG encoding details"""
    with Image.open(io.BytesIO(png)) as image:
        rgba = image.convert('RGBA')
        digest = hashlib.sha256(f"{rgba.width}x{rgba.height}:".encode('ascii'))
        digest.update(rgba.tobytes())
    return digest.hexdigest()


class BaselineDiffEngine(DiffEngine):
    """
    Filesystem baseline store.

    The first image of a (app, story, viewport) becomes its baseline and is
    reported as new. Later images pass when their pixel digest equals the
    baseline's; otherwise the step is a mismatch and the image is kept under
    the batch directory for review.
    """

    def __init__(self, root_dir: Union[str, Path], batch: BatchInfo):
        super().__init__()
        self.root_dir = Path(root_dir).resolve()
        self.batch = batch
        self._app_name: Optional[str] = None
        self._test_name: Optional[str] = None
        self._viewport_size: Optional[ViewportSize] = None
        self._outcome: Optional[str] = None

    @property
    def batch_dir(self) -> Path:
        return self.root_dir / 'batches' / self.batch.id

    @property
    def viewport_descriptor(self) -> str:
        return str(self._viewport_size) if self._viewport_size else DEFAULT_VIEWPORT_DESCRIPTOR

    def _image_name(self) -> str:
        return f"{_test_file_stem(self._test_name)}__{self.viewport_descriptor}.png"

    def _baseline_path(self) -> Path:
        return self.root_dir / 'baselines' / _slugify(self._app_name or 'default') / self._image_name()

    def _metadata(self) -> Dict[str, Any]:
        return {
            'app_name': self._app_name,
            'test_name': self._test_name,
            'viewport': self.viewport_descriptor,
            'batch': {'id': self.batch.id, 'name': self.batch.name},
            'inferred_environment': self.inferred_environment,
            'properties': self.properties,
        }

    async def open(self, app_name: Optional[str], test_name: str, viewport_size: Optional[ViewportSize] = None):
        self._app_name = app_name
        self._test_name = test_name
        self._viewport_size = viewport_size
        self._outcome = None
        logger.debug(f"Diff session opened for '{test_name}' [{self.viewport_descriptor}]")

    async def check_image(self, screenshot: bytes, tag: str):
        if self._test_name is None:
            raise StorybookEyesError("check_image called before open")

        baseline_path = self._baseline_path()
        if not baseline_path.exists():
            await write_bytes(baseline_path, screenshot)
            await write_bytes(baseline_path.with_suffix('.json'),
                              json.dumps(self._metadata(), indent=2).encode('utf-8'))
            self._outcome = 'new'
            logger.debug(f"New baseline stored for '{tag}' at {baseline_path}")
            return

        baseline = await read_bytes(baseline_path)
        if pixel_digest(baseline) == pixel_digest(screenshot):
            self._outcome = 'passed'
            return

        self._outcome = 'failed'
        actual_path = self.batch_dir / self._image_name()
        await write_bytes(actual_path, screenshot)
        logger.debug(f"Mismatch for '{tag}', actual image saved to {actual_path}")

    async def close(self, throw_on_mismatch: bool = True) -> TestResult:
        if self._test_name is None:
            raise StorybookEyesError("close called before open")

        checked = self._outcome is not None
        result = TestResult(
            name=self._test_name,
            viewport_descriptor=self.viewport_descriptor,
            is_new=self._outcome == 'new',
            is_passed=self._outcome in ('new', 'passed'),
            total_steps=1 if checked else 0,
            mismatches=1 if self._outcome == 'failed' else 0,
            missing=0,
            batch_url=self.batch_dir.as_uri(),
        )
        self._test_name = None

        if throw_on_mismatch and not result.is_passed:
            raise DiffMismatchError(f"Test '{result.name}' detected differences", result=result)
        return result
