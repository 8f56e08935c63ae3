"""
Storybook bundle retrieval
Fetches the preview/vendor bundles from a running server, or reads them from a static build
"""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

import httpx

from storybook_eyes.exceptions import BuildNotFound, BundleUnavailable
from storybook_eyes.models import BundleSource
from storybook_eyes.utils.async_file_operations import list_directory, read_file
from storybook_eyes.utils.httpx_async_client import AsyncHttpxClient, is_not_found
from storybook_eyes.utils.logger import get_logger

logger = get_logger("storybook_eyes.services.bundle_fetcher")

PREVIEW_BUNDLE_PATH = 'static/preview.bundle.js'
VENDOR_BUNDLE_PATH = 'static/vendor.bundle.js'

REQUEST_TIMEOUT = 10.0  # seconds
WAIT_BETWEEN_REQUESTS = 1.0  # seconds
REQUEST_RETRY = 3


class BundleFetcher:
    """Downloads the explorer bundles from a Storybook server"""

    def __init__(
        self,
        retries: int = REQUEST_RETRY,
        retry_delay: float = WAIT_BETWEEN_REQUESTS,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if retries < 1:
            raise ValueError("retries must be at least 1")
        self.retries = retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep

    async def fetch(self, base_address: str) -> BundleSource:
        """
        Fetch preview (mandatory) and vendor (optional) bundles.

        A failed preview request retries the whole round after ``retry_delay``;
        once ``retries`` attempts are used up BundleUnavailable is raised with
        the last transport error attached.
        """
        if not base_address.endswith('/'):
            base_address += '/'

        last_error: Optional[BaseException] = None
        async with AsyncHttpxClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(1, self.retries + 1):
                retries_left = self.retries - attempt + 1
                if attempt == 1:
                    logger.info("Getting stories from storybook server...")
                else:
                    logger.info(f"Getting stories from storybook server... {retries_left} retries left.")

                try:
                    preview = await client.get_text(base_address + PREVIEW_BUNDLE_PATH)
                except httpx.HTTPError as e:
                    last_error = e
                    logger.warning(f"Error on getting stories: {e}")
                    if attempt < self.retries:
                        await self._sleep(self.retry_delay)
                    continue

                vendor = await self._fetch_vendor(client, base_address)
                logger.info("Storybook code was received from server.")
                return BundleSource(preview=preview, vendor=vendor)

        raise BundleUnavailable(
            f"Storybook bundle could not be fetched from {base_address} after {self.retries} attempts: {last_error}",
            last_error=last_error,
        )

    async def _fetch_vendor(self, client: AsyncHttpxClient, base_address: str) -> Optional[str]:
        try:
            return await client.get_text(base_address + VENDOR_BUNDLE_PATH)
        except httpx.HTTPError as e:
            # Storybook builds without a vendor chunk answer 404; anything else is only worth a note
            if not is_not_found(e):
                logger.debug(f"Getting vendor.bundle.js file failed: {e}")
            return None


def _find_bundle(files, prefix: str) -> Optional[str]:
    for filename in files:
        if filename.startswith(prefix) and filename.endswith('.bundle.js'):
            return filename
    return None


async def read_static_bundle(output_dir: Union[str, Path]) -> BundleSource:
    """
    Load preview/vendor bundles from a built Storybook.

    Looks for ``preview.*.bundle.js`` and ``vendor.*.bundle.js`` under
    ``<output_dir>/static``.
    """
    static_dir = Path(output_dir) / 'static'
    logger.info("Getting stories from storybook build...")

    try:
        files = await list_directory(static_dir)
    except FileNotFoundError:
        raise BuildNotFound(
            f"Storybook Build folder not found: {static_dir}. "
            "Build Storybook before running the command or add `--build` option"
        )

    preview_file = _find_bundle(files, 'preview.')
    if not preview_file:
        raise BuildNotFound(f"Storybook preview bundle not found in {static_dir}")
    vendor_file = _find_bundle(files, 'vendor.')

    preview = await read_file(static_dir / preview_file)
    vendor = None
    if vendor_file:
        try:
            vendor = await read_file(static_dir / vendor_file)
        except OSError:
            logger.debug(f"Getting {vendor_file} file failed.")
            raise

    logger.info("Storybook code was loaded from build.")
    return BundleSource(preview=preview, vendor=vendor)
