"""
Unit tests for bundle retrieval
"""

import asyncio

import httpx
import pytest

from storybook_eyes.exceptions import BuildNotFound, BundleUnavailable
from storybook_eyes.services.bundle_fetcher import (
    PREVIEW_BUNDLE_PATH,
    VENDOR_BUNDLE_PATH,
    BundleFetcher,
    read_static_bundle,
)

BASE = 'http://localhost:9001/'


class SleepRecorder:

    def __init__(self):
        self.calls = []

    async def __call__(self, delay):
        self.calls.append(delay)


def make_fetcher(handler, retries=3, sleep=None):
    return BundleFetcher(
        retries=retries,
        retry_delay=1.0,
        transport=httpx.MockTransport(handler),
        sleep=sleep or SleepRecorder(),
    )


class TestBundleFetcher:

    def test_preview_and_vendor(self):
        def handler(request):
            if request.url.path == '/' + PREVIEW_BUNDLE_PATH:
                return httpx.Response(200, text='preview()')
            return httpx.Response(200, text='vendor()')

        bundle = asyncio.run(make_fetcher(handler).fetch(BASE))
        assert bundle.preview == 'preview()'
        assert bundle.vendor == 'vendor()'
        assert bundle.scripts == ('vendor()', 'preview()')

    def test_missing_vendor_is_not_an_error(self):
        def handler(request):
            if request.url.path == '/' + VENDOR_BUNDLE_PATH:
                return httpx.Response(404)
            return httpx.Response(200, text='preview()')

        bundle = asyncio.run(make_fetcher(handler).fetch(BASE))
        assert bundle.preview == 'preview()'
        assert bundle.vendor is None

    def test_vendor_server_error_falls_back_to_preview_only(self):
        def handler(request):
            if request.url.path == '/' + VENDOR_BUNDLE_PATH:
                return httpx.Response(500)
            return httpx.Response(200, text='preview()')

        assert asyncio.run(make_fetcher(handler).fetch(BASE)).vendor is None

    def test_preview_retried_until_success(self):
        attempts = []

        def handler(request):
            if request.url.path == '/' + PREVIEW_BUNDLE_PATH:
                attempts.append(request.url)
                if len(attempts) < 3:
                    return httpx.Response(503)
                return httpx.Response(200, text='preview()')
            return httpx.Response(404)

        sleep = SleepRecorder()
        bundle = asyncio.run(make_fetcher(handler, sleep=sleep).fetch(BASE))
        assert bundle.preview == 'preview()'
        assert len(attempts) == 3
        assert sleep.calls == [1.0, 1.0]

    def test_retries_exhausted(self):
        attempts = []

        def handler(request):
            attempts.append(request.url.path)
            raise httpx.ConnectError('connection refused', request=request)

        sleep = SleepRecorder()
        with pytest.raises(BundleUnavailable) as exc_info:
            asyncio.run(make_fetcher(handler, retries=3, sleep=sleep).fetch(BASE))

        assert isinstance(exc_info.value.last_error, httpx.ConnectError)
        assert attempts == ['/' + PREVIEW_BUNDLE_PATH] * 3
        assert sleep.calls == [1.0, 1.0]

    def test_address_without_trailing_slash(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, text='code')

        asyncio.run(make_fetcher(handler).fetch('http://localhost:9001'))
        assert seen[0] == BASE + PREVIEW_BUNDLE_PATH

    def test_retries_must_be_positive(self):
        with pytest.raises(ValueError):
            BundleFetcher(retries=0)


class TestReadStaticBundle:

    def test_reads_preview_and_vendor(self, static_build):
        bundle = asyncio.run(read_static_bundle(static_build / 'storybook-static'))
        assert '__storybook_stories__' in bundle.preview
        assert '__vendor_loaded__' in bundle.vendor

    def test_hashed_bundle_names(self, tmp_path):
        static_dir = tmp_path / 'static'
        static_dir.mkdir()
        (static_dir / 'preview.3f2a1c.bundle.js').write_text('preview()')

        bundle = asyncio.run(read_static_bundle(tmp_path))
        assert bundle.preview == 'preview()'
        assert bundle.vendor is None

    def test_missing_build_folder(self, tmp_path):
        with pytest.raises(BuildNotFound, match='--build'):
            asyncio.run(read_static_bundle(tmp_path / 'storybook-static'))

    def test_missing_preview_bundle(self, tmp_path):
        (tmp_path / 'static').mkdir()
        with pytest.raises(BuildNotFound):
            asyncio.run(read_static_bundle(tmp_path))
