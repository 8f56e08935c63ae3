"""
Run orchestration
Takes a validated Config from Storybook to test results: server or static build,
bundle, stories, lanes
"""

import os
from pathlib import Path
from typing import List, Optional, Sequence, Union

from storybook_eyes.config.config import Config, resolve_package_settings
from storybook_eyes.models import BatchInfo, Story, TestResult
from storybook_eyes.services.browser_session import PlaywrightSessionFactory
from storybook_eyes.services.bundle_fetcher import BundleFetcher, read_static_bundle
from storybook_eyes.services.diff_engine import BaselineDiffEngine, DiffEngineFactory
from storybook_eyes.services.server_lifecycle import ServerLifecycleManager, build_storybook
from storybook_eyes.services.story_extractor import StoryExtractor
from storybook_eyes.services.test_scheduler import SessionFactory, TestScheduler
from storybook_eyes.utils.logger import get_logger
from storybook_eyes.utils.shutdown import ShutdownCoordinator, shutdown_coordinator

logger = get_logger("storybook_eyes.runner")


class StorybookRunner:
    """
    One end-to-end run.

    ``session_factory`` and ``diff_engine_factory`` default to Playwright and
    the local baseline store; ``server_command`` and ``build_command``
    replace the Storybook executables.
    """

    def __init__(
        self,
        config: Config,
        cwd: Optional[Union[str, Path]] = None,
        session_factory: Optional[SessionFactory] = None,
        diff_engine_factory: Optional[DiffEngineFactory] = None,
        server_command: Optional[List[str]] = None,
        build_command: Optional[List[str]] = None,
        coordinator: ShutdownCoordinator = shutdown_coordinator,
    ):
        self.config = config
        self.cwd = Path(cwd or os.getcwd())
        self.session_factory = session_factory
        self.diff_engine_factory = diff_engine_factory
        self.server_command = server_command
        self.build_command = build_command
        self.coordinator = coordinator
        self.batch: Optional[BatchInfo] = None

    def _resolve_settings(self):
        config = self.config
        if config.app_name and config.storybook_app and config.storybook_version:
            return
        self.config = resolve_package_settings(config, self.cwd)

    def _extractor(self) -> StoryExtractor:
        return StoryExtractor(show_storybook_output=self.config.show_storybook_output)

    def _default_diff_engine_factory(self) -> DiffEngineFactory:
        baseline_dir = self.cwd / self.config.baseline_dir
        batch = self.batch

        def create() -> BaselineDiffEngine:
            return BaselineDiffEngine(baseline_dir, batch)

        return create

    async def run(self) -> List[TestResult]:
        self._resolve_settings()
        self.batch = BatchInfo(name=self.config.app_name)
        logger.info(f"Run started for '{self.config.app_name}' (batch {self.batch.id})")

        if self.config.use_static_build:
            return await self._run_static()
        return await self._run_with_server()

    async def _run_static(self) -> List[TestResult]:
        await build_storybook(self.config, self.cwd, command=self.build_command, coordinator=self.coordinator)

        output_dir = (self.cwd / self.config.storybook_output_dir).resolve()
        bundle = await read_static_bundle(output_dir)
        stories = await self._extractor().extract_async(bundle, self.config.viewport_size)
        return await self.test_stories(stories, output_dir.as_uri() + '/')

    async def _run_with_server(self) -> List[TestResult]:
        server = ServerLifecycleManager(
            self.config, cwd=self.cwd, command=self.server_command, coordinator=self.coordinator
        )
        async with server as address:
            fetcher = BundleFetcher(
                retries=self.config.fetch_retries,
                retry_delay=self.config.fetch_retry_delay,
                timeout=self.config.fetch_timeout,
            )
            bundle = await fetcher.fetch(address)
            stories = await self._extractor().extract_async(bundle, self.config.viewport_size)
            return await self.test_stories(stories, address)

    async def test_stories(self, stories: Sequence[Story], address: str) -> List[TestResult]:
        diff_engine_factory = self.diff_engine_factory or self._default_diff_engine_factory()

        if self.session_factory is not None:
            return await self._schedule(stories, address, self.session_factory, diff_engine_factory)

        factory = PlaywrightSessionFactory(
            capabilities=self.config.capabilities,
            remote_endpoint=self.config.selenium_address,
            full_page=self.config.full_page_screenshot,
        )
        async with factory:
            return await self._schedule(stories, address, factory.create_session, diff_engine_factory)

    async def _schedule(self, stories, address, session_factory, diff_engine_factory) -> List[TestResult]:
        scheduler = TestScheduler(
            session_factory,
            diff_engine_factory,
            storybook_address=address,
            app_name=self.config.app_name,
            max_concurrency=self.config.lane_limit,
        )
        results = await scheduler.run(stories)
        logger.info(f"{len(results)} of {len(stories)} stories tested.")
        return results


async def run_storybook(config: Config, cwd: Optional[Union[str, Path]] = None, **kwargs) -> List[TestResult]:
    """Convenience wrapper around StorybookRunner(...).run()"""
    return await StorybookRunner(config, cwd=cwd, **kwargs).run()
