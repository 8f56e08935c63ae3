"""
Story extraction
Runs the Storybook bundle in the script host and turns the exposed story
registry into a flat, viewport-expanded list of stories
"""

import asyncio
from typing import Any, List, Optional, Sequence

from storybook_eyes.exceptions import StoriesNotFound
from storybook_eyes.models import BundleSource, Story, ViewportSize
from storybook_eyes.services.script_host import HostMock, load_default_mocks, run_scripts
from storybook_eyes.utils.logger import get_logger

logger = get_logger("storybook_eyes.services.story_extractor")
bundle_logger = get_logger("storybook_eyes.storybook")

INTROSPECTION_HOOK = '__storybook_stories__'


def flatten_groups(groups: Sequence[Any]) -> List[Story]:
    """Flatten [{kind, stories: [{name}]}] keeping group order then story order"""
    if not isinstance(groups, list):
        raise StoriesNotFound(f'{INTROSPECTION_HOOK} should be a list of story groups, got {type(groups).__name__}')

    stories = []
    for group in groups:
        try:
            for entry in group.get('stories') or []:
                stories.append(Story(group['kind'], entry['name']))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise StoriesNotFound(f'Malformed story group in {INTROSPECTION_HOOK}: {group!r}') from e
    return stories


def expand_viewports(stories: List[Story], viewport_sizes: Optional[Sequence[ViewportSize]]) -> List[Story]:
    """One block per viewport size, each block in base story order"""
    if not viewport_sizes:
        return stories
    return [story.with_viewport(size) for size in viewport_sizes for story in stories]


class StoryExtractor:
    """Enumerates the stories declared by a Storybook bundle"""

    def __init__(self, show_storybook_output: bool = False, mocks: Optional[List[HostMock]] = None):
        self.show_storybook_output = show_storybook_output
        self.mocks = mocks if mocks is not None else load_default_mocks()

    def _console_sink(self):
        if not self.show_storybook_output:
            return None

        def forward(level: str, message: str):
            bundle_logger.info(f"[{level}] {message}")

        return forward

    def read_registry(self, bundle: BundleSource) -> List[Any]:
        registry = run_scripts(bundle.scripts, self.mocks, INTROSPECTION_HOOK, self._console_sink())
        if registry is None:
            raise StoriesNotFound(
                'Storybook object not found on window. '
                f"Check window.{INTROSPECTION_HOOK} is set in your Storybook's config.js."
            )
        logger.info('Storybook instance was created.')
        return registry

    def extract(self, bundle: BundleSource, viewport_sizes: Optional[Sequence[ViewportSize]] = None) -> List[Story]:
        """Run the bundle and return its stories, crossed with viewport sizes when given"""
        registry = self.read_registry(bundle)

        stories = flatten_groups(registry)
        logger.info(f'{len(stories)} stories were extracted.')

        if not viewport_sizes:
            return stories

        stories = expand_viewports(stories, viewport_sizes)
        logger.info(f'Stories were mixed with {len(viewport_sizes)} viewport size(s): {len(stories)} in total.')
        return stories

    async def extract_async(self, bundle: BundleSource,
                            viewport_sizes: Optional[Sequence[ViewportSize]] = None) -> List[Story]:
        """Run extraction in a worker thread so the event loop keeps serving subprocess output"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.extract(bundle, viewport_sizes))
