"""
Error taxonomy for storybook-eyes
"""

from typing import Optional


class StorybookEyesError(Exception):
    """Base class for every error raised by storybook-eyes"""
    pass


class ConfigurationError(StorybookEyesError):
    """Invalid or missing run configuration"""
    pass


# Bundle retrieval

class BundleError(StorybookEyesError):
    pass


class BundleUnavailable(BundleError):
    """Preview bundle could not be fetched within the retry budget"""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


class BuildNotFound(BundleError):
    """Static output directory does not exist"""
    pass


# Story extraction

class ExtractionError(StorybookEyesError):
    pass


class StoriesNotFound(ExtractionError):
    """The bundle ran but never populated the introspection hook"""
    pass


class BundleExecutionError(ExtractionError):
    """The bundle raised while running inside the script host"""
    pass


# Dev server lifecycle

class ServerLifecycleError(StorybookEyesError):
    pass


class ConfigNotFound(ServerLifecycleError):
    pass


class PortInUse(ServerLifecycleError):
    pass


class StartupTimeout(ServerLifecycleError):
    pass


class ServerExitedError(ServerLifecycleError):
    """Dev server closed its output before reporting a finished build"""
    pass


class BuildFailedError(ServerLifecycleError):
    pass


# Test execution

class LaneExecutionError(StorybookEyesError):
    """Navigation, capture or diff submission failed inside a lane"""

    def __init__(self, message: str, story=None, lane_index: Optional[int] = None):
        super().__init__(message)
        self.story = story
        self.lane_index = lane_index


class DiffMismatchError(StorybookEyesError):
    """Raised by a diff session closed with throw_on_mismatch=True"""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result
