"""
Core value types for storybook-eyes
Stories, viewport sizes, fetched bundle sources, batches and test results
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote


@dataclass(frozen=True)
class ViewportSize:
    """Browser viewport dimensions in CSS pixels"""
    width: int
    height: int

    def __post_init__(self):
        if int(self.width) <= 0 or int(self.height) <= 0:
            raise ValueError(f"Viewport size must be positive, got {self.width}x{self.height}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ViewportSize":
        return cls(width=int(data["width"]), height=int(data["height"]))

    def to_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class Story:
    """
    One renderable state of one UI component.

    ``component_name`` is the Storybook kind, ``state_name`` the story name.
    When ``viewport_size`` is None the session's current viewport is used.
    """
    component_name: str
    state_name: str
    viewport_size: Optional[ViewportSize] = None

    def __post_init__(self):
        if not self.component_name:
            raise ValueError("Story component name must not be empty")
        if not self.state_name:
            raise ValueError("Story state name must not be empty")

    @property
    def compound_title(self) -> str:
        return f"{self.component_name} {self.state_name}"

    def with_viewport(self, viewport_size: ViewportSize) -> "Story":
        return Story(self.component_name, self.state_name, viewport_size)

    def get_url(self, storybook_address: str) -> str:
        """Build the iframe URL that renders only this story"""
        url = (
            f"{storybook_address}iframe.html"
            f"?selectedKind={quote(self.component_name, safe='')}"
            f"&selectedStory={quote(self.state_name, safe='')}"
        )
        if self.viewport_size:
            url += f"&eyes-viewport={self.viewport_size}"
        return url

    def __str__(self) -> str:
        if self.viewport_size:
            return f"{self.compound_title} [{self.viewport_size}]"
        return self.compound_title


@dataclass(frozen=True)
class BundleSource:
    """Explorer bundle text, vendor code first so preview code sees its globals"""
    preview: str
    vendor: Optional[str] = None

    @property
    def scripts(self) -> Tuple[str, ...]:
        if self.vendor is None:
            return (self.preview,)
        return (self.vendor, self.preview)

    @property
    def code(self) -> str:
        if self.vendor is None:
            return self.preview
        return f"{self.vendor};\n{self.preview}"


@dataclass(frozen=True)
class BatchInfo:
    """Groups every diff session of one run"""
    name: Optional[str]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class TestResult:
    """Outcome of one story as classified by the diff engine"""
    __test__ = False

    name: str
    viewport_descriptor: str
    is_new: bool
    is_passed: bool
    total_steps: int
    mismatches: int
    missing: int
    batch_url: str

    @property
    def failed_steps(self) -> int:
        return self.mismatches + self.missing

    def describe(self) -> str:
        """Status line used in the run report"""
        title = f"{self.name} [{self.viewport_descriptor}] - "
        if self.is_new:
            return title + "New"
        if self.is_passed:
            return title + "Passed"
        return title + f"Failed {self.failed_steps} of {self.total_steps}"
