"""
Sandboxed script host
Runs front-end bundle code in an embedded V8 isolate with an injectable set of
browser-surface mocks, then reads back one global variable
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from py_mini_racer import JSEvalException, MiniRacer

from storybook_eyes.exceptions import BundleExecutionError
from storybook_eyes.utils.logger import get_logger

logger = get_logger("storybook_eyes.services.script_host")

MOCKS_DIR = Path(__file__).parent.parent / 'mocks'
HOST_PRELUDE = 'host_prelude.js'
DEFAULT_MOCKS = ('event_source.js', 'local_storage.js', 'match_media.js')

ConsoleSink = Callable[[str, str], None]


@dataclass(frozen=True)
class HostMock:
    """A named piece of JavaScript installed before the bundle runs"""
    name: str
    source: str

    @classmethod
    def from_file(cls, path: Path) -> "HostMock":
        return cls(name=path.stem, source=path.read_text(encoding='utf-8'))


def load_default_mocks() -> List[HostMock]:
    """Event source, in-memory storage and matchMedia stubs"""
    return [HostMock.from_file(MOCKS_DIR / name) for name in DEFAULT_MOCKS]


def _load_prelude() -> str:
    return (MOCKS_DIR / HOST_PRELUDE).read_text(encoding='utf-8')


def _drain_console(ctx: MiniRacer, sink: Optional[ConsoleSink]):
    raw = ctx.eval('__host_drain_console__()')
    if not sink or not raw:
        return
    for level, message in json.loads(raw):
        sink(level, message)


def run_scripts(
    script_sources: Sequence[str],
    mocks: Sequence[HostMock],
    global_name: str,
    console_sink: Optional[ConsoleSink] = None,
) -> Any:
    """
    Execute scripts in a fresh isolate and return ``window[global_name]``.

    The value is copied out through JSON, so functions are dropped and the
    result is plain Python data; ``None`` means the global was never set.
    Console output of the scripts goes to ``console_sink`` (level, message)
    or is discarded.
    """
    ctx = MiniRacer()
    try:
        ctx.eval(_load_prelude())
        for mock in mocks:
            logger.debug(f"Installing script host mock '{mock.name}'")
            ctx.eval(mock.source)

        try:
            for index, source in enumerate(script_sources):
                logger.debug(f"Evaluating script {index + 1} of {len(script_sources)} ({len(source)} characters)")
                ctx.eval(source)
        except JSEvalException as e:
            raise BundleExecutionError(f"Storybook bundle failed to execute: {e}") from e
        finally:
            _drain_console(ctx, console_sink)

        raw = ctx.eval(
            "(function (name) {"
            " var value = window[name];"
            " return value === undefined || value === null ? null : JSON.stringify(value);"
            f"}})({json.dumps(global_name)})"
        )
    finally:
        ctx.close()

    if raw is None:
        return None
    return json.loads(raw)
