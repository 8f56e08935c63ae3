"""
Storybook dev server lifecycle
Spawns start-storybook, waits for the first finished build, and guarantees the
Storybook config is restored and the server process group is terminated on
every exit path
"""

import asyncio
import os
import stat
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from storybook_eyes.config.config import Config
from storybook_eyes.exceptions import (
    BuildFailedError,
    ConfigNotFound,
    PortInUse,
    ServerExitedError,
    StartupTimeout,
)
from storybook_eyes.services.story_extractor import INTROSPECTION_HOOK
from storybook_eyes.utils.async_subprocess import (
    attach_line_listener,
    node_bin,
    run_command,
    spawn_detached,
    terminate_process_tree,
)
from storybook_eyes.utils.logger import get_logger
from storybook_eyes.utils.shutdown import ShutdownCoordinator, shutdown_coordinator

logger = get_logger("storybook_eyes.services.server_lifecycle")
server_output_logger = get_logger("storybook_eyes.storybook")

TEMPLATES_DIR = Path(__file__).parent.parent / 'config_templates'
BUILD_COMPLETE_MARKER = 'webpack built'
PORT_IN_USE_MARKER = 'EADDRINUSE'
DEFAULT_STORYBOOK_VERSION = 3
DEFAULT_STORYBOOK_APP = 'react'


class ServerState(Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class ServerProcessState:
    """Bookkeeping for a dev server spawned by this run"""
    pid: int
    is_config_overridden: bool
    original_config_body: str
    config_path: str


def _atomic_write(path: Path, content: bytes):
    # Replace the symlink target, not the link, and keep the file's permissions
    target = Path(os.path.realpath(path))
    mode = stat.S_IMODE(target.stat().st_mode)
    fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), prefix=f'.{target.name}.', suffix='.tmp')
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, target)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class ConfigOverride:
    """
    Scoped lease on the Storybook config.js.

    ``acquire()`` keeps the original bytes and, when the config does not
    expose the introspection hook, rewrites it from the version template.
    ``restore()`` puts the original bytes back and may be called any number
    of times.
    """

    def __init__(self, config_path: Union[str, Path], storybook_version: Optional[int] = None,
                 storybook_app: Optional[str] = None, templates_dir: Path = TEMPLATES_DIR):
        self.config_path = Path(config_path)
        self.storybook_version = storybook_version or DEFAULT_STORYBOOK_VERSION
        self.storybook_app = storybook_app or DEFAULT_STORYBOOK_APP
        self.templates_dir = Path(templates_dir)
        self.is_overridden = False
        self._original: Optional[bytes] = None

    @property
    def original_body(self) -> str:
        return (self._original or b'').decode('utf-8')

    def render(self, config_body: str) -> str:
        template_path = self.templates_dir / f'storybook.v{self.storybook_version}.js'
        template = template_path.read_text(encoding='utf-8')
        return template.replace('${configBody}', config_body).replace('${app}', self.storybook_app)

    def acquire(self) -> bool:
        """Apply the override if needed; returns whether the file was rewritten"""
        if not self.config_path.exists():
            raise ConfigNotFound(f"Storybook config file not found: {self.config_path}")

        self._original = self.config_path.read_bytes()
        body = self._original.decode('utf-8')
        if INTROSPECTION_HOOK in body:
            logger.debug(f"{self.config_path} already exposes {INTROSPECTION_HOOK}")
            return False

        _atomic_write(self.config_path, self.render(body).encode('utf-8'))
        self.is_overridden = True
        logger.info(f"Storybook config {self.config_path} was overridden to expose {INTROSPECTION_HOOK}")
        return True

    def restore(self):
        if not self.is_overridden:
            return
        _atomic_write(self.config_path, self._original)
        self.is_overridden = False
        logger.info(f"Storybook config {self.config_path} was restored")

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.restore()


def _config_override_for(config: Config, cwd: Path) -> ConfigOverride:
    return ConfigOverride(
        cwd / config.storybook_config_dir / 'config.js',
        storybook_version=config.storybook_version,
        storybook_app=config.storybook_app,
    )


class ServerLifecycleManager:
    """
    NOT_STARTED -> STARTING -> READY -> STOPPED, or FAILED.

    With ``storybook_address`` configured the server is owned externally and
    the manager goes straight to READY. Otherwise cleanup (config restore,
    then process-group termination) is registered with the shutdown
    coordinator as soon as the config is touched and runs exactly once.
    """

    def __init__(
        self,
        config: Config,
        cwd: Optional[Union[str, Path]] = None,
        command: Optional[List[str]] = None,
        coordinator: ShutdownCoordinator = shutdown_coordinator,
    ):
        self.config = config
        self.cwd = Path(cwd or os.getcwd())
        self.command = command
        self.coordinator = coordinator
        self.state = ServerState.NOT_STARTED
        self.process_state: Optional[ServerProcessState] = None

        self._override: Optional[ConfigOverride] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._listeners: List[asyncio.Task] = []
        self._ready: Optional[asyncio.Future] = None
        self._cleaned_up = False

    @property
    def address(self) -> str:
        if self.config.storybook_address:
            return self.config.storybook_address
        return f"http://{self.config.storybook_host}:{self.config.storybook_port}/"

    def build_command(self) -> List[str]:
        if self.command:
            return list(self.command)
        cmd = [
            node_bin('start-storybook', self.cwd),
            '-p', str(self.config.storybook_port),
            '-h', self.config.storybook_host,
            '-c', self.config.storybook_config_dir,
        ]
        if self.config.storybook_static_dir:
            cmd += ['-s', self.config.storybook_static_dir]
        return cmd

    async def start(self) -> str:
        """Bring the server to READY and return its address"""
        if self.config.storybook_address:
            logger.info('storybookAddress set, starting Storybook skipped.')
            self.state = ServerState.READY
            return self.address

        logger.info('Starting Storybook...')
        self.state = ServerState.STARTING
        try:
            self.coordinator.register(self.stop, 'storybook-server')
            self._override = _config_override_for(self.config, self.cwd)
            self._override.acquire()

            cmd = self.build_command()
            logger.info(' '.join(cmd))
            self._process = await spawn_detached(cmd, cwd=self.cwd)
            self.process_state = ServerProcessState(
                pid=self._process.pid,
                is_config_overridden=self._override.is_overridden,
                original_config_body=self._override.original_body,
                config_path=str(self._override.config_path),
            )

            self._ready = asyncio.get_running_loop().create_future()
            self._listeners = [
                attach_line_listener(self._process.stdout, self._on_stdout),
                attach_line_listener(self._process.stderr, self._on_stderr),
            ]
            asyncio.gather(*self._listeners, return_exceptions=True).add_done_callback(self._on_output_closed)

            try:
                await asyncio.wait_for(asyncio.shield(self._ready), timeout=self.config.startup_timeout)
            except asyncio.TimeoutError:
                raise StartupTimeout(
                    f"Storybook didn't start after {self.config.startup_timeout:g}s waiting."
                )
        except BaseException:
            await self.aclose()
            self.state = ServerState.FAILED
            raise

        self.state = ServerState.READY
        logger.info('Storybook was started.')
        return self.address

    def _on_stdout(self, line: str):
        if self.config.show_storybook_output:
            server_output_logger.info(line)
        else:
            server_output_logger.debug(line)

        if BUILD_COMPLETE_MARKER in line and self._ready and not self._ready.done():
            self._ready.set_result(None)

    def _on_stderr(self, line: str):
        server_output_logger.warning(line)

        if PORT_IN_USE_MARKER in line and self._ready and not self._ready.done():
            self._ready.set_exception(PortInUse('Storybook port already in use.'))

    def _on_output_closed(self, _):
        if self._cleaned_up or self.state != ServerState.STARTING:
            return
        if self._ready and not self._ready.done():
            self._ready.set_exception(ServerExitedError('Storybook process exited before the build completed.'))

    def stop(self):
        """Restore the config, then terminate the server's process group; runs once"""
        if self._cleaned_up:
            return
        self._cleaned_up = True
        self.coordinator.unregister(self.stop)

        try:
            if self._override:
                self._override.restore()
        finally:
            if self._process:
                try:
                    if terminate_process_tree(self._process.pid):
                        logger.info(f"Storybook process {self._process.pid} was terminated")
                except OSError as e:
                    logger.error(f"Can't kill child (Storybook) process: {e}")
            if self.state != ServerState.NOT_STARTED:
                self.state = ServerState.STOPPED

    async def aclose(self, timeout: float = 10.0):
        """stop() and wait for the process and its output listeners to finish"""
        self.stop()
        if self._process and self._process.returncode is None:
            try:
                await asyncio.wait_for(self._process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Storybook process {self._process.pid} did not exit within {timeout:g}s")

        pending = [task for task in self._listeners if not task.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            for task in still_running:
                task.cancel()

    async def __aenter__(self) -> str:
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


async def build_storybook(
    config: Config,
    cwd: Optional[Union[str, Path]] = None,
    command: Optional[List[str]] = None,
    coordinator: ShutdownCoordinator = shutdown_coordinator,
):
    """Run build-storybook under the same config override lease as the dev server"""
    if config.skip_storybook_build:
        logger.debug('Storybook build skipped.')
        return

    cwd = Path(cwd or os.getcwd())
    logger.info('Building Storybook...')
    if command is None:
        command = [
            node_bin('build-storybook', cwd),
            '-c', config.storybook_config_dir,
            '-o', config.storybook_output_dir,
        ]
        if config.storybook_static_dir:
            command += ['-s', config.storybook_static_dir]

    override = _config_override_for(config, cwd)
    coordinator.register(override.restore, 'storybook-config')
    try:
        with override:
            logger.info(' '.join(command))
            stdout, stderr, returncode = await run_command(command, cwd=cwd)
    finally:
        coordinator.unregister(override.restore)

    if config.show_storybook_output and stdout:
        server_output_logger.info(stdout.decode('utf-8', errors='replace').rstrip())
    if returncode != 0:
        raise BuildFailedError(
            f"build-storybook exited with code {returncode}: "
            f"{stderr.decode('utf-8', errors='replace').strip()[-2000:]}"
        )
    logger.info('Storybook was built.')
