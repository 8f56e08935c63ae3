"""
Async Subprocess Utilities
Detached spawning, line-by-line output listeners and process-tree termination
"""

import asyncio
import os
import signal
import sys
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import psutil

from storybook_eyes.utils.logger import get_logger

logger = get_logger("storybook_eyes.utils.async_subprocess")

IS_WINDOWS = sys.platform.startswith('win')

LineCallback = Callable[[str], None]
# webpack progress output can produce very long lines
STREAM_LIMIT = 1024 * 1024


def node_bin(name: str, cwd: Optional[Union[str, Path]] = None) -> str:
    """Path of an executable installed under node_modules/.bin"""
    suffix = '.cmd' if IS_WINDOWS else ''
    return str(Path(cwd or os.getcwd()) / 'node_modules' / '.bin' / f'{name}{suffix}')


async def spawn_detached(
    cmd: List[str],
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Dict[str, str]] = None,
) -> asyncio.subprocess.Process:
    """
    Start a long-running process with piped stdout/stderr.

    On POSIX the child leads its own session so the whole group can be
    signalled later; Windows has no process groups to detach into.
    """
    logger.debug(f"Spawning detached subprocess: {' '.join(cmd)}")
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        env=env,
        start_new_session=not IS_WINDOWS,
        limit=STREAM_LIMIT,
    )
    logger.debug(f"Subprocess started with PID {process.pid}")
    return process


def attach_line_listener(stream: asyncio.StreamReader, callback: LineCallback) -> "asyncio.Task[None]":
    """Feed every decoded output line to callback until the stream closes"""

    async def pump():
        async for raw in stream:
            line = raw.decode('utf-8', errors='replace').rstrip()
            if line:
                callback(line)

    return asyncio.ensure_future(pump())


def terminate_process_tree(pid: int) -> bool:
    """
    Terminate a spawned process together with its children.

    POSIX: signal the process group led by pid. Windows: kill the psutil
    process tree. Returns False when nothing was left to terminate.
    """
    if IS_WINDOWS:
        try:
            parent = psutil.Process(pid)
        except psutil.NoSuchProcess:
            return False
        processes = parent.children(recursive=True) + [parent]
        for proc in processes:
            try:
                proc.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
        psutil.wait_procs(processes, timeout=5)
        return True

    try:
        os.killpg(pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    return True


async def run_command(
    cmd: List[str],
    timeout: Optional[float] = None,
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Dict[str, str]] = None,
) -> Tuple[bytes, bytes, int]:
    """
    Run a command to completion

    Returns:
        Tuple of (stdout, stderr, return_code)
    """
    start_time = time.time()
    cmd_str = ' '.join(cmd)
    logger.debug(f"Running async subprocess: {cmd_str}")

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        env=env
    )

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.terminate()
        await process.wait()
        logger.error(f"Async subprocess timeout after {time.time() - start_time:.2f}s: {cmd_str}")
        raise

    logger.debug(f"Async subprocess completed in {time.time() - start_time:.2f}s: {cmd_str}")
    return stdout, stderr, process.returncode
