"""
Async File System Operations
Non-blocking file reads, writes and directory listings using aiofiles
"""

import asyncio
import os
from pathlib import Path
from typing import List, Union

import aiofiles

from storybook_eyes.utils.logger import get_logger

logger = get_logger("storybook_eyes.utils.async_file_operations")


async def read_file(file_path: Union[str, Path], encoding: str = 'utf-8') -> str:
    """Read file content asynchronously"""
    file_path = Path(file_path)
    async with aiofiles.open(file_path, mode='r', encoding=encoding) as f:
        content = await f.read()
    logger.debug(f"Read {len(content)} characters from {file_path}")
    return content


async def read_bytes(file_path: Union[str, Path]) -> bytes:
    """Read binary file content asynchronously"""
    async with aiofiles.open(Path(file_path), mode='rb') as f:
        return await f.read()


async def write_bytes(file_path: Union[str, Path], content: bytes) -> Path:
    """Write binary content, creating parent directories as needed"""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(file_path, mode='wb') as f:
        await f.write(content)
    logger.debug(f"Wrote {len(content)} bytes to {file_path}")
    return file_path


async def list_directory(dir_path: Union[str, Path]) -> List[str]:
    """
    List file names in a directory without blocking the event loop

    Raises FileNotFoundError when the directory does not exist.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: sorted(os.listdir(dir_path)))
