"""
Scratch file registry for preview and overlay operations.

This module provides TempFileRegistry, which hands out unique paths inside one
application scratch directory and owns them until they are released. The
registry is owned by the RenderContext; `release_all()` is called on shutdown.

Usage:
    registry = TempFileRegistry()

    path = registry.create_temp_path("preview", "jpg")
    try:
        ...  # let ffmpeg write to path
    finally:
        registry.release(path)

    # or, scoped
    with registry.temp_path("overlay", "png") as path:
        path.write_bytes(data)
"""
import asyncio
import logging
import tempfile
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional, Set, Union

from reelforge import settings

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class TempFileRegistry:
    """Tracks scratch files and guarantees their cleanup."""

    def __init__(self, base_dir: Optional[PathLike] = None, dir_name: Optional[str] = None):
        """
        Args:
            base_dir: Parent of the scratch directory (default: system temp dir)
            dir_name: Scratch directory name (default: configured temp.dir_name)
        """
        self.base_dir = Path(base_dir) if base_dir else Path(tempfile.gettempdir())
        self.dir_name = dir_name or settings.get_temp_dir_name()
        self.temp_files: Set[Path] = set()

    @property
    def scratch_dir(self) -> Path:
        return self.base_dir / self.dir_name

    def create_temp_path(self, prefix: str, ext: str) -> Path:
        """
        Reserve a unique scratch path. The file itself is not created.

        The scratch directory is created on first use.

        Args:
            prefix: File name prefix (e.g. 'preview')
            ext: Extension with or without the leading dot

        Returns:
            Path registered for cleanup
        """
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        ext = ext.lstrip('.')
        path = self.scratch_dir / f"{prefix}_{uuid.uuid4()}.{ext}"
        self.register_file(path)
        return path

    def register_file(self, file_path: PathLike) -> None:
        """Take ownership of a file path; it is deleted on release."""
        self.temp_files.add(Path(file_path))
        logger.debug(f"Registered temp path: {file_path}")

    def is_registered(self, file_path: PathLike) -> bool:
        return Path(file_path) in self.temp_files

    def release(self, file_path: PathLike) -> None:
        """
        Delete a registered file and forget it.

        Releasing an unknown or already released path is a no-op. A file
        that is already gone counts as released.
        """
        path = Path(file_path)
        if not self.is_registered(path):
            return
        try:
            path.unlink(missing_ok=True)
            logger.debug(f"Cleaned up temp file: {path}")
        finally:
            self.temp_files.discard(path)

    def release_all(self) -> None:
        """
        Best-effort cleanup of every registered file.

        Deletion failures are logged and never raised; every entry is
        attempted even after an earlier one failed.
        """
        for path in list(self.temp_files):
            try:
                self.release(path)
            except OSError as e:
                logger.warning(f"Failed to cleanup temp file {path}: {e}")

    @contextmanager
    def temp_path(self, prefix: str, ext: str) -> Generator[Path, None, None]:
        """Scoped create_temp_path(): released when the block exits."""
        path = self.create_temp_path(prefix, ext)
        try:
            yield path
        finally:
            self.release(path)

    def __len__(self) -> int:
        return len(self.temp_files)


async def wait_for_file(file_path: PathLike, timeout: float = 4.0, interval: float = 0.1) -> None:
    """
    Wait until a file exists.

    ffmpeg can report success slightly before the output is visible on some
    filesystems.

    Raises:
        TimeoutError: If the file does not appear within `timeout` seconds
    """
    path = Path(file_path)
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise TimeoutError(f"Timeout waiting for file: {path}")
        await asyncio.sleep(interval)
