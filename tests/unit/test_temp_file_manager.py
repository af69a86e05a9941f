"""
Unit tests for TempFileRegistry.

Tests cover:
- Unique path creation inside a lazily created scratch directory
- Idempotent release
- Best-effort release_all with missing and undeletable entries
- Scoped temp paths
- wait_for_file polling
"""
import asyncio
import shutil
import tempfile
import unittest
from pathlib import Path

import pytest

from reelforge.utils.temp_file_manager import TempFileRegistry, wait_for_file


class TestTempFileRegistry(unittest.TestCase):
    """Test cases for TempFileRegistry class."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_base_dir = Path(tempfile.mkdtemp(prefix="test_temp_registry_"))
        self.registry = TempFileRegistry(base_dir=self.test_base_dir, dir_name="scratch")

    def tearDown(self):
        """Clean up test fixtures."""
        self.registry.release_all()
        if self.test_base_dir.exists():
            shutil.rmtree(self.test_base_dir)

    def test_default_dir_name_from_config(self):
        registry = TempFileRegistry(base_dir=self.test_base_dir)
        self.assertEqual(registry.scratch_dir, self.test_base_dir / "reelforge-temp")

    def test_scratch_dir_created_lazily(self):
        self.assertFalse(self.registry.scratch_dir.exists())

        path = self.registry.create_temp_path("preview", "jpg")

        self.assertTrue(self.registry.scratch_dir.is_dir())
        self.assertEqual(path.parent, self.registry.scratch_dir)

    def test_create_temp_path_is_unique_and_registered(self):
        first = self.registry.create_temp_path("preview", "jpg")
        second = self.registry.create_temp_path("preview", ".jpg")

        self.assertNotEqual(first, second)
        self.assertTrue(first.name.startswith("preview_"))
        self.assertEqual(first.suffix, ".jpg")
        self.assertEqual(second.suffix, ".jpg")
        self.assertFalse(first.exists())
        self.assertTrue(self.registry.is_registered(first))
        self.assertEqual(len(self.registry), 2)

    def test_release_deletes_file(self):
        path = self.registry.create_temp_path("overlay", "png")
        path.write_bytes(b"png")

        self.registry.release(path)

        self.assertFalse(path.exists())
        self.assertFalse(self.registry.is_registered(path))

    def test_release_is_idempotent(self):
        path = self.registry.create_temp_path("overlay", "png")
        path.write_bytes(b"png")

        self.registry.release(path)
        self.registry.release(path)
        self.registry.release(str(path))

        self.assertEqual(len(self.registry), 0)

    def test_release_unknown_path_is_noop(self):
        outsider = self.test_base_dir / "not_registered.txt"
        outsider.write_text("keep me")

        self.registry.release(outsider)

        self.assertTrue(outsider.exists())

    def test_release_all_with_externally_deleted_file(self):
        paths = [self.registry.create_temp_path("preview", "jpg") for _ in range(3)]
        for path in paths:
            path.write_bytes(b"jpg")
        paths[1].unlink()

        self.registry.release_all()

        for path in paths:
            self.assertFalse(path.exists())
        self.assertEqual(len(self.registry), 0)

    def test_release_all_logs_failures_and_continues(self):
        stubborn = self.registry.scratch_dir / "stubborn"
        stubborn.mkdir(parents=True)
        self.registry.register_file(stubborn)
        regular = self.registry.create_temp_path("preview", "jpg")
        regular.write_bytes(b"jpg")

        with self.assertLogs("reelforge.utils.temp_file_manager", level="WARNING") as logs:
            self.registry.release_all()

        self.assertFalse(regular.exists())
        self.assertEqual(len(self.registry), 0)
        self.assertTrue(any("Failed to cleanup temp file" in line for line in logs.output))

    def test_temp_path_context_manager(self):
        with self.registry.temp_path("preview", "jpg") as path:
            path.write_bytes(b"jpg")
            self.assertTrue(self.registry.is_registered(path))

        self.assertFalse(path.exists())
        self.assertFalse(self.registry.is_registered(path))

    def test_temp_path_released_on_exception(self):
        with self.assertRaises(ValueError):
            with self.registry.temp_path("preview", "jpg") as path:
                path.write_bytes(b"jpg")
                raise ValueError("Test exception")

        self.assertFalse(path.exists())


class TestWaitForFile:
    @pytest.mark.asyncio
    async def test_returns_when_file_appears(self, tmp_path):
        target = tmp_path / "frame.jpg"

        async def write_later():
            await asyncio.sleep(0.05)
            target.write_bytes(b"jpg")

        writer = asyncio.create_task(write_later())
        await wait_for_file(target, timeout=2.0, interval=0.01)
        await writer

        assert target.exists()

    @pytest.mark.asyncio
    async def test_times_out(self, tmp_path):
        with pytest.raises(TimeoutError):
            await wait_for_file(tmp_path / "never.jpg", timeout=0.05, interval=0.01)
