"""Pytest configuration and shared fixtures."""

import asyncio
import os
import sqlite3
from collections.abc import Sequence
from pathlib import Path

import pytest
from PIL import Image

from photoframe.catalog import CatalogStore
from photoframe.config import FrameConfig
from photoframe.imaging import ImageToolError
from photoframe.remote_sync import BucketError
from photoframe.signals import ChangeSignal
from photoframe.utils import artifact_name
from photoframe.viewer import ViewerLaunchError


def create_test_image(path: Path, size: tuple[int, int] = (64, 48), mtime: float | None = None) -> Path:
    """Write a small real image (format taken from the extension)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color=(200, 30, 30)).save(path)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


class FakeImageTools:
    """Stands in for imgp: resize records the call, rotate writes the artifact."""

    def __init__(self, fail_resize: Sequence[str] = ()) -> None:
        self.fail_resize = set(fail_resize)
        self.resized: list[tuple[str, int]] = []
        self.rotated: list[str] = []

    async def resize(self, path: Path, percent: int) -> None:
        await asyncio.sleep(0)
        if path.name in self.fail_resize:
            raise ImageToolError(f"imgp exited with 1 for {path.name}")
        self.resized.append((path.name, percent))

    async def rotate(self, path: Path, degrees: int = 90) -> None:
        await asyncio.sleep(0)
        path.with_name(artifact_name(path.name)).write_bytes(path.read_bytes())
        self.rotated.append(path.name)


class FakeViewer:
    """Viewer handle that records start/stop calls and live-process overlap."""

    def __init__(self, launch_error: bool = False, stays_alive: bool = True) -> None:
        self.launch_error = launch_error
        self.stays_alive = stays_alive
        self.events: list[str] = []
        self.started_args: list[list[str]] = []
        self.live = 0
        self.max_live = 0

    def is_alive(self) -> bool:
        return self.live > 0 and self.stays_alive

    async def start(self, args: Sequence[str]) -> None:
        await asyncio.sleep(0)
        if self.launch_error:
            raise ViewerLaunchError("Failed to start viewer: not found")
        self.events.append("start")
        self.started_args.append(list(args))
        self.live += 1
        self.max_live = max(self.max_live, self.live)
        await asyncio.sleep(0)

    async def stop(self, timeout: float = 5.0) -> None:
        await asyncio.sleep(0)
        self.events.append("stop")
        self.live = 0
        await asyncio.sleep(0)


class FakeBucket:
    """In-memory bucket with optional per-key download failures."""

    def __init__(self, objects: dict[str, bytes], failing: Sequence[str] = ()) -> None:
        self.objects = dict(objects)
        self.failing = set(failing)
        self.downloads: list[str] = []

    async def list_keys(self) -> set[str]:
        return set(self.objects)

    async def download(self, key: str, dest: Path) -> None:
        if key in self.failing:
            raise BucketError(f"S3 error NoSuchKey while downloading {key}")
        dest.write_bytes(self.objects[key])
        self.downloads.append(key)


@pytest.fixture
def catalog() -> CatalogStore:
    """Return an in-memory catalog."""
    store = CatalogStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def frame_config(tmp_path: Path) -> FrameConfig:
    """Return a config rooted in a temporary directory with the layout created."""
    config = FrameConfig(root_path=tmp_path / "frame", target_max_dim=32)
    config.ensure_directories()
    return config


@pytest.fixture
def signal() -> ChangeSignal:
    return ChangeSignal()


@pytest.fixture
def image_tools() -> FakeImageTools:
    return FakeImageTools()


@pytest.fixture
def viewer() -> FakeViewer:
    return FakeViewer()


@pytest.fixture
def make_image():
    """Return a helper writing a real image file (size and mtime optional)."""
    return create_test_image


@pytest.fixture
def make_image_tools():
    """Return a factory for image tool fakes, e.g. ``make_image_tools(fail_resize=[...])``."""
    return FakeImageTools


@pytest.fixture
def make_viewer():
    """Return a factory for viewer fakes, e.g. ``make_viewer(launch_error=True)``."""
    return FakeViewer


@pytest.fixture
def make_bucket():
    """Return a factory for in-memory buckets, e.g. ``make_bucket({"a.jpg": b"..."})``."""
    return FakeBucket


@pytest.fixture
def file_catalog(tmp_path: Path) -> CatalogStore:
    """Return a file-backed catalog that gives up quickly on a held write lock."""
    store = CatalogStore(tmp_path / "photos.db", timeout=0.05)
    yield store
    store.close()


@pytest.fixture
def write_lock(file_catalog: CatalogStore) -> sqlite3.Connection:
    """Hold the write lock of ``file_catalog`` from a second connection.

    Execute ``ROLLBACK`` on the returned connection to release it.
    """
    conn = sqlite3.connect(str(file_catalog.db_path), isolation_level=None)
    conn.execute("BEGIN IMMEDIATE")
    yield conn
    if conn.in_transaction:
        conn.execute("ROLLBACK")
    conn.close()
