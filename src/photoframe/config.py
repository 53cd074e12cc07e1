"""Runtime configuration and filesystem layout of the photo frame."""

import logging
from dataclasses import dataclass
from pathlib import Path

from photoframe.models import Category, PhotoRecord
from photoframe.utils import artifact_name

logger = logging.getLogger(__name__)

DEFAULT_TARGET_MAX_DIM = 1024
DEFAULT_LOCAL_CHECK_INTERVAL = 24 * 60 * 60
DEFAULT_REMOTE_CHECK_INTERVAL = 60 * 60
DEFAULT_LOCAL_PHOTO_LIMIT = 1000
DEFAULT_VIEWER_EXECUTABLE = "/usr/bin/imv-wayland"
DEFAULT_IMGP_EXECUTABLE = "imgp"


@dataclass(frozen=True)
class FrameConfig:
    """Settings for one photo frame rooted at ``root_path``.

    Layout below the root:
        original/            Library sources (the inbox)
        original/surprise/   Surprise sources (bucket mirror)
        photos/              Library display artifacts
        photos/surprise/     Surprise display artifacts
        photos.db            catalog
    """

    root_path: Path
    target_max_dim: int = DEFAULT_TARGET_MAX_DIM
    s3_bucket: str | None = None
    aws_profile: str | None = None
    local_check_interval: float = DEFAULT_LOCAL_CHECK_INTERVAL
    remote_check_interval: float = DEFAULT_REMOTE_CHECK_INTERVAL
    local_photo_limit: int = DEFAULT_LOCAL_PHOTO_LIMIT
    viewer_executable: str = DEFAULT_VIEWER_EXECUTABLE
    imgp_executable: str = DEFAULT_IMGP_EXECUTABLE

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.target_max_dim <= 0:
            raise ValueError("Target max dimension must be positive")
        if self.local_photo_limit <= 0:
            raise ValueError("Local photo limit must be positive")
        if self.local_check_interval <= 0 or self.remote_check_interval <= 0:
            raise ValueError("Check intervals must be positive")

    @property
    def source_dir(self) -> Path:
        return self.root_path / "original"

    @property
    def surprise_source_dir(self) -> Path:
        return self.root_path / "original" / "surprise"

    @property
    def display_dir(self) -> Path:
        return self.root_path / "photos"

    @property
    def surprise_display_dir(self) -> Path:
        return self.root_path / "photos" / "surprise"

    @property
    def db_path(self) -> Path:
        return self.root_path / "photos.db"

    @property
    def remote_enabled(self) -> bool:
        return bool(self.s3_bucket)

    @property
    def directory_pairs(self) -> list[tuple[Path, Path]]:
        """Source directories paired with the display directory they publish to."""
        return [
            (self.source_dir, self.display_dir),
            (self.surprise_source_dir, self.surprise_display_dir),
        ]

    def source_dir_for(self, category: Category) -> Path:
        if category is Category.SURPRISE:
            return self.surprise_source_dir
        return self.source_dir

    def display_dir_for(self, category: Category) -> Path:
        if category is Category.SURPRISE:
            return self.surprise_display_dir
        return self.display_dir

    def display_path(self, record: PhotoRecord) -> Path:
        """Path of the rotated artifact the viewer shows for a catalog record."""
        return self.display_dir_for(record.category) / artifact_name(record.name)

    def ensure_directories(self) -> None:
        """Create the source and display directories if missing."""
        for source, display in self.directory_pairs:
            for directory in (source, display):
                if not directory.exists():
                    directory.mkdir(parents=True, exist_ok=True)
                    logger.info(f"Created directory: {directory}")
