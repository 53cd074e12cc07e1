"""Utility functions for naming and listing photo files."""

import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Supported image extensions
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png"}

# Suffix the transform tool appends to the stem of a rotated image
ARTIFACT_MARKER = "_IMGP"


@dataclass(frozen=True)
class FileEntry:
    """A file observed in a directory listing."""

    name: str
    path: Path
    mtime: float


def has_image_extension(name: str) -> bool:
    """Check if a filename has a supported image extension (case-insensitive)."""
    return Path(name).suffix.lower() in IMAGE_EXTENSIONS


def artifact_name(source_name: str) -> str:
    """Return the rotated artifact filename derived from a source image name.

    Args:
        source_name: Source image filename, e.g. ``beach.jpg``

    Returns:
        The artifact filename, e.g. ``beach_IMGP.jpg``
    """
    path = Path(source_name)
    return f"{path.stem}{ARTIFACT_MARKER}{path.suffix}"


def is_artifact_name(name: str) -> bool:
    """Check if a filename is a rotated artifact."""
    return has_image_extension(name) and Path(name).stem.endswith(ARTIFACT_MARKER)


def is_source_image_name(name: str) -> bool:
    """Check if a filename is a source image (supported and not an artifact)."""
    return has_image_extension(name) and not is_artifact_name(name)


def list_source_images(directory: Path) -> dict[str, FileEntry]:
    """List the source images of a directory.

    Subdirectories, unsupported files and rotated artifacts are skipped.

    Args:
        directory: Directory to list

    Returns:
        Mapping of filename to FileEntry

    Raises:
        FileNotFoundError: If the directory doesn't exist
        NotADirectoryError: If the path is not a directory
    """
    entries: dict[str, FileEntry] = {}
    for path in directory.iterdir():
        if not is_source_image_name(path.name):
            continue
        try:
            stat = path.stat()
        except OSError as e:
            logger.debug(f"Skipping unreadable file {path}: {e}")
            continue
        if not path.is_file():
            continue
        entries[path.name] = FileEntry(name=path.name, path=path, mtime=stat.st_mtime)
    return entries


def list_artifacts(directory: Path) -> list[Path]:
    """List rotated artifacts in a directory, sorted by name."""
    return sorted(
        path
        for path in directory.iterdir()
        if path.is_file() and is_artifact_name(path.name)
    )


def remove_file(path: Path) -> bool:
    """Delete a file, logging instead of raising.

    Returns:
        True if the file was removed or was already gone, False on failure
    """
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Unable to remove {path}: {e}")
        return False
    return True
