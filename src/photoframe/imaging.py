"""Image dimension probing and the external resize/rotate tool."""

import asyncio
import logging
from pathlib import Path

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

ROTATION_DEGREES = 90


class ImageToolError(Exception):
    """Exception raised when the external image tool fails."""

    pass


def read_dimensions(path: Path) -> tuple[int, int]:
    """Read an image's width and height from its header.

    Args:
        path: Path to a JPEG or PNG file

    Returns:
        ``(width, height)`` in pixels

    Raises:
        ValueError: If the file is not a readable image
        OSError: If the file cannot be opened
    """
    try:
        with Image.open(path) as image:
            return image.size
    except UnidentifiedImageError as e:
        raise ValueError(f"Unable to read image header: {path}") from e


def compute_scale(width: int, height: int, target_max_dim: int) -> int:
    """Percentage to downscale an image so neither side exceeds ``target_max_dim``.

    Images already within the target are left at 100%.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image dimensions {width}x{height}")
    scale = 100
    scale = min(scale, int(target_max_dim / height * 100))
    scale = min(scale, int(target_max_dim / width * 100))
    return scale


class ImageTools:
    """Runs the ``imgp`` command-line tool on single files."""

    def __init__(self, executable: str = "imgp") -> None:
        self.executable = executable

    async def _run(self, *args: str) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ImageToolError(f"Unable to run {self.executable}: {e}") from e

        _, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            raise ImageToolError(
                f"{self.executable} {' '.join(args)} exited with {process.returncode}: {message}"
            )

    async def resize(self, path: Path, percent: int) -> None:
        """Downscale a file in place to ``percent`` of its size."""
        await self._run("-w", "-x", f"{percent}%", str(path))

    async def rotate(self, path: Path, degrees: int = ROTATION_DEGREES) -> None:
        """Rotate a file, writing the ``_IMGP`` artifact next to it."""
        await self._run("-o", str(degrees), str(path))
