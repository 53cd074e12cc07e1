"""Request-level operations on the photo frame.

These are the operations a web front end calls: uploads, registration,
deletion, listing, reordering, settings, schedule and "play from this photo".
Mutations that change what should be on screen notify the change signal;
settings updates and play requests restart the slideshow directly and report
launch failures to the caller.
"""

import logging
from pathlib import Path

from photoframe.catalog import CatalogError, CatalogStore, DuplicatePhotoError
from photoframe.config import FrameConfig
from photoframe.imaging import ImageToolError, ImageTools, compute_scale, read_dimensions
from photoframe.models import AppSettings, Category, PhotoPage, PhotoRecord, Schedule
from photoframe.router import ChangeRouter
from photoframe.signals import ChangeSignal
from photoframe.slideshow import RestartReport
from photoframe.utils import IMAGE_EXTENSIONS, is_source_image_name, remove_file

logger = logging.getLogger(__name__)


def validate_photo_name(name: str) -> str:
    """Check that a name is a bare filename with a supported image extension.

    Raises:
        ValueError: If the name is empty, contains a path or is unsupported
    """
    if not name or Path(name).name != name or name.startswith("."):
        raise ValueError(f"Invalid photo name: {name!r}")
    if not is_source_image_name(name):
        supported = ", ".join(sorted(IMAGE_EXTENSIONS))
        raise ValueError(f"Unsupported photo name {name!r}. Supported: {supported}")
    return name


class PhotoFrameService:
    """Front-end facing operations over the catalog and slideshow."""

    def __init__(
        self,
        catalog: CatalogStore,
        router: ChangeRouter,
        signal: ChangeSignal,
        config: FrameConfig,
        tools: ImageTools,
    ) -> None:
        self.catalog = catalog
        self.router = router
        self.signal = signal
        self.config = config
        self.tools = tools

    async def upload_photo(self, filename: str, data: bytes) -> PhotoRecord:
        """Store an uploaded photo in the inbox and append it to the Library.

        The file is downscaled to the target dimension on a best-effort basis.

        Raises:
            ValueError: If the filename is invalid or unsupported
            DuplicatePhotoError: If a Library photo with that name exists
            CatalogError: If the photo cannot be recorded (the file is removed)
        """
        name = validate_photo_name(filename)
        if self.catalog.photo_exists(name, Category.LIBRARY):
            raise DuplicatePhotoError(name, Category.LIBRARY)

        self.config.source_dir.mkdir(parents=True, exist_ok=True)
        path = self.config.source_dir / name
        path.write_bytes(data)

        try:
            width, height = read_dimensions(path)
            scale = compute_scale(width, height, self.config.target_max_dim)
            if scale < 100:
                await self.tools.resize(path, scale)
        except (ImageToolError, ValueError, OSError) as e:
            logger.warning(f"Unable to downsize uploaded photo {name}: {e}")

        try:
            record = self.catalog.append_photo(name, Category.LIBRARY)
        except CatalogError:
            remove_file(path)
            raise

        logger.info(f"Uploaded {name} at order {record.order}")
        self.signal.notify("upload")
        return record

    def register_photo(self, name: str, category: Category) -> bool:
        """Register a photo file that already exists in its source directory.

        Returns:
            True if it was newly registered, False if it already was

        Raises:
            ValueError: If the name is invalid or unsupported
            FileNotFoundError: If the file is not in the category's source directory
        """
        validate_photo_name(name)
        path = self.config.source_dir_for(category) / name
        if not path.is_file():
            raise FileNotFoundError(f"Photo file does not exist: {name}")

        created = self.catalog.register_photo_if_absent(name, category)
        if created:
            self.signal.notify("register")
        return created

    def delete_photo(self, name: str, category: Category) -> None:
        """Delete a photo's source file and its catalog record.

        Raises:
            PhotoNotFoundError: If the photo is not registered
            OSError: If the file exists but cannot be removed
        """
        self.catalog.get_photo(name, category)
        path = self.config.source_dir_for(category) / name
        path.unlink(missing_ok=True)
        self.catalog.delete_photo(name, category)
        self.signal.notify("delete")

    def list_photos(self, category: Category, page: int = 1, limit: int = 20) -> PhotoPage:
        """Return one page of a category, lowest order first."""
        if page < 1:
            raise ValueError("Invalid page parameter")
        if limit < 1:
            raise ValueError("Invalid limit parameter")
        total = self.catalog.get_photo_count(category)
        photos = self.catalog.get_photos(category, limit, (page - 1) * limit)
        return PhotoPage(photos=photos, total=total, page=page, limit=limit)

    def move_photo(self, name: str, category: Category, new_order: int) -> None:
        """Move a photo to a new position in its category."""
        self.catalog.update_photo_order(name, category, new_order)
        self.signal.notify("reorder")

    def get_settings(self) -> AppSettings:
        return self.catalog.get_app_settings()

    async def update_settings(self, settings: AppSettings) -> RestartReport:
        """Persist new settings and restart the slideshow with them.

        Raises:
            SlideshowError: If the viewer cannot be launched
        """
        self.catalog.upsert_app_settings(settings)
        logger.info(f"Settings updated: {settings}")
        return await self.router.restart()

    def get_schedule(self) -> Schedule:
        return self.catalog.get_schedule()

    def update_schedule(self, schedule: Schedule) -> None:
        self.catalog.upsert_schedule(schedule)
        logger.info(f"Schedule updated: {schedule}")

    async def play_from_photo(self, name: str, category: Category) -> RestartReport:
        """Restart the slideshow starting at the given photo.

        Raises:
            PhotoNotFoundError: If the photo is not registered
            SlideshowError: If the viewer cannot be launched
        """
        self.catalog.get_photo(name, category)
        return await self.router.restart(start=(name, category))
