"""Turns change signals into serialized slideshow restarts."""

import logging
import random
from pathlib import Path

from photoframe.catalog import CatalogStore, PhotoNotFoundError
from photoframe.config import FrameConfig
from photoframe.models import AppSettings, Category, PhotoRecord
from photoframe.signals import ChangeSignal
from photoframe.slideshow import RestartReport, SlideshowOrchestrator

logger = logging.getLogger(__name__)


class ChangeRouter:
    """Single consumer of change signals driving the slideshow orchestrator."""

    def __init__(
        self,
        catalog: CatalogStore,
        orchestrator: SlideshowOrchestrator,
        signal: ChangeSignal,
        config: FrameConfig,
        rng: random.Random | None = None,
    ) -> None:
        self.catalog = catalog
        self.orchestrator = orchestrator
        self.signal = signal
        self.config = config
        self._rng = rng or random.Random()

    def playlist_records(self, include_surprise: bool = True) -> list[PhotoRecord]:
        """Catalog records in play order: Surprise first (if included), then Library."""
        records: list[PhotoRecord] = []
        if include_surprise:
            records.extend(self.catalog.get_all_photos(Category.SURPRISE))
        records.extend(self.catalog.get_all_photos(Category.LIBRARY))
        return records

    def build_playlist(
        self,
        settings: AppSettings,
        start: tuple[str, Category] | None = None,
    ) -> list[Path]:
        """Build the viewer playlist from the catalog.

        Args:
            settings: Slideshow settings (surprise inclusion, shuffle)
            start: Photo to play first; the playlist then covers both
                categories, is rotated to that photo and is not shuffled

        Returns:
            Display artifact paths in play order

        Raises:
            PhotoNotFoundError: If ``start`` is not in the playlist
        """
        if start is not None:
            records = self.playlist_records()
            name, category = start
            index = next(
                (
                    i
                    for i, record in enumerate(records)
                    if record.name == name and record.category == category
                ),
                None,
            )
            if index is None:
                raise PhotoNotFoundError(name, category)
            records = records[index:] + records[:index]
        else:
            records = self.playlist_records(settings.include_surprise)
            if settings.shuffle and len(records) > 1:
                self._rng.shuffle(records)

        return [self.config.display_path(record) for record in records]

    async def restart(self, start: tuple[str, Category] | None = None) -> RestartReport:
        """Restart the slideshow on the current catalog.

        Raises:
            PhotoNotFoundError: If ``start`` is not in the playlist
            SlideshowError: If the viewer cannot be launched
        """
        settings = self.catalog.get_app_settings()
        paths = self.build_playlist(settings, start=start)
        return await self.orchestrator.restart(paths, settings.interval_seconds)

    async def run(self) -> None:
        """Restart the slideshow once per change signal, forever."""
        while True:
            source = await self.signal.wait()
            logger.info(f"Found new updates from {source}, restarting slideshow")
            try:
                await self.restart()
            except Exception as e:
                logger.error(f"Error while restarting slideshow from update: {e}", exc_info=True)
