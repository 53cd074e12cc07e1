"""Periodic reconciliation of the local inbox directory with the catalog."""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from photoframe.catalog import CatalogError, CatalogStore
from photoframe.models import Category
from photoframe.signals import ChangeSignal
from photoframe.utils import FileEntry, list_source_images, remove_file

logger = logging.getLogger(__name__)

SIGNAL_SOURCE = "local"


@dataclass
class LocalScanResult:
    """Outcome of one local reconciliation cycle."""

    new_files: list[str] = field(default_factory=list)
    registered: list[str] = field(default_factory=list)
    deregistered: list[str] = field(default_factory=list)
    evicted: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.new_files or self.evicted)


class LocalReconciler:
    """Keeps the Library category consistent with the inbox directory.

    The inbox is capped at ``limit`` files; the oldest files by modification
    time are deleted once it grows past the cap.
    """

    category = Category.LIBRARY

    def __init__(
        self,
        catalog: CatalogStore,
        signal: ChangeSignal,
        source_dir: Path,
        limit: int = 1000,
        interval: float = 24 * 60 * 60,
    ) -> None:
        """Initialize the reconciler and seed its snapshot from the inbox.

        Args:
            catalog: Catalog to register photos in
            signal: Change signal to notify when files arrive or are evicted
            source_dir: Inbox directory
            limit: Maximum number of files kept in the inbox
            interval: Seconds between reconciliation cycles
        """
        if limit <= 0:
            raise ValueError("Local photo limit must be positive")
        self.catalog = catalog
        self.signal = signal
        self.source_dir = source_dir
        self.limit = limit
        self.interval = interval
        self._tracked: frozenset[str] = frozenset()

        try:
            self._tracked = frozenset(list_source_images(source_dir))
        except OSError as e:
            logger.warning(f"Unable to read inbox {source_dir} on initialization: {e}")

    @property
    def tracked(self) -> frozenset[str]:
        """Filenames observed in the inbox as of the last cycle."""
        return self._tracked

    async def run(self) -> None:
        """Scan now and then every ``interval`` seconds, forever.

        The filesystem and catalog work runs in a worker thread; the change
        signal is raised back on the event loop.
        """
        while True:
            try:
                result = await asyncio.to_thread(self.reconcile)
            except Exception as e:
                logger.error(f"Local reconciliation failed: {e}", exc_info=True)
            else:
                if result.changed:
                    self.signal.notify(SIGNAL_SOURCE)
            await asyncio.sleep(self.interval)

    def scan(self) -> LocalScanResult:
        """Run one reconciliation cycle and notify the signal on changes.

        Returns:
            What the cycle registered, deregistered and evicted
        """
        result = self.reconcile()
        if result.changed:
            self.signal.notify(SIGNAL_SOURCE)
        return result

    def reconcile(self) -> LocalScanResult:
        """Bring the catalog in line with the inbox without touching the signal.

        Catalog failures on individual photos are logged and skipped.
        """
        result = LocalScanResult()
        try:
            current = list_source_images(self.source_dir)
        except OSError as e:
            logger.warning(f"Unable to read inbox {self.source_dir}: {e}")
            return result

        current_names = frozenset(current)
        result.new_files = sorted(current_names - self._tracked)
        if result.new_files:
            logger.info(f"Found {len(result.new_files)} new file(s) in {self.source_dir}")

        try:
            registered = {r.name for r in self.catalog.get_all_photos(self.category)}
        except CatalogError as e:
            logger.warning(f"Error getting registered photos from catalog: {e}")
        else:
            self._register_missing(current_names - registered, result)
            self._deregister_stale(registered - current_names, result)

        if len(current) > self.limit:
            current_names = self._evict_oldest(current, result)

        self._tracked = current_names
        return result

    def _register_missing(self, names: frozenset[str], result: LocalScanResult) -> None:
        for name in sorted(names):
            try:
                if self.catalog.register_photo_if_absent(name, self.category):
                    result.registered.append(name)
            except CatalogError as e:
                logger.warning(f"Error while registering local photo {name}: {e}")

    def _deregister_stale(self, names: set[str], result: LocalScanResult) -> None:
        stale = sorted(names)
        if stale:
            logger.info(f"Deregistering {len(stale)} photo(s) not present locally: {stale}")
        for name in stale:
            try:
                self.catalog.delete_photo(name, self.category)
                result.deregistered.append(name)
            except CatalogError as e:
                logger.warning(f"Error while deregistering photo {name}: {e}")

    def _evict_oldest(
        self, current: dict[str, FileEntry], result: LocalScanResult
    ) -> frozenset[str]:
        """Delete the oldest files beyond the limit and return the remaining names."""
        by_age = sorted(current.values(), key=lambda entry: (entry.mtime, entry.name))
        remaining = set(current)

        for entry in by_age[: len(current) - self.limit]:
            if not remove_file(entry.path):
                continue
            logger.info(f"Removed old file to enforce limit: {entry.name}")
            remaining.discard(entry.name)
            result.evicted.append(entry.name)
            try:
                self.catalog.delete_photo(entry.name, self.category)
            except CatalogError as e:
                logger.warning(f"Error while deregistering evicted photo {entry.name}: {e}")

        return frozenset(remaining)
