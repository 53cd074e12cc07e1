"""Slideshow restart pipeline: transform new photos, publish them, relaunch the viewer."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from photoframe.config import FrameConfig
from photoframe.imaging import ImageToolError, ImageTools, compute_scale, read_dimensions
from photoframe.utils import (
    artifact_name,
    list_artifacts,
    list_source_images,
    remove_file,
)
from photoframe.viewer import ViewerLaunchError, ViewerProcess, build_viewer_args

logger = logging.getLogger(__name__)

CHECK_RETRIES = 30
CHECK_INTERVAL = 1.0


class SlideshowError(Exception):
    """Exception raised when the slideshow viewer cannot be started."""

    pass


@dataclass
class RestartReport:
    """What one slideshow restart did."""

    cleared: list[str] = field(default_factory=list)
    transformed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    published: list[str] = field(default_factory=list)
    confirmed: bool = False


class SlideshowOrchestrator:
    """Brings the display directories up to date and restarts the viewer.

    Restarts are serialized: concurrent callers queue on a lock and each runs
    the full stop-then-start sequence in turn.
    """

    def __init__(
        self,
        config: FrameConfig,
        tools: ImageTools,
        viewer: ViewerProcess,
        check_retries: int = CHECK_RETRIES,
        check_interval: float = CHECK_INTERVAL,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Frame configuration (directory layout, target dimension)
            tools: Resize/rotate tool runner
            viewer: Handle on the viewer process
            check_retries: Liveness polls after starting the viewer
            check_interval: Seconds between liveness polls
        """
        self.config = config
        self.tools = tools
        self.viewer = viewer
        self.check_retries = check_retries
        self.check_interval = check_interval
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def restart(self, paths: Sequence[Path], interval: int) -> RestartReport:
        """Transform pending photos and restart the viewer on ``paths``.

        Args:
            paths: Display paths in play order; empty shows the display
                directory in its default order
            interval: Seconds per photo; non-positive uses the viewer default

        Returns:
            Report of the restart

        Raises:
            SlideshowError: If the viewer process cannot be launched
        """
        async with self._lock:
            report = RestartReport()
            self.clear_stale_artifacts(report)
            await self.transform_sources(report)
            self.prune_orphans(report)
            self.publish_artifacts(report)

            await self.viewer.stop()
            if not paths:
                logger.info("No explicit order specified, using default directory ordering")
            args = build_viewer_args(interval, paths, self.config.display_dir)
            try:
                await self.viewer.start(args)
            except ViewerLaunchError as e:
                logger.error(f"Failed to restart slideshow: {e}")
                raise SlideshowError(f"Failed to restart slideshow: {e}") from e

            report.confirmed = await self._confirm_running()
            logger.info(
                f"Slideshow restarted with {len(paths)} photo(s): "
                f"{len(report.transformed)} transformed, {len(report.failed)} failed, "
                f"{len(report.pruned)} pruned"
            )
            return report

    def clear_stale_artifacts(self, report: RestartReport) -> None:
        """Remove leftover artifacts from the source directories."""
        for source_dir, _ in self.config.directory_pairs:
            if not source_dir.is_dir():
                continue
            for path in list_artifacts(source_dir):
                if remove_file(path):
                    logger.debug(f"Removed stale artifact {path}")
                    report.cleared.append(path.name)

    async def transform_sources(self, report: RestartReport) -> None:
        """Resize and rotate every source image that has no published artifact.

        A failure on one image is logged and the rest of the batch continues.
        """
        for source_dir, display_dir in self.config.directory_pairs:
            try:
                sources = list_source_images(source_dir)
            except OSError:
                logger.debug(f"Source directory {source_dir} not readable, skipping")
                continue

            published = set()
            if display_dir.is_dir():
                published = {path.name for path in list_artifacts(display_dir)}

            for name in sorted(sources):
                if artifact_name(name) in published:
                    continue
                try:
                    await self._transform(sources[name].path)
                except (ImageToolError, ValueError, OSError) as e:
                    logger.warning(f"Failed to transform {name}: {e}")
                    report.failed.append(name)
                    continue
                report.transformed.append(name)

    async def _transform(self, path: Path) -> None:
        width, height = read_dimensions(path)
        scale = compute_scale(width, height, self.config.target_max_dim)
        await self.tools.resize(path, scale)
        await self.tools.rotate(path)

    def prune_orphans(self, report: RestartReport) -> None:
        """Delete published artifacts whose source image no longer exists."""
        for source_dir, display_dir in self.config.directory_pairs:
            if not display_dir.is_dir():
                continue
            try:
                sources = list_source_images(source_dir)
            except OSError:
                logger.debug(f"Source directory {source_dir} not readable, skipping prune")
                continue

            expected = {artifact_name(name) for name in sources}
            for path in list_artifacts(display_dir):
                if path.name in expected:
                    continue
                if remove_file(path):
                    logger.info(f"Removed orphaned artifact {path}")
                    report.pruned.append(path.name)

    def publish_artifacts(self, report: RestartReport) -> None:
        """Move freshly produced artifacts into their display directories."""
        for source_dir, display_dir in self.config.directory_pairs:
            if not source_dir.is_dir():
                continue
            display_dir.mkdir(parents=True, exist_ok=True)
            for path in list_artifacts(source_dir):
                dest = display_dir / path.name
                try:
                    path.replace(dest)
                except OSError as e:
                    logger.warning(f"Failed to move rotated image {path} -> {dest}: {e}")
                    continue
                report.published.append(path.name)

    async def _confirm_running(self) -> bool:
        for _ in range(self.check_retries):
            await asyncio.sleep(self.check_interval)
            if self.viewer.is_alive():
                return True
        logger.warning("Exhausted retry check for slideshow viewer running")
        return False
