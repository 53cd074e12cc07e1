"""Handle on the external slideshow viewer process."""

import asyncio
import logging
import signal
from collections.abc import Sequence
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 15


class ViewerLaunchError(Exception):
    """Exception raised when the viewer process cannot be started."""

    pass


def build_viewer_args(
    interval: int, paths: Sequence[Path], default_dir: Path
) -> list[str]:
    """Build the viewer's command-line arguments.

    Args:
        interval: Seconds per photo; non-positive values use DEFAULT_INTERVAL
        paths: Explicit playlist, in order
        default_dir: Directory shown recursively when ``paths`` is empty

    Returns:
        Arguments for the viewer executable
    """
    if interval <= 0:
        interval = DEFAULT_INTERVAL
    args = ["-f", "-s", "full", "-t", str(interval)]
    if paths:
        args.extend(str(path) for path in paths)
    else:
        args.extend(["-r", str(default_dir)])
    return args


class ViewerProcess:
    """At most one viewer process started and stopped through this handle."""

    def __init__(self, executable: str = "/usr/bin/imv-wayland") -> None:
        self.executable = executable
        self._process: asyncio.subprocess.Process | None = None
        self._watcher: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    def is_alive(self) -> bool:
        """Check whether the viewer started by this handle is still running."""
        return self._process is not None and self._process.returncode is None

    async def start(self, args: Sequence[str]) -> None:
        """Start the viewer, stopping any instance this handle already runs.

        Raises:
            ViewerLaunchError: If the process cannot be launched
        """
        if self.is_alive():
            await self.stop()

        try:
            self._process = await asyncio.create_subprocess_exec(self.executable, *args)
        except OSError as e:
            raise ViewerLaunchError(f"Failed to start {self.executable}: {e}") from e

        self._watcher = asyncio.create_task(self._wait(self._process))
        logger.info(f"Started slideshow viewer (pid {self._process.pid})")

    async def _wait(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        logger.info(f"Slideshow viewer (pid {process.pid}) quit with code {returncode}")

    async def stop(self, timeout: float = 5.0) -> None:
        """Terminate the viewer; a process that is already gone counts as stopped."""
        process = self._process
        if process is None:
            return

        if process.returncode is None:
            try:
                process.send_signal(signal.SIGTERM)
                try:
                    await asyncio.wait_for(process.wait(), timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Viewer (pid {process.pid}) ignored SIGTERM, killing it"
                    )
                    process.kill()
                    await process.wait()
            except ProcessLookupError:
                logger.debug(f"Viewer (pid {process.pid}) was not running")

        self._process = None
        if self._watcher is not None:
            await self._watcher
            self._watcher = None
