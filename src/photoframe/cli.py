"""Command-line interface for the photo frame."""

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from photoframe.catalog import CatalogError, CatalogStore
from photoframe.config import (
    DEFAULT_IMGP_EXECUTABLE,
    DEFAULT_LOCAL_CHECK_INTERVAL,
    DEFAULT_LOCAL_PHOTO_LIMIT,
    DEFAULT_REMOTE_CHECK_INTERVAL,
    DEFAULT_TARGET_MAX_DIM,
    DEFAULT_VIEWER_EXECUTABLE,
    FrameConfig,
)
from photoframe.imaging import ImageTools
from photoframe.local_sync import LocalReconciler
from photoframe.models import Category
from photoframe.remote_sync import BucketClient, BucketError, RemoteReconciler
from photoframe.router import ChangeRouter
from photoframe.signals import ChangeSignal
from photoframe.slideshow import SlideshowError, SlideshowOrchestrator
from photoframe.viewer import ViewerProcess

app = typer.Typer(
    name="photoframe",
    help="Keep a photo frame's inbox, bucket mirror, catalog and slideshow in sync",
    add_completion=False,
)
console = Console()

ROOT_OPTION = typer.Option(
    Path("."),
    "--root",
    "-r",
    envvar="DPF_ROOT_PATH",
    help="Root directory holding original/, photos/ and photos.db (or set DPF_ROOT_PATH)",
    file_okay=False,
    dir_okay=True,
)
TARGET_MAX_DIM_OPTION = typer.Option(
    DEFAULT_TARGET_MAX_DIM,
    "--target-max-dim",
    envvar="DPF_TARGET_MAX_DIM",
    min=1,
    help="Largest width or height of displayed photos (or set DPF_TARGET_MAX_DIM)",
)
BUCKET_OPTION = typer.Option(
    None,
    "--bucket",
    envvar="DPF_S3_BUCKET",
    help="S3 bucket mirrored into the Surprise category (or set DPF_S3_BUCKET)",
)
PROFILE_OPTION = typer.Option(
    None,
    "--aws-profile",
    envvar="DPF_AWS_PROFILE",
    help="Shared AWS config profile for the bucket (or set DPF_AWS_PROFILE)",
)
LIMIT_OPTION = typer.Option(
    DEFAULT_LOCAL_PHOTO_LIMIT,
    "--limit",
    min=1,
    help="Maximum number of photos kept in the inbox",
)
VIEWER_OPTION = typer.Option(
    DEFAULT_VIEWER_EXECUTABLE, "--viewer", help="Slideshow viewer executable"
)
IMGP_OPTION = typer.Option(
    DEFAULT_IMGP_EXECUTABLE, "--imgp", help="Image resize/rotate tool executable"
)
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable verbose logging")


def setup_logging(verbose: bool) -> None:
    """Configure logging with Rich handler.

    Args:
        verbose: Enable verbose (DEBUG) logging
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def parse_category(value: str) -> Category:
    try:
        return Category.parse(value)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


def build_orchestrator(config: FrameConfig) -> SlideshowOrchestrator:
    return SlideshowOrchestrator(
        config,
        ImageTools(config.imgp_executable),
        ViewerProcess(config.viewer_executable),
    )


async def serve(config: FrameConfig) -> None:
    """Run the reconcilers and the slideshow router until cancelled.

    Args:
        config: Frame configuration
    """
    logger = logging.getLogger(__name__)
    config.ensure_directories()

    with CatalogStore(config.db_path) as catalog:
        signal = ChangeSignal()
        orchestrator = build_orchestrator(config)
        router = ChangeRouter(catalog, orchestrator, signal, config)

        workers = [
            LocalReconciler(
                catalog,
                signal,
                config.source_dir,
                limit=config.local_photo_limit,
                interval=config.local_check_interval,
            ).run(),
            router.run(),
        ]
        if config.remote_enabled:
            bucket = BucketClient(config.s3_bucket, profile=config.aws_profile)
            workers.append(
                RemoteReconciler(
                    catalog,
                    signal,
                    bucket,
                    config.surprise_source_dir,
                    interval=config.remote_check_interval,
                ).run()
            )
        else:
            logger.info("No bucket configured, remote sync disabled")

        try:
            await router.restart()
        except SlideshowError as e:
            logger.error(f"Initial slideshow start failed: {e}")

        try:
            await asyncio.gather(*workers)
        finally:
            await orchestrator.viewer.stop()


async def sync_once(config: FrameConfig) -> int:
    """Run one local scan and, when a bucket is configured, one remote sync.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    logger = logging.getLogger(__name__)
    config.ensure_directories()

    with CatalogStore(config.db_path) as catalog:
        signal = ChangeSignal()
        local = LocalReconciler(
            catalog, signal, config.source_dir, limit=config.local_photo_limit
        )
        local_result = local.scan()
        console.print("\n[bold]Local Sync:[/bold]")
        console.print(f"  Registered: {len(local_result.registered)}")
        console.print(f"  Deregistered: {len(local_result.deregistered)}")
        console.print(f"  Evicted: {len(local_result.evicted)}")

        if not config.remote_enabled:
            return 0

        try:
            bucket = BucketClient(config.s3_bucket, profile=config.aws_profile)
            remote = RemoteReconciler(catalog, signal, bucket, config.surprise_source_dir)
            remote_result = await remote.sync()
        except (BucketError, OSError) as e:
            logger.error(f"Remote sync failed: {e}", exc_info=True)
            return 1
        except Exception as e:
            logger.error(f"Unable to set up bucket access: {e}", exc_info=True)
            return 1

        console.print("\n[bold]Remote Sync:[/bold]")
        console.print(f"  Downloaded: {len(remote_result.downloaded)}")
        console.print(f"  Deleted: {len(remote_result.deleted)}")
        console.print(f"  [red]Failed: {len(remote_result.failed)}[/red]")
        return 1 if remote_result.failed else 0


async def restart_once(config: FrameConfig) -> int:
    """Restart the slideshow from the catalog once.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    config.ensure_directories()
    with CatalogStore(config.db_path) as catalog:
        router = ChangeRouter(catalog, build_orchestrator(config), ChangeSignal(), config)
        try:
            report = await router.restart()
        except SlideshowError as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1

    console.print(f"  Transformed: {len(report.transformed)}")
    console.print(f"  [red]Failed: {len(report.failed)}[/red]")
    console.print(f"  Pruned: {len(report.pruned)}")
    if not report.confirmed:
        console.print("[yellow]Viewer did not confirm it is running yet[/yellow]")
    return 0


@app.command()
def run(
    root: Path = ROOT_OPTION,
    target_max_dim: int = TARGET_MAX_DIM_OPTION,
    bucket: str = BUCKET_OPTION,
    aws_profile: str = PROFILE_OPTION,
    limit: int = LIMIT_OPTION,
    local_interval: float = typer.Option(
        DEFAULT_LOCAL_CHECK_INTERVAL,
        "--local-interval",
        min=1,
        help="Seconds between inbox scans",
    ),
    remote_interval: float = typer.Option(
        DEFAULT_REMOTE_CHECK_INTERVAL,
        "--remote-interval",
        min=1,
        help="Seconds between bucket syncs",
    ),
    viewer: str = VIEWER_OPTION,
    imgp: str = IMGP_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Run the photo frame: periodic syncs plus slideshow restarts on change."""
    setup_logging(verbose)
    config = FrameConfig(
        root_path=root,
        target_max_dim=target_max_dim,
        s3_bucket=bucket,
        aws_profile=aws_profile,
        local_check_interval=local_interval,
        remote_check_interval=remote_interval,
        local_photo_limit=limit,
        viewer_executable=viewer,
        imgp_executable=imgp,
    )
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        console.print("Stopped")


@app.command()
def sync(
    root: Path = ROOT_OPTION,
    bucket: str = BUCKET_OPTION,
    aws_profile: str = PROFILE_OPTION,
    limit: int = LIMIT_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Reconcile the inbox (and the bucket, if configured) with the catalog once."""
    setup_logging(verbose)
    config = FrameConfig(
        root_path=root, s3_bucket=bucket, aws_profile=aws_profile, local_photo_limit=limit
    )
    exit_code = asyncio.run(sync_once(config))
    raise typer.Exit(exit_code)


@app.command()
def restart(
    root: Path = ROOT_OPTION,
    target_max_dim: int = TARGET_MAX_DIM_OPTION,
    viewer: str = VIEWER_OPTION,
    imgp: str = IMGP_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Transform new photos and restart the slideshow from the catalog."""
    setup_logging(verbose)
    config = FrameConfig(
        root_path=root,
        target_max_dim=target_max_dim,
        viewer_executable=viewer,
        imgp_executable=imgp,
    )
    exit_code = asyncio.run(restart_once(config))
    raise typer.Exit(exit_code)


@app.command()
def photos(
    root: Path = ROOT_OPTION,
    category: str = typer.Option(
        "library", "--category", "-c", help="Category: library/1 or surprise/0"
    ),
    page: int = typer.Option(1, "--page", min=1, help="Page number"),
    limit: int = typer.Option(20, "--limit", min=1, help="Photos per page"),
) -> None:
    """List the photos of a category in catalog order."""
    parsed = parse_category(category)
    config = FrameConfig(root_path=root)
    with CatalogStore(config.db_path) as catalog:
        total = catalog.get_photo_count(parsed)
        records = catalog.get_photos(parsed, limit, (page - 1) * limit)

    table = Table(title=f"{parsed.label} photos ({total} total)", min_width=60)
    table.add_column("Order", justify="right")
    table.add_column("Name")
    for record in records:
        table.add_row(str(record.order), record.name)
    console.print(table)


@app.command()
def move(
    name: str = typer.Argument(..., help="Photo filename"),
    new_order: int = typer.Argument(..., min=0, help="New position in the category"),
    root: Path = ROOT_OPTION,
    category: str = typer.Option(
        "library", "--category", "-c", help="Category: library/1 or surprise/0"
    ),
) -> None:
    """Move a photo to a new position within its category."""
    parsed = parse_category(category)
    config = FrameConfig(root_path=root)
    with CatalogStore(config.db_path) as catalog:
        try:
            catalog.update_photo_order(name, parsed, new_order)
        except (CatalogError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)

    console.print(f"Moved {name} to position {new_order}")


if __name__ == "__main__":
    app()
