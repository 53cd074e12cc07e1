"""Photo Frame - keep a photo frame's inbox, bucket mirror, catalog and slideshow in sync."""

__version__ = "0.1.0"

from photoframe.catalog import (
    CatalogError,
    CatalogStore,
    DuplicatePhotoError,
    PhotoNotFoundError,
)
from photoframe.config import FrameConfig
from photoframe.local_sync import LocalReconciler
from photoframe.models import AppSettings, Category, PhotoRecord, Schedule
from photoframe.remote_sync import BucketClient, RemoteReconciler
from photoframe.router import ChangeRouter
from photoframe.service import PhotoFrameService
from photoframe.signals import ChangeSignal
from photoframe.slideshow import SlideshowError, SlideshowOrchestrator

__all__ = [
    "CatalogError",
    "CatalogStore",
    "DuplicatePhotoError",
    "PhotoNotFoundError",
    "FrameConfig",
    "LocalReconciler",
    "AppSettings",
    "Category",
    "PhotoRecord",
    "Schedule",
    "BucketClient",
    "RemoteReconciler",
    "ChangeRouter",
    "PhotoFrameService",
    "ChangeSignal",
    "SlideshowError",
    "SlideshowOrchestrator",
]
