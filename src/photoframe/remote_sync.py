"""S3 bucket client and periodic mirroring of the bucket into the Surprise category."""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from photoframe.catalog import CatalogError, CatalogStore
from photoframe.models import Category
from photoframe.signals import ChangeSignal
from photoframe.utils import is_source_image_name, list_source_images, remove_file

logger = logging.getLogger(__name__)

SIGNAL_SOURCE = "remote"

# Error codes S3 uses when asking clients to slow down
THROTTLING_CODES = {"SlowDown", "Throttling", "ThrottlingException", "RequestTimeout"}

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class BucketError(Exception):
    """Base exception for bucket access errors."""

    pass


class TransientBucketError(BucketError):
    """Exception raised for network, throttling and 5xx errors."""

    pass


class BucketClient:
    """Lists and downloads photos from an S3 bucket using boto3."""

    def __init__(
        self,
        bucket: str,
        profile: str | None = None,
        s3_client: Any = None,
    ) -> None:
        """Initialize the bucket client.

        Args:
            bucket: Bucket name
            profile: Shared AWS config profile used to build the client
            s3_client: Preconfigured boto3 S3 client, used instead of the profile
        """
        if not bucket:
            raise ValueError("Bucket name cannot be empty")
        self.bucket = bucket
        self.profile = profile
        if s3_client is None:
            session = boto3.Session(profile_name=profile)
            s3_client = session.client("s3")
        self._s3 = s3_client

    def _translate_error(self, error: Exception, context: str) -> BucketError:
        """Map a botocore error onto a retryable or permanent bucket error."""
        if isinstance(error, ClientError):
            code = error.response.get("Error", {}).get("Code", "")
            status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            if status >= 500 or code in THROTTLING_CODES:
                return TransientBucketError(f"S3 error {code} while {context}")
            return BucketError(f"S3 error {code or status} while {context}")
        return TransientBucketError(f"Network error while {context}: {error}")

    @retry(
        retry=retry_if_exception_type(TransientBucketError),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def list_keys(self) -> set[str]:
        """List the photo keys at the top level of the bucket.

        Returns:
            Keys with a supported image extension

        Raises:
            BucketError: If the bucket cannot be listed
        """
        try:
            return await asyncio.to_thread(self._list_keys)
        except (BotoCoreError, ClientError) as e:
            raise self._translate_error(e, f"listing bucket {self.bucket}") from e

    def _list_keys(self) -> set[str]:
        keys: set[str] = set()
        paginator = self._s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket):
            for obj in page.get("Contents", []):
                key = obj["Key"]
                if "/" in key or not is_source_image_name(key):
                    continue
                keys.add(key)
        if not keys:
            logger.info(f"No remote files found in bucket {self.bucket}")
        return keys

    @retry(
        retry=retry_if_exception_type(TransientBucketError),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def download(self, key: str, dest: Path) -> None:
        """Download an object to ``dest``.

        The object is written to a ``.part`` file first and renamed once
        complete, so a failed download never leaves a partial photo behind.

        Raises:
            BucketError: If the object cannot be fetched
            OSError: If the file cannot be written
        """
        try:
            await asyncio.to_thread(self._download, key, dest)
        except (BotoCoreError, ClientError) as e:
            raise self._translate_error(e, f"downloading {key}") from e

    def _download(self, key: str, dest: Path) -> None:
        partial = dest.with_name(dest.name + ".part")
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=key)
            body = response["Body"]
            with open(partial, "wb") as f:
                for chunk in body.iter_chunks(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
            partial.replace(dest)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        logger.debug(f"Downloaded s3://{self.bucket}/{key} -> {dest}")


@dataclass
class RemoteSyncResult:
    """Outcome of one remote reconciliation cycle."""

    to_delete: list[str] = field(default_factory=list)
    to_download: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    downloaded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    registered: list[str] = field(default_factory=list)
    deregistered: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.to_delete or self.to_download)


class RemoteReconciler:
    """Mirrors a bucket into the Surprise directory and keeps the catalog in sync."""

    category = Category.SURPRISE

    def __init__(
        self,
        catalog: CatalogStore,
        signal: ChangeSignal,
        bucket: BucketClient,
        mirror_dir: Path,
        interval: float = 60 * 60,
    ) -> None:
        self.catalog = catalog
        self.signal = signal
        self.bucket = bucket
        self.mirror_dir = mirror_dir
        self.interval = interval
        self._tracked: frozenset[str] = frozenset()

    @property
    def tracked(self) -> frozenset[str]:
        """Filenames in the mirror as of the last cycle."""
        return self._tracked

    async def run(self) -> None:
        """Sync now and then every ``interval`` seconds, forever."""
        while True:
            try:
                await self.sync()
            except Exception as e:
                logger.warning(f"Error while syncing with remote: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    async def sync(self) -> RemoteSyncResult:
        """Run one mirror-and-reconcile cycle.

        Raises:
            BucketError: If the bucket cannot be listed
            OSError: If the mirror directory cannot be read
        """
        result = RemoteSyncResult()
        self.mirror_dir.mkdir(parents=True, exist_ok=True)

        local = set(list_source_images(self.mirror_dir))
        if not local:
            logger.info(f"No local files found in {self.mirror_dir}")
        remote = await self.bucket.list_keys()

        to_delete = sorted(local - remote)
        to_download = sorted(remote - local)
        result.to_delete = to_delete
        result.to_download = to_download

        if to_delete:
            logger.info(f"Deleting {len(to_delete)} local file(s): {to_delete}")
        for name in to_delete:
            if remove_file(self.mirror_dir / name):
                result.deleted.append(name)

        if to_download:
            logger.info(f"Adding {len(to_download)} file(s): {to_download}")
        for key in to_download:
            try:
                await self.bucket.download(key, self.mirror_dir / key)
            except (BucketError, OSError) as e:
                logger.warning(f"Error while downloading s3 object {key}: {e}")
                result.failed.append(key)
                continue
            result.downloaded.append(key)

        await asyncio.to_thread(self._reconcile_catalog, result)

        if result.changed:
            self.signal.notify(SIGNAL_SOURCE)
        return result

    def _register(self, name: str, result: RemoteSyncResult) -> None:
        try:
            if self.catalog.register_photo_if_absent(name, self.category):
                result.registered.append(name)
        except CatalogError as e:
            logger.warning(f"Error while registering photo {name}: {e}")

    def _reconcile_catalog(self, result: RemoteSyncResult) -> None:
        """Register mirror files missing from the catalog and drop stale records.

        Runs in a worker thread. Catalog failures on individual photos are
        logged and skipped.
        """
        try:
            current = frozenset(list_source_images(self.mirror_dir))
        except OSError as e:
            logger.warning(f"Error getting local files for catalog sync: {e}")
            return
        self._tracked = current

        try:
            registered = {r.name for r in self.catalog.get_all_photos(self.category)}
        except CatalogError as e:
            logger.warning(f"Error getting registered photos from catalog: {e}")
            return

        for name in sorted(current - registered):
            self._register(name, result)

        stale = sorted(registered - current)
        if stale:
            logger.info(f"Deregistering {len(stale)} photo(s) not present locally: {stale}")
        for name in stale:
            try:
                self.catalog.delete_photo(name, self.category)
                result.deregistered.append(name)
            except CatalogError as e:
                logger.warning(f"Error while deregistering photo {name}: {e}")
