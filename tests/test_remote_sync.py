"""Tests for the bucket client and remote reconciliation."""

import io
import logging
import sqlite3
from pathlib import Path
from unittest.mock import patch

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber
from tenacity import wait_none

from photoframe.catalog import CatalogStore
from photoframe.config import FrameConfig
from photoframe.models import Category
from photoframe.remote_sync import (
    BucketClient,
    BucketError,
    RemoteReconciler,
    TransientBucketError,
)
from photoframe.signals import ChangeSignal


@pytest.fixture
def s3_client():
    """Return a real boto3 S3 client for use with a Stubber."""
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def no_retry_wait(monkeypatch) -> None:
    """Make retried bucket calls retry immediately."""
    monkeypatch.setattr(BucketClient.list_keys.retry, "wait", wait_none())
    monkeypatch.setattr(BucketClient.download.retry, "wait", wait_none())


class BrokenStream(io.BytesIO):
    """Object body whose connection drops mid-read."""

    def read(self, size=-1):
        raise ConnectionResetError("connection reset by peer")


def surprise_names(catalog: CatalogStore) -> set[str]:
    return {r.name for r in catalog.get_all_photos(Category.SURPRISE)}


@pytest.mark.asyncio
class TestRemoteReconciler:
    """Test remote mirror cycles against an in-memory bucket."""

    async def test_converges_to_bucket(
        self,
        catalog: CatalogStore,
        signal: ChangeSignal,
        frame_config: FrameConfig,
        make_bucket,
    ) -> None:
        """Test that local {a, b} and remote {b, c} converge to {b, c}."""
        mirror = frame_config.surprise_source_dir
        (mirror / "a.jpg").write_bytes(b"a")
        (mirror / "b.jpg").write_bytes(b"b")
        catalog.append_photo("a.jpg", Category.SURPRISE)
        bucket = make_bucket({"b.jpg": b"b", "c.jpg": b"c"})
        reconciler = RemoteReconciler(catalog, signal, bucket, mirror)

        result = await reconciler.sync()

        assert result.to_delete == ["a.jpg"]
        assert result.to_download == ["c.jpg"]
        assert {p.name for p in mirror.iterdir()} == {"b.jpg", "c.jpg"}
        assert (mirror / "c.jpg").read_bytes() == b"c"
        assert surprise_names(catalog) == {"b.jpg", "c.jpg"}
        assert result.deregistered == ["a.jpg"]
        assert reconciler.tracked == frozenset({"b.jpg", "c.jpg"})
        assert signal.pending

    async def test_download_failure_continues(
        self,
        catalog: CatalogStore,
        signal: ChangeSignal,
        frame_config: FrameConfig,
        make_bucket,
    ) -> None:
        """Test that one failed download does not stop the others."""
        mirror = frame_config.surprise_source_dir
        bucket = make_bucket(
            {"a.jpg": b"a", "b.jpg": b"b", "c.jpg": b"c"}, failing=["b.jpg"]
        )
        reconciler = RemoteReconciler(catalog, signal, bucket, mirror)

        result = await reconciler.sync()

        assert result.failed == ["b.jpg"]
        assert result.downloaded == ["a.jpg", "c.jpg"]
        assert surprise_names(catalog) == {"a.jpg", "c.jpg"}
        assert not (mirror / "b.jpg").exists()
        assert signal.pending

    async def test_in_sync_does_not_signal(
        self,
        catalog: CatalogStore,
        signal: ChangeSignal,
        frame_config: FrameConfig,
        make_bucket,
    ) -> None:
        """Test that a cycle with nothing to do leaves the signal alone."""
        mirror = frame_config.surprise_source_dir
        (mirror / "a.jpg").write_bytes(b"a")
        bucket = make_bucket({"a.jpg": b"a"})
        reconciler = RemoteReconciler(catalog, signal, bucket, mirror)

        result = await reconciler.sync()

        assert not result.changed
        assert result.registered == ["a.jpg"]
        assert not signal.pending

    async def test_creates_mirror_directory(
        self,
        catalog: CatalogStore,
        signal: ChangeSignal,
        tmp_path: Path,
        make_bucket,
    ) -> None:
        mirror = tmp_path / "original" / "surprise"
        reconciler = RemoteReconciler(catalog, signal, make_bucket({"a.jpg": b"a"}), mirror)

        await reconciler.sync()

        assert (mirror / "a.jpg").exists()

    async def test_leaves_library_alone(
        self,
        catalog: CatalogStore,
        signal: ChangeSignal,
        frame_config: FrameConfig,
        make_bucket,
    ) -> None:
        """Test that Surprise reconciliation never touches Library records."""
        catalog.append_photo("a.jpg", Category.LIBRARY)
        reconciler = RemoteReconciler(
            catalog, signal, make_bucket({}), frame_config.surprise_source_dir
        )

        await reconciler.sync()

        assert catalog.photo_exists("a.jpg", Category.LIBRARY)

    async def test_locked_catalog_finishes_cycle(
        self,
        file_catalog: CatalogStore,
        write_lock: sqlite3.Connection,
        signal: ChangeSignal,
        frame_config: FrameConfig,
        make_bucket,
        caplog,
    ) -> None:
        """Test that a busy database does not stop downloads or the signal."""
        mirror = frame_config.surprise_source_dir
        bucket = make_bucket({"a.jpg": b"a", "b.jpg": b"b"})
        reconciler = RemoteReconciler(file_catalog, signal, bucket, mirror)

        with caplog.at_level(logging.WARNING):
            result = await reconciler.sync()

        assert result.downloaded == ["a.jpg", "b.jpg"]
        assert result.registered == []
        assert reconciler.tracked == frozenset({"a.jpg", "b.jpg"})
        assert signal.pending
        assert "Error while registering photo a.jpg" in caplog.text

        write_lock.execute("ROLLBACK")
        result = await reconciler.sync()

        assert not result.changed
        assert result.registered == ["a.jpg", "b.jpg"]
        assert surprise_names(file_catalog) == {"a.jpg", "b.jpg"}

    async def test_registered_files_not_rewritten(
        self,
        catalog: CatalogStore,
        signal: ChangeSignal,
        frame_config: FrameConfig,
        make_bucket,
    ) -> None:
        """Test that a cycle in sync with the catalog makes no catalog writes."""
        mirror = frame_config.surprise_source_dir
        (mirror / "a.jpg").write_bytes(b"a")
        catalog.append_photo("a.jpg", Category.SURPRISE)
        reconciler = RemoteReconciler(catalog, signal, make_bucket({"a.jpg": b"a"}), mirror)

        with patch.object(catalog, "append_photo", wraps=catalog.append_photo) as append:
            result = await reconciler.sync()

        append.assert_not_called()
        assert result.registered == []


class TestBucketClientSetup:
    """Test bucket client construction."""

    def test_empty_bucket_name(self, s3_client) -> None:
        with pytest.raises(ValueError, match="cannot be empty"):
            BucketClient("", s3_client=s3_client)


@pytest.mark.asyncio
class TestBucketClient:
    """Test the boto3-backed bucket client with stubbed responses."""

    async def test_list_keys_filters(self, s3_client) -> None:
        """Test that nested keys and non-photos are skipped."""
        client = BucketClient("frame-bucket", s3_client=s3_client)
        with Stubber(s3_client) as stubber:
            stubber.add_response(
                "list_objects_v2",
                {
                    "Contents": [
                        {"Key": "a.jpg"},
                        {"Key": "b.PNG"},
                        {"Key": "nested/c.jpg"},
                        {"Key": "notes.txt"},
                        {"Key": "d_IMGP.jpg"},
                    ],
                    "IsTruncated": False,
                },
                {"Bucket": "frame-bucket"},
            )

            keys = await client.list_keys()

        assert keys == {"a.jpg", "b.PNG"}

    async def test_list_keys_permanent_error(self, s3_client) -> None:
        """Test that access errors surface as bucket errors."""
        client = BucketClient("frame-bucket", s3_client=s3_client)
        with Stubber(s3_client) as stubber:
            stubber.add_client_error(
                "list_objects_v2", service_error_code="AccessDenied", http_status_code=403
            )

            with pytest.raises(BucketError, match="AccessDenied"):
                await client.list_keys()

    async def test_download_writes_file(self, s3_client, tmp_path: Path) -> None:
        """Test that an object is written to its destination."""
        client = BucketClient("frame-bucket", s3_client=s3_client)
        data = b"jpeg bytes"
        with Stubber(s3_client) as stubber:
            stubber.add_response(
                "get_object",
                {"Body": StreamingBody(io.BytesIO(data), len(data))},
                {"Bucket": "frame-bucket", "Key": "a.jpg"},
            )

            await client.download("a.jpg", tmp_path / "a.jpg")

        assert (tmp_path / "a.jpg").read_bytes() == data
        assert not (tmp_path / "a.jpg.part").exists()

    async def test_download_missing_object(self, s3_client, tmp_path: Path) -> None:
        """Test that a missing object leaves no partial file behind."""
        client = BucketClient("frame-bucket", s3_client=s3_client)
        with Stubber(s3_client) as stubber:
            stubber.add_client_error(
                "get_object", service_error_code="NoSuchKey", http_status_code=404
            )

            with pytest.raises(BucketError):
                await client.download("a.jpg", tmp_path / "a.jpg")

        assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
class TestBucketClientRetries:
    """Test retry and error classification of bucket calls."""

    async def test_list_keys_retries_server_error(
        self, s3_client, no_retry_wait, caplog
    ) -> None:
        """Test that a 503 is retried once and the next listing is returned."""
        client = BucketClient("frame-bucket", s3_client=s3_client)
        with Stubber(s3_client) as stubber:
            stubber.add_client_error(
                "list_objects_v2", service_error_code="ServiceUnavailable", http_status_code=503
            )
            stubber.add_response(
                "list_objects_v2",
                {"Contents": [{"Key": "a.jpg"}], "IsTruncated": False},
                {"Bucket": "frame-bucket"},
            )

            with caplog.at_level(logging.WARNING):
                keys = await client.list_keys()

            stubber.assert_no_pending_responses()

        assert keys == {"a.jpg"}
        retries = [r for r in caplog.records if r.getMessage().startswith("Retrying")]
        assert len(retries) == 1

    async def test_download_retries_throttling(
        self, s3_client, tmp_path: Path, no_retry_wait
    ) -> None:
        """Test that a throttling code is retried even without a 5xx status."""
        client = BucketClient("frame-bucket", s3_client=s3_client)
        data = b"jpeg bytes"
        with Stubber(s3_client) as stubber:
            stubber.add_client_error(
                "get_object", service_error_code="SlowDown", http_status_code=400
            )
            stubber.add_response(
                "get_object",
                {"Body": StreamingBody(io.BytesIO(data), len(data))},
                {"Bucket": "frame-bucket", "Key": "a.jpg"},
            )

            await client.download("a.jpg", tmp_path / "a.jpg")

            stubber.assert_no_pending_responses()

        assert (tmp_path / "a.jpg").read_bytes() == data
        assert not (tmp_path / "a.jpg.part").exists()

    async def test_gives_up_after_three_attempts(
        self, s3_client, no_retry_wait, caplog
    ) -> None:
        """Test that persistent server errors surface after the last attempt."""
        client = BucketClient("frame-bucket", s3_client=s3_client)
        with Stubber(s3_client) as stubber:
            for _ in range(3):
                stubber.add_client_error(
                    "list_objects_v2", service_error_code="InternalError", http_status_code=500
                )

            with caplog.at_level(logging.WARNING):
                with pytest.raises(TransientBucketError, match="InternalError"):
                    await client.list_keys()

            stubber.assert_no_pending_responses()

        retries = [r for r in caplog.records if r.getMessage().startswith("Retrying")]
        assert len(retries) == 2

    @pytest.mark.parametrize(
        "code,status", [("AccessDenied", 403), ("NoSuchBucket", 404)]
    )
    async def test_client_errors_not_retried(
        self, s3_client, no_retry_wait, caplog, code: str, status: int
    ) -> None:
        """Test that 4xx errors other than throttling fail on the first attempt."""
        client = BucketClient("frame-bucket", s3_client=s3_client)
        with Stubber(s3_client) as stubber:
            stubber.add_client_error(
                "list_objects_v2", service_error_code=code, http_status_code=status
            )

            with caplog.at_level(logging.WARNING):
                with pytest.raises(BucketError, match=code) as excinfo:
                    await client.list_keys()

            stubber.assert_no_pending_responses()

        assert not isinstance(excinfo.value, TransientBucketError)
        assert not any(r.getMessage().startswith("Retrying") for r in caplog.records)

    async def test_missing_object_not_retried(
        self, s3_client, tmp_path: Path, no_retry_wait
    ) -> None:
        client = BucketClient("frame-bucket", s3_client=s3_client)
        with Stubber(s3_client) as stubber:
            stubber.add_client_error(
                "get_object", service_error_code="NoSuchKey", http_status_code=404
            )

            with pytest.raises(BucketError) as excinfo:
                await client.download("a.jpg", tmp_path / "a.jpg")

        assert not isinstance(excinfo.value, TransientBucketError)

    async def test_broken_stream_leaves_no_partial_file(
        self, s3_client, tmp_path: Path, no_retry_wait
    ) -> None:
        """Test that a connection dropped mid-body removes the partial file."""
        client = BucketClient("frame-bucket", s3_client=s3_client)
        with Stubber(s3_client) as stubber:
            stubber.add_response(
                "get_object",
                {"Body": StreamingBody(BrokenStream(b"jpeg"), 4)},
                {"Bucket": "frame-bucket", "Key": "a.jpg"},
            )

            with pytest.raises(ConnectionResetError):
                await client.download("a.jpg", tmp_path / "a.jpg")

        assert list(tmp_path.iterdir()) == []
