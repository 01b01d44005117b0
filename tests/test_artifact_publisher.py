"""
Tests for artifact publishing and signed URLs.
"""

import pytest

from app.services.s3_client import StorageError


class TestBuildKey:
    """Tests for the storage key scheme."""

    def test_key_layout(self, publisher):
        assert publisher.build_key("user_1", "job_1", "short_1.mp4") == "users/user_1/job_1/short_1.mp4"

    def test_keys_unique_per_owner_and_job(self, publisher):
        keys = {
            publisher.build_key(owner, job, "short_1.mp4")
            for owner in ("user_1", "user_2")
            for job in ("job_1", "job_2")
        }
        assert len(keys) == 4

    @pytest.mark.parametrize(
        "owner, job, name",
        [
            ("", "job_1", "short_1.mp4"),
            ("user_1", "", "short_1.mp4"),
            ("user_1", "job_1", ""),
            ("user/1", "job_1", "short_1.mp4"),
            ("user_1", "..", "short_1.mp4"),
        ],
    )
    def test_rejects_unsafe_parts(self, publisher, owner, job, name):
        with pytest.raises(ValueError):
            publisher.build_key(owner, job, name)


class TestPublish:
    """Tests for publish, issue_read_url and delete."""

    @pytest.mark.asyncio
    async def test_publish_bytes(self, publisher, blob_store):
        result = await publisher.publish("user_1", "job_1", "thumb_1.jpg", b"jpeg", "image/jpeg")

        assert result.key == "users/user_1/job_1/thumb_1.jpg"
        assert result.file_size_bytes == 4
        assert blob_store.objects[result.key] == b"jpeg"
        assert blob_store.content_types[result.key] == "image/jpeg"

    @pytest.mark.asyncio
    async def test_publish_file(self, publisher, blob_store, tmp_path):
        clip = tmp_path / "short_1.mp4"
        clip.write_bytes(b"0123456789")

        result = await publisher.publish("user_1", "job_1", "short_1.mp4", str(clip), "video/mp4")

        assert result.file_size_bytes == 10
        assert blob_store.objects[result.key] == b"0123456789"

    @pytest.mark.asyncio
    async def test_publish_missing_file(self, publisher, tmp_path):
        with pytest.raises(StorageError):
            await publisher.publish("user_1", "job_1", "short_1.mp4", str(tmp_path / "nope.mp4"), "video/mp4")

    @pytest.mark.asyncio
    async def test_read_urls_derive_from_key_and_ttl(self, publisher):
        key = "users/user_1/job_1/short_1.mp4"

        download = await publisher.issue_read_url(key, publisher.download_url_ttl)
        preview = await publisher.issue_read_url(key, publisher.preview_url_ttl)

        assert key in download and key in preview
        assert download.endswith("expires=86400")
        assert preview.endswith("expires=604800")

    @pytest.mark.asyncio
    async def test_delete(self, publisher, blob_store):
        result = await publisher.publish("user_1", "job_1", "thumb_1.jpg", b"jpeg", "image/jpeg")
        await publisher.delete(result.key)
        assert result.key not in blob_store.objects
