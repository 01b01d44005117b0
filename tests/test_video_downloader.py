"""
Tests for the yt-dlp video downloader.
"""

import json

import pytest

from app.services.video_downloader import (
    TransientFetchError,
    VideoDownloaderService,
    is_youtube_url,
)


class TestIsYoutubeUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "https://www.youtube.com/watch?v=abc123",
            "https://youtube.com/shorts/abc123",
            "http://m.youtube.com/watch?v=abc123",
            "https://youtu.be/abc123",
        ],
    )
    def test_accepts(self, url):
        assert is_youtube_url(url)

    @pytest.mark.parametrize(
        "url",
        ["", "youtube.com/watch?v=abc", "https://vimeo.com/1", "https://notyoutube.com/watch", "https://youtu.be.evil.com/x"],
    )
    def test_rejects(self, url):
        assert not is_youtube_url(url)


class TestProbe:
    """Tests for metadata probing."""

    @pytest.fixture
    def ydl(self, mocker):
        ydl_class = mocker.patch("app.services.video_downloader.yt_dlp.YoutubeDL")
        return ydl_class.return_value.__enter__.return_value

    @pytest.mark.asyncio
    async def test_probe(self, ydl):
        ydl.extract_info.return_value = {"title": "My Talk", "duration": 612, "uploader": "Someone"}

        info = await VideoDownloaderService().probe("https://youtu.be/abc")

        assert info.title == "My Talk"
        assert info.duration_seconds == 612.0
        assert info.uploader == "Someone"
        ydl.extract_info.assert_called_once_with("https://youtu.be/abc", download=False)

    @pytest.mark.asyncio
    async def test_probe_error(self, ydl):
        ydl.extract_info.side_effect = Exception("Video unavailable")

        with pytest.raises(TransientFetchError, match="Video unavailable"):
            await VideoDownloaderService().probe("https://youtu.be/abc")

    @pytest.mark.asyncio
    async def test_probe_empty_result(self, ydl):
        ydl.extract_info.return_value = None

        with pytest.raises(TransientFetchError):
            await VideoDownloaderService().probe("https://youtu.be/abc")


class TestMaterialize:
    """Tests for downloading."""

    @pytest.mark.asyncio
    async def test_falls_back_to_next_format(self, mocker, tmp_path):
        output = tmp_path / "job" / "source.mp4"
        ydl_class = mocker.patch("app.services.video_downloader.yt_dlp.YoutubeDL")
        ydl = ydl_class.return_value.__enter__.return_value

        def download(urls):
            if ydl.download.call_count == 1:
                raise Exception("Requested format is not available")
            output.write_bytes(b"video")

        ydl.download.side_effect = download

        path = await VideoDownloaderService().materialize("https://youtu.be/abc", str(output))

        assert path == str(output)
        assert ydl.download.call_count == 2
        formats = [call.args[0]["format"] for call in ydl_class.call_args_list]
        assert formats[1] == "best[ext=mp4]/best"

    @pytest.mark.asyncio
    async def test_renames_added_extension(self, mocker, tmp_path):
        output = tmp_path / "source.mp4"
        ydl_class = mocker.patch("app.services.video_downloader.yt_dlp.YoutubeDL")
        ydl_class.return_value.__enter__.return_value.download.side_effect = (
            lambda urls: (tmp_path / "source.mp4.webm").write_bytes(b"video")
        )

        path = await VideoDownloaderService().materialize("https://youtu.be/abc", str(output))

        assert path == str(output)
        assert output.read_bytes() == b"video"

    @pytest.mark.asyncio
    async def test_all_formats_fail(self, mocker, tmp_path):
        ydl_class = mocker.patch("app.services.video_downloader.yt_dlp.YoutubeDL")
        ydl_class.return_value.__enter__.return_value.download.side_effect = Exception("HTTP Error 403")

        with pytest.raises(TransientFetchError, match="403"):
            await VideoDownloaderService().materialize("https://youtu.be/abc", str(tmp_path / "source.mp4"))


class TestGetDuration:
    """Tests for ffprobe duration reads."""

    @pytest.mark.asyncio
    async def test_reads_duration(self, mocker):
        downloader = VideoDownloaderService()
        output = json.dumps({"format": {"duration": "301.5"}}).encode()
        mocker.patch.object(downloader, "_run_ffprobe_sync", return_value=(0, output, b""))

        assert await downloader.get_duration("source.mp4") == 301.5

    @pytest.mark.asyncio
    async def test_ffprobe_failure(self, mocker):
        downloader = VideoDownloaderService()
        mocker.patch.object(downloader, "_run_ffprobe_sync", return_value=(1, b"", b"moov atom not found"))

        assert await downloader.get_duration("source.mp4") is None

    @pytest.mark.asyncio
    async def test_ffprobe_missing(self, mocker):
        downloader = VideoDownloaderService()
        mocker.patch.object(downloader, "_run_ffprobe_sync", side_effect=FileNotFoundError("ffprobe"))

        assert await downloader.get_duration("source.mp4") is None
