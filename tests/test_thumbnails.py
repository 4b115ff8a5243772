"""Thumbnail derivation with real Pillow and a stand-in frame extractor"""
import os
import sys
from io import BytesIO

import pytest
from PIL import Image

from notevault.core.config import Settings
from notevault.services.thumbnails import (
    ThumbnailService,
    generate_thumbnail_key,
    resize_to_jpeg,
    run_ffmpeg,
)

from .conftest import MiB, make_image_bytes, write_test_frame


@pytest.mark.parametrize("key,expected", [
    ("users/7/clip_1700_ab.mp4", "users/7/clip_1700_ab_thumb.jpg"),
    ("users/7/a.b/clip.mov", "users/7/a.b/clip_thumb.jpg"),
    ("users/7/noext", "users/7/noext_thumb.jpg"),
    ("users/7/photo.final.png", "users/7/photo.final_thumb.jpg"),
])
def test_generate_thumbnail_key(key, expected):
    assert generate_thumbnail_key(key) == expected


def test_resize_keeps_aspect_ratio():
    jpeg = resize_to_jpeg(make_image_bytes((1200, 600)), 400, 80)

    with Image.open(BytesIO(jpeg)) as image:
        assert image.format == "JPEG"
        assert image.size == (400, 200)


def test_resize_never_upscales():
    jpeg = resize_to_jpeg(make_image_bytes((120, 80)), 400, 80)

    with Image.open(BytesIO(jpeg)) as image:
        assert image.size == (120, 80)


def test_resize_converts_alpha_to_rgb():
    jpeg = resize_to_jpeg(make_image_bytes((800, 800), mode="RGBA"), 400, 80)

    with Image.open(BytesIO(jpeg)) as image:
        assert image.mode == "RGB"
        assert image.size == (400, 400)


async def test_image_thumbnail_is_stored(thumbnails, storage):
    result = await thumbnails.derive_from_bytes(make_image_bytes((600, 1200)), "image", "users/7/pic_1_ab.png")

    assert result.thumbnail_key == "users/7/pic_1_ab_thumb.jpg"
    assert result.thumbnail_url == storage.object_url(result.thumbnail_key)
    assert ("put_object", result.thumbnail_key, "image/jpeg") in storage.calls
    stored = storage.object_bytes(result.thumbnail_key)
    assert result.size_bytes == len(stored)
    with Image.open(BytesIO(stored)) as image:
        assert image.size == (200, 400)


async def test_video_bytes_thumbnail(thumbnails, storage):
    result = await thumbnails.derive_from_bytes(b"\x00\x00\x00\x18ftypmp42", "video", "users/7/clip.mp4")

    assert result.thumbnail_key == "users/7/clip_thumb.jpg"
    with Image.open(BytesIO(storage.object_bytes(result.thumbnail_key))) as image:
        assert image.size == (400, 225)


@pytest.mark.parametrize("file_type", ["pdf", "text", "other", "archive"])
async def test_unsupported_types_yield_none(thumbnails, storage, file_type):
    assert await thumbnails.derive_from_bytes(b"data", file_type, "users/7/file.bin") is None
    assert await thumbnails.derive_from_object_partial("users/7/file.bin", file_type) is None
    assert storage.calls == []


async def test_image_partial_fetch_is_not_attempted(thumbnails, storage):
    assert await thumbnails.derive_from_object_partial("users/7/pic.png", "image") is None
    assert storage.range_requests == []


async def test_corrupt_image_yields_none(thumbnails, storage):
    assert await thumbnails.derive_from_bytes(b"not an image", "image", "users/7/pic.png") is None
    assert storage.objects == {}


async def test_partial_fetch_is_capped(storage, test_settings):
    seen_sizes = []

    def extractor(video_path, output_path):
        seen_sizes.append(os.path.getsize(video_path))
        write_test_frame(video_path, output_path)

    thumbnails = ThumbnailService(storage, test_settings, frame_extractor=extractor)
    storage.objects["users/7/long.mp4"] = [bytes(8 * MiB), bytes(8 * MiB)]

    result = await thumbnails.derive_from_object_partial("users/7/long.mp4", "video")

    assert result.thumbnail_key == "users/7/long_thumb.jpg"
    assert storage.range_requests == [("users/7/long.mp4", 0, 10 * MiB - 1)]
    assert seen_sizes == [10 * MiB]


async def test_short_video_uses_whole_object(thumbnails, storage):
    storage.objects["users/7/tiny.webm"] = [b"tiny video"]

    result = await thumbnails.derive_from_object_partial("users/7/tiny.webm", "video")

    assert result is not None


async def test_empty_object_yields_none(thumbnails, storage):
    storage.objects["users/7/empty.mp4"] = [b""]

    assert await thumbnails.derive_from_object_partial("users/7/empty.mp4", "video") is None


async def test_partial_fetch_timeout_yields_none(storage):
    thumbnails = ThumbnailService(
        storage,
        Settings(THUMBNAIL_FETCH_TIMEOUT=0.05),
        frame_extractor=write_test_frame
    )
    storage.objects["users/7/slow.mp4"] = [b"video"]
    storage.range_delay = 1

    assert await thumbnails.derive_from_object_partial("users/7/slow.mp4", "video") is None
    assert "users/7/slow_thumb.jpg" not in storage.objects


async def test_scratch_files_removed_after_failure(storage, test_settings):
    scratch = []

    def extractor(video_path, output_path):
        scratch.extend([video_path, output_path])
        raise RuntimeError("moov atom not found")

    thumbnails = ThumbnailService(storage, test_settings, frame_extractor=extractor)

    assert await thumbnails.derive_from_bytes(b"broken", "video", "users/7/clip.mp4") is None
    assert len(scratch) == 2
    assert scratch[0].endswith(".mp4")
    assert not any(os.path.exists(path) for path in scratch)


async def test_scratch_files_removed_after_success(storage, test_settings):
    scratch = []

    def extractor(video_path, output_path):
        scratch.extend([video_path, output_path])
        write_test_frame(video_path, output_path)

    thumbnails = ThumbnailService(storage, test_settings, frame_extractor=extractor)

    assert await thumbnails.derive_from_bytes(b"video", "video", "users/7/clip.mkv") is not None
    assert scratch[0].endswith(".mkv")
    assert not any(os.path.exists(path) for path in scratch)


async def test_missing_ffmpeg_yields_none(storage):
    thumbnails = ThumbnailService(storage, Settings(FFMPEG_BINARY="/nonexistent/ffmpeg"))

    assert await thumbnails.derive_from_bytes(b"video", "video", "users/7/clip.mp4") is None


def test_run_ffmpeg_reports_exit_code_and_stderr():
    cmd = [sys.executable, "-c", "import sys; sys.stderr.write('moov atom not found'); sys.exit(1)"]

    return_code, stderr = run_ffmpeg(cmd, timeout=10)

    assert return_code == 1
    assert "moov atom not found" in stderr


def test_run_ffmpeg_timeout():
    return_code, stderr = run_ffmpeg([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)

    assert return_code == -1
    assert "timed out" in stderr
