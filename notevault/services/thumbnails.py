"""
Thumbnail derivation for uploaded images and videos.

Purpose: Store a small JPEG preview next to the original object.
Consumers: Chunked upload completion (video, from a bounded prefix of the
stored object) and the single-shot upload route (image or video bytes).
Logic:
  - Image: decode with Pillow, fit inside 400x400 (no upscaling), JPEG q80
  - Video: write bytes to a scratch file, grab the frame at 00:00:01 with
    FFmpeg (00:00:00 for sub-second clips), then resize like an image
  - Key: original key with its extension replaced by _thumb.jpg

Derivation never raises: any failure is logged and reported as None so the
owning upload still succeeds.
"""
import asyncio
import logging
import posixpath
import subprocess
import tempfile
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Callable, Optional

from PIL import Image, ImageOps

from ..core.config import Settings, settings as default_settings
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

THUMBNAIL_SUFFIX = "_thumb.jpg"
THUMBNAIL_CONTENT_TYPE = "image/jpeg"

# (video_path, output_path) -> None; raises on failure
FrameExtractor = Callable[[str, str], None]


@dataclass(frozen=True)
class ThumbnailResult:
    thumbnail_key: str
    thumbnail_url: str
    size_bytes: int


def generate_thumbnail_key(original_key: str) -> str:
    """users/7/clip_1700_ab.mp4 -> users/7/clip_1700_ab_thumb.jpg"""
    base, _ = posixpath.splitext(original_key)
    return f"{base}{THUMBNAIL_SUFFIX}"


def resize_to_jpeg(raw: bytes, max_size: int, quality: int) -> bytes:
    """Fit an image inside max_size x max_size, keeping aspect ratio, never upscaling"""
    with Image.open(BytesIO(raw)) as image:
        image = ImageOps.exif_transpose(image)
        image.thumbnail((max_size, max_size))
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        output = BytesIO()
        image.save(output, format="JPEG", quality=quality)
        return output.getvalue()


def run_ffmpeg(cmd: list, timeout: float) -> tuple[int, str]:
    """Run one FFmpeg command; returns (exit code, tail of stderr), exit code -1 on timeout"""
    try:
        completed = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            timeout=timeout
        )
    except subprocess.TimeoutExpired:
        return -1, f"FFmpeg timed out after {timeout}s"
    return completed.returncode, completed.stderr[-2000:]


class ThumbnailService:
    """Derives and stores preview images"""

    def __init__(
        self,
        storage: ObjectStorage,
        config: Settings = default_settings,
        frame_extractor: Optional[FrameExtractor] = None
    ):
        self.storage = storage
        self.max_size = config.THUMBNAIL_MAX_SIZE
        self.quality = config.THUMBNAIL_JPEG_QUALITY
        self.partial_bytes = config.THUMBNAIL_PARTIAL_BYTES
        self.fetch_timeout = config.THUMBNAIL_FETCH_TIMEOUT
        self.ffmpeg_timeout = config.THUMBNAIL_FFMPEG_TIMEOUT
        self.frame_offset = config.THUMBNAIL_FRAME_OFFSET
        self.ffmpeg_binary = config.FFMPEG_BINARY
        self.frame_extractor = frame_extractor or self.extract_frame

    async def derive_from_bytes(self, raw: bytes, file_type: str, object_key: str) -> Optional[ThumbnailResult]:
        """Thumbnail from a fully buffered upload; None for other file types or on failure"""
        if file_type not in ("image", "video"):
            return None

        try:
            if file_type == "image":
                loop = asyncio.get_running_loop()
                jpeg = await loop.run_in_executor(None, resize_to_jpeg, raw, self.max_size, self.quality)
            else:
                jpeg = await self._frame_from_video_bytes(raw, posixpath.splitext(object_key)[1])
            return await self._store(object_key, jpeg)
        except Exception as e:
            logger.warning(f"Thumbnail derivation failed for {object_key}: {e}")
            return None

    async def derive_from_object_partial(self, object_key: str, file_type: str) -> Optional[ThumbnailResult]:
        """
        Video thumbnail from the first THUMBNAIL_PARTIAL_BYTES of a stored object.

        Only the prefix is fetched, so cost is independent of the object size.
        The fetch is bounded by both a byte cap and a wall-clock timeout.
        """
        if file_type != "video":
            return None

        try:
            prefix = await asyncio.wait_for(
                self.storage.get_object_range(object_key, 0, self.partial_bytes - 1),
                timeout=self.fetch_timeout
            )
            if not prefix:
                raise ValueError("object is empty")
            jpeg = await self._frame_from_video_bytes(
                prefix[:self.partial_bytes],
                posixpath.splitext(object_key)[1]
            )
            return await self._store(object_key, jpeg)
        except asyncio.TimeoutError:
            logger.warning(f"Partial fetch for {object_key} timed out after {self.fetch_timeout}s")
            return None
        except Exception as e:
            logger.warning(f"Video thumbnail derivation failed for {object_key}: {e}")
            return None

    async def _frame_from_video_bytes(self, data: bytes, suffix: str) -> bytes:
        """Write video bytes to a scratch file, extract one frame, return it as a resized JPEG"""
        temp_input_path = None
        temp_output_path = None
        loop = asyncio.get_running_loop()

        try:
            with tempfile.NamedTemporaryFile(delete=False, suffix=suffix or ".mp4") as tmp_in:
                tmp_in.write(data)
                temp_input_path = tmp_in.name

            with tempfile.NamedTemporaryFile(delete=False, suffix=".jpg") as tmp_out:
                temp_output_path = tmp_out.name

            await loop.run_in_executor(None, self.frame_extractor, temp_input_path, temp_output_path)

            frame = Path(temp_output_path).read_bytes()
            if not frame:
                raise RuntimeError("Extracted frame is empty")

            return await loop.run_in_executor(None, resize_to_jpeg, frame, self.max_size, self.quality)
        finally:
            for path in (temp_input_path, temp_output_path):
                if path and Path(path).exists():
                    Path(path).unlink()

    def extract_frame(self, video_path: str, output_path: str) -> None:
        """Grab one frame with FFmpeg; falls back to the first frame for clips shorter than the offset"""
        last_error = ""
        for offset in dict.fromkeys((self.frame_offset, 0)):
            cmd = [
                self.ffmpeg_binary,
                "-loglevel", "error",
                "-ss", str(offset),
                "-i", video_path,
                "-frames:v", "1",
                "-q:v", "2",
                "-y",
                output_path
            ]
            return_code, stderr = run_ffmpeg(cmd, timeout=self.ffmpeg_timeout)
            if return_code == 0 and Path(output_path).stat().st_size > 0:
                return
            last_error = stderr[-200:]
            logger.info(f"FFmpeg produced no frame at {offset}s (code {return_code})")

        raise RuntimeError(f"FFmpeg frame extraction failed: {last_error}")

    async def _store(self, object_key: str, jpeg: bytes) -> ThumbnailResult:
        thumbnail_key = generate_thumbnail_key(object_key)
        url = await self.storage.put_object(thumbnail_key, jpeg, THUMBNAIL_CONTENT_TYPE)
        logger.info(f"Thumbnail stored: {thumbnail_key} ({len(jpeg) / 1024:.1f} KB)")
        return ThumbnailResult(thumbnail_key=thumbnail_key, thumbnail_url=url, size_bytes=len(jpeg))
