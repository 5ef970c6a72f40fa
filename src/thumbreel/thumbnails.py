from __future__ import annotations

import logging
import socket
from contextlib import contextmanager
from dataclasses import dataclass
from fractions import Fraction
from http.client import HTTPException
from typing import Iterator
from urllib.error import HTTPError, URLError
from urllib.parse import urlsplit
from urllib.request import Request, urlopen

from .budget import MemoryBudget
from .config import ThumbnailConfig
from .errors import DecodeError, DownloadError
from .media import VideoProbe, capture_frame, frame_brightness, probe_video
from .models import ThumbnailArtifact
from .scratch import ensure_scratch_dir, scratch_file
from .utils import log_event, scratch_stem

_CHUNK = 256 * 1024


@dataclass(frozen=True)
class SizeBucket:
    name: str
    width: int
    height: int


LANDSCAPE = SizeBucket("LANDSCAPE", 640, 360)
WIDE = SizeBucket("WIDE", 640, 480)
SQUARE = SizeBucket("SQUARE", 480, 480)
TALL = SizeBucket("TALL", 480, 640)
PORTRAIT = SizeBucket("PORTRAIT", 360, 640)


def bucket_for(width: int, height: int) -> SizeBucket:
    # A boundary ratio belongs to the bucket whose own shape equals it:
    # 16:9 -> LANDSCAPE, 4:3 -> WIDE, 1:1 -> SQUARE, 3:4 -> TALL, 9:16 -> PORTRAIT.
    if width <= 0 or height <= 0:
        raise ValueError(f"invalid dimensions {width}x{height}")
    ratio = Fraction(int(width), int(height))
    if ratio >= Fraction(16, 9):
        return LANDSCAPE
    if ratio >= Fraction(4, 3):
        return WIDE
    if ratio > Fraction(3, 4):
        return SQUARE
    if ratio > Fraction(9, 16):
        return TALL
    return PORTRAIT


def target_dimensions(
    width: int, height: int, sizing: str = "bucket", fixed_width: int = 640
) -> tuple[int, int | None]:
    if sizing == "fixed_width":
        return fixed_width, None
    bucket = bucket_for(width, height)
    return bucket.width, bucket.height


def scaled_height(width: int, height: int, target_width: int) -> int:
    scaled = int(round(height * target_width / width))
    return max(2, scaled - scaled % 2)


def frame_offset(duration: float | None, ratio: float = 0.5) -> float:
    if not duration or duration <= 0:
        return 0.0
    return round(duration * ratio, 3)


def download_video(
    url: str,
    dest: str,
    *,
    user_agent: str,
    timeout: int,
    budget: MemoryBudget | None = None,
) -> int:
    """Stream ``url`` into ``dest``; returns the byte count charged to ``budget``.

    On failure every charged byte is released before the error propagates.
    """
    charged = 0
    try:
        request = Request(url, headers={"User-Agent": user_agent})
        with urlopen(request, timeout=timeout) as response:
            status = response.getcode()
            if status is not None and not 200 <= status < 300:
                raise DownloadError(f"Failed to download file: {status}")
            if status is None and urlsplit(url).scheme not in {"file", ""}:
                raise DownloadError("Failed to download file: no status")
            expected = _content_length(response)
            with open(dest, "wb") as handle:
                while True:
                    chunk = response.read(_CHUNK)
                    if not chunk:
                        break
                    handle.write(chunk)
                    charged += len(chunk)
                    if budget is not None:
                        budget.charge(len(chunk))
            if expected is not None and charged != expected:
                raise DownloadError(
                    f"truncated download: got {charged} of {expected} bytes"
                )
    except HTTPError as exc:
        _release(budget, charged)
        raise DownloadError(f"Failed to download file: {exc.code}") from exc
    except (URLError, socket.timeout, TimeoutError) as exc:
        _release(budget, charged)
        raise DownloadError(f"network error while downloading: {exc}") from exc
    except (OSError, HTTPException) as exc:
        _release(budget, charged)
        raise DownloadError(f"download failed: {type(exc).__name__}: {exc}") from exc
    except ValueError as exc:
        _release(budget, charged)
        raise DownloadError(f"invalid video url {url!r}: {exc}") from exc
    except BaseException:
        _release(budget, charged)
        raise
    if charged == 0:
        raise DownloadError("downloaded video is empty")
    return charged


def _content_length(response) -> int | None:
    headers = getattr(response, "headers", None)
    raw = headers.get("Content-Length") if headers is not None else None
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


def _release(budget: MemoryBudget | None, nbytes: int) -> None:
    if budget is not None:
        budget.release(nbytes)


class FrameExtractor:
    def __init__(
        self,
        settings: ThumbnailConfig,
        user_agent: str,
        budget: MemoryBudget | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.user_agent = user_agent
        self.budget = budget
        self.logger = logger or logging.getLogger("thumbreel.thumbnails")

    @contextmanager
    def extract(
        self,
        video_url: str,
        item_id: str,
        scratch_dir: str,
        duration_hint: float | None = None,
    ) -> Iterator[ThumbnailArtifact]:
        """Yield a still frame of ``video_url`` encoded on scratch storage.

        The downloaded video is deleted before the artifact is yielded and the
        image is deleted when the block exits, on success or error.
        """
        ensure_scratch_dir(scratch_dir)
        stem = scratch_stem(item_id)
        with scratch_file(scratch_dir, f"{stem}.jpg") as image_path:
            with scratch_file(scratch_dir, f"{stem}.mp4") as video_path:
                artifact = self._render(
                    video_url, item_id, str(video_path), str(image_path), duration_hint
                )
            yield artifact

    def _render(
        self,
        video_url: str,
        item_id: str,
        video_path: str,
        image_path: str,
        duration_hint: float | None,
    ) -> ThumbnailArtifact:
        settings = self.settings
        downloaded = 0
        try:
            downloaded = download_video(
                video_url,
                video_path,
                user_agent=self.user_agent,
                timeout=settings.download_timeout_seconds,
                budget=self.budget,
            )
            log_event(
                self.logger, logging.DEBUG, "video_downloaded", item_id=item_id, bytes=downloaded
            )
            probe = probe_video(
                video_path,
                ffprobe_path=settings.ffprobe_path,
                timeout=settings.probe_timeout_seconds,
            )
            width, height = target_dimensions(
                probe.width, probe.height, settings.sizing, settings.fixed_width
            )
            offset = self._capture(video_path, image_path, item_id, probe, width, height, duration_hint)
        finally:
            _release(self.budget, downloaded)
        return ThumbnailArtifact(
            path=image_path,
            width=width,
            height=height or scaled_height(probe.width, probe.height, width),
            source_width=probe.width,
            source_height=probe.height,
            offset_seconds=offset,
        )

    def _capture(
        self,
        video_path: str,
        image_path: str,
        item_id: str,
        probe: VideoProbe,
        width: int,
        height: int | None,
        duration_hint: float | None,
    ) -> float:
        settings = self.settings
        duration = probe.duration or duration_hint
        ratios = [settings.offset_ratio] + [
            ratio for ratio in settings.fallback_offsets if ratio != settings.offset_ratio
        ]
        offset = 0.0
        for ratio in ratios:
            offset = frame_offset(duration, ratio)
            capture_frame(
                video_path,
                image_path,
                offset,
                width=width,
                height=height,
                ffmpeg_path=settings.ffmpeg_path,
                quality=settings.jpeg_quality,
                timeout=settings.decode_timeout_seconds,
            )
            if not self._is_blank(image_path, item_id, offset):
                return offset
        log_event(self.logger, logging.WARNING, "frame_blank_kept", item_id=item_id, offset=offset)
        return offset

    def _is_blank(self, image_path: str, item_id: str, offset: float) -> bool:
        if self.settings.blank_threshold <= 0:
            return False
        try:
            brightness = frame_brightness(image_path)
        except OSError as exc:
            raise DecodeError(f"captured frame is unreadable: {exc}") from exc
        if brightness < self.settings.blank_threshold:
            log_event(
                self.logger,
                logging.INFO,
                "frame_blank",
                item_id=item_id,
                offset=offset,
                brightness=round(brightness, 4),
            )
            return True
        return False
