from __future__ import annotations

import json
import os
import subprocess
from dataclasses import dataclass
from typing import Any

from PIL import Image, ImageStat

from .errors import DecodeError, ProbeError


@dataclass(frozen=True)
class VideoProbe:
    width: int
    height: int
    duration: float | None


def probe_video(path: str, *, ffprobe_path: str = "ffprobe", timeout: int = 30) -> VideoProbe:
    cmd = [
        ffprobe_path,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]
    try:
        res = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as exc:
        raise ProbeError(f"ffprobe timed out after {timeout}s") from exc
    except OSError as exc:
        raise ProbeError(f"ffprobe could not run: {exc}") from exc
    if res.returncode != 0:
        raise ProbeError((res.stderr or res.stdout or "ffprobe failed").strip())
    try:
        data = json.loads(res.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise ProbeError(f"ffprobe returned invalid JSON: {exc}") from exc
    return parse_probe(data)


def parse_probe(data: dict[str, Any]) -> VideoProbe:
    streams = data.get("streams") if isinstance(data, dict) else None
    for stream in streams or []:
        if not isinstance(stream, dict) or stream.get("codec_type") != "video":
            continue
        width = _positive_int(stream.get("width"))
        height = _positive_int(stream.get("height"))
        if not width or not height:
            continue
        duration = _positive_float(stream.get("duration"))
        if duration is None:
            duration = _positive_float((data.get("format") or {}).get("duration"))
        return VideoProbe(width=width, height=height, duration=duration)
    raise ProbeError("No valid video stream found")


def capture_frame(
    video_path: str,
    output_path: str,
    offset_seconds: float,
    *,
    width: int,
    height: int | None,
    ffmpeg_path: str = "ffmpeg",
    quality: int = 3,
    timeout: int = 120,
) -> None:
    # height=None keeps the source aspect; -2 rounds to an even size for the encoder.
    scale = f"scale={width}:{height if height else -2}"
    cmd = [
        ffmpeg_path,
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-ss",
        f"{max(0.0, offset_seconds):.3f}",
        "-i",
        str(video_path),
        "-frames:v",
        "1",
        "-vf",
        scale,
        "-q:v",
        str(quality),
        str(output_path),
    ]
    try:
        res = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as exc:
        raise DecodeError(f"ffmpeg timed out after {timeout}s") from exc
    except OSError as exc:
        raise DecodeError(f"ffmpeg could not run: {exc}") from exc
    if res.returncode != 0:
        raise DecodeError((res.stderr or res.stdout or "ffmpeg failed").strip())
    if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
        raise DecodeError("ffmpeg produced no frame")


def frame_brightness(path: str) -> float:
    """Mean brightness of an image across RGB channels, 0.0 (black) to 1.0."""
    with Image.open(path) as image:
        stat = ImageStat.Stat(image.convert("RGB"))
    return sum(stat.mean) / (255.0 * len(stat.mean))


def _positive_int(value: Any) -> int | None:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def _positive_float(value: Any) -> float | None:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None
