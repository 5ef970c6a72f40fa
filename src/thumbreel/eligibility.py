"""Per-item admission rules for the ingest batch.

Rules run in a fixed order and stop at the first failure, so every skipped
item carries exactly one reason code:

``not_video``          the item does not report itself as video content
``missing_video_url``  no playable stream URL is attached
``invalid_video_url``  the URL is neither a known video file nor a known video host
``nsfw``               partition policy excludes NSFW items
``stale``              created outside the recency window
``duplicate``          a record with the same normalized identifier already exists
"""

from __future__ import annotations

import posixpath
import re
from datetime import datetime, timedelta
from typing import Iterable
from urllib.parse import urlsplit

from .models import Decision, FeedItem
from .utils import from_epoch, normalize_identifier

DEFAULT_VIDEO_EXTENSIONS = (".mp4", ".m4v", ".mov", ".webm", ".mkv")
DEFAULT_VIDEO_HOSTS = ("v.redd.it",)

# v.redd.it/<asset id>/<rendition>, e.g. /abc123/DASH_480.mp4 or /abc123/HLSPlaylist.m3u8
_VIDEO_HOST_PATH = re.compile(r"^/[A-Za-z0-9]+/[A-Za-z0-9_.\-]+$")
_UNSAFE_URL_CHARS = re.compile(r"[\s\x00-\x1f\x7f]")


def playable_url(item: FeedItem) -> str | None:
    if item.video is None:
        return None
    return item.video.fallback_url


def is_video_url(
    url: str,
    extensions: Iterable[str] = DEFAULT_VIDEO_EXTENSIONS,
    hosts: Iterable[str] = DEFAULT_VIDEO_HOSTS,
) -> bool:
    if not isinstance(url, str) or not url or _UNSAFE_URL_CHARS.search(url):
        return False
    try:
        split = urlsplit(url)
    except ValueError:
        return False
    if split.scheme.lower() not in {"http", "https"} or not split.netloc:
        return False
    path = split.path or ""
    _, ext = posixpath.splitext(path)
    if ext and ext.lower() in {value.lower() for value in extensions}:
        return True
    host = (split.hostname or "").lower()
    if host in {value.lower() for value in hosts}:
        return bool(_VIDEO_HOST_PATH.match(path))
    return False


def evaluate_item(
    item: FeedItem,
    now: datetime,
    recency_window: timedelta,
    existing_ids: set[str] | frozenset[str],
    allow_nsfw: bool = True,
    extensions: Iterable[str] = DEFAULT_VIDEO_EXTENSIONS,
    hosts: Iterable[str] = DEFAULT_VIDEO_HOSTS,
) -> Decision:
    item_id = normalize_identifier(item.permalink)
    url = playable_url(item)

    def _skip(reason: str) -> Decision:
        return Decision(
            decision="SKIP", reasons=[reason], item_id=item_id, title=item.title, video_url=url
        )

    if not item.is_video:
        return _skip("not_video")
    if not url:
        return _skip("missing_video_url")
    if not is_video_url(url, extensions, hosts):
        return _skip("invalid_video_url")
    if item.over_18 and not allow_nsfw:
        return _skip("nsfw")
    created = from_epoch(item.created_utc)
    if created is None or now - created > recency_window:
        return _skip("stale")
    if item_id in existing_ids:
        return _skip("duplicate")
    return Decision(decision="ACCEPT", reasons=[], item_id=item_id, title=item.title, video_url=url)


def is_eligible(
    item: FeedItem,
    now: datetime,
    recency_window: timedelta,
    existing_ids: set[str] | frozenset[str],
) -> bool:
    return evaluate_item(item, now, recency_window, existing_ids).decision == "ACCEPT"
