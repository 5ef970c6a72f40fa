from __future__ import annotations

import json
import logging
import socket
import time
from http.client import HTTPException
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from .config import HttpConfig
from .errors import FeedTimeoutError, FetchError
from .models import FeedItem, VideoRef
from .utils import log_event

logger = logging.getLogger("thumbreel.feed")

_READ_CHUNK = 64 * 1024


def listing_url(base_url: str, partition: str, limit: int, time_window: str) -> str:
    query = urlencode({"limit": limit, "t": time_window})
    return f"{base_url.rstrip('/')}/r/{quote(partition, safe='')}/top.json?{query}"


def fetch_items(
    partition: str,
    limit: int,
    http: HttpConfig,
    base_url: str = "https://www.reddit.com",
    time_window: str = "day",
) -> list[FeedItem]:
    url = listing_url(base_url, partition, limit, time_window)
    headers = {"User-Agent": http.user_agent, "Accept": "application/json"}
    body = _fetch_url(url, headers, http.timeout_seconds, http.max_retries, http.backoff_seconds)
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FetchError(f"malformed listing for {partition}: {exc}") from exc
    items = parse_listing(payload)
    log_event(logger, logging.INFO, "feed_fetched", partition=partition, found_count=len(items))
    return items


def _fetch_url(
    url: str,
    headers: dict[str, str],
    timeout: int,
    max_retries: int,
    backoff_seconds: int,
) -> bytes:
    # The timeout caps the whole exchange, retries and body reads included.
    deadline = time.monotonic() + timeout
    attempt = 0
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise FeedTimeoutError(f"request exceeded {timeout}s: {url}")
        try:
            request = Request(url, headers=headers)
            with urlopen(request, timeout=remaining) as response:
                status = response.getcode()
                if status is None or not 200 <= status < 300:
                    raise FetchError(f"HTTP error! status: {status}", status=status)
                return _read_with_deadline(response, deadline, timeout, url)
        except HTTPError as exc:
            raise FetchError(f"HTTP error! status: {exc.code}", status=exc.code) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise FeedTimeoutError(f"request exceeded {timeout}s: {url}") from exc
        except URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                raise FeedTimeoutError(f"request exceeded {timeout}s: {url}") from exc
            if attempt >= max_retries:
                raise FetchError(f"network error: {exc.reason}") from exc
            attempt += 1
            time.sleep(min(backoff_seconds * attempt, max(0.0, deadline - time.monotonic())))
        except (OSError, HTTPException) as exc:
            raise FetchError(f"connection failed: {type(exc).__name__}: {exc}") from exc


def _read_with_deadline(response, deadline: float, timeout: int, url: str) -> bytes:
    chunks: list[bytes] = []
    while True:
        if time.monotonic() > deadline:
            raise FeedTimeoutError(f"request exceeded {timeout}s: {url}")
        chunk = response.read(_READ_CHUNK)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


def parse_listing(payload: Any) -> list[FeedItem]:
    if not isinstance(payload, dict):
        raise FetchError("malformed listing: expected an object")
    data = payload.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("children"), list):
        raise FetchError("malformed listing: missing data.children")
    items: list[FeedItem] = []
    for child in data["children"]:
        post = child.get("data") if isinstance(child, dict) else None
        if not isinstance(post, dict):
            log_event(logger, logging.DEBUG, "feed_child_skipped", reason="not_an_object")
            continue
        item = item_from_post(post)
        if item is None:
            log_event(logger, logging.DEBUG, "feed_child_skipped", reason="missing_permalink")
            continue
        items.append(item)
    return items


def item_from_post(post: dict[str, Any]) -> FeedItem | None:
    permalink = post.get("permalink")
    if not isinstance(permalink, str) or not permalink:
        return None
    media = post.get("media") if isinstance(post.get("media"), dict) else None
    if media is None and isinstance(post.get("secure_media"), dict):
        media = post["secure_media"]
    return FeedItem(
        permalink=permalink,
        title=str(post.get("title") or ""),
        author=post.get("author") or None,
        score=_as_int(post.get("score")) or 0,
        created_utc=_as_float(post.get("created_utc")) or 0.0,
        over_18=bool(post.get("over_18")),
        is_video=bool(post.get("is_video")),
        url=post.get("url") or None,
        subreddit=post.get("subreddit") or None,
        num_comments=_as_int(post.get("num_comments")) or 0,
        upvote_ratio=_as_float(post.get("upvote_ratio")),
        media_type=(media or {}).get("type") or None,
        has_media=media is not None,
        video=_video_ref(media),
    )


def _video_ref(media: dict[str, Any] | None) -> VideoRef | None:
    if not media:
        return None
    video = media.get("reddit_video")
    if not isinstance(video, dict):
        return None
    return VideoRef(
        fallback_url=video.get("fallback_url") or None,
        manifest_url=video.get("dash_url") or video.get("hls_url") or None,
        width=_as_int(video.get("width")),
        height=_as_int(video.get("height")),
        duration=_as_float(video.get("duration")),
        bitrate_kbps=_as_int(video.get("bitrate_kbps")),
        is_gif=bool(video.get("is_gif")),
    )


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
