from __future__ import annotations

from .models import FeedItem, ThumbnailArtifact
from .utils import normalize_identifier, utc_now_iso

RECORD_SCHEMA_VERSION = 2

RECORD_FIELDS = (
    "title",
    "url",
    "thumbnail",
    "thumbnail_width",
    "thumbnail_height",
    "permalink",
    "created",
    "is_video",
    "video_url",
    "video_source",
    "video_width",
    "video_height",
    "duration",
    "bitrate",
    "is_gif",
    "has_audio",
    "subreddit",
    "updatedAt",
    "nsfw",
    "score",
    "comments",
    "author",
    "upvoteRatio",
    "has_media",
    "media_type",
    "postId",
    "schema_version",
)


def build_record(
    item: FeedItem,
    partition: str,
    thumbnail_url: str,
    artifact: ThumbnailArtifact | None = None,
    updated_at: str | None = None,
) -> dict[str, object]:
    video = item.video
    record: dict[str, object] = {
        "title": item.title,
        "url": item.url,
        "thumbnail": thumbnail_url,
        "thumbnail_width": artifact.width if artifact else None,
        "thumbnail_height": artifact.height if artifact else None,
        "permalink": item.permalink,
        "created": item.created_utc,
        "is_video": bool(item.is_video),
        "video_url": (video.manifest_url or video.fallback_url) if video else None,
        "video_source": "reddit",
        "video_width": video.width if video else None,
        "video_height": video.height if video else None,
        "duration": video.duration if video else None,
        "bitrate": video.bitrate_kbps if video else None,
        "is_gif": bool(video.is_gif) if video else False,
        "has_audio": bool(video and video.manifest_url and not video.is_gif),
        "subreddit": item.subreddit or partition,
        "updatedAt": updated_at or utc_now_iso(),
        "nsfw": bool(item.over_18),
        "score": item.score or 0,
        "comments": item.num_comments or 0,
        "author": item.author or "[deleted]",
        "upvoteRatio": item.upvote_ratio if item.upvote_ratio is not None else 1.0,
        "has_media": bool(item.has_media),
        "media_type": item.media_type,
        "postId": normalize_identifier(item.permalink),
        "schema_version": RECORD_SCHEMA_VERSION,
    }
    return {key: record[key] for key in RECORD_FIELDS}
