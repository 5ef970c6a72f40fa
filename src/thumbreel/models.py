from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class VideoRef:
    fallback_url: str | None
    manifest_url: str | None
    width: int | None
    height: int | None
    duration: float | None
    bitrate_kbps: int | None
    is_gif: bool

    def estimated_bytes(self) -> int:
        if not self.bitrate_kbps or not self.duration:
            return 0
        return int(self.bitrate_kbps * 1000 / 8 * self.duration)


@dataclass(frozen=True)
class FeedItem:
    permalink: str
    title: str
    author: str | None
    score: int
    created_utc: float
    over_18: bool
    is_video: bool
    url: str | None = None
    subreddit: str | None = None
    num_comments: int = 0
    upvote_ratio: float | None = None
    media_type: str | None = None
    has_media: bool = False
    video: VideoRef | None = None


@dataclass(frozen=True)
class Partition:
    name: str
    enabled: bool
    limit: int
    time_window: str
    recency_hours: float
    allow_nsfw: bool


@dataclass(frozen=True)
class Decision:
    decision: str
    reasons: list[str]
    item_id: str
    title: str
    video_url: str | None


@dataclass(frozen=True)
class ThumbnailArtifact:
    path: str
    width: int
    height: int
    source_width: int
    source_height: int
    offset_seconds: float
    content_type: str = "image/jpeg"
    cache_control: str = "public, max-age=31536000"


@dataclass(frozen=True)
class PartitionResult:
    partition: str
    status: str
    found_count: int
    eligible_count: int
    processed_count: int
    error_count: int
    skipped_count: int
    error: str | None = None
    decisions: list[Decision] = field(default_factory=list)


@dataclass(frozen=True)
class BatchStats:
    processed_count: int
    error_count: int
    skipped_count: int
    partitions_failed: int
    aborted: bool
    abort_reason: str | None
    started_at: str
    timestamp: str
