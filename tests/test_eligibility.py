from datetime import datetime, timedelta, timezone

from thumbreel.eligibility import evaluate_item, is_eligible, is_video_url
from thumbreel.models import FeedItem, VideoRef
from thumbreel.utils import normalize_identifier

NOW = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)
WINDOW = timedelta(hours=24)


def _item(**overrides):
    values = {
        "permalink": "/r/videos/comments/abc123/clip/",
        "title": "A clip",
        "author": "someone",
        "score": 10,
        "created_utc": (NOW - timedelta(hours=2)).timestamp(),
        "over_18": False,
        "is_video": True,
        "video": VideoRef(
            fallback_url="https://v.redd.it/abc123/DASH_720.mp4?source=fallback",
            manifest_url=None,
            width=1280,
            height=720,
            duration=12.0,
            bitrate_kbps=2400,
            is_gif=False,
        ),
    }
    values.update(overrides)
    return FeedItem(**values)


def test_fresh_video_is_accepted():
    decision = evaluate_item(_item(), NOW, WINDOW, set())
    assert decision.decision == "ACCEPT"
    assert decision.item_id == "_r_videos_comments_abc123_clip_"
    assert is_eligible(_item(), NOW, WINDOW, set())


def test_not_video():
    decision = evaluate_item(_item(is_video=False), NOW, WINDOW, set())
    assert decision.reasons == ["not_video"]


def test_missing_video_url():
    decision = evaluate_item(_item(video=None), NOW, WINDOW, set())
    assert decision.reasons == ["missing_video_url"]


def test_arbitrary_url_rejected():
    video = VideoRef("not a url at all", None, 640, 360, 5.0, None, False)
    decision = evaluate_item(_item(video=video), NOW, WINDOW, set())
    assert decision.reasons == ["invalid_video_url"]


def test_stale_item_is_skipped():
    old = (NOW - timedelta(hours=25)).timestamp()
    decision = evaluate_item(_item(created_utc=old), NOW, WINDOW, set())
    assert decision.decision == "SKIP"
    assert decision.reasons == ["stale"]


def test_item_exactly_at_window_edge_is_fresh():
    edge = (NOW - WINDOW).timestamp()
    assert evaluate_item(_item(created_utc=edge), NOW, WINDOW, set()).decision == "ACCEPT"


def test_duplicate_is_skipped():
    existing = {normalize_identifier("/r/videos/comments/abc123/clip/")}
    decision = evaluate_item(_item(), NOW, WINDOW, existing)
    assert decision.reasons == ["duplicate"]


def test_rules_short_circuit_in_order():
    old = (NOW - timedelta(days=3)).timestamp()
    existing = {"_r_videos_comments_abc123_clip_"}
    decision = evaluate_item(_item(is_video=False, created_utc=old), NOW, WINDOW, existing)
    assert decision.reasons == ["not_video"]
    decision = evaluate_item(_item(created_utc=old), NOW, WINDOW, existing)
    assert decision.reasons == ["stale"]


def test_nsfw_policy():
    item = _item(over_18=True)
    assert evaluate_item(item, NOW, WINDOW, set()).decision == "ACCEPT"
    assert evaluate_item(item, NOW, WINDOW, set(), allow_nsfw=False).reasons == ["nsfw"]


def test_is_video_url():
    assert is_video_url("https://cdn.example.com/clips/a.MP4")
    assert is_video_url("https://v.redd.it/abc123/DASH_480.mp4?source=fallback")
    assert is_video_url("https://v.redd.it/abc123/HLSPlaylist.m3u8")
    assert not is_video_url("https://v.redd.it/")
    assert not is_video_url("https://example.com/page.html")
    assert not is_video_url("ftp://example.com/a.mp4")
    assert not is_video_url("javascript:alert(1)")
    assert not is_video_url("")


def test_urls_with_whitespace_or_control_characters_rejected():
    assert not is_video_url("https://v.redd.it/id2/DASH 480.mp4")
    assert not is_video_url("https://cdn.example.com/a.mp4\n")
    assert not is_video_url(" https://cdn.example.com/a.mp4")
    assert not is_video_url("https://cdn.example.com/a\x00.mp4")
    video = VideoRef("https://v.redd.it/id2/DASH 480.mp4", None, 640, 360, 5.0, None, False)
    assert evaluate_item(_item(video=video), NOW, WINDOW, set()).reasons == ["invalid_video_url"]
