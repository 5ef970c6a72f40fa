import pytest
from google.api_core.exceptions import ServiceUnavailable

from thumbreel.config import build_config
from thumbreel.errors import UploadError
from thumbreel.models import ThumbnailArtifact
from thumbreel.publish import (
    DirectoryPublisher,
    GcsPublisher,
    build_publisher,
    object_metadata,
    thumbnail_key,
)


class _FakeBlob:
    def __init__(self, name, error=None):
        self.name = name
        self.error = error
        self.cache_control = None
        self.metadata = None
        self.uploads = []

    def upload_from_filename(self, filename, **kwargs):
        if self.error is not None:
            raise self.error
        self.uploads.append((filename, kwargs))


class _FakeBucket:
    def __init__(self, error=None):
        self.error = error
        self.blobs = {}

    def blob(self, name):
        self.blobs[name] = _FakeBlob(name, self.error)
        return self.blobs[name]


class _FakeClient:
    def __init__(self, error=None):
        self.buckets = {}
        self.error = error

    def bucket(self, name):
        self.buckets[name] = _FakeBucket(self.error)
        return self.buckets[name]


def _artifact(tmp_path):
    path = tmp_path / "frame.jpg"
    path.write_bytes(b"jpeg")
    return ThumbnailArtifact(
        path=str(path),
        width=640,
        height=360,
        source_width=1920,
        source_height=1080,
        offset_seconds=5.0,
    )


def test_thumbnail_key_is_per_identifier():
    assert thumbnail_key("_r_videos_abc_") == "thumbnails/_r_videos_abc_.jpg"
    assert thumbnail_key("abc", "/custom/") == "custom/abc.jpg"
    assert thumbnail_key("abc", "") == "abc.jpg"


def test_gcs_publisher_uploads_public_cached_jpeg(tmp_path):
    client = _FakeClient()
    publisher = GcsPublisher("thumbs", client=client, timeout=12)

    url = publisher.publish(_artifact(tmp_path), "thumbnails/abc.jpg")

    assert url == "https://storage.googleapis.com/thumbs/thumbnails/abc.jpg"
    blob = client.buckets["thumbs"].blobs["thumbnails/abc.jpg"]
    assert blob.cache_control == "public, max-age=31536000"
    assert blob.metadata == {
        "width": "640",
        "height": "360",
        "originalWidth": "1920",
        "originalHeight": "1080",
    }
    filename, kwargs = blob.uploads[0]
    assert filename.endswith("frame.jpg")
    assert kwargs == {"content_type": "image/jpeg", "predefined_acl": "publicRead", "timeout": 12}


def test_gcs_publisher_wraps_api_errors(tmp_path):
    publisher = GcsPublisher("thumbs", client=_FakeClient(ServiceUnavailable("backend down")))
    with pytest.raises(UploadError):
        publisher.publish(_artifact(tmp_path), "thumbnails/abc.jpg")


def test_gcs_publisher_requires_bucket():
    with pytest.raises(ValueError):
        GcsPublisher("", client=_FakeClient())


def test_directory_publisher_copies_and_overwrites(tmp_path):
    out = tmp_path / "published"
    publisher = DirectoryPublisher(str(out))
    artifact = _artifact(tmp_path)

    url = publisher.publish(artifact, "thumbnails/abc.jpg")
    publisher.publish(artifact, "thumbnails/abc.jpg")

    assert url.startswith("file://")
    assert (out / "thumbnails" / "abc.jpg").read_bytes() == b"jpeg"
    assert sorted(p.name for p in (out / "thumbnails").iterdir()) == ["abc.jpg"]


def test_directory_publisher_missing_artifact(tmp_path):
    publisher = DirectoryPublisher(str(tmp_path / "published"))
    artifact = ThumbnailArtifact(str(tmp_path / "gone.jpg"), 640, 360, 1920, 1080, 0.0)
    with pytest.raises(UploadError):
        publisher.publish(artifact, "thumbnails/abc.jpg")


def test_build_publisher_directory_backend(tmp_path):
    config = build_config(
        {"publish": {"backend": "directory", "output_dir": str(tmp_path / "out")}}
    )
    assert isinstance(build_publisher(config.publish), DirectoryPublisher)


def test_object_metadata(tmp_path):
    assert object_metadata(_artifact(tmp_path))["originalHeight"] == "1080"
