from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from google.api_core.exceptions import GoogleAPIError
from google.cloud import storage

from .config import PublishConfig
from .errors import UploadError
from .models import ThumbnailArtifact
from .utils import log_event

logger = logging.getLogger("thumbreel.publish")


class Publisher(Protocol):
    def publish(self, artifact: ThumbnailArtifact, key: str) -> str: ...


def thumbnail_key(item_id: str, prefix: str = "thumbnails") -> str:
    # One object per identifier, so republishing overwrites.
    prefix = prefix.strip("/")
    return f"{prefix}/{item_id}.jpg" if prefix else f"{item_id}.jpg"


def object_metadata(artifact: ThumbnailArtifact) -> dict[str, str]:
    return {
        "width": str(artifact.width),
        "height": str(artifact.height),
        "originalWidth": str(artifact.source_width),
        "originalHeight": str(artifact.source_height),
    }


class GcsPublisher:
    def __init__(
        self,
        bucket_name: str,
        *,
        project_id: str | None = None,
        public_base_url: str = "https://storage.googleapis.com",
        timeout: int = 60,
        cache_control: str | None = None,
        client: storage.Client | None = None,
    ) -> None:
        if not bucket_name:
            raise ValueError("bucket name is required for the gcs publisher")
        self.bucket_name = bucket_name
        self.public_base_url = public_base_url.rstrip("/")
        self.timeout = timeout
        self.cache_control = cache_control
        self.client = client or storage.Client(project=project_id or None)
        self.bucket = self.client.bucket(bucket_name)

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{self.bucket_name}/{quote(key)}"

    def publish(self, artifact: ThumbnailArtifact, key: str) -> str:
        blob = self.bucket.blob(key)
        blob.cache_control = self.cache_control or artifact.cache_control
        blob.metadata = object_metadata(artifact)
        try:
            blob.upload_from_filename(
                artifact.path,
                content_type=artifact.content_type,
                predefined_acl="publicRead",
                timeout=self.timeout,
            )
        except (GoogleAPIError, OSError, ValueError) as exc:
            raise UploadError(f"upload to gs://{self.bucket_name}/{key} failed: {exc}") from exc
        url = self.public_url(key)
        log_event(logger, logging.INFO, "thumbnail_uploaded", key=key, url=url)
        return url


class DirectoryPublisher:
    """Copies artifacts under a local directory; URLs are ``file://`` URIs."""

    def __init__(self, output_dir: str) -> None:
        self.output_dir = Path(output_dir)

    def publish(self, artifact: ThumbnailArtifact, key: str) -> str:
        dest = self.output_dir / key
        tmp = dest.with_name(dest.name + ".part")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(artifact.path, tmp)
            os.replace(tmp, dest)
        except OSError as exc:
            try:
                tmp.unlink()
            except FileNotFoundError:
                pass
            except OSError as cleanup_exc:
                log_event(logger, logging.WARNING, "publish_cleanup_failed", error=str(cleanup_exc))
            raise UploadError(f"copy to {dest} failed: {exc}") from exc
        url = dest.resolve().as_uri()
        log_event(logger, logging.INFO, "thumbnail_published", key=key, url=url)
        return url


def build_publisher(config: PublishConfig) -> Publisher:
    if config.backend == "directory":
        return DirectoryPublisher(config.output_dir)
    return GcsPublisher(
        config.bucket,
        project_id=config.project_id,
        public_base_url=config.public_base_url,
        timeout=config.upload_timeout_seconds,
        cache_control=config.cache_control,
    )
