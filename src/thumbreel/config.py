from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from typing import Any

import yaml

from .errors import ConfigError


@dataclass(frozen=True)
class AppConfig:
    name: str


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    scratch_dir: str
    state_db: str


@dataclass(frozen=True)
class FeedConfig:
    base_url: str
    partitions: list[Any]
    partitions_file: str
    limit: int
    time_window: str


@dataclass(frozen=True)
class HttpConfig:
    timeout_seconds: int
    user_agent: str
    max_retries: int
    backoff_seconds: int


@dataclass(frozen=True)
class EligibilityConfig:
    recency_hours: float
    allow_nsfw: bool
    video_extensions: list[str]
    video_hosts: list[str]


@dataclass(frozen=True)
class ThumbnailConfig:
    sizing: str
    fixed_width: int
    offset_ratio: float
    fallback_offsets: list[float]
    blank_threshold: float
    jpeg_quality: int
    download_timeout_seconds: int
    probe_timeout_seconds: int
    decode_timeout_seconds: int
    ffmpeg_path: str
    ffprobe_path: str


@dataclass(frozen=True)
class PublishConfig:
    backend: str
    bucket: str
    project_id: str
    key_prefix: str
    cache_control: str
    public_base_url: str
    output_dir: str
    upload_timeout_seconds: int


@dataclass(frozen=True)
class StoreConfig:
    collection: str
    stats_collection: str
    stats_doc_id: str


@dataclass(frozen=True)
class BatchConfig:
    memory_ceiling_bytes: int
    item_delay_seconds: float
    partition_delay_seconds: float
    deadline_seconds: int
    partition_workers: int


@dataclass(frozen=True)
class WorkerConfig:
    interval_seconds: int
    max_retries: int
    backoff_seconds: int


@dataclass(frozen=True)
class Config:
    app: AppConfig
    paths: PathsConfig
    feed: FeedConfig
    http: HttpConfig
    eligibility: EligibilityConfig
    thumbnail: ThumbnailConfig
    publish: PublishConfig
    store: StoreConfig
    batch: BatchConfig
    worker: WorkerConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "thumbreel",
    },
    "paths": {
        "data_dir": "/data",
        "scratch_dir": "/tmp/thumbreel",
        "state_db": "",
    },
    "feed": {
        "base_url": "https://www.reddit.com",
        "partitions": [
            "videos",
            "nextfuckinglevel",
            "PublicFreakout",
            "unexpected",
            "interestingasfuck",
            "AbruptChaos",
            "IdiotsInCars",
            "Whatcouldgowrong",
            "BeAmazed",
            "toptalent",
            "WinStupidPrizes",
            "holdmybeer",
        ],
        "partitions_file": "",
        "limit": 50,
        "time_window": "day",
    },
    "http": {
        "timeout_seconds": 30,
        "user_agent": "thumbreel/0.1 (video thumbnail ingest)",
        "max_retries": 2,
        "backoff_seconds": 2,
    },
    "eligibility": {
        "recency_hours": 24.0,
        "allow_nsfw": True,
        "video_extensions": [".mp4", ".m4v", ".mov", ".webm", ".mkv"],
        "video_hosts": ["v.redd.it"],
    },
    "thumbnail": {
        "sizing": "bucket",
        "fixed_width": 640,
        "offset_ratio": 0.5,
        "fallback_offsets": [0.25, 0.75],
        "blank_threshold": 0.1,
        "jpeg_quality": 3,
        "download_timeout_seconds": 60,
        "probe_timeout_seconds": 30,
        "decode_timeout_seconds": 120,
        "ffmpeg_path": "ffmpeg",
        "ffprobe_path": "ffprobe",
    },
    "publish": {
        "backend": "gcs",
        "bucket": "",
        "project_id": "",
        "key_prefix": "thumbnails",
        "cache_control": "public, max-age=31536000",
        "public_base_url": "https://storage.googleapis.com",
        "output_dir": "/data/published",
        "upload_timeout_seconds": 60,
    },
    "store": {
        "collection": "redditVideos",
        "stats_collection": "stats",
        "stats_doc_id": "ingest_batch",
    },
    "batch": {
        "memory_ceiling_bytes": 200 * 1024 * 1024,
        "item_delay_seconds": 1.0,
        "partition_delay_seconds": 2.0,
        "deadline_seconds": 540,
        "partition_workers": 1,
    },
    "worker": {
        "interval_seconds": 6 * 60 * 60,
        "max_retries": 3,
        "backoff_seconds": 5,
    },
}

DEFAULT_CONFIG_PATH = "/config/config.yml"

# Lists whose entries are validated by their own loader.
_FREEFORM_LISTS = {"config.feed.partitions"}

_ENV_OVERRIDES = {
    "TR_BUCKET": ("publish", "bucket"),
    "TR_PROJECT_ID": ("publish", "project_id"),
    "TR_DATA_DIR": ("paths", "data_dir"),
    "TR_SCRATCH_DIR": ("paths", "scratch_dir"),
}


def load_config(path: str | None = None) -> Config:
    explicit = path or os.environ.get("TR_CONFIG_PATH")
    config_path = explicit or DEFAULT_CONFIG_PATH
    raw: dict[str, Any] = {}
    if os.path.exists(config_path):
        raw = _read_yaml(config_path)
    elif explicit:
        raise ConfigError(f"Config file not found: {config_path}")
    return build_config(raw)


def build_config(overrides: dict[str, Any] | None = None) -> Config:
    cfg = _merge(copy.deepcopy(DEFAULT_CONFIG), overrides or {})
    _apply_env_overrides(cfg)
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(cfg)


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    if errors:
        return errors
    if cfg["thumbnail"]["sizing"] not in {"bucket", "fixed_width"}:
        errors.append("config.thumbnail.sizing must be 'bucket' or 'fixed_width'")
    if not 0.0 <= float(cfg["thumbnail"]["offset_ratio"]) <= 1.0:
        errors.append("config.thumbnail.offset_ratio must be between 0 and 1")
    for ratio in cfg["thumbnail"]["fallback_offsets"]:
        if not 0.0 <= float(ratio) <= 1.0:
            errors.append("config.thumbnail.fallback_offsets must be between 0 and 1")
            break
    if cfg["publish"]["backend"] not in {"gcs", "directory"}:
        errors.append("config.publish.backend must be 'gcs' or 'directory'")
    if not 1 <= int(cfg["batch"]["partition_workers"]) <= 4:
        errors.append("config.batch.partition_workers must be between 1 and 4")
    if int(cfg["feed"]["limit"]) <= 0:
        errors.append("config.feed.limit must be positive")
    if int(cfg["batch"]["memory_ceiling_bytes"]) <= 0:
        errors.append("config.batch.memory_ceiling_bytes must be positive")
    return errors


def _read_yaml(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file is not valid YAML: {path}: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    return payload


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge(base[key], value)
        else:
            base[key] = value
    return base


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name, "").strip()
        if value and isinstance(cfg.get(section), dict):
            cfg[section][key] = value


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, list):
        if not isinstance(value, list):
            errors.append(f"{path} must be a list")
            return
        if path in _FREEFORM_LISTS:
            return
        sample = default[0] if default else ""
        expected = (int, float) if isinstance(sample, float) else type(sample)
        for item in value:
            if isinstance(item, bool) or not isinstance(item, expected):
                errors.append(f"{path} must be a list of {type(sample).__name__}")
                break
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    paths_cfg = cfg["paths"]
    feed_cfg = cfg["feed"]
    http_cfg = cfg["http"]
    elig_cfg = cfg["eligibility"]
    thumb_cfg = cfg["thumbnail"]
    publish_cfg = cfg["publish"]
    store_cfg = cfg["store"]
    batch_cfg = cfg["batch"]
    worker_cfg = cfg["worker"]

    data_dir = str(paths_cfg["data_dir"])
    paths = PathsConfig(
        data_dir=data_dir,
        scratch_dir=str(paths_cfg["scratch_dir"]),
        state_db=str(paths_cfg["state_db"]) or os.path.join(data_dir, "state.sqlite3"),
    )

    feed = FeedConfig(
        base_url=str(feed_cfg["base_url"]).rstrip("/"),
        partitions=list(feed_cfg["partitions"]),
        partitions_file=str(feed_cfg["partitions_file"]),
        limit=int(feed_cfg["limit"]),
        time_window=str(feed_cfg["time_window"]),
    )

    http = HttpConfig(
        timeout_seconds=int(http_cfg["timeout_seconds"]),
        user_agent=str(http_cfg["user_agent"]),
        max_retries=int(http_cfg["max_retries"]),
        backoff_seconds=int(http_cfg["backoff_seconds"]),
    )

    eligibility = EligibilityConfig(
        recency_hours=float(elig_cfg["recency_hours"]),
        allow_nsfw=bool(elig_cfg["allow_nsfw"]),
        video_extensions=[str(ext).lower() for ext in elig_cfg["video_extensions"]],
        video_hosts=[str(host).lower() for host in elig_cfg["video_hosts"]],
    )

    thumbnail = ThumbnailConfig(
        sizing=str(thumb_cfg["sizing"]),
        fixed_width=int(thumb_cfg["fixed_width"]),
        offset_ratio=float(thumb_cfg["offset_ratio"]),
        fallback_offsets=[float(value) for value in thumb_cfg["fallback_offsets"]],
        blank_threshold=float(thumb_cfg["blank_threshold"]),
        jpeg_quality=int(thumb_cfg["jpeg_quality"]),
        download_timeout_seconds=int(thumb_cfg["download_timeout_seconds"]),
        probe_timeout_seconds=int(thumb_cfg["probe_timeout_seconds"]),
        decode_timeout_seconds=int(thumb_cfg["decode_timeout_seconds"]),
        ffmpeg_path=str(thumb_cfg["ffmpeg_path"]),
        ffprobe_path=str(thumb_cfg["ffprobe_path"]),
    )

    publish = PublishConfig(
        backend=str(publish_cfg["backend"]),
        bucket=str(publish_cfg["bucket"]),
        project_id=str(publish_cfg["project_id"]),
        key_prefix=str(publish_cfg["key_prefix"]).strip("/"),
        cache_control=str(publish_cfg["cache_control"]),
        public_base_url=str(publish_cfg["public_base_url"]).rstrip("/"),
        output_dir=str(publish_cfg["output_dir"]),
        upload_timeout_seconds=int(publish_cfg["upload_timeout_seconds"]),
    )

    store = StoreConfig(
        collection=str(store_cfg["collection"]),
        stats_collection=str(store_cfg["stats_collection"]),
        stats_doc_id=str(store_cfg["stats_doc_id"]),
    )

    batch = BatchConfig(
        memory_ceiling_bytes=int(batch_cfg["memory_ceiling_bytes"]),
        item_delay_seconds=float(batch_cfg["item_delay_seconds"]),
        partition_delay_seconds=float(batch_cfg["partition_delay_seconds"]),
        deadline_seconds=int(batch_cfg["deadline_seconds"]),
        partition_workers=int(batch_cfg["partition_workers"]),
    )

    worker = WorkerConfig(
        interval_seconds=int(worker_cfg["interval_seconds"]),
        max_retries=int(worker_cfg["max_retries"]),
        backoff_seconds=int(worker_cfg["backoff_seconds"]),
    )

    return Config(
        app=AppConfig(name=str(cfg["app"]["name"])),
        paths=paths,
        feed=feed,
        http=http,
        eligibility=eligibility,
        thumbnail=thumbnail,
        publish=publish,
        store=store,
        batch=batch,
        worker=worker,
    )
