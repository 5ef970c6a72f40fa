from __future__ import annotations

import copy
import logging
from typing import Any

import yaml

from .config import Config
from .errors import ConfigError
from .models import Partition
from .utils import log_event


def partition_defaults(config: Config) -> dict[str, Any]:
    return {
        "enabled": True,
        "limit": config.feed.limit,
        "time_window": config.feed.time_window,
        "recency_hours": config.eligibility.recency_hours,
        "allow_nsfw": config.eligibility.allow_nsfw,
    }


def resolve_partitions(config: Config, logger: logging.Logger) -> list[Partition]:
    entries: list[Any] = list(config.feed.partitions)
    if config.feed.partitions_file:
        entries = load_partitions_file(config.feed.partitions_file)
    defaults = partition_defaults(config)
    partitions: list[Partition] = []
    seen: set[str] = set()
    for entry in entries:
        name, overrides = _split_entry(entry)
        if name.lower() in seen:
            log_event(logger, logging.WARNING, "partition_duplicate", partition=name)
            continue
        seen.add(name.lower())
        merged = _deep_merge(copy.deepcopy(defaults), overrides, logger, path=f"partition.{name}")
        partition = _build_partition(name, merged)
        if not partition.enabled:
            log_event(logger, logging.INFO, "partition_disabled", partition=name)
            continue
        partitions.append(partition)
    return partitions


def load_partitions_file(path: str) -> list[Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"Partitions file not readable: {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Partitions file is not valid YAML: {path}: {exc}") from exc
    if isinstance(payload, dict):
        payload = payload.get("partitions")
    if not isinstance(payload, list):
        raise ConfigError(f"Partitions file must contain a list of partitions: {path}")
    return payload


def _split_entry(entry: Any) -> tuple[str, dict[str, Any]]:
    if isinstance(entry, str) and entry.strip():
        return entry.strip(), {}
    if isinstance(entry, dict):
        name = entry.get("name")
        if isinstance(name, str) and name.strip():
            overrides = {key: value for key, value in entry.items() if key != "name"}
            return name.strip(), overrides
    raise ConfigError(f"Invalid partition entry: {entry!r}")


def _build_partition(name: str, values: dict[str, Any]) -> Partition:
    try:
        partition = Partition(
            name=name,
            enabled=bool(values["enabled"]),
            limit=int(values["limit"]),
            time_window=str(values["time_window"]),
            recency_hours=float(values["recency_hours"]),
            allow_nsfw=bool(values["allow_nsfw"]),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid partition overrides for {name}: {exc}") from exc
    if partition.limit <= 0:
        raise ConfigError(f"Partition {name} limit must be positive")
    return partition


def _deep_merge(
    base: dict[str, Any],
    overrides: dict[str, Any],
    logger: logging.Logger,
    path: str,
) -> dict[str, Any]:
    for key, value in overrides.items():
        if key not in base:
            log_event(logger, logging.DEBUG, "policy_unknown_key", path=f"{path}.{key}")
            continue
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value, logger, path=f"{path}.{key}")
        else:
            base[key] = value
    return base


def find_partition(config: Config, name: str, logger: logging.Logger) -> Partition:
    """Return the configured partition called ``name``, or one built from defaults."""
    for partition in resolve_partitions(config, logger):
        if partition.name.lower() == name.lower():
            return partition
    return _build_partition(name, partition_defaults(config))
