import logging

import pytest
import yaml

from thumbreel.config import ConfigError, build_config
from thumbreel.policy import find_partition, resolve_partitions


def test_partition_overrides_merge_over_defaults():
    config = build_config(
        {
            "feed": {
                "partitions": [
                    "videos",
                    {"name": "aww", "limit": 10, "recency_hours": 48, "allow_nsfw": False},
                ]
            }
        }
    )
    partitions = resolve_partitions(config, logging.getLogger("test"))

    assert [partition.name for partition in partitions] == ["videos", "aww"]
    assert partitions[0].limit == 50
    assert partitions[0].time_window == "day"
    assert partitions[1].limit == 10
    assert partitions[1].recency_hours == 48.0
    assert partitions[1].allow_nsfw is False


def test_disabled_and_duplicate_partitions_are_dropped():
    config = build_config(
        {"feed": {"partitions": ["videos", "Videos", {"name": "aww", "enabled": False}]}}
    )
    partitions = resolve_partitions(config, logging.getLogger("test"))
    assert [partition.name for partition in partitions] == ["videos"]


def test_unknown_override_keys_are_ignored():
    config = build_config({"feed": {"partitions": [{"name": "videos", "colour": "red"}]}})
    partitions = resolve_partitions(config, logging.getLogger("test"))
    assert partitions[0].name == "videos"


def test_partitions_file_replaces_inline_list(tmp_path):
    path = tmp_path / "partitions.yml"
    path.write_text(yaml.safe_dump({"partitions": ["aww", {"name": "gifs", "limit": 5}]}))
    config = build_config({"feed": {"partitions_file": str(path)}})

    partitions = resolve_partitions(config, logging.getLogger("test"))

    assert [(partition.name, partition.limit) for partition in partitions] == [
        ("aww", 50),
        ("gifs", 5),
    ]


def test_invalid_partition_entry():
    config = build_config({"feed": {"partitions": [42]}})
    with pytest.raises(ConfigError):
        resolve_partitions(config, logging.getLogger("test"))


def test_find_partition_falls_back_to_defaults():
    config = build_config({"feed": {"partitions": [{"name": "videos", "limit": 7}]}})
    logger = logging.getLogger("test")
    assert find_partition(config, "VIDEOS", logger).limit == 7
    assert find_partition(config, "aww", logger).limit == 50
