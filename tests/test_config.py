import pytest
import yaml

from thumbreel.config import ConfigError, build_config, load_config


def test_load_config_applies_defaults(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump({"publish": {"bucket": "thumbs"}}))

    config = load_config(str(path))

    assert config.publish.bucket == "thumbs"
    assert config.publish.key_prefix == "thumbnails"
    assert config.store.collection == "redditVideos"
    assert config.batch.memory_ceiling_bytes == 200 * 1024 * 1024
    assert config.batch.item_delay_seconds == 1.0
    assert config.batch.partition_delay_seconds == 2.0
    assert config.http.timeout_seconds == 30
    assert config.eligibility.recency_hours == 24.0
    assert config.thumbnail.offset_ratio == 0.5


def test_state_db_defaults_under_data_dir(tmp_path):
    config = build_config({"paths": {"data_dir": str(tmp_path)}})
    assert config.paths.state_db == str(tmp_path / "state.sqlite3")


def test_missing_explicit_config_fails(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "missing.yml"))


def test_unknown_and_mistyped_keys_are_reported():
    with pytest.raises(ConfigError) as excinfo:
        build_config({"batch": {"item_delay": 1, "deadline_seconds": "soon"}})
    message = str(excinfo.value)
    assert "unknown config.batch.item_delay" in message
    assert "config.batch.deadline_seconds must be an integer" in message


def test_range_checks():
    with pytest.raises(ConfigError):
        build_config({"batch": {"partition_workers": 8}})
    with pytest.raises(ConfigError):
        build_config({"thumbnail": {"sizing": "stretch"}})
    with pytest.raises(ConfigError):
        build_config({"publish": {"backend": "ftp"}})


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("TR_BUCKET", "env-bucket")
    monkeypatch.setenv("TR_PROJECT_ID", "env-project")
    monkeypatch.setenv("TR_SCRATCH_DIR", str(tmp_path / "scratch"))

    config = build_config({"publish": {"bucket": "file-bucket"}})

    assert config.publish.bucket == "env-bucket"
    assert config.publish.project_id == "env-project"
    assert config.paths.scratch_dir == str(tmp_path / "scratch")


def test_partitions_accept_mappings():
    config = build_config({"feed": {"partitions": ["videos", {"name": "aww", "limit": 10}]}})
    assert config.feed.partitions[1] == {"name": "aww", "limit": 10}
