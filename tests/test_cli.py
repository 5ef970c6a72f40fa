import logging
import os

import yaml

from thumbreel import cli
from thumbreel.models import BatchStats
from thumbreel.storage import init_db, set_document, write_batch_stats

LOGGER = logging.getLogger("test.cli")


def _config_file(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(
        yaml.safe_dump(
            {
                "paths": {"data_dir": str(tmp_path / "data"), "scratch_dir": str(tmp_path / "s")},
                "feed": {"partitions": ["videos", {"name": "aww", "enabled": False}]},
                "publish": {"backend": "directory", "output_dir": str(tmp_path / "out")},
            }
        )
    )
    return str(path)


def _run(argv):
    args = cli.build_parser().parse_args(argv)
    return args.func(args, LOGGER)


def test_db_migrate_creates_store(tmp_path):
    config_path = _config_file(tmp_path)
    assert _run(["--config", config_path, "db", "migrate"]) == 0
    assert os.path.exists(tmp_path / "data" / "state.sqlite3")


def test_stats_missing_then_present(tmp_path, caplog):
    config_path = _config_file(tmp_path)
    assert _run(["--config", config_path, "stats"]) == 1

    conn = init_db(str(tmp_path / "data" / "state.sqlite3"))
    write_batch_stats(
        conn,
        "stats",
        "ingest_batch",
        BatchStats(3, 1, 0, 0, False, None, "2024-01-01T00:00:00+00:00", "2024-01-01T00:01:00+00:00"),
    )
    with caplog.at_level(logging.INFO, logger="test.cli"):
        assert _run(["--config", config_path, "stats"]) == 0
    assert "processed_count=3" in caplog.text


def test_records_lists_documents(tmp_path, caplog):
    config_path = _config_file(tmp_path)
    conn = init_db(str(tmp_path / "data" / "state.sqlite3"))
    set_document(conn, "redditVideos", "abc", {"title": "A clip"})

    with caplog.at_level(logging.INFO, logger="test.cli"):
        assert _run(["--config", config_path, "records", "--limit", "5"]) == 0
    assert "A clip" in caplog.text


def test_partitions_lists_enabled_only(tmp_path, caplog):
    config_path = _config_file(tmp_path)
    with caplog.at_level(logging.INFO, logger="test.cli"):
        assert _run(["--config", config_path, "partitions"]) == 0
    assert "name=videos" in caplog.text
    assert "name=aww" not in caplog.text


def test_missing_config_is_reported(tmp_path):
    assert _run(["--config", str(tmp_path / "nope.yml"), "stats"]) == 1
