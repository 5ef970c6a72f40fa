import logging
import os
import sys

from thumbreel.utils import configure_logging


def test_configure_logging_idempotent(tmp_path, monkeypatch):
    log_file = tmp_path / "app.log"
    monkeypatch.setenv("TR_LOG_LEVEL", "INFO")
    monkeypatch.setenv("TR_LOG_FILE", str(log_file))

    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        root.handlers = []
        configure_logging("thumbreel.worker")
        configure_logging("thumbreel.worker")

        stdout_handlers = [
            handler
            for handler in root.handlers
            if isinstance(handler, logging.StreamHandler)
            and getattr(handler, "stream", None) is sys.stdout
        ]
        file_handlers = [
            handler for handler in root.handlers if isinstance(handler, logging.FileHandler)
        ]

        assert len(stdout_handlers) == 1
        assert len(file_handlers) == 1
        assert os.path.abspath(file_handlers[0].baseFilename) == os.path.abspath(
            str(log_file)
        )
    finally:
        for handler in root.handlers:
            if handler not in original_handlers:
                handler.close()
        root.handlers = original_handlers
        root.setLevel(original_level)


def test_log_level_overrides(monkeypatch):
    monkeypatch.setenv("TR_LOG_LEVELS", "thumbreel.feed=DEBUG, thumbreel.publish=warning")
    target = logging.getLogger("thumbreel.feed")
    other = logging.getLogger("thumbreel.publish")
    saved = (target.level, other.level)
    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        configure_logging("thumbreel")
        assert target.level == logging.DEBUG
        assert other.level == logging.WARNING
    finally:
        root.handlers = original_handlers
        root.setLevel(original_level)
        target.setLevel(saved[0])
        other.setLevel(saved[1])
