from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .utils import log_event

logger = logging.getLogger("thumbreel.scratch")


def ensure_scratch_dir(path: str) -> Path:
    scratch = Path(path)
    scratch.mkdir(parents=True, exist_ok=True)
    return scratch


def remove_quietly(path: str | os.PathLike[str]) -> bool:
    """Delete ``path`` if present. Failures are logged, never raised."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        log_event(logger, logging.WARNING, "scratch_cleanup_failed", path=path, error=str(exc))
        return False
    return True


@contextmanager
def scratch_file(directory: str | os.PathLike[str], name: str) -> Iterator[Path]:
    """Yield a path under ``directory`` that is removed on every exit path."""
    path = Path(directory) / name
    try:
        yield path
    finally:
        remove_quietly(path)
