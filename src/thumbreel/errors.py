from __future__ import annotations


class ThumbreelError(Exception):
    pass


class ConfigError(ValueError):
    pass


class FetchError(ThumbreelError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class FeedTimeoutError(FetchError, TimeoutError):
    pass


class ExtractionError(ThumbreelError):
    step = "extract"


class DownloadError(ExtractionError):
    step = "download"


class ProbeError(ExtractionError):
    step = "probe"


class DecodeError(ExtractionError):
    step = "decode"


class UploadError(ThumbreelError):
    step = "publish"


class PersistenceError(ThumbreelError):
    step = "persist"


class MemoryBudgetExceeded(ThumbreelError):
    def __init__(self, in_flight: int, upcoming: int, ceiling: int) -> None:
        super().__init__(
            f"memory budget exceeded: in_flight={in_flight} upcoming={upcoming} ceiling={ceiling}"
        )
        self.in_flight = in_flight
        self.upcoming = upcoming
        self.ceiling = ceiling


# Failures scoped to a single item; the batch logs, counts and moves on.
ITEM_ERRORS: tuple[type[ThumbreelError], ...] = (
    DownloadError,
    ProbeError,
    DecodeError,
    UploadError,
    PersistenceError,
)
