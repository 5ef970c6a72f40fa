from __future__ import annotations

import threading

from .errors import MemoryBudgetExceeded


class MemoryBudget:
    """Counts bytes of downloaded video held on scratch storage.

    Downloads charge as they stream and release once the scratch file is gone.
    Shared by every partition worker in a batch.
    """

    def __init__(self, ceiling_bytes: int) -> None:
        if ceiling_bytes <= 0:
            raise ValueError("ceiling_bytes must be positive")
        self.ceiling_bytes = ceiling_bytes
        self._in_flight = 0
        self._peak = 0
        self._lock = threading.Lock()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def peak(self) -> int:
        with self._lock:
            return self._peak

    def check(self, upcoming: int = 0) -> None:
        with self._lock:
            if self._in_flight + max(0, upcoming) > self.ceiling_bytes:
                raise MemoryBudgetExceeded(self._in_flight, upcoming, self.ceiling_bytes)

    def charge(self, nbytes: int) -> None:
        if nbytes <= 0:
            return
        with self._lock:
            self._in_flight += nbytes
            self._peak = max(self._peak, self._in_flight)
            if self._in_flight > self.ceiling_bytes:
                raise MemoryBudgetExceeded(self._in_flight, 0, self.ceiling_bytes)

    def release(self, nbytes: int) -> None:
        if nbytes <= 0:
            return
        with self._lock:
            self._in_flight = max(0, self._in_flight - nbytes)
