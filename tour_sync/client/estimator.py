"""Progress and ETA estimation for streaming syncs.

A persisted milliseconds-per-row baseline drives a locally ticking progress
value until the server reports real progress. After a successful run the
baseline is replaced by the measured rate of that run.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable

from tour_sync.client.store import MS_PER_ROW_KEY, SettingsStore

DEFAULT_MS_PER_ROW = 10
MIN_MS_PER_ROW = 3
MAX_MS_PER_ROW = 200
MIN_DURATION_MS = 1500
LOCAL_PROGRESS_CAP = 95
SERVER_PROGRESS_CAP = 99
TICK_INTERVAL = 0.2  # seconds


def clamp_ms_per_row(value) -> int:
    """Coerce any stored or measured value into [MIN_MS_PER_ROW, MAX_MS_PER_ROW]."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_MS_PER_ROW
    if math.isnan(number):
        return DEFAULT_MS_PER_ROW
    if math.isinf(number):
        return MAX_MS_PER_ROW if number > 0 else MIN_MS_PER_ROW
    return int(min(max(round(number), MIN_MS_PER_ROW), MAX_MS_PER_ROW))


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class EtaEstimator:
    def __init__(self, store: SettingsStore, clock: Callable[[], float] = _monotonic_ms) -> None:
        self._store = store
        self._clock = clock
        self.progress = 0
        self.eta_ms: int | None = None
        self._started_at: float | None = None
        self._duration_ms = MIN_DURATION_MS
        self._server_reported = False

    @property
    def ms_per_row(self) -> int:
        stored = self._store.get(MS_PER_ROW_KEY)
        if stored is None:
            return DEFAULT_MS_PER_ROW
        return clamp_ms_per_row(stored)

    def now(self) -> float:
        return self._clock()

    @property
    def duration_ms(self) -> int:
        return self._duration_ms

    def elapsed_ms(self) -> float:
        if self._started_at is None:
            return 0.0
        return max(self._clock() - self._started_at, 0.0)

    def _estimate(self, rows: int) -> int:
        return max(int(rows * self.ms_per_row), MIN_DURATION_MS)

    def begin(self, estimated_rows: int) -> None:
        self._started_at = self._clock()
        self._duration_ms = self._estimate(max(estimated_rows, 1))
        self._server_reported = False
        self.progress = 1
        self.eta_ms = self._duration_ms

    def tick(self) -> None:
        """Advance the local estimate; never moves the displayed value back."""
        if self._started_at is None:
            return
        elapsed = self.elapsed_ms()
        local = min(LOCAL_PROGRESS_CAP, math.floor(elapsed / self._duration_ms * LOCAL_PROGRESS_CAP))
        self.progress = max(self.progress, local)
        if not self._server_reported:
            self.eta_ms = int(max(self._duration_ms - elapsed, 0))

    def on_start(self, total: int) -> None:
        if total > 0:
            self._duration_ms = self._estimate(total)
            if not self._server_reported:
                self.eta_ms = int(max(self._duration_ms - self.elapsed_ms(), 0))

    def on_progress(self, processed: int, total: int) -> None:
        if total <= 0:
            return
        self._server_reported = True
        pct = math.floor(processed / total * 100)
        self.progress = min(SERVER_PROGRESS_CAP, max(self.progress, pct))
        elapsed = self.elapsed_ms()
        per_row = elapsed / processed if processed > 0 else self.ms_per_row
        self.eta_ms = int(max((total - processed) * per_row, 0))

    def complete(self, success: bool, inserted: int = 0, updated: int = 0) -> int | None:
        """Finish the run. On success the measured rate becomes the new baseline."""
        measured = None
        if success and self._started_at is not None:
            measured = clamp_ms_per_row(self.elapsed_ms() / max(inserted + updated, 1))
            self._store.set(MS_PER_ROW_KEY, measured)
        self.progress = 100
        self.eta_ms = 0
        self._started_at = None
        return measured
