# ham_status.py
"""
HAM status table - the state shared between the background prober and the
foreground dashboard.

- ProtocolRecord: one immutable row (name, score, detail)
- Band: qualitative health tier derived from a score
- StatusTable: ordered, lock-guarded set of rows (one writer, one reader)
- RunState: one-shot cancellation flag
"""
from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence

MIN_SCORE = 0
MAX_SCORE = 10

BAR_FILL = "█"
BAR_EMPTY = "░"


class Band(enum.Enum):
    PENDING = "Testing..."
    BLOCKED = "Blocked/Failed"
    LIMITED = "Limited"
    GOOD = "Good"
    UNKNOWN = "Unknown"

    @property
    def label(self) -> str:
        return self.value


BAND_STYLES = {
    Band.PENDING: "dim yellow",
    Band.BLOCKED: "bold red",
    Band.LIMITED: "yellow",
    Band.GOOD: "bold green",
    Band.UNKNOWN: "white",
}


def classify_band(score: int) -> Band:
    """Map a score to its band; total over all integers."""
    if 0 <= score <= 3:
        return Band.BLOCKED
    if 4 <= score <= 6:
        return Band.LIMITED
    if 7 <= score <= 10:
        return Band.GOOD
    return Band.UNKNOWN


def clamp_score(score: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(score)))


def render_bar(score: int, width: int = MAX_SCORE) -> str:
    filled = clamp_score(score)
    return BAR_FILL * filled + BAR_EMPTY * (width - filled)


@dataclass(frozen=True)
class ProtocolRecord:
    name: str
    score: int = 0
    detail: str = ""
    updated_at: Optional[float] = None  # None until the first probe result lands

    @property
    def pending(self) -> bool:
        return self.updated_at is None

    @property
    def band(self) -> Band:
        if self.pending:
            return Band.PENDING
        return classify_band(self.score)


class StatusTable:
    """
    Ordered protocol rows guarded by a single lock.

    Rows are immutable records; update() swaps in a new record under the lock
    and snapshot() copies the row list under the same lock, so a reader can
    never see score and detail coming from different writes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: Dict[str, ProtocolRecord] = {}
        self._cycles = 0
        self._closed = False

    def initialize(self, names: Sequence[str], details: Optional[Sequence[str]] = None) -> None:
        if details is None:
            details = [""] * len(names)
        if len(details) != len(names):
            raise ValueError("names and details must have the same length")
        rows: Dict[str, ProtocolRecord] = {}
        for name, detail in zip(names, details):
            if name in rows:
                raise ValueError(f"Duplicate protocol name: {name}")
            rows[name] = ProtocolRecord(name=name, score=0, detail=detail)
        with self._lock:
            self._rows = rows
            self._cycles = 0
            self._closed = False

    def update(self, name: str, score: int, detail: str) -> bool:
        """Overwrite score and detail of an existing row. Returns False when ignored."""
        now = time.time()
        with self._lock:
            if self._closed:
                return False
            current = self._rows.get(name)
            if current is None:
                return False
            self._rows[name] = replace(current, score=score, detail=detail, updated_at=now)
            return True

    def mark_cycle(self) -> None:
        with self._lock:
            if not self._closed:
                self._cycles += 1

    def snapshot(self) -> List[ProtocolRecord]:
        with self._lock:
            return list(self._rows.values())

    @property
    def cycles(self) -> int:
        with self._lock:
            return self._cycles

    def close(self) -> None:
        """End of session; later writes become no-ops."""
        with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    @classmethod
    def from_names(cls, names: Iterable[str], details: Optional[Iterable[str]] = None) -> "StatusTable":
        table = cls()
        names = list(names)
        table.initialize(names, list(details) if details is not None else None)
        return table


class RunState:
    """Single-shot running flag: starts True, flips to False once, never back."""

    def __init__(self) -> None:
        self._stopped = threading.Event()

    @property
    def running(self) -> bool:
        return not self._stopped.is_set()

    def stop(self) -> None:
        self._stopped.set()
