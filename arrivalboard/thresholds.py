from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Sequence

from .schedule import NormalizedEntry


log = logging.getLogger("arrivalboard.thresholds")


class PlayedLookup(Protocol):
    def has_been_played(self, entry_id: str, threshold: int) -> bool: ...


@dataclass(frozen=True)
class Candidate:
    entry: NormalizedEntry
    threshold: int
    is_primary: bool


def due_thresholds(arrival_instant: int, now_minutes: int, thresholds: Iterable[int]) -> List[int]:
    """
    Thresholds whose announcement moment (arrival - t) has been reached,
    closest-to-arrival first.
    """
    due = set()
    for t in thresholds:
        if isinstance(t, bool) or not isinstance(t, int) or t < 0:
            continue
        if now_minutes >= arrival_instant - t:
            due.add(t)
    return sorted(due)


def select_threshold(entry_id: str, due: Sequence[int], ledger: PlayedLookup) -> Optional[int]:
    for t in due:
        if not ledger.has_been_played(entry_id, t):
            return t
    return None


def detect_candidates(
    display_entries: Sequence[NormalizedEntry],
    now_minutes: int,
    thresholds: Sequence[int],
    ledger: PlayedLookup,
) -> List[Candidate]:
    """
    At most one candidate per displayed entry for this cycle.

    The first displayed entry is the primary slot; the rest are "next" slots.
    """
    out: List[Candidate] = []
    for idx, ne in enumerate(display_entries):
        if not ne.id:
            continue
        # Only reachable with a stale normalization (entries computed at an
        # earlier now); a fresh one rolls finished entries to tomorrow.
        if now_minutes > ne.finish_instant:
            continue

        due = due_thresholds(ne.arrival_instant, now_minutes, thresholds)
        if not due:
            continue

        t = select_threshold(ne.id, due, ledger)
        if t is None:
            log.debug("All due thresholds already played: entry=%s due=%s", ne.id, due)
            continue

        out.append(Candidate(entry=ne, threshold=t, is_primary=(idx == 0)))
    return out
