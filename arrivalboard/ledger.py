from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

from .store import JsonFileStore


log = logging.getLogger("arrivalboard.ledger")

DEFAULT_LEDGER_KEY = "audioPlaybackRecords"

Clock = Callable[[], dt.datetime]


def _local_now() -> dt.datetime:
    return dt.datetime.now().astimezone()


def _parse_iso(s: Any) -> Optional[dt.datetime]:
    if not isinstance(s, str) or not s.strip():
        return None
    try:
        t = dt.datetime.fromisoformat(s.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if t.tzinfo is None:
        t = t.astimezone()
    return t


@dataclass(frozen=True)
class PlaybackRecord:
    entry_id: str
    min_played_threshold: int
    played_at: str
    arrival_time: str = ""

    def played_at_dt(self) -> Optional[dt.datetime]:
        return _parse_iso(self.played_at)

    def to_json(self) -> Dict[str, Any]:
        # Key names match the records written by the kiosk pages.
        return {
            "entryId": self.entry_id,
            "timingMinutes": self.min_played_threshold,
            "playedAt": self.played_at,
            "arrivalTime": self.arrival_time,
        }

    @staticmethod
    def from_json(obj: Any) -> Optional["PlaybackRecord"]:
        if not isinstance(obj, dict):
            return None
        entry_id = obj.get("entryId")
        timing = obj.get("timingMinutes")
        if not isinstance(entry_id, str) or not entry_id:
            return None
        if isinstance(timing, bool) or not isinstance(timing, int):
            return None
        if _parse_iso(obj.get("playedAt")) is None:
            return None
        arrival = obj.get("arrivalTime")
        return PlaybackRecord(
            entry_id=entry_id,
            min_played_threshold=timing,
            played_at=str(obj["playedAt"]),
            arrival_time=arrival if isinstance(arrival, str) else "",
        )


@dataclass(frozen=True)
class LedgerLoad:
    """
    Ok(records) | Corrupt(reason).
    """
    kind: Literal["ok", "corrupt"]
    records: List[PlaybackRecord] = field(default_factory=list)
    reason: str = ""

    @property
    def is_corrupt(self) -> bool:
        return self.kind == "corrupt"


class PlaybackLedger:
    """
    Persisted, expiring record of which (entry, threshold) pairs were announced.

    One record per entry id. Recording a new threshold keeps min(existing, new),
    so once the threshold closest to arrival has played, every larger threshold
    for that entry counts as played too. Only records played on the current
    local calendar day are consulted.
    """

    def __init__(
        self,
        store: JsonFileStore,
        *,
        key: str = DEFAULT_LEDGER_KEY,
        max_age: dt.timedelta = dt.timedelta(hours=24),
        clock: Clock = _local_now,
    ) -> None:
        self.store = store
        self.key = key
        self.max_age = max_age
        self.clock = clock

    def load(self) -> LedgerLoad:
        res = self.store.get(self.key)
        if res.status == "missing":
            return LedgerLoad("ok")
        if res.status == "corrupt":
            return LedgerLoad("corrupt", reason=res.reason)

        blob = res.value
        if not isinstance(blob, list):
            return LedgerLoad("corrupt", reason="ledger blob is not a list")

        out: List[PlaybackRecord] = []
        for i, raw in enumerate(blob):
            rec = PlaybackRecord.from_json(raw)
            if rec is None:
                return LedgerLoad("corrupt", reason=f"malformed record at index {i}")
            out.append(rec)
        return LedgerLoad("ok", records=out)

    def _save(self, records: List[PlaybackRecord]) -> None:
        self.store.set(self.key, [r.to_json() for r in records])

    def records(self) -> List[PlaybackRecord]:
        loaded = self.load()
        if loaded.is_corrupt:
            log.warning("Playback ledger corrupt (%s); resetting to empty", loaded.reason)
            self._save([])
            return []
        return loaded.records

    def get_record(self, entry_id: str) -> Optional[PlaybackRecord]:
        for r in self.records():
            if r.entry_id == entry_id:
                return r
        return None

    def _played_today(self, records: List[PlaybackRecord], entry_id: str) -> List[int]:
        """
        Thresholds recorded for entry_id on the clock's current local date.
        """
        now = self.clock()
        today = now.date()
        played: List[int] = []
        for r in records:
            if r.entry_id != entry_id:
                continue
            t = r.played_at_dt()
            if t is None or t.astimezone(now.tzinfo).date() != today:
                continue
            played.append(r.min_played_threshold)
        return played

    def has_been_played(self, entry_id: str, threshold: int) -> bool:
        played = self._played_today(self.records(), entry_id)
        if not played:
            return False
        return threshold >= min(played)

    def record_playback(self, entry_id: str, threshold: int, arrival_time: str = "") -> PlaybackRecord:
        records = self.records()
        # A record from an earlier day is replaced, never merged.
        existing = self._played_today(records, entry_id)
        keep = min(existing + [int(threshold)])

        rec = PlaybackRecord(
            entry_id=entry_id,
            min_played_threshold=keep,
            played_at=self.clock().isoformat(timespec="milliseconds"),
            arrival_time=arrival_time,
        )
        out = [r for r in records if r.entry_id != entry_id]
        out.append(rec)
        self._save(out)
        log.debug("Ledger: entry=%s threshold=%s (stored=%s)", entry_id, threshold, keep)
        return rec

    def cleanup(self) -> int:
        records = self.records()
        cutoff = self.clock() - self.max_age
        out: List[PlaybackRecord] = []
        for r in records:
            t = r.played_at_dt()
            if t is not None and t > cutoff:
                out.append(r)
        removed = len(records) - len(out)
        if removed:
            self._save(out)
            log.info("Ledger sweep: pruned %d record(s) older than %s", removed, self.max_age)
        return removed

    def repair(self) -> int:
        """
        Startup pass: reset a corrupt ledger, then prune stale records.
        """
        loaded = self.load()
        if loaded.is_corrupt:
            log.warning("Playback ledger corrupt at startup (%s); clearing", loaded.reason)
            self.clear()
            return 0
        return self.cleanup()

    def clear(self) -> None:
        self.store.remove(self.key)

    def clear_entry(self, entry_id: str) -> bool:
        records = self.records()
        out = [r for r in records if r.entry_id != entry_id]
        if len(out) == len(records):
            return False
        self._save(out)
        return True
