from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional


MINUTES_PER_DAY = 24 * 60
DEFAULT_DURATION_MINUTES = 5
DEFAULT_DISPLAY_COUNT = 2

_HHMM_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*$")


@dataclass(frozen=True)
class ScheduleEntry:
    id: str
    arrival_time: str
    supplier_name: str = ""
    finish_time: Optional[str] = None
    number: Optional[str] = None
    order: Optional[str] = None
    supplier_reading: Optional[str] = None
    material_reading: Optional[str] = None
    preparation: Optional[str] = None
    yard: Optional[str] = None
    lane: Optional[str] = None
    note: Optional[str] = None

    @staticmethod
    def from_json(obj: Dict[str, Any]) -> "ScheduleEntry":
        def _opt(key: str) -> Optional[str]:
            v = obj.get(key)
            if v is None:
                return None
            s = str(v).strip()
            return s or None

        return ScheduleEntry(
            id=str(obj.get("id") or "").strip(),
            arrival_time=str(obj.get("arrivalTime") or "").strip(),
            supplier_name=str(obj.get("supplierName") or "").strip(),
            finish_time=_opt("finishTime"),
            number=_opt("number"),
            order=_opt("order"),
            supplier_reading=_opt("supplierReading"),
            material_reading=_opt("materialReading"),
            preparation=_opt("preparation"),
            yard=_opt("yard"),
            lane=_opt("lane"),
            note=_opt("note"),
        )


@dataclass(frozen=True)
class ScheduleFile:
    entries: List[ScheduleEntry]
    meta: Dict[str, Any]

    @staticmethod
    def from_json(data: Any) -> Optional["ScheduleFile"]:
        if not isinstance(data, dict):
            return None
        rows = data.get("entries")
        if not isinstance(rows, list):
            return None
        entries = [ScheduleEntry.from_json(r) for r in rows if isinstance(r, dict)]
        meta = data.get("meta")
        return ScheduleFile(entries=entries, meta=meta if isinstance(meta, dict) else {})


@dataclass(frozen=True)
class NormalizedEntry:
    entry: ScheduleEntry
    arrival_instant: int
    finish_instant: int

    @property
    def id(self) -> str:
        return self.entry.id

    @property
    def sort_order(self) -> int:
        try:
            return int(self.entry.order or "0")
        except ValueError:
            return 0


def parse_hhmm(text: Optional[str]) -> Optional[int]:
    """
    "HH:MM" (or "H:MM", "HH:MM:SS") -> minutes since midnight, else None.
    """
    if not text:
        return None
    m = _HHMM_RE.match(text)
    if not m:
        return None
    hh, mm = int(m.group(1)), int(m.group(2))
    if hh > 23 or mm > 59:
        return None
    return hh * 60 + mm


def minutes_since_midnight(now: dt.datetime) -> int:
    return now.hour * 60 + now.minute


def normalize_entries(
    entries: Iterable[ScheduleEntry],
    now_minutes: int,
    default_duration: int = DEFAULT_DURATION_MINUTES,
) -> List[NormalizedEntry]:
    """
    Attach an absolute arrival instant to each entry.

    An entry whose finish time (or arrival + default_duration) is already
    behind "now" belongs to tomorrow: its instant is pushed forward one day.
    Entries without a usable arrival time are dropped.
    """
    out: List[NormalizedEntry] = []
    for entry in entries:
        arrival = parse_hhmm(entry.arrival_time)
        if arrival is None:
            continue

        finish = parse_hhmm(entry.finish_time)
        if finish is None:
            finish = arrival + default_duration

        if finish < now_minutes:
            out.append(
                NormalizedEntry(
                    entry=entry,
                    arrival_instant=arrival + MINUTES_PER_DAY,
                    finish_instant=finish + MINUTES_PER_DAY,
                )
            )
        else:
            out.append(NormalizedEntry(entry=entry, arrival_instant=arrival, finish_instant=finish))
    return out


def sort_entries(entries: Iterable[NormalizedEntry]) -> List[NormalizedEntry]:
    return sorted(entries, key=lambda e: (e.arrival_instant, e.sort_order))


def pick_display_entries(
    entries: Iterable[NormalizedEntry],
    now_minutes: int,
    before_minutes: int,
    limit: int = DEFAULT_DISPLAY_COUNT,
) -> List[NormalizedEntry]:
    """
    Entries already inside the look-ahead window, earliest first, at most `limit`.
    Index 0 is the primary (current) slot, index 1 the next slot.
    """
    shown = [e for e in sort_entries(entries) if e.arrival_instant - before_minutes <= now_minutes]
    return shown[: max(0, int(limit))]


def select_display(
    entries: Iterable[ScheduleEntry],
    now_minutes: int,
    before_minutes: int,
    limit: int = DEFAULT_DISPLAY_COUNT,
) -> List[NormalizedEntry]:
    return pick_display_entries(normalize_entries(entries, now_minutes), now_minutes, before_minutes, limit)
