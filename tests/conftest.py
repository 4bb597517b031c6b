from __future__ import annotations

import asyncio
import datetime as dt
from typing import Any, Dict, List, Optional

import pytest

from arrivalboard.audio import AudioError
from arrivalboard.board_config import BoardConfig
from arrivalboard.ledger import PlaybackLedger
from arrivalboard.schedule import ScheduleFile
from arrivalboard.store import JsonFileStore


JST = dt.timezone(dt.timedelta(hours=9))


class Clock:
    def __init__(self, when: dt.datetime) -> None:
        self.now = when

    def __call__(self) -> dt.datetime:
        return self.now

    def at(self, hhmm: str) -> "Clock":
        hh, mm = hhmm.split(":")
        self.now = self.now.replace(hour=int(hh), minute=int(mm), second=0, microsecond=0)
        return self

    def advance(self, **kwargs) -> "Clock":
        self.now = self.now + dt.timedelta(**kwargs)
        return self


class FakeAudio:
    """
    Chime + speaker double. fail_on / hang_on name a step:
    "chime_start", "speak", "chime_end".
    """

    def __init__(self, fail_on: Optional[str] = None, hang_on: Optional[str] = None) -> None:
        self.fail_on = fail_on
        self.hang_on = hang_on
        self.calls: List[tuple] = []

    async def _maybe_break(self, step: str) -> None:
        if self.hang_on == step:
            await asyncio.sleep(3600)
        if self.fail_on == step:
            raise AudioError(f"{step} broke")

    async def play_chime(self, kind: str) -> None:
        self.calls.append(("chime", kind))
        await self._maybe_break(f"chime_{kind}")

    async def speak(self, text: str, options) -> None:
        self.calls.append(("speak", text))
        await self._maybe_break("speak")

    @property
    def spoken(self) -> List[str]:
        return [c[1] for c in self.calls if c[0] == "speak"]


class FakeSources:
    def __init__(self, config: Optional[Dict[str, Any]] = None, schedules: Optional[Dict[str, Any]] = None) -> None:
        self.config = config
        self.schedules = schedules or {}
        self.config_fetches = 0

    async def fetch_config(self) -> Optional[BoardConfig]:
        self.config_fetches += 1
        if self.config is None:
            return None
        return BoardConfig.from_json(self.config)

    async def fetch_schedule(self, data_url: str) -> Optional[ScheduleFile]:
        data = self.schedules.get(data_url)
        if data is None:
            return None
        return ScheduleFile.from_json(data)


def board_config(**overrides) -> Dict[str, Any]:
    cfg: Dict[str, Any] = {
        "speechFormat": "{supplierName} arriving at {arrivalTime}",
        "displaySettings": {"beforeMinutes": 30, "emptyTimeMessage": "No arrivals in the next {beforeMinutes} minutes"},
        "monitors": [
            {
                "id": "1",
                "title": "North gate",
                "dataUrl": "/data/north.json",
                "hasAudio": True,
                "audioSettings": {"timings": [30, 0]},
            },
            {
                "id": "2",
                "title": "South gate",
                "dataUrl": "/data/south.json",
                "hasAudio": True,
                "audioSettings": {"timings": [30, 0]},
            },
        ],
    }
    cfg.update(overrides)
    return cfg


def entry(entry_id: str, arrival: str, supplier: str = "", **extra) -> Dict[str, Any]:
    row = {"id": entry_id, "arrivalTime": arrival, "supplierName": supplier or f"Supplier {entry_id}"}
    row.update(extra)
    return row


@pytest.fixture
def clock() -> Clock:
    return Clock(dt.datetime(2026, 3, 2, 9, 0, tzinfo=JST))


@pytest.fixture
def ledger(tmp_path, clock) -> PlaybackLedger:
    return PlaybackLedger(JsonFileStore(tmp_path / "ledger.json"), clock=clock)
