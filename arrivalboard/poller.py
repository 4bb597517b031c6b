from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Protocol, Sequence

from .announce_queue import AnnouncementItem, AnnouncementQueue
from .board_config import BoardConfig, MonitorConfig
from .messages import format_display_message, format_speech
from .schedule import NormalizedEntry, ScheduleFile, minutes_since_midnight, select_display
from .thresholds import PlayedLookup, detect_candidates
from .tts import SpeechOptions


log = logging.getLogger("arrivalboard.poller")

DEFAULT_FALLBACK_INTERVAL_SECONDS = 10.0

MSG_CONFIG_UNAVAILABLE = "Configuration unavailable"
MSG_MONITOR_NOT_FOUND = "Monitor configuration not found"
MSG_SCHEDULE_UNAVAILABLE = "Schedule data unavailable"


class Sources(Protocol):
    async def fetch_config(self) -> Optional[BoardConfig]: ...

    async def fetch_schedule(self, data_url: str) -> Optional[ScheduleFile]: ...


@dataclass(frozen=True)
class FeedBinding:
    monitor_id: str
    # None: single view. True/False: left/right half of a split view.
    is_left_side: Optional[bool] = None

    @property
    def label(self) -> str:
        if self.is_left_side is None:
            return self.monitor_id
        return f"{self.monitor_id}/{'left' if self.is_left_side else 'right'}"


@dataclass(frozen=True)
class FeedState:
    """
    What the monitor should show right now. Rendering is someone else's job.
    """
    monitor_id: str
    title: str = ""
    entries: List[NormalizedEntry] = field(default_factory=list)
    error: Optional[str] = None
    loading: bool = True
    empty_message: str = ""
    header_note: Optional[str] = None
    config_version: Optional[str] = None
    updated_at: Optional[dt.datetime] = None


def resolve_feeds(monitor_ids: Sequence[str], cfg: Optional[BoardConfig]) -> List[FeedBinding]:
    """
    No ids: the config's default monitor. One id: single view.
    Two or more: split view, first is left and second is right.
    """
    ids = [m for m in monitor_ids if m]
    if not ids:
        m = cfg.default_monitor() if cfg is not None else None
        return [FeedBinding(m.id)] if m is not None else []
    if len(ids) == 1:
        return [FeedBinding(ids[0])]
    return [FeedBinding(ids[0], is_left_side=True), FeedBinding(ids[1], is_left_side=False)]


def _local_now() -> dt.datetime:
    return dt.datetime.now().astimezone()


class FeedPoller:
    """
    Self-rescheduling poll loop for one feed (monitor).

    Each tick: fetch config + schedule, select what is on screen, detect due
    announcement thresholds, offer them to the shared queue. Ticks never overlap.
    """

    def __init__(
        self,
        feed: FeedBinding,
        *,
        sources: Sources,
        queue: AnnouncementQueue,
        ledger: PlayedLookup,
        audio_enabled: bool = True,
        fallback_interval_seconds: float = DEFAULT_FALLBACK_INTERVAL_SECONDS,
        clock: Callable[[], dt.datetime] = _local_now,
        on_state: Optional[Callable[[FeedState], None]] = None,
    ) -> None:
        self.feed = feed
        self.sources = sources
        self.queue = queue
        self.ledger = ledger
        self.audio_enabled = audio_enabled
        self.fallback_interval_seconds = float(fallback_interval_seconds)
        self.clock = clock
        self.on_state = on_state

        self.state = FeedState(monitor_id=feed.monitor_id)
        self.last_config: Optional[BoardConfig] = None
        self._stop = asyncio.Event()
        self.log = logging.getLogger(f"arrivalboard.poller.{feed.monitor_id}")

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _publish(self, **changes) -> None:
        self.state = replace(self.state, updated_at=self.clock(), **changes)
        if self.on_state is not None:
            try:
                self.on_state(self.state)
            except Exception:
                self.log.exception("Feed state callback failed")

    async def tick(self) -> float:
        """
        Run one poll cycle; returns seconds until the next one.
        """
        fresh = await self.sources.fetch_config()
        if fresh is not None:
            self.last_config = fresh
        elif self.last_config is not None:
            self.log.info("Config fetch failed; reusing last known config")
        cfg = self.last_config

        if cfg is None:
            self._publish(error=MSG_CONFIG_UNAVAILABLE, loading=False, entries=[])
            return self.fallback_interval_seconds

        monitor = cfg.monitor(self.feed.monitor_id)
        interval = self.fallback_interval_seconds
        if fresh is not None:
            interval = float(cfg.poll_interval_seconds(monitor) or self.fallback_interval_seconds)

        if monitor is None:
            self.log.warning("Monitor %s not in board config", self.feed.monitor_id)
            self._publish(error=MSG_MONITOR_NOT_FOUND, loading=False, entries=[])
            return interval

        schedule = await self.sources.fetch_schedule(monitor.data_url)
        if schedule is None:
            self._publish(error=MSG_SCHEDULE_UNAVAILABLE, loading=False, title=monitor.title)
            return interval

        now = self.clock()
        now_min = minutes_since_midnight(now)
        before = cfg.display.before_minutes
        shown = select_display(schedule.entries, now_min, before, cfg.display_count(monitor))

        self._publish(
            title=monitor.title,
            entries=shown,
            error=None,
            loading=False,
            empty_message=format_display_message(cfg.display.empty_time_message, before),
            header_note=monitor.header_note,
            config_version=cfg.config_version,
        )
        self.log.debug(
            "Tick: entries=%d shown=%s now=%d",
            len(schedule.entries),
            ",".join(f"{e.id}@{e.arrival_instant}" for e in shown),
            now_min,
        )

        if monitor.has_audio and self.audio_enabled:
            self.enqueue(shown, now_min, cfg, monitor)

        return interval

    def enqueue(self, shown: Sequence[NormalizedEntry], now_min: int, cfg: BoardConfig, monitor: MonitorConfig) -> int:
        template = cfg.speech_template(monitor)
        speech = SpeechOptions(lang=monitor.speech_lang, rate=monitor.speech_rate, pitch=monitor.speech_pitch)

        accepted = 0
        for c in detect_candidates(shown, now_min, monitor.thresholds, self.ledger):
            text = format_speech(template, c.entry.entry)
            if not text.strip():
                self.log.warning("Empty speech text for entry %s; check speechFormat", c.entry.id)
                continue
            item = AnnouncementItem(
                entry_id=c.entry.id,
                supplier_name=c.entry.entry.supplier_name,
                arrival_time=c.entry.entry.arrival_time,
                arrival_instant=c.entry.arrival_instant,
                feed_id=monitor.id,
                feed_title=monitor.title,
                is_primary=c.is_primary,
                threshold=c.threshold,
                speech_text=text,
                speech=speech,
                is_left_side=self.feed.is_left_side,
            )
            if self.queue.offer(item):
                accepted += 1
        return accepted

    async def run_forever(self) -> None:
        self.log.info("Feed poller starting (%s)", self.feed.label)
        while not self._stop.is_set():
            delay = self.fallback_interval_seconds
            try:
                delay = await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.log.exception("Poll tick failed")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=max(1.0, delay))
            except asyncio.TimeoutError:
                pass
        self.log.info("Feed poller stopped (%s)", self.feed.label)
