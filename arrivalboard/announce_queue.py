from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol

from .thresholds import PlayedLookup
from .tts import SpeechOptions


log = logging.getLogger("arrivalboard.queue")

DEFAULT_COLLECTION_WINDOW_SECONDS = 0.5
DEFAULT_PRIMARY_FEED_ID = "1"


@dataclass(frozen=True)
class AnnouncementItem:
    entry_id: str
    supplier_name: str
    arrival_time: str
    arrival_instant: int
    feed_id: str
    feed_title: str
    is_primary: bool
    threshold: int
    speech_text: str
    speech: SpeechOptions = field(default_factory=SpeechOptions)
    is_left_side: Optional[bool] = None

    def describe(self) -> str:
        return f"{self.supplier_name} ({self.arrival_time}) t-{self.threshold} [{self.feed_title}]"


def priority_key(item: AnnouncementItem, primary_feed_id: str = DEFAULT_PRIMARY_FEED_ID) -> tuple:
    """
    Total play order:
      1. earliest arrival instant
      2. primary (current) slot before secondary (next) slot
      3. left before right (split view), else the primary feed first
      4. feed id, so equal keys still sort the same way every time
    """
    slot = 0 if item.is_primary else 1
    if item.is_left_side is not None:
        side = 0 if item.is_left_side else 1
    else:
        side = 0 if item.feed_id == primary_feed_id else 1
    return (item.arrival_instant, slot, side, item.feed_id, item.entry_id)


class Player(Protocol):
    @property
    def current(self) -> Optional[AnnouncementItem]: ...

    async def play(self, item: AnnouncementItem) -> object: ...


class CollectionWindow:
    """
    Timer-armed debounce. Every arm() restarts the countdown; when it runs out
    without another arm(), flush() is awaited once.
    """

    def __init__(self, delay: float, flush: Callable[[], Awaitable[None]], *, name: str = "collection_window") -> None:
        self.delay = max(0.0, float(delay))
        self._flush = flush
        self._name = name
        self._task: asyncio.Task | None = None
        self._flushing: set[asyncio.Task] = set()

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self) -> None:
        self.cancel()

        async def _runner() -> None:
            await asyncio.sleep(self.delay)
            # Past the countdown: a later arm() must not cancel the flush in progress.
            me = asyncio.current_task()
            if self._task is me:
                self._task = None
            if me is not None:
                self._flushing.add(me)
            try:
                await self._flush()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Collection window flush failed")
            finally:
                if me is not None:
                    self._flushing.discard(me)

        self._task = asyncio.create_task(_runner(), name=self._name)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None


class AnnouncementQueue:
    """
    Process-wide announcement queue shared by every feed poller.

    Feeds offer() candidates; a short collection window merges near-simultaneous
    offers from several feeds into one ordered pass, then items are handed to
    the player strictly one at a time.
    """

    def __init__(
        self,
        player: Player,
        ledger: PlayedLookup,
        *,
        window_seconds: float = DEFAULT_COLLECTION_WINDOW_SECONDS,
        primary_feed_id: str = DEFAULT_PRIMARY_FEED_ID,
    ) -> None:
        self.player = player
        self.ledger = ledger
        self.primary_feed_id = primary_feed_id
        self._items: List[AnnouncementItem] = []
        self._draining = False
        self._idle = asyncio.Event()
        self._idle.set()
        self.window = CollectionWindow(window_seconds, self.drain, name="announce_collect")

    def _key(self, item: AnnouncementItem) -> tuple:
        return priority_key(item, self.primary_feed_id)

    def __len__(self) -> int:
        return len(self._items)

    def pending(self) -> List[AnnouncementItem]:
        return sorted(self._items, key=self._key)

    def is_resident(self, entry_id: str) -> bool:
        if any(it.entry_id == entry_id for it in self._items):
            return True
        cur = self.player.current
        return cur is not None and cur.entry_id == entry_id

    def offer(self, item: AnnouncementItem) -> bool:
        if self.is_resident(item.entry_id):
            log.debug("Queue: %s already queued or playing; dropped", item.entry_id)
            return False
        if self.ledger.has_been_played(item.entry_id, item.threshold):
            log.debug("Queue: %s t-%s already played; dropped", item.entry_id, item.threshold)
            return False

        self._items.append(item)
        self._idle.clear()
        log.info("Queued announcement: %s", item.describe())
        self.window.arm()
        return True

    def _pop_next(self) -> Optional[AnnouncementItem]:
        if not self._items:
            return None
        self._items.sort(key=self._key)
        return self._items.pop(0)

    async def drain(self) -> None:
        if self._draining:
            return
        if not self._items:
            self._idle.set()
            return

        self._draining = True
        try:
            log.info(
                "Announcement order: %s",
                ", ".join(it.describe() for it in self.pending()),
            )
            while True:
                item = self._pop_next()
                if item is None:
                    break
                # A slower feed may have let the same threshold through while
                # an earlier copy was still playing.
                if self.ledger.has_been_played(item.entry_id, item.threshold):
                    log.info("Skipping already-played announcement: %s", item.describe())
                    continue
                try:
                    await self.player.play(item)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    log.exception("Announcement playback failed: %s", item.describe())
        finally:
            self._draining = False
            if not self._items:
                self._idle.set()

    async def wait_idle(self) -> None:
        while True:
            await self._idle.wait()
            if not self._items and not self._draining and not self.window.armed:
                return
            await asyncio.sleep(0.05)

    def close(self) -> None:
        self.window.cancel()
