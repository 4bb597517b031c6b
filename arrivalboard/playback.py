from __future__ import annotations

import asyncio
import datetime as dt
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, Set

from .announce_queue import AnnouncementItem
from .audio import ChimeKind
from .ledger import PlaybackLedger
from .tts import SpeechOptions


log = logging.getLogger("arrivalboard.playback")

DEFAULT_STEP_TIMEOUT_SECONDS = 15.0


class PlaybackState(str, enum.Enum):
    IDLE = "idle"
    CHIME_START = "chime_start"
    SPEAKING = "speaking"
    CHIME_END = "chime_end"
    COMMITTED = "committed"
    ABORTED = "aborted"


class ChimePlayer(Protocol):
    async def play_chime(self, kind: ChimeKind) -> None: ...


class Speaker(Protocol):
    async def speak(self, text: str, options: SpeechOptions) -> None: ...


@dataclass(frozen=True)
class PlaybackOutcome:
    item: AnnouncementItem
    state: PlaybackState
    started_at: dt.datetime
    finished_at: dt.datetime
    error: str = ""

    @property
    def committed(self) -> bool:
        return self.state is PlaybackState.COMMITTED


StateListener = Callable[[PlaybackState, Optional[AnnouncementItem]], None]


class StepFailed(Exception):
    def __init__(self, state: PlaybackState, detail: str) -> None:
        super().__init__(f"{state.value}: {detail}")
        self.state = state


class PlaybackEngine:
    """
    Serial chime -> speech -> chime player shared by every feed.

    Only one item plays at a time. A failing or hung step aborts the item
    (no ledger write) and the engine is immediately free for the next one.
    """

    def __init__(
        self,
        chimes: ChimePlayer,
        speaker: Speaker,
        ledger: PlaybackLedger,
        *,
        step_timeout: float = DEFAULT_STEP_TIMEOUT_SECONDS,
        pre_speech_gap: float = 0.5,
        post_speech_gap: float = 0.1,
    ) -> None:
        self.chimes = chimes
        self.speaker = speaker
        self.ledger = ledger
        self.step_timeout = float(step_timeout)
        self.pre_speech_gap = max(0.0, float(pre_speech_gap))
        self.post_speech_gap = max(0.0, float(post_speech_gap))

        self._lock = asyncio.Lock()
        self._state = PlaybackState.IDLE
        self._current: Optional[AnnouncementItem] = None
        self._listeners: Set[StateListener] = set()

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def current(self) -> Optional[AnnouncementItem]:
        return self._current

    @property
    def is_playing(self) -> bool:
        return self._current is not None

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.add(listener)

        def _remove() -> None:
            self._listeners.discard(listener)

        return _remove

    def _set_state(self, state: PlaybackState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state, self._current)
            except Exception:
                log.exception("Playback state listener failed")

    async def _step(self, state: PlaybackState, make: Callable[[], Awaitable[None]]) -> None:
        self._set_state(state)
        try:
            await asyncio.wait_for(make(), timeout=self.step_timeout)
        except asyncio.TimeoutError as e:
            raise StepFailed(state, f"timed out after {self.step_timeout:.1f}s") from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise StepFailed(state, f"{type(e).__name__}: {e}") from e

    async def play(self, item: AnnouncementItem) -> PlaybackOutcome:
        async with self._lock:
            return await self._play_locked(item)

    async def _play_locked(self, item: AnnouncementItem) -> PlaybackOutcome:
        started = dt.datetime.now().astimezone()
        self._current = item
        log.info("Playback start: %s", item.describe())

        try:
            await self._step(PlaybackState.CHIME_START, lambda: self.chimes.play_chime("start"))
            if self.pre_speech_gap:
                await asyncio.sleep(self.pre_speech_gap)
            await self._step(PlaybackState.SPEAKING, lambda: self.speaker.speak(item.speech_text, item.speech))
            if self.post_speech_gap:
                await asyncio.sleep(self.post_speech_gap)
            await self._step(PlaybackState.CHIME_END, lambda: self.chimes.play_chime("end"))
        except StepFailed as e:
            log.warning("Playback aborted: %s (%s)", item.describe(), e)
            self._set_state(PlaybackState.ABORTED)
            outcome = PlaybackOutcome(
                item=item,
                state=PlaybackState.ABORTED,
                started_at=started,
                finished_at=dt.datetime.now().astimezone(),
                error=str(e),
            )
            self._finish()
            return outcome
        except asyncio.CancelledError:
            self._set_state(PlaybackState.ABORTED)
            self._finish()
            raise

        try:
            self.ledger.record_playback(item.entry_id, item.threshold, item.arrival_time)
        except Exception:
            log.exception("Playback record write failed: %s", item.describe())

        self._set_state(PlaybackState.COMMITTED)
        log.info("Playback done: %s", item.describe())
        outcome = PlaybackOutcome(
            item=item,
            state=PlaybackState.COMMITTED,
            started_at=started,
            finished_at=dt.datetime.now().astimezone(),
        )
        self._finish()
        return outcome

    def _finish(self) -> None:
        self._current = None
        self._set_state(PlaybackState.IDLE)
