from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import logging
import signal
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo

from .announce_queue import AnnouncementQueue
from .audio import NullAudio, SubprocessChimePlayer
from .config import AppSettings, load_config
from .ledger import PlaybackLedger
from .log_utils import setup_logging
from .playback import PlaybackEngine
from .poller import FeedPoller, FeedState, resolve_feeds
from .sources import BoardSources
from .store import JsonFileStore
from .tts import SubprocessSpeaker


log = logging.getLogger("arrivalboard")

DEFAULT_CONFIG = "/etc/arrivalboard/config.yaml"


def build_ledger(settings: AppSettings, tz: ZoneInfo) -> PlaybackLedger:
    return PlaybackLedger(
        JsonFileStore(Path(settings.ledger.path)),
        key=settings.ledger.key,
        max_age=dt.timedelta(hours=settings.ledger.max_age_hours),
        clock=lambda: dt.datetime.now(tz),
    )


class Board:
    """
    Owns the shared ledger, playback engine and announcement queue, and one
    poller per visible feed.
    """

    def __init__(self, settings: AppSettings, *, monitor_ids: Optional[List[str]] = None, dry_run: bool = False) -> None:
        self.settings = settings
        self.monitor_ids = list(monitor_ids) if monitor_ids else list(settings.board.monitors)
        self.tz = ZoneInfo(settings.timezone)

        self.sources = BoardSources(settings.board.config_url, timeout=settings.polling.http_timeout_seconds)
        self.ledger = build_ledger(settings, self.tz)

        a = settings.audio
        if dry_run or a.backend == "null":
            chimes = speaker = NullAudio()
        else:
            work_dir = Path(a.work_dir)
            chimes = SubprocessChimePlayer(
                player=a.player,
                work_dir=work_dir,
                sample_rate=a.sample_rate,
                files={"start": a.chime_start, "end": a.chime_end},
            )
            speaker = SubprocessSpeaker(backend=a.backend, voice=a.voice, player=a.player, work_dir=work_dir)

        pb = settings.playback
        self.engine = PlaybackEngine(
            chimes,
            speaker,
            self.ledger,
            step_timeout=pb.step_timeout_seconds,
            pre_speech_gap=pb.pre_speech_gap_seconds,
            post_speech_gap=pb.post_speech_gap_seconds,
        )
        self.queue = AnnouncementQueue(
            self.engine,
            self.ledger,
            window_seconds=pb.collection_window_seconds,
            primary_feed_id=settings.board.primary_feed_id,
        )
        self.pollers: List[FeedPoller] = []
        self._stop = asyncio.Event()

    def _now(self) -> dt.datetime:
        return dt.datetime.now(self.tz)

    def _on_state(self, state: FeedState) -> None:
        if state.error:
            log.warning("Feed %s: %s", state.monitor_id, state.error)
            return
        if state.entries:
            shown = ", ".join(f"{e.entry.supplier_name} {e.entry.arrival_time}" for e in state.entries)
        else:
            shown = state.empty_message or "(none)"
        if state.header_note:
            shown = f"{state.header_note} | {shown}"
        log.info("Feed %s [%s] config=%s: %s", state.monitor_id, state.title, state.config_version or "-", shown)

    async def _sweep_loop(self) -> None:
        interval = max(60, int(self.settings.ledger.sweep_interval_seconds))
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            if self._stop.is_set():
                break
            try:
                self.ledger.cleanup()
            except Exception:
                log.exception("Ledger sweep failed")

    def stop(self) -> None:
        self._stop.set()
        for p in self.pollers:
            p.stop()

    async def run(self) -> None:
        removed = self.ledger.repair()
        log.info("Ledger ready (%s, pruned=%d)", self.settings.ledger.path, removed)

        initial = None
        if not self.monitor_ids:
            initial = await self.sources.fetch_config()
        feeds = resolve_feeds(self.monitor_ids, initial)
        if not feeds:
            log.error("No monitor to run: set board.monitors or serve a config with monitors")
            await self.sources.aclose()
            return

        audio_enabled = self.settings.playback.enabled
        for feed in feeds:
            self.pollers.append(
                FeedPoller(
                    feed,
                    sources=self.sources,
                    queue=self.queue,
                    ledger=self.ledger,
                    audio_enabled=audio_enabled,
                    fallback_interval_seconds=self.settings.polling.fallback_interval_seconds,
                    clock=self._now,
                    on_state=self._on_state,
                )
            )
        log.info(
            "Board starting: feeds=%s audio=%s backend=%s",
            ",".join(f.label for f in feeds),
            audio_enabled,
            self.settings.audio.backend,
        )

        tasks = [asyncio.create_task(p.run_forever(), name=f"poll_{p.feed.label}") for p in self.pollers]
        tasks.append(asyncio.create_task(self._sweep_loop(), name="ledger_sweep"))
        try:
            await self._stop.wait()
        finally:
            self.stop()
            await asyncio.gather(*tasks, return_exceptions=True)
            # Items already queued still play: listeners may have heard the chime.
            try:
                await asyncio.wait_for(self.queue.wait_idle(), timeout=120)
            except asyncio.TimeoutError:
                log.warning("Announcement queue did not drain before shutdown")
            self.queue.close()
            await self.sources.aclose()
            log.info("Board stopped")


async def _run(board: Board) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, board.stop)
        except (NotImplementedError, RuntimeError):
            pass
    await board.run()


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="arrivalboard", description="Truck arrival board announcer")
    ap.add_argument("--config", default=DEFAULT_CONFIG)
    ap.add_argument("--monitor", action="append", default=[], help="monitor id (repeat for split view: left, right)")
    ap.add_argument("--dry-run", action="store_true", help="log announcements instead of playing audio")
    args = ap.parse_args(argv)

    settings = load_config(args.config)
    setup_logging(settings.log_level)

    board = Board(settings, monitor_ids=args.monitor, dry_run=args.dry_run)
    asyncio.run(_run(board))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
