import asyncio

from arrivalboard.announce_queue import AnnouncementQueue
from arrivalboard.board_config import BoardConfig
from arrivalboard.playback import PlaybackEngine
from arrivalboard.poller import (
    MSG_CONFIG_UNAVAILABLE,
    MSG_MONITOR_NOT_FOUND,
    MSG_SCHEDULE_UNAVAILABLE,
    FeedBinding,
    FeedPoller,
    resolve_feeds,
)

from conftest import FakeAudio, FakeSources, board_config, entry


def rig(sources, ledger, clock, feed=FeedBinding("1"), audio=None, **kw):
    audio = audio or FakeAudio()
    engine = PlaybackEngine(audio, audio, ledger, pre_speech_gap=0, post_speech_gap=0)
    queue = AnnouncementQueue(engine, ledger, window_seconds=0.01)
    poller = FeedPoller(feed, sources=sources, queue=queue, ledger=ledger, clock=clock, **kw)
    return poller, queue, audio


def test_missing_config_is_reported(ledger, clock):
    async def go():
        poller, _, _ = rig(FakeSources(config=None), ledger, clock, fallback_interval_seconds=7)
        return await poller.tick(), poller.state

    interval, state = asyncio.run(go())
    assert interval == 7
    assert state.error == MSG_CONFIG_UNAVAILABLE
    assert state.loading is False


def test_unknown_monitor_is_reported(ledger, clock):
    async def go():
        poller, _, _ = rig(FakeSources(config=board_config()), ledger, clock, feed=FeedBinding("9"))
        await poller.tick()
        return poller.state

    assert asyncio.run(go()).error == MSG_MONITOR_NOT_FOUND


def test_failed_schedule_keeps_previous_entries(ledger, clock):
    sources = FakeSources(config=board_config(), schedules={"/data/north.json": {"entries": [entry("a", "09:20")]}})

    async def go():
        poller, queue, _ = rig(sources, ledger, clock, audio_enabled=False)
        await poller.tick()
        first = poller.state
        sources.schedules.clear()
        await poller.tick()
        queue.close()
        return first, poller.state

    first, second = asyncio.run(go())
    assert [e.id for e in first.entries] == ["a"]
    assert first.error is None
    assert second.error == MSG_SCHEDULE_UNAVAILABLE
    assert [e.id for e in second.entries] == ["a"]


def test_state_carries_display_text(ledger, clock):
    cfg = board_config(configVersion="v7")
    cfg["monitors"][0]["headerNote"] = "Gate 3 closed"
    sources = FakeSources(config=cfg, schedules={"/data/north.json": {"entries": []}})

    async def go():
        poller, _, _ = rig(sources, ledger, clock)
        await poller.tick()
        return poller.state

    state = asyncio.run(go())
    assert state.entries == []
    assert state.empty_message == "No arrivals in the next 30 minutes"
    assert state.title == "North gate"
    assert state.header_note == "Gate 3 closed"
    assert state.config_version == "v7"


def test_poll_interval_prefers_monitor_then_config_then_fallback(ledger, clock):
    cfg = board_config(pollingIntervalSeconds=20)
    cfg["monitors"][1]["refreshIntervalSeconds"] = 5
    schedules = {"/data/north.json": {"entries": []}, "/data/south.json": {"entries": []}}

    async def go():
        sources = FakeSources(config=cfg, schedules=schedules)
        north, _, _ = rig(sources, ledger, clock)
        south, _, _ = rig(sources, ledger, clock, feed=FeedBinding("2"))
        out = [await north.tick(), await south.tick()]
        sources.config = None
        out.append(await north.tick())
        return out, north.state

    intervals, state = asyncio.run(go())
    assert intervals == [20, 5, 10]
    # Last known config still drives the feed.
    assert state.error is None
    assert state.title == "North gate"


def test_each_threshold_is_announced_once(tmp_path, ledger, clock):
    sources = FakeSources(
        config=board_config(),
        schedules={"/data/north.json": {"entries": [entry("e1", "10:00", "Acme")]}},
    )

    async def go():
        poller, queue, audio = rig(sources, ledger, clock)

        async def tick_at(hhmm):
            clock.at(hhmm)
            await poller.tick()
            await asyncio.wait_for(queue.wait_idle(), 2)

        await tick_at("09:29")
        assert audio.spoken == []

        await tick_at("09:30")
        assert audio.spoken == ["Acme arriving at 10:00"]
        assert ledger.get_record("e1").min_played_threshold == 30

        await tick_at("09:31")
        await tick_at("09:45")
        assert len(audio.spoken) == 1

        await tick_at("10:00")
        assert len(audio.spoken) == 2
        assert ledger.get_record("e1").min_played_threshold == 0

        # Same minute again after the commit: no replay and no ledger write.
        stored = (tmp_path / "ledger.json").read_text(encoding="utf-8")
        clock.advance(seconds=20)
        await poller.tick()
        await asyncio.wait_for(queue.wait_idle(), 2)
        assert len(audio.spoken) == 2
        assert (tmp_path / "ledger.json").read_text(encoding="utf-8") == stored

        await tick_at("10:01")
        return audio.spoken

    assert len(asyncio.run(go())) == 2


def test_split_view_feeds_share_one_ordered_queue(ledger, clock):
    clock.at("10:00")
    sources = FakeSources(
        config=board_config(),
        schedules={
            "/data/north.json": {"entries": [entry("n1", "10:00", "North Co")]},
            "/data/south.json": {"entries": [entry("s1", "09:58", "South Co")]},
        },
    )

    async def go():
        audio = FakeAudio()
        engine = PlaybackEngine(audio, audio, ledger, pre_speech_gap=0, post_speech_gap=0)
        queue = AnnouncementQueue(engine, ledger, window_seconds=0.05)
        pollers = [
            FeedPoller(f, sources=sources, queue=queue, ledger=ledger, clock=clock)
            for f in resolve_feeds(["1", "2"], None)
        ]
        await asyncio.gather(*(p.tick() for p in pollers))
        await asyncio.wait_for(queue.wait_idle(), 2)
        return audio.spoken

    assert asyncio.run(go()) == ["South Co arriving at 09:58", "North Co arriving at 10:00"]


def test_monitor_without_audio_queues_nothing(ledger, clock):
    cfg = board_config()
    cfg["monitors"][0]["hasAudio"] = False
    clock.at("10:00")
    sources = FakeSources(config=cfg, schedules={"/data/north.json": {"entries": [entry("e1", "10:00")]}})

    async def go():
        poller, queue, _ = rig(sources, ledger, clock)
        await poller.tick()
        return len(queue), [e.id for e in poller.state.entries]

    assert asyncio.run(go()) == (0, ["e1"])


def test_blank_speech_text_is_skipped(ledger, clock):
    clock.at("10:00")
    sources = FakeSources(
        config=board_config(speechFormat=""),
        schedules={"/data/north.json": {"entries": [entry("e1", "10:00")]}},
    )

    async def go():
        poller, queue, _ = rig(sources, ledger, clock)
        await poller.tick()
        return len(queue)

    assert asyncio.run(go()) == 0


def test_run_forever_stops_promptly(ledger, clock):
    sources = FakeSources(config=board_config(), schedules={"/data/north.json": {"entries": []}})

    async def go():
        poller, _, _ = rig(sources, ledger, clock)
        task = asyncio.create_task(poller.run_forever())
        await asyncio.sleep(0.05)
        poller.stop()
        await asyncio.wait_for(task, 2)
        return sources.config_fetches

    assert asyncio.run(go()) == 1


def test_resolve_feeds():
    cfg = BoardConfig.from_json(board_config(defaultMonitorId="2"))
    assert resolve_feeds([], cfg) == [FeedBinding("2")]
    assert resolve_feeds([], None) == []
    assert resolve_feeds(["1"], cfg) == [FeedBinding("1")]
    assert resolve_feeds(["1", "2"], cfg) == [
        FeedBinding("1", is_left_side=True),
        FeedBinding("2", is_left_side=False),
    ]
