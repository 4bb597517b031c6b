import json

from arrivalboard.ledger import PlaybackLedger
from arrivalboard.store import JsonFileStore


def test_unplayed_entry_is_not_played(ledger):
    assert ledger.has_been_played("e1", 30) is False


def test_smallest_threshold_satisfies_larger_ones(ledger):
    ledger.record_playback("e1", 0, "10:00")
    assert ledger.has_been_played("e1", 30) is True
    assert ledger.has_been_played("e1", 10) is True
    assert ledger.has_been_played("e1", 0) is True


def test_larger_threshold_does_not_satisfy_smaller(ledger):
    ledger.record_playback("e1", 30, "10:00")
    assert ledger.has_been_played("e1", 30) is True
    assert ledger.has_been_played("e1", 10) is False


def test_one_record_per_entry_keeps_minimum(ledger):
    ledger.record_playback("e1", 10)
    ledger.record_playback("e1", 30)
    records = ledger.records()
    assert len(records) == 1
    assert records[0].min_played_threshold == 10

    ledger.record_playback("e1", 0)
    assert [r.min_played_threshold for r in ledger.records()] == [0]


def test_only_todays_records_count(ledger, clock):
    clock.at("23:40")
    ledger.record_playback("e1", 0)
    clock.advance(minutes=30)  # 00:10 next day
    assert ledger.has_been_played("e1", 0) is False


def test_cleanup_prunes_records_older_than_a_day(ledger, clock):
    ledger.record_playback("old", 0)
    clock.advance(hours=20)
    ledger.record_playback("new", 0)
    clock.advance(hours=5)

    assert ledger.cleanup() == 1
    assert [r.entry_id for r in ledger.records()] == ["new"]


def test_records_use_camelcase_storage_keys(tmp_path, ledger):
    ledger.record_playback("e1", 5, "08:30")
    raw = json.loads(json.loads((tmp_path / "ledger.json").read_text(encoding="utf-8"))["audioPlaybackRecords"])
    assert raw[0]["entryId"] == "e1"
    assert raw[0]["timingMinutes"] == 5
    assert raw[0]["arrivalTime"] == "08:30"
    assert raw[0]["playedAt"].startswith("2026-03-02T09:00:00")


def test_malformed_record_is_reported_corrupt_and_reset(tmp_path, clock):
    store = JsonFileStore(tmp_path / "ledger.json")
    store.set("audioPlaybackRecords", [{"entryId": "e1", "timingMinutes": "ten", "playedAt": "2026-03-02T08:00:00+09:00"}])
    ledger = PlaybackLedger(store, clock=clock)

    loaded = ledger.load()
    assert loaded.is_corrupt
    assert "index 0" in loaded.reason

    assert ledger.has_been_played("e1", 30) is False
    assert store.get("audioPlaybackRecords").value == []


def test_non_list_blob_is_corrupt(tmp_path, clock):
    store = JsonFileStore(tmp_path / "ledger.json")
    store.set("audioPlaybackRecords", {"entryId": "e1"})
    assert PlaybackLedger(store, clock=clock).load().is_corrupt


def test_unparseable_store_file_recovers(tmp_path, clock):
    path = tmp_path / "ledger.json"
    path.write_text("{not json", encoding="utf-8")
    ledger = PlaybackLedger(JsonFileStore(path), clock=clock)

    assert ledger.load().is_corrupt
    assert ledger.records() == []
    ledger.record_playback("e1", 0)
    assert ledger.has_been_played("e1", 0) is True


def test_repair_clears_corrupt_ledger(tmp_path, clock):
    store = JsonFileStore(tmp_path / "ledger.json")
    store.set("audioPlaybackRecords", [{"timingMinutes": 1}])
    ledger = PlaybackLedger(store, clock=clock)

    ledger.repair()
    assert store.get("audioPlaybackRecords").status == "missing"
    assert ledger.load().records == []


def test_clear_entry(ledger):
    ledger.record_playback("e1", 0)
    ledger.record_playback("e2", 0)
    assert ledger.clear_entry("e1") is True
    assert ledger.clear_entry("e1") is False
    assert [r.entry_id for r in ledger.records()] == ["e2"]


def test_yesterdays_record_does_not_carry_into_today(ledger, clock):
    clock.at("10:00")
    ledger.record_playback("e1", 0, "10:00")

    clock.advance(hours=23, minutes=30)  # next day 09:30, record still inside 24 h
    assert ledger.cleanup() == 0
    assert ledger.has_been_played("e1", 30) is False
    ledger.record_playback("e1", 30, "10:00")
    assert ledger.get_record("e1").min_played_threshold == 30

    clock.advance(minutes=30)
    assert ledger.has_been_played("e1", 30) is True
    assert ledger.has_been_played("e1", 0) is False
    assert len(ledger.records()) == 1
