from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

import yaml


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class BoardSection:
    config_url: str
    monitors: List[str]
    primary_feed_id: str


@dataclass(frozen=True)
class PollingConfig:
    fallback_interval_seconds: float
    http_timeout_seconds: float


@dataclass(frozen=True)
class LedgerConfig:
    path: str
    key: str
    max_age_hours: float
    sweep_interval_seconds: int


@dataclass(frozen=True)
class PlaybackConfig:
    enabled: bool
    collection_window_seconds: float
    step_timeout_seconds: float
    pre_speech_gap_seconds: float
    post_speech_gap_seconds: float


@dataclass(frozen=True)
class AudioConfig:
    backend: str
    voice: str
    player: str
    sample_rate: int
    work_dir: str
    chime_start: str
    chime_end: str


@dataclass(frozen=True)
class AppSettings:
    board: BoardSection
    polling: PollingConfig
    ledger: LedgerConfig
    playback: PlaybackConfig
    audio: AudioConfig
    timezone: str
    log_level: str


def _env(key: str, default: str | None = None) -> str | None:
    v = os.environ.get(key)
    return v if v not in (None, "") else default


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    v = raw.get(name) or {}
    if not isinstance(v, dict):
        raise ConfigError(f"config section '{name}' must be a mapping")
    return v


def _bool(v: Any, default: bool) -> bool:
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


def parse_settings(raw: Dict[str, Any]) -> AppSettings:
    if not isinstance(raw, dict):
        raise ConfigError("config root must be a mapping")

    b = _section(raw, "board")
    config_url = _env("ARRIVALBOARD_CONFIG_URL", b.get("config_url"))
    if not config_url:
        raise ConfigError("board.config_url is required (or set ARRIVALBOARD_CONFIG_URL)")
    board = BoardSection(
        config_url=str(config_url),
        monitors=[str(m) for m in (b.get("monitors") or [])],
        primary_feed_id=str(b.get("primary_feed_id", "1")),
    )

    p = _section(raw, "polling")
    polling = PollingConfig(
        fallback_interval_seconds=float(p.get("fallback_interval_seconds", 10)),
        http_timeout_seconds=float(p.get("http_timeout_seconds", 8)),
    )

    lg = _section(raw, "ledger")
    ledger = LedgerConfig(
        path=str(_env("ARRIVALBOARD_LEDGER_PATH", lg.get("path", "/var/lib/arrivalboard/ledger.json"))),
        key=str(lg.get("key", "audioPlaybackRecords")),
        max_age_hours=float(lg.get("max_age_hours", 24)),
        sweep_interval_seconds=int(lg.get("sweep_interval_seconds", 3600)),
    )

    pb = _section(raw, "playback")
    playback = PlaybackConfig(
        enabled=_bool(pb.get("enabled"), True),
        collection_window_seconds=float(pb.get("collection_window_seconds", 0.5)),
        step_timeout_seconds=float(pb.get("step_timeout_seconds", 15)),
        pre_speech_gap_seconds=float(pb.get("pre_speech_gap_seconds", 0.5)),
        post_speech_gap_seconds=float(pb.get("post_speech_gap_seconds", 0.1)),
    )
    if playback.step_timeout_seconds <= 0:
        raise ConfigError("playback.step_timeout_seconds must be > 0")

    a = _section(raw, "audio")
    audio = AudioConfig(
        backend=str(_env("ARRIVALBOARD_AUDIO_BACKEND", a.get("backend", "espeak-ng"))),
        voice=str(a.get("voice", "") or ""),
        player=str(a.get("player", "aplay")),
        sample_rate=int(a.get("sample_rate", 22050)),
        work_dir=str(a.get("work_dir", "/var/lib/arrivalboard/audio")),
        chime_start=str(a.get("chime_start", "") or ""),
        chime_end=str(a.get("chime_end", "") or ""),
    )
    if audio.backend not in {"espeak-ng", "piper", "null"}:
        raise ConfigError(f"audio.backend must be espeak-ng, piper or null (got {audio.backend!r})")

    return AppSettings(
        board=board,
        polling=polling,
        ledger=ledger,
        playback=playback,
        audio=audio,
        timezone=str(raw.get("timezone", "Asia/Tokyo")),
        log_level=str(_env("ARRIVALBOARD_LOG_LEVEL", raw.get("log_level", "INFO"))).upper(),
    )


def load_config(path: str) -> AppSettings:
    raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    return parse_settings(raw)
