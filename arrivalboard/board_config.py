from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .schedule import DEFAULT_DISPLAY_COUNT


DEFAULT_BEFORE_MINUTES = 30
DEFAULT_SPEECH_LANG = "ja-JP"
DEFAULT_THRESHOLDS = (0,)


class BoardConfigError(ValueError):
    pass


def _opt_int(v: Any) -> Optional[int]:
    if v is None or isinstance(v, bool):
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _opt_float(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _opt_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _thresholds(raw: Any) -> List[int]:
    if not isinstance(raw, list):
        return []
    out: List[int] = []
    for v in raw:
        n = _opt_int(v)
        if n is not None and n >= 0:
            out.append(n)
    return out


@dataclass(frozen=True)
class DisplaySettings:
    before_minutes: int = DEFAULT_BEFORE_MINUTES
    empty_time_message: str = ""
    display_entry_count: int = DEFAULT_DISPLAY_COUNT


@dataclass(frozen=True)
class MonitorConfig:
    id: str
    title: str
    data_url: str
    has_audio: bool = False
    refresh_interval_seconds: Optional[int] = None
    display_entry_count: Optional[int] = None
    header_note: Optional[str] = None
    speech_format: Optional[str] = None
    speech_rate: float = 1.0
    speech_pitch: float = 1.0
    speech_lang: str = DEFAULT_SPEECH_LANG
    thresholds: List[int] = field(default_factory=lambda: list(DEFAULT_THRESHOLDS))

    @staticmethod
    def from_json(obj: Dict[str, Any]) -> "MonitorConfig":
        mid = _opt_str(obj.get("id"))
        data_url = _opt_str(obj.get("dataUrl"))
        if not mid or not data_url:
            raise BoardConfigError(f"monitor needs id and dataUrl: {obj!r}")

        audio = obj.get("audioSettings")
        timings = _thresholds(audio.get("timings")) if isinstance(audio, dict) else []

        return MonitorConfig(
            id=mid,
            title=_opt_str(obj.get("title")) or mid,
            data_url=data_url,
            has_audio=bool(obj.get("hasAudio", False)),
            refresh_interval_seconds=_opt_int(obj.get("refreshIntervalSeconds")),
            display_entry_count=_opt_int(obj.get("displayEntryCount")),
            header_note=_opt_str(obj.get("headerNote")),
            speech_format=_opt_str(obj.get("speechFormat")),
            speech_rate=_opt_float(obj.get("speechRate")) or 1.0,
            speech_pitch=_opt_float(obj.get("speechPitch")) or 1.0,
            speech_lang=_opt_str(obj.get("speechLang")) or DEFAULT_SPEECH_LANG,
            thresholds=timings or list(DEFAULT_THRESHOLDS),
        )


@dataclass(frozen=True)
class BoardConfig:
    """
    The remotely served app-config.json, re-fetched every poll cycle.
    """
    monitors: List[MonitorConfig]
    speech_format: str = ""
    config_version: Optional[str] = None
    default_monitor_id: Optional[str] = None
    polling_interval_seconds: Optional[int] = None
    display: DisplaySettings = field(default_factory=DisplaySettings)

    def monitor(self, monitor_id: str) -> Optional[MonitorConfig]:
        for m in self.monitors:
            if m.id == monitor_id:
                return m
        return None

    def default_monitor(self) -> Optional[MonitorConfig]:
        if self.default_monitor_id:
            m = self.monitor(self.default_monitor_id)
            if m is not None:
                return m
        return self.monitors[0] if self.monitors else None

    def speech_template(self, monitor: MonitorConfig) -> str:
        return monitor.speech_format or self.speech_format

    def display_count(self, monitor: MonitorConfig) -> int:
        n = monitor.display_entry_count or self.display.display_entry_count
        return n if n > 0 else DEFAULT_DISPLAY_COUNT

    def poll_interval_seconds(self, monitor: Optional[MonitorConfig]) -> Optional[int]:
        if monitor is not None and monitor.refresh_interval_seconds and monitor.refresh_interval_seconds > 0:
            return monitor.refresh_interval_seconds
        if self.polling_interval_seconds and self.polling_interval_seconds > 0:
            return self.polling_interval_seconds
        return None

    @staticmethod
    def from_json(data: Any) -> "BoardConfig":
        if not isinstance(data, dict):
            raise BoardConfigError("board config is not a JSON object")
        raw_monitors = data.get("monitors")
        if not isinstance(raw_monitors, list):
            raise BoardConfigError("board config has no monitors list")

        monitors = [MonitorConfig.from_json(m) for m in raw_monitors if isinstance(m, dict)]

        ds = data.get("displaySettings")
        ds = ds if isinstance(ds, dict) else {}
        before = _opt_int(ds.get("beforeMinutes"))
        display = DisplaySettings(
            before_minutes=before if before is not None and before >= 0 else DEFAULT_BEFORE_MINUTES,
            empty_time_message=str(ds.get("emptyTimeMessage") or ""),
            display_entry_count=_opt_int(ds.get("displayEntryCount")) or DEFAULT_DISPLAY_COUNT,
        )

        return BoardConfig(
            monitors=monitors,
            speech_format=str(data.get("speechFormat") or ""),
            config_version=_opt_str(data.get("configVersion")),
            default_monitor_id=_opt_str(data.get("defaultMonitorId")),
            polling_interval_seconds=_opt_int(data.get("pollingIntervalSeconds")),
            display=display,
        )
