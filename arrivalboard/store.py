from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Literal, Optional


log = logging.getLogger("arrivalboard.store")

ReadStatus = Literal["ok", "missing", "corrupt"]


@dataclass(frozen=True)
class StoreRead:
    """
    Tagged result of a key lookup.

    status == "ok"      -> value holds the decoded JSON blob
    status == "missing" -> key (or whole file) not present
    status == "corrupt" -> file or blob could not be decoded; reason says why
    """
    status: ReadStatus
    value: Any = None
    reason: str = ""

    @staticmethod
    def ok(value: Any) -> "StoreRead":
        return StoreRead("ok", value=value)

    @staticmethod
    def missing() -> "StoreRead":
        return StoreRead("missing")

    @staticmethod
    def corrupt(reason: str) -> "StoreRead":
        return StoreRead("corrupt", reason=reason)


def atomic_write_json(path: Path, payload: Any) -> None:
    """
    Write JSON atomically: temp file, fsync, rename over target.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_name(f"{path.name}.tmp.{os.getpid()}.{int(time.time() * 1000)}")
    data = json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)

    with open(tmp, "w", encoding="utf-8") as f:
        f.write(data)
        f.write("\n")
        f.flush()
        os.fsync(f.fileno())

    os.replace(str(tmp), str(path))


class JsonFileStore:
    """
    Persisted key-value store: one JSON object on disk, key -> JSON blob.

    This plays the role browser local storage played for the kiosk pages.
    Values are stored as JSON *strings* so a single damaged value can be told
    apart from a damaged file.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _read_all(self) -> tuple[Optional[Dict[str, str]], str]:
        if not self.path.exists():
            return {}, ""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            return None, f"unreadable store file: {e}"
        if not raw.strip():
            return {}, ""
        try:
            data = json.loads(raw)
        except ValueError as e:
            return None, f"store file is not JSON: {e}"
        if not isinstance(data, dict):
            return None, "store file is not a JSON object"
        return {str(k): v for k, v in data.items()}, ""

    def get(self, key: str) -> StoreRead:
        data, reason = self._read_all()
        if data is None:
            return StoreRead.corrupt(reason)
        if key not in data:
            return StoreRead.missing()

        blob = data[key]
        if not isinstance(blob, str):
            return StoreRead.corrupt(f"value for {key!r} is not a string blob")
        try:
            return StoreRead.ok(json.loads(blob))
        except ValueError as e:
            return StoreRead.corrupt(f"value for {key!r} is not JSON: {e}")

    def set(self, key: str, value: Any) -> None:
        data, reason = self._read_all()
        if data is None:
            # Whole file unusable: start over rather than refuse the write.
            log.warning("Store %s unreadable (%s); reinitializing", self.path, reason)
            data = {}
        data[key] = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        atomic_write_json(self.path, data)

    def remove(self, key: str) -> None:
        data, reason = self._read_all()
        if data is None:
            log.warning("Store %s unreadable (%s); reinitializing", self.path, reason)
            data = {}
        data.pop(key, None)
        atomic_write_json(self.path, data)
