from __future__ import annotations

import logging
import sys
import time
from typing import Dict


class RepeatFilter(logging.Filter):
    """
    Drop an INFO/DEBUG message identical to one logged within `interval` seconds.
    Poll loops on several monitors otherwise repeat the same line every tick.
    Warnings and errors always pass.
    """

    def __init__(self, interval: float = 10.0, max_keys: int = 2000) -> None:
        super().__init__()
        self.interval = float(interval)
        self.max_keys = int(max_keys)
        self._last: Dict[tuple[str, str], float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True

        now = time.monotonic()
        key = (record.name, record.getMessage())
        last = self._last.get(key)
        if last is not None and now - last < self.interval:
            return False

        if len(self._last) >= self.max_keys:
            cutoff = now - self.interval
            self._last = {k: t for k, t in self._last.items() if t >= cutoff}
        self._last[key] = now
        return True


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RepeatFilter) for f in handler.filters):
            handler.addFilter(RepeatFilter())
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
