from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

import httpx

from .board_config import BoardConfig, BoardConfigError
from .schedule import ScheduleFile


log = logging.getLogger("arrivalboard.sources")

DEFAULT_UA = "arrivalboard/1.0 (truck arrival announcer)"

# Every fetch must see fresh data, never an intermediate cache's copy.
_NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, max-age=0",
    "Pragma": "no-cache",
}


def _is_local(url: str) -> bool:
    scheme = urlparse(url).scheme
    return scheme in ("", "file")


def _local_path(url: str) -> Path:
    p = urlparse(url)
    return Path(p.path if p.scheme == "file" else url)


class BoardSources:
    """
    Fetches the board config and per-monitor schedule documents.

    Both fetchers return None on any failure; the poll loop decides what that
    means (reuse last config / show the "no data" placeholder).
    """

    def __init__(
        self,
        config_url: str,
        *,
        timeout: float = 8.0,
        user_agent: str = DEFAULT_UA,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config_url = config_url
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={
                "User-Agent": user_agent,
                "Accept": "application/json",
                **_NO_CACHE_HEADERS,
            },
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def resolve(self, data_url: str) -> str:
        if urlparse(data_url).scheme or not self.config_url:
            return data_url
        if _is_local(self.config_url):
            return str(_local_path(self.config_url).parent / data_url.lstrip("/"))
        return urljoin(self.config_url, data_url)

    async def _get_json(self, url: str) -> Any:
        if _is_local(url):
            text = await asyncio.to_thread(_local_path(url).read_text, encoding="utf-8")
            return json.loads(text)

        r = await self._client.get(url, params={"_ts": str(int(time.time() * 1000))})
        r.raise_for_status()
        return r.json()

    async def fetch_config(self) -> Optional[BoardConfig]:
        try:
            data = await self._get_json(self.config_url)
            return BoardConfig.from_json(data)
        except (httpx.HTTPError, OSError, ValueError) as e:
            # BoardConfigError and JSONDecodeError are ValueErrors
            kind = "invalid" if isinstance(e, BoardConfigError) else "unavailable"
            log.warning("Board config %s (%s): %s", kind, self.config_url, e)
            return None

    async def fetch_schedule(self, data_url: str) -> Optional[ScheduleFile]:
        url = self.resolve(data_url)
        try:
            data = await self._get_json(url)
        except (httpx.HTTPError, OSError, ValueError) as e:
            log.warning("Schedule fetch failed (%s): %s", url, e)
            return None

        sf = ScheduleFile.from_json(data)
        if sf is None:
            log.warning("Schedule document has no entries list (%s)", url)
        return sf
