"""Backend that forwards discovered torrents to a bitmagnet import endpoint."""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.request
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import parse_qs, urlsplit, urlunsplit

from magnetico.persistence.models import (
    Database,
    DatabaseEngine,
    File,
    OrderingCriteria,
    Statistics,
    TorrentMetadata,
)

log = logging.getLogger(__name__)

CACHE_TTL = 600.0
DEFAULT_SOURCE = "magnetico"


class BitmagnetDatabase(Database):
    """Posts each new torrent as JSON; remembers recent ones for ten minutes.

    The cache maps info hashes to monotonic-clock deadlines.
    """

    def __init__(self, url: str, *, debug: bool = False, source_name: str = DEFAULT_SOURCE) -> None:
        self.url = url
        self.debug = debug
        self.source_name = source_name
        self.cache: dict[bytes, float] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        threading.Thread(target=self._janitor, name="bitmagnet-cache", daemon=True).start()

    def _janitor(self) -> None:
        while not self._stop.wait(CACHE_TTL):
            self.cleanup()

    def cleanup(self) -> None:
        """Forget torrents whose cache entry has expired."""
        now = time.monotonic()
        with self._lock:
            for key in [k for k, deadline in self.cache.items() if now > deadline]:
                del self.cache[key]

    def engine(self) -> DatabaseEngine:
        return DatabaseEngine.BITMAGNET

    def does_torrent_exist(self, info_hash: bytes) -> bool:
        with self._lock:
            return bytes(info_hash) in self.cache

    def add_new_torrent(self, info_hash: bytes, name: str, files: list[File]) -> None:
        key = bytes(info_hash)
        payload = json.dumps(
            {
                "infoHash": key.hex(),
                "name": name,
                "size": sum(f.size for f in files),
                "publishedAt": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
                "source": self.source_name,
            },
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8") + b"\n"

        with self._lock:
            if key in self.cache:
                raise RuntimeError("torrent already exists")

            request = urllib.request.Request(
                self.url,
                data=payload,
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            try:
                with urllib.request.urlopen(request) as response:
                    body = response.read()
            except urllib.error.HTTPError as error:
                with error:
                    body = error.read()
            except (urllib.error.URLError, OSError, ValueError) as error:
                raise ConnectionError(f"failed to post metadata {error}") from error

            if self.debug:
                log.info("Response: %s", body.decode("utf-8", "replace"))

            self.cache[key] = time.monotonic() + CACHE_TTL

    def close(self) -> None:
        self._stop.set()

    def get_number_of_torrents(self) -> int:
        return 0

    def get_number_of_query_torrents(self, query: str, epoch: int) -> int:
        return 0

    def query_torrents(
        self,
        query: str,
        epoch: int,
        order_by: OrderingCriteria,
        ascending: bool,
        limit: int,
        last_ordered_value: Optional[float],
        last_id: Optional[int],
    ) -> list[TorrentMetadata]:
        raise RuntimeError("query not supported")

    def get_torrent(self, info_hash: bytes) -> Optional[TorrentMetadata]:
        raise RuntimeError("fetch not supported")

    def get_files(self, info_hash: bytes) -> list[File]:
        raise RuntimeError("file fetch not supported")

    def get_statistics(self, from_: str, n: int) -> Statistics:
        raise RuntimeError("statistics not supported")


def make_bitmagnet(url: str) -> BitmagnetDatabase:
    """Build a backend from a bitmagnet:// or bitmagnets:// URL.

    The query parameters debug=true and source=<name> configure the backend
    and are removed from the endpoint, as is the fragment.
    """
    parts = urlsplit(url)
    if not parts.scheme:
        raise ValueError(f"missing protocol scheme in {url!r}")
    query = parse_qs(parts.query)
    debug = query.get("debug", [""])[0] == "true"
    source = query.get("source", [""])[0] or DEFAULT_SOURCE
    scheme = parts.scheme.replace("bitmagnet", "http", 1)
    endpoint = urlunsplit((scheme, parts.netloc, parts.path, "", ""))
    return BitmagnetDatabase(endpoint, debug=debug, source_name=source)