"""Backend that publishes discovered torrents on a ZeroMQ PUB socket."""

from __future__ import annotations

import threading
import time
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

import zmq

from magnetico.persistence.models import (
    Database,
    DatabaseEngine,
    File,
    OrderingCriteria,
    SimpleTorrentSummary,
    Statistics,
    TorrentMetadata,
)

CACHE_TTL = 600.0


class ZeroMQDatabase(Database):
    """Sends a JSON summary per torrent as a one-frame message.

    The cache maps info hashes to monotonic-clock deadlines; a torrent is
    recorded before it is sent, and refused again for ten minutes.
    """

    def __init__(self, socket: Any) -> None:
        self.socket = socket
        self.cache: dict[bytes, float] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        threading.Thread(target=self._janitor, name="zeromq-cache", daemon=True).start()

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
        return DatabaseEngine.ZEROMQ

    def does_torrent_exist(self, info_hash: bytes) -> bool:
        with self._lock:
            return bytes(info_hash) in self.cache

    def add_new_torrent(self, info_hash: bytes, name: str, files: list[File]) -> None:
        key = bytes(info_hash)
        data = SimpleTorrentSummary(info_hash=key.hex(), name=name, files=list(files))
        message = data.to_json().encode("utf-8")

        with self._lock:
            if key in self.cache:
                raise RuntimeError("torrent already exists")
            self.cache[key] = time.monotonic() + CACHE_TTL
            self.socket.send_multipart([message])

    def close(self) -> None:
        self._stop.set()
        self.socket.close(linger=0)

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


def make_zeromq(url: str) -> ZeroMQDatabase:
    """Bind a PUB socket at a zeromq:// or zmq:// URL, served over TCP."""
    parts = urlsplit(url)
    endpoint = urlunsplit(("tcp", parts.netloc, parts.path, parts.query, parts.fragment))
    socket = zmq.Context.instance().socket(zmq.PUB)
    try:
        socket.bind(endpoint)
    except zmq.ZMQError:
        socket.close(linger=0)
        raise
    return ZeroMQDatabase(socket)