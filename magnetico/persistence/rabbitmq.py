"""Backend that publishes discovered torrents to a RabbitMQ queue."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any, Optional

import pika

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
QUEUE_NAME = "magnetico"


class RabbitMQDatabase(Database):
    """Publishes a JSON summary per torrent to the durable "magnetico" queue.

    Connects on construction. The cache maps info hashes to monotonic-clock
    deadlines; a torrent published within the last ten minutes is refused.
    """

    def __init__(
        self,
        url: str,
        *,
        connection_factory: Optional[Callable[[pika.URLParameters], Any]] = None,
    ) -> None:
        self.url = url
        self._connection_factory = connection_factory or pika.BlockingConnection
        self.cache: dict[bytes, float] = {}
        self._lock = threading.Lock()
        self._connection: Any = None
        self._channel: Any = None
        self._queue_name = QUEUE_NAME
        self.connect()
        self._stop = threading.Event()
        threading.Thread(target=self._janitor, name="rabbitmq-cache", daemon=True).start()

    def connect(self) -> None:
        """Open a connection and a confirming channel, and declare the queue."""
        self._connection = self._connection_factory(pika.URLParameters(self.url))
        self._channel = self._connection.channel()
        self._channel.confirm_delivery()
        declared = self._channel.queue_declare(
            queue=QUEUE_NAME,
            durable=True,
            exclusive=False,
            auto_delete=False,
            arguments={},
        )
        self._queue_name = declared.method.queue

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
        return DatabaseEngine.RABBITMQ

    def does_torrent_exist(self, info_hash: bytes) -> bool:
        with self._lock:
            return bytes(info_hash) in self.cache

    def add_new_torrent(self, info_hash: bytes, name: str, files: list[File]) -> None:
        key = bytes(info_hash)
        data = SimpleTorrentSummary(info_hash=key.hex(), name=name, files=list(files))
        body = data.to_json().encode("utf-8")

        with self._lock:
            if self._channel.is_closed or self._connection.is_closed:
                self.connect()

            if key in self.cache:
                raise RuntimeError("torrent already exists")

            self._channel.basic_publish(
                exchange="",
                routing_key=self._queue_name,
                body=body,
                mandatory=False,
            )
            self.cache[key] = time.monotonic() + CACHE_TTL

    def close(self) -> None:
        self._stop.set()
        self._channel.close()
        self._connection.close()

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


def make_rabbitmq(url: str) -> RabbitMQDatabase:
    """Connect to the broker at an amqp:// or amqps:// URL."""
    return RabbitMQDatabase(url)