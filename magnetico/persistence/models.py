"""Records and the storage interface shared by every persistence backend."""

from __future__ import annotations

import abc
import enum
import json
import math
from dataclasses import dataclass, field
from typing import Any, Optional


class OrderingCriteria(enum.IntEnum):
    BY_RELEVANCE = 0
    BY_TOTAL_SIZE = 1
    BY_DISCOVERED_ON = 2
    BY_N_FILES = 3
    BY_N_SEEDERS = 4
    BY_N_LEECHERS = 5
    BY_UPDATED_ON = 6


class DatabaseEngine(enum.IntEnum):
    SQLITE3 = 1
    POSTGRES = 2
    ZEROMQ = 3
    RABBITMQ = 4
    BITMAGNET = 5


_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _dump_json(obj: Any) -> str:
    text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    for char, escape in _JSON_ESCAPES.items():
        text = text.replace(char, escape)
    return text


def _json_number(value: float) -> float | int:
    if math.isfinite(value) and float(value).is_integer() and abs(value) < 1e21:
        return int(value)
    return value


@dataclass
class Statistics:
    """Per-period counters keyed by a formatted time bucket."""

    n_discovered: dict[str, int] = field(default_factory=dict)
    n_files: dict[str, int] = field(default_factory=dict)
    total_size: dict[str, int] = field(default_factory=dict)


@dataclass
class File:
    size: int = 0
    path: str = ""

    def _as_json_dict(self) -> dict[str, Any]:
        return {"size": self.size, "path": self.path}


@dataclass
class TorrentMetadata:
    id: int = 0
    info_hash: bytes = b""
    name: str = ""
    size: int = 0
    discovered_on: int = 0
    n_files: int = 0
    relevance: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready mapping with the info hash as hex."""
        return {
            "infoHash": bytes(self.info_hash).hex(),
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "discoveredOn": self.discovered_on,
            "nFiles": self.n_files,
            "relevance": _json_number(self.relevance),
        }

    def to_json(self) -> str:
        return _dump_json(self.to_dict())


@dataclass
class SimpleTorrentSummary:
    info_hash: str
    name: str
    files: list[File] = field(default_factory=list)

    def to_json(self) -> str:
        return _dump_json(
            {
                "infoHash": self.info_hash,
                "name": self.name,
                "files": [f._as_json_dict() for f in self.files],
            }
        )


class Database(abc.ABC):
    """Storage for discovered torrents. Usable as a context manager."""

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @abc.abstractmethod
    def engine(self) -> DatabaseEngine:
        """The kind of backend."""

    @abc.abstractmethod
    def does_torrent_exist(self, info_hash: bytes) -> bool:
        """Whether the torrent is already stored."""

    @abc.abstractmethod
    def add_new_torrent(self, info_hash: bytes, name: str, files: list[File]) -> None:
        """Store a torrent and its files."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the backend's resources."""

    @abc.abstractmethod
    def get_number_of_torrents(self) -> int:
        """Number of stored torrents; may be an approximation."""

    @abc.abstractmethod
    def get_number_of_query_torrents(self, query: str, epoch: int) -> int:
        """Number of torrents whose name matches the query."""

    @abc.abstractmethod
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
        """One page of torrents discovered no later than epoch.

        Matches the query if it is not empty, ordered by order_by, and starts
        after (last_ordered_value, last_id) when both are given.
        """

    @abc.abstractmethod
    def get_torrent(self, info_hash: bytes) -> Optional[TorrentMetadata]:
        """The torrent with this info hash, or None when absent."""

    @abc.abstractmethod
    def get_files(self, info_hash: bytes) -> list[File]:
        """The files of the torrent with this info hash."""

    @abc.abstractmethod
    def get_statistics(self, from_: str, n: int) -> Statistics:
        """Counters for n periods starting at the ISO 8601 period from_."""