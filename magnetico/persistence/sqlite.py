"""SQLite storage for discovered torrents, with full-text search on names."""

from __future__ import annotations

import sqlite3
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import quote, unquote, urlsplit

from magnetico.persistence import sqlite_schema
from magnetico.persistence.iso8601 import Granularity, parse_iso8601
from magnetico.persistence.models import (
    Database,
    DatabaseEngine,
    File,
    OrderingCriteria,
    Statistics,
    TorrentMetadata,
)

# Bucket formats understood by SQLite's strftime().
_TIME_FORMATS = {
    Granularity.YEAR: "%Y",
    Granularity.MONTH: "%Y-%m",
    Granularity.WEEK: "%Y-%W",
    Granularity.DAY: "%Y-%m-%d",
    Granularity.HOUR: "%Y-%m-%dT%H",
}

_EXISTS_SQL = "SELECT 1 FROM torrents WHERE info_hash = ?;"

_INSERT_TORRENT_SQL = """
    INSERT INTO torrents (
        info_hash,
        name,
        total_size,
        discovered_on,
        modified_on
    ) VALUES (?, ?, ?, ?, ?);
"""

_INSERT_FILE_SQL = "INSERT INTO files (torrent_id, size, path) VALUES (?, ?, ?);"

_QUERY_COUNT_SQL = """
    SELECT COUNT(*)
    FROM torrents
    WHERE
        LOWER(name) LIKE '%' || LOWER(?) || '%' AND
        discovered_on <= ?;
"""

_GET_TORRENT_SQL = """
    SELECT
        info_hash,
        name,
        total_size,
        discovered_on,
        (SELECT COUNT(*) FROM files WHERE torrent_id = torrents.id) AS n_files
    FROM torrents
    WHERE info_hash = ?
"""

_GET_FILES_SQL = (
    "SELECT size, path FROM files, torrents "
    "WHERE files.torrent_id = torrents.id AND torrents.info_hash = ?;"
)

_STATISTICS_SQL = """
    SELECT strftime('{fmt}', discovered_on, 'unixepoch') AS dT
         , sum(files.size) AS tS
         , count(DISTINCT torrents.id) AS nD
         , count(DISTINCT files.id) AS nF
    FROM torrents, files
    WHERE     torrents.id = files.torrent_id
          AND discovered_on >= ?
          AND discovered_on <= ?
    GROUP BY dT;
"""


def order_on(order_by: OrderingCriteria) -> str:
    """The column a page of results is ordered on."""
    columns = {
        OrderingCriteria.BY_RELEVANCE: "idx.rank",
        OrderingCriteria.BY_TOTAL_SIZE: "total_size",
        OrderingCriteria.BY_DISCOVERED_ON: "discovered_on",
        OrderingCriteria.BY_N_FILES: "n_files",
    }
    try:
        return columns[order_by]
    except KeyError:
        raise ValueError(f"unknown orderBy: {order_by}") from None


def _build_query_sql(do_join: bool, first_page: bool, column: str, ascending: bool) -> str:
    comparison = ">" if ascending else "<"
    direction = "ASC" if ascending else "DESC"
    relevance = "idx.rank" if do_join else "0"
    join = (
        """
    INNER JOIN (
        SELECT rowid AS id
             , bm25(torrents_idx) AS rank
        FROM torrents_idx
        WHERE torrents_idx MATCH ?
    ) AS idx USING(id)"""
        if do_join
        else ""
    )
    paging = "" if first_page else f"\n          AND ( {column}, id ) {comparison} (?, ?)"
    return f"""
    SELECT id
         , info_hash
         , name
         , total_size
         , discovered_on
         , (SELECT COUNT(*) FROM files WHERE torrents.id = files.torrent_id) AS n_files
         , {relevance}
    FROM torrents{join}
    WHERE     modified_on <= ?{paging}
    ORDER BY {column} {direction}, id {direction}
    LIMIT ?;
"""


def _add_date(t: datetime, years: int = 0, months: int = 0, days: int = 0) -> datetime:
    """Add a calendar offset, letting day overflow roll into the next month."""
    extra_years, month_index = divmod(t.month - 1 + months, 12)
    start = t.replace(year=t.year + years + extra_years, month=month_index + 1, day=1)
    return start + timedelta(days=t.day - 1 + days)


def _period_end(start: datetime, granularity: Granularity, n: int) -> datetime:
    if granularity == Granularity.YEAR:
        return _add_date(start, years=n)
    if granularity == Granularity.MONTH:
        return _add_date(start, months=n)
    if granularity == Granularity.WEEK:
        return _add_date(start, days=n * 7)
    if granularity == Granularity.DAY:
        return _add_date(start, days=n)
    return start + timedelta(hours=n)


class SqliteDatabase(Database):
    """Torrents stored in an SQLite database opened in autocommit mode."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        conn.isolation_level = None
        self.conn = conn
        self._lock = threading.RLock()

    def setup_database(self) -> None:
        """Apply pragmas and bring the schema to the current version."""
        with self._lock:
            sqlite_schema.setup_database(self.conn)

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            self.conn.execute("BEGIN")
        except sqlite3.Error as error:
            raise RuntimeError(f"conn.Begin {error}") from error
        try:
            yield
        except BaseException:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise
        try:
            self.conn.execute("COMMIT")
        except sqlite3.Error as error:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise RuntimeError(f"tx.Commit {error}") from error

    def engine(self) -> DatabaseEngine:
        return DatabaseEngine.SQLITE3

    def does_torrent_exist(self, info_hash: bytes) -> bool:
        with self._lock:
            row = self.conn.execute(_EXISTS_SQL, (bytes(info_hash),)).fetchone()
        return row is not None

    def add_new_torrent(
        self, info_hash: bytes, name: str, files: Optional[Iterable[File]]
    ) -> None:
        """Store the torrent and its files.

        Empty torrents (total size zero) and torrents already stored are
        skipped silently, since the schema refuses the former.
        """
        files = list(files or ())
        total_size = sum(f.size for f in files)
        if total_size == 0:
            return
        key = bytes(info_hash)

        with self._lock:
            if self.does_torrent_exist(key):
                return
            now = int(time.time())
            with self._transaction():
                try:
                    cursor = self.conn.execute(
                        _INSERT_TORRENT_SQL, (key, name, total_size, now, now)
                    )
                except sqlite3.Error as error:
                    raise RuntimeError(
                        f"tx.Exec (INSERT OR REPLACE INTO torrents) {error}"
                    ) from error
                torrent_id = cursor.lastrowid
                if not torrent_id or torrent_id <= 0:
                    raise RuntimeError("last_insert_rowid() <= 0")
                for file in files:
                    try:
                        self.conn.execute(_INSERT_FILE_SQL, (torrent_id, file.size, file.path))
                    except sqlite3.Error as error:
                        raise RuntimeError(f"tx.Exec (INSERT INTO files) {error}") from error

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def get_number_of_torrents(self) -> int:
        """The largest row id, which approximates the number of torrents."""
        with self._lock:
            row = self.conn.execute("SELECT MAX(ROWID) FROM torrents;").fetchone()
        if row is None:
            raise LookupError("no rows returned from `SELECT MAX(ROWID)`")
        return 0 if row[0] is None else int(row[0])

    def get_number_of_query_torrents(self, query: str, epoch: int) -> int:
        with self._lock:
            row = self.conn.execute(_QUERY_COUNT_SQL, (query, epoch)).fetchone()
        if row is None:
            raise LookupError(
                "no rows returned from `SELECT COUNT(*) FROM torrents WHERE LOWER(name) "
                "LIKE '%' || LOWER($1) || '%' AND discovered_on <= $2;`"
            )
        return 0 if row[0] is None else int(row[0])

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
        if query == "" and order_by == OrderingCriteria.BY_RELEVANCE:
            raise ValueError("torrents cannot be ordered by relevance when the query is empty")
        if (last_ordered_value is None) != (last_id is None):
            raise ValueError(
                "lastOrderedValue and lastID should be supplied together, if supplied"
            )

        do_join = query != ""
        first_page = last_id is None
        sql = _build_query_sql(do_join, first_page, order_on(order_by), ascending)

        args: list[Any] = []
        if do_join:
            args.append(query)
        args.append(epoch)
        if not first_page:
            args += [last_ordered_value, last_id]
        args.append(limit)

        try:
            with self._lock:
                rows = self.conn.execute(sql, args).fetchall()
        except sqlite3.Error as error:
            raise RuntimeError(f"query error {error}") from error

        return [
            TorrentMetadata(
                id=int(row[0]),
                info_hash=bytes(row[1]),
                name=row[2],
                size=int(row[3]),
                discovered_on=int(row[4]),
                n_files=int(row[5]),
                relevance=float(row[6]),
            )
            for row in rows
        ]

    def get_torrent(self, info_hash: bytes) -> Optional[TorrentMetadata]:
        with self._lock:
            row = self.conn.execute(_GET_TORRENT_SQL, (bytes(info_hash),)).fetchone()
        if row is None:
            return None
        return TorrentMetadata(
            info_hash=bytes(row[0]),
            name=row[1],
            size=int(row[2]),
            discovered_on=int(row[3]),
            n_files=int(row[4]),
        )

    def get_files(self, info_hash: bytes) -> list[File]:
        with self._lock:
            rows = self.conn.execute(_GET_FILES_SQL, (bytes(info_hash),)).fetchall()
        return [File(size=int(size), path=path) for size, path in rows]

    def get_statistics(self, from_: str, n: int) -> Statistics:
        try:
            from_time, granularity = parse_iso8601(from_)
        except ValueError as error:
            raise ValueError(f"parsing ISO8601 error {error}") from error
        to_time = _period_end(from_time, granularity, n)
        sql = _STATISTICS_SQL.format(fmt=_TIME_FORMATS[granularity])

        with self._lock:
            rows = self.conn.execute(
                sql, (int(from_time.timestamp()), int(to_time.timestamp()))
            ).fetchall()

        stats = Statistics()
        for bucket, total_size, n_discovered, n_files in rows:
            stats.n_discovered[bucket] = int(n_discovered)
            stats.total_size[bucket] = int(total_size)
            stats.n_files[bucket] = int(n_files)
        return stats


def make_sqlite3_database(url: str) -> SqliteDatabase:
    """Open (creating if needed) the database named by a sqlite:// URL.

    The path is passed to SQLite as a file: URI, so query parameters such
    as mode=memory and cache=shared are honoured and spaces are allowed.
    """
    parts = urlsplit(url)
    path = quote(unquote(parts.netloc + parts.path), safe="/:")
    uri = "file:" + path + (f"?{parts.query}" if parts.query else "")
    try:
        conn = sqlite3.connect(uri, uri=True, check_same_thread=False, isolation_level=None)
    except sqlite3.Error as error:
        raise RuntimeError(f"sql.Open {error}") from error

    database = SqliteDatabase(conn)
    try:
        database.setup_database()
    except RuntimeError as error:
        conn.close()
        raise RuntimeError(f"setupDatabase {error}") from error
    return database