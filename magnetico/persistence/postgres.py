"""PostgreSQL (and CockroachDB) storage for discovered torrents.

The backend works on any DB-API 2.0 connection to a PostgreSQL server. The
statements are written with numbered ``$n`` placeholders and rewritten for
the driver's parameter style, which is given when the backend is built.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterable, Sequence
from contextlib import closing
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from magnetico.persistence.iso8601 import Granularity, parse_iso8601
from magnetico.persistence.models import (
    Database,
    DatabaseEngine,
    File,
    OrderingCriteria,
    Statistics,
    TorrentMetadata,
)
from magnetico.stats.counters import get_instance

log = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$(\d+)")
_MARKERS = {"format": "%s", "pyformat": "%s", "qmark": "?"}
_PARAMSTYLES = {*_MARKERS, "numeric", "dollar"}

_EXISTS_SQL = "SELECT 1 FROM torrents WHERE info_hash = $1;"

_INSERT_TORRENT_SQL = """
		INSERT INTO torrents (
			info_hash,
			name,
			total_size,
			discovered_on
		) VALUES ($1, $2, $3, $4)
		RETURNING id;
	"""

_INSERT_FILE_SQL = "INSERT INTO files (torrent_id, size, path) VALUES ($1, $2, $3);"

_EXACT_COUNT_SQL = "SELECT last_value::BIGINT AS exact_count FROM seq_torrents_id;"

_FUZZY_COUNT_SQL = (
    "SELECT reltuples::BIGINT AS estimate_count FROM pg_class WHERE relname='torrents';"
)

_QUERY_COUNT_SQL = """SELECT COUNT(*)
		FROM torrents
		WHERE
			name ILIKE CONCAT('%',$1::text,'%') AND
			discovered_on <= $2;
	"""

_GET_TORRENT_SQL = """
		SELECT
			t.info_hash,
			t.name,
			t.total_size,
			t.discovered_on,
			(SELECT COUNT(*) FROM files f WHERE f.torrent_id = t.id) AS n_files
		FROM torrents t
		WHERE t.info_hash = $1;"""

_GET_FILES_SQL = """
		SELECT
			f.size,
			f.path
		FROM
			files f,
			torrents t
		WHERE
			f.torrent_id = t.id AND
			t.info_hash = $1;"""

_STATISTICS_SQL = """
		SELECT
			discovered_on AS dT,
			sum(files.size) AS tS,
			count(DISTINCT torrents.id) AS nD,
			count(DISTINCT files.id) AS nF
		FROM
			torrents,
			files
		WHERE
			torrents.id = files.torrent_id AND
			discovered_on >= $1 AND
			discovered_on <= $2
		GROUP BY dt;"""

_TRGM_SQL = "SELECT 1 FROM pg_extension WHERE extname = 'pg_trgm';"

_SCHEMA_V0_SQL = """
		-- Torrents ID sequence generator
		CREATE SEQUENCE IF NOT EXISTS seq_torrents_id;
		-- Files ID sequence generator
		CREATE SEQUENCE IF NOT EXISTS seq_files_id;

		CREATE TABLE IF NOT EXISTS torrents (
			id             INTEGER PRIMARY KEY DEFAULT nextval('seq_torrents_id'),
			info_hash      bytea NOT NULL UNIQUE,
			name           TEXT NOT NULL,
			total_size     BIGINT NOT NULL CHECK(total_size > 0),
			discovered_on  INTEGER NOT NULL CHECK(discovered_on > 0)
		);

		-- Indexes for search sorting options
		CREATE INDEX IF NOT EXISTS idx_torrents_total_size ON torrents (total_size);
		CREATE INDEX IF NOT EXISTS idx_torrents_discovered_on ON torrents (discovered_on);

		-- A pg_trgm GIN index makes ILIKE queries fast; it needs the pg_trgm extension.
		-- Values shorter than three characters still cause a full table scan.
		CREATE INDEX IF NOT EXISTS idx_torrents_name_gin_trgm ON torrents USING GIN (name gin_trgm_ops);

		CREATE TABLE IF NOT EXISTS files (
			id          INTEGER PRIMARY KEY DEFAULT nextval('seq_files_id'),
			torrent_id  INTEGER REFERENCES torrents ON DELETE CASCADE ON UPDATE RESTRICT,
			size        BIGINT NOT NULL,
			path        TEXT NOT NULL
		);

		CREATE INDEX IF NOT EXISTS idx_files_torrent_id ON files (torrent_id);

		CREATE TABLE IF NOT EXISTS migrations (
			schema_version		SMALLINT NOT NULL UNIQUE
		);

		INSERT INTO migrations (schema_version) VALUES (0) ON CONFLICT DO NOTHING;
	"""

_SCHEMA_VERSION_SQL = "SELECT MAX(schema_version) FROM migrations;"

_TIME_FORMATS = {
    Granularity.YEAR: "%Y",
    Granularity.MONTH: "%Y-%m",
    Granularity.WEEK: "%Y-%m-%d",
    Granularity.DAY: "%Y-%m-%d",
    Granularity.HOUR: "%Y-%m-%d %H:%M",
}


def order_on(order_by: OrderingCriteria) -> str:
    """The column a page of results is ordered on."""
    if order_by in (OrderingCriteria.BY_RELEVANCE, OrderingCriteria.BY_DISCOVERED_ON):
        return "discovered_on"
    if order_by == OrderingCriteria.BY_TOTAL_SIZE:
        return "total_size"
    if order_by == OrderingCriteria.BY_N_FILES:
        return "n_files"
    raise ValueError(f"unknown orderBy: {order_by}")


def build_query_sql(order_by: OrderingCriteria, ascending: bool) -> str:
    """The paging query, with placeholders $1..$5 for user input."""
    column = order_on(order_by)
    comparison = ">" if ascending else "<"
    direction = "ASC" if ascending else "DESC"
    return f"""
		SELECT
			id,
			info_hash,
			name,
			total_size,
			discovered_on,
			(SELECT COUNT(*) FROM files WHERE torrents.id = files.torrent_id) AS n_files,
			0
		FROM torrents
		WHERE
			($1::text = '' OR name ILIKE CONCAT('%',$1::text,'%')) AND
			discovered_on <= $2 AND
			($3 = 0 OR {column} {comparison} $3) AND
			($4 = 0 OR id {comparison} $4)
		ORDER BY {column} {direction}, id {direction}
		LIMIT $5;
	"""


def _bind(sql: str, args: Sequence[Any], style: str) -> tuple[str, list[Any]]:
    if style == "dollar":
        return sql, list(args)
    if style == "numeric":
        return _PLACEHOLDER.sub(lambda m: ":" + m[1], sql), list(args)
    marker = _MARKERS[style]
    if marker == "%s":
        sql = sql.replace("%", "%%")
    ordered: list[Any] = []

    def substitute(match: re.Match[str]) -> str:
        ordered.append(args[int(match[1]) - 1])
        return marker

    return _PLACEHOLDER.sub(substitute, sql), ordered


def _is_valid_utf8(text: str) -> bool:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _add_date(t: datetime, years: int = 0, months: int = 0, days: int = 0) -> datetime:
    """Add a calendar offset, letting day overflow roll into the next month."""
    extra_years, month_index = divmod(t.month - 1 + months, 12)
    start = t.replace(year=t.year + years + extra_years, month=month_index + 1, day=1)
    return start + timedelta(days=t.day - 1 + days)


def _as_count(value: Any) -> int:
    if value is None:
        return 0
    return max(int(value), 0)


class PostgresDatabase(Database):
    """Torrents stored in PostgreSQL through a DB-API connection.

    ``paramstyle`` names the driver's parameter style: format, pyformat,
    qmark, numeric or dollar.
    """

    def __init__(self, conn: Any, *, paramstyle: str = "format") -> None:
        if paramstyle not in _PARAMSTYLES:
            raise ValueError(f"unsupported paramstyle: {paramstyle!r}")
        self.conn = conn
        self.paramstyle = paramstyle

    def _run(self, cursor: Any, sql: str, args: Optional[Sequence[Any]]) -> None:
        if args is None:
            cursor.execute(sql)
        else:
            cursor.execute(*_bind(sql, args, self.paramstyle))

    def _fetchone(self, sql: str, args: Optional[Sequence[Any]] = None) -> Any:
        with closing(self.conn.cursor()) as cursor:
            self._run(cursor, sql, args)
            return cursor.fetchone()

    def _fetchall(self, sql: str, args: Optional[Sequence[Any]] = None) -> list[Any]:
        with closing(self.conn.cursor()) as cursor:
            self._run(cursor, sql, args)
            return list(cursor.fetchall())

    def _execute(self, sql: str, args: Optional[Sequence[Any]] = None) -> None:
        with closing(self.conn.cursor()) as cursor:
            self._run(cursor, sql, args)

    def setup_database(self) -> None:
        """Create the schema if missing and read its version, in one transaction."""
        try:
            if self._fetchone(_TRGM_SQL) is None:
                log.warning(
                    "pg_trgm extension is not enabled. You need to execute "
                    "'CREATE EXTENSION pg_trgm' on this database"
                )
            try:
                self._execute(_SCHEMA_V0_SQL)
            except Exception as error:
                raise RuntimeError(f"sql.Tx.Exec (v0) {error}") from error
            row = self._fetchone(_SCHEMA_VERSION_SQL)
            if row is None:
                raise RuntimeError(
                    "sql.Rows.Next (SELECT MAX(version) FROM migrations): "
                    "Query did not return any rows"
                )
        except BaseException:
            self.conn.rollback()
            raise
        try:
            self.conn.commit()
        except Exception as error:
            raise RuntimeError(f"sql.Tx.Commit {error}") from error

    def engine(self) -> DatabaseEngine:
        return DatabaseEngine.POSTGRES

    def does_torrent_exist(self, info_hash: bytes) -> bool:
        return self._fetchone(_EXISTS_SQL, [bytes(info_hash)]) is not None

    def add_new_torrent(self, info_hash: bytes, name: str, files: Iterable[File]) -> None:
        """Store the torrent and its files; silently skip what cannot be stored.

        Torrents with a name or path that is not valid UTF-8 are counted and
        skipped, as are empty torrents and ones already present.
        """
        if not _is_valid_utf8(name):
            get_instance().inc_non_utf8()
            return
        name = name.replace("\x00", "")
        files = list(files)

        try:
            stored = self._insert(bytes(info_hash), name, files)
        except BaseException:
            self.conn.rollback()
            raise
        if not stored:
            self.conn.rollback()
            return
        try:
            self.conn.commit()
        except Exception as error:
            raise RuntimeError(f"tx.Commit {error}") from error

    def _insert(self, info_hash: bytes, name: str, files: list[File]) -> bool:
        total_size = sum(f.size for f in files)
        # The schema refuses a total size of zero.
        if total_size == 0:
            return False
        if self.does_torrent_exist(info_hash):
            return False

        try:
            row = self._fetchone(
                _INSERT_TORRENT_SQL, [info_hash, name, total_size, int(time.time())]
            )
        except Exception as error:
            raise RuntimeError(f"tx.QueryRow (INSERT INTO torrents) {error}") from error
        if row is None:
            raise RuntimeError("tx.QueryRow (INSERT INTO torrents) no id returned")
        torrent_id = row[0]

        for file in files:
            if not _is_valid_utf8(file.path):
                get_instance().inc_non_utf8()
                return False
            try:
                self._execute(_INSERT_FILE_SQL, [torrent_id, file.size, file.path])
            except Exception as error:
                raise RuntimeError(f"tx.Exec (INSERT INTO files) {error}") from error
        return True

    def close(self) -> None:
        self.conn.close()

    def _count(self, sql: str) -> int:
        row = self._fetchone(sql)
        if row is None:
            raise LookupError(f"no rows returned from `{sql}`")
        return _as_count(row[0])

    def get_exact_count(self) -> int:
        """The current value of the torrent id sequence."""
        return self._count(_EXACT_COUNT_SQL)

    def get_fuzzy_count(self) -> int:
        """The planner's estimate of the number of torrents."""
        return self._count(_FUZZY_COUNT_SQL)

    def get_number_of_torrents(self) -> int:
        try:
            return self.get_exact_count()
        except Exception:
            self.conn.rollback()
        return self.get_fuzzy_count()

    def get_number_of_query_torrents(self, query: str, epoch: int) -> int:
        row = self._fetchone(_QUERY_COUNT_SQL, [query, epoch])
        if row is None:
            raise LookupError(
                "no rows returned from `SELECT COUNT(*) FROM torrents WHERE name ILIKE "
                "CONCAT('%',$1::text,'%') AND discovered_on <= $2;`"
            )
        return _as_count(row[0])

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
        if (last_ordered_value is None) != (last_id is None):
            raise ValueError(
                "lastOrderedValue and lastID should be supplied together, if supplied"
            )
        safe_last_ordered_value = 0.0 if last_ordered_value is None else last_ordered_value
        safe_last_id = 0 if last_id is None else last_id

        sql = build_query_sql(order_by, ascending)
        try:
            rows = self._fetchall(
                sql, [query, epoch, safe_last_ordered_value, safe_last_id, limit]
            )
        except Exception as error:
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
        row = self._fetchone(_GET_TORRENT_SQL, [bytes(info_hash)])
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
        rows = self._fetchall(_GET_FILES_SQL, [bytes(info_hash)])
        return [File(size=int(size), path=path) for size, path in rows]

    def get_statistics(self, from_: str, n: int) -> Statistics:
        try:
            from_time, granularity = parse_iso8601(from_)
        except ValueError as error:
            raise ValueError(f"parsing ISO8601 error {error}") from error

        if granularity == Granularity.YEAR:
            to_time = _add_date(from_time, years=n)
        elif granularity == Granularity.MONTH:
            to_time = _add_date(from_time, months=n)
        elif granularity == Granularity.WEEK:
            to_time = _add_date(from_time, days=n * 7)
        elif granularity == Granularity.DAY:
            to_time = _add_date(from_time, days=n)
        else:
            to_time = from_time + timedelta(hours=n)
        time_format = _TIME_FORMATS[granularity]

        rows = self._fetchall(
            _STATISTICS_SQL, [int(from_time.timestamp()), int(to_time.timestamp())]
        )

        stats = Statistics()
        for discovered_on, total_size, n_discovered, n_files in rows:
            try:
                epoch = int(discovered_on)
            except (TypeError, ValueError):
                epoch = 0
            bucket = datetime.fromtimestamp(epoch, timezone.utc).strftime(time_format)
            stats.n_discovered[bucket] = int(n_discovered)
            stats.total_size[bucket] = int(total_size)
            stats.n_files[bucket] = int(n_files)
        return stats