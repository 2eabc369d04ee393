"""Creation and migration of the SQLite schema for discovered torrents.

The schema is versioned with ``PRAGMA user_version``. A fresh database is
created at version 0 and then walked through every migration up to the
current version, all in a single transaction.
"""

from __future__ import annotations

import logging
import sqlite3
import string
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

log = logging.getLogger(__name__)

CURRENT_VERSION = 3

# WAL lets readers and the writer proceed concurrently, temporary files go to
# disk to keep memory low, and foreign keys catch programming errors.
_PRAGMAS = {
    "journal_mode": "WAL",
    "temp_store": "2",
    "foreign_keys": "ON",
    "encoding": "'UTF-8'",
}

_TORRENT_COLUMNS = (
    ("id", "integer primary key"),
    ("info_hash", "blob not null unique"),
    ("name", "text not null"),
    ("total_size", "integer not null check (total_size > 0)"),
    ("discovered_on", "integer not null check (discovered_on > 0)"),
)

_FILE_COLUMNS = (
    ("id", "integer primary key"),
    ("torrent_id", "integer references torrents on delete cascade on update restrict"),
    ("size", "integer not null"),
    ("path", "text not null"),
)


def _create_table(table: str, columns: Sequence[tuple[str, str]]) -> str:
    body = ", ".join(f"{column} {definition}" for column, definition in columns)
    return f"create table if not exists {table} ({body})"


def _add_column(table: str, column: str, definition: str) -> str:
    return f"alter table {table} add column {column} {definition}"


def _peer_count_check(column: str) -> str:
    """A count that is set exactly when the torrent has been updated."""
    return (
        f"integer default null check ((updated_on is not null and {column} >= 0) "
        f"or (updated_on is null and {column} is null))"
    )


def _fts_tokenizer() -> str:
    # Every ASCII punctuation character and the space separate tokens.
    separators = " " + string.punctuation
    spec = "porter unicode61 separators '" + separators.replace("'", "''") + "'"
    return '"' + spec.replace('"', '""') + '"'


_INDEX_ADD = "insert into torrents_idx(rowid, name) values (new.id, new.name);"
_INDEX_REMOVE = (
    "insert into torrents_idx(torrents_idx, rowid, name) "
    "values ('delete', old.id, old.name);"
)


def _index_trigger(name: str, event: str, *body: str) -> str:
    return f"create trigger {name} after {event} on torrents begin {' '.join(body)} end"


_SCHEMA_V0 = (
    _create_table("torrents", _TORRENT_COLUMNS),
    _create_table("files", _FILE_COLUMNS),
)

# The index on info_hash becomes unique.
_MIGRATION_V1 = (
    "drop index if exists info_hash_index",
    "create unique index info_hash_index on torrents (info_hash)",
)

# Seeder/leecher counts on torrents, and at most one readme per torrent kept
# with the file it came from. is_readme is NULL or 1; content is set exactly
# when is_readme is 1.
_MIGRATION_V2 = (
    _add_column("torrents", "updated_on", "integer default null check (updated_on > 0)"),
    _add_column("torrents", "n_seeders", _peer_count_check("n_seeders")),
    _add_column("torrents", "n_leechers", _peer_count_check("n_leechers")),
    _add_column(
        "files", "is_readme", "integer default null check (is_readme is null or is_readme = 1)"
    ),
    _add_column(
        "files",
        "content",
        "text default null check ((content is null and is_readme is null) "
        "or (content is not null and is_readme = 1))",
    ),
    "create unique index readme_index on files (torrent_id, is_readme)",
)

# Far-future placeholder for modified_on; it must be revised before the year 3000.
_MODIFIED_ON_DEFAULT = 32503680000

# A full-text index over torrent names, kept current by triggers, and a
# modified_on column holding the later of discovered_on and updated_on.
_MIGRATION_V3 = (
    "create virtual table torrents_idx using fts5(name, content='torrents', "
    f"content_rowid='id', tokenize={_fts_tokenizer()})",
    "insert into torrents_idx(rowid, name) select id, name from torrents",
    _index_trigger("torrents_idx_ai_t", "insert", _INDEX_ADD),
    _index_trigger("torrents_idx_ad_t", "delete", _INDEX_REMOVE),
    _index_trigger("torrents_idx_au_t", "update", _INDEX_REMOVE, _INDEX_ADD),
    _add_column(
        "torrents",
        "modified_on",
        f"integer not null default {_MODIFIED_ON_DEFAULT} "
        "check (modified_on >= discovered_on "
        "and (updated_on is not null or modified_on >= updated_on))",
    ),
    "update torrents set modified_on = max(discovered_on, ifnull(updated_on, 0))",
    "create index modified_on_index on torrents (modified_on)",
)

_MIGRATIONS = (
    (0, _MIGRATION_V1),
    (1, _MIGRATION_V2),
    (2, _MIGRATION_V3),
)


def _run_all(conn: sqlite3.Connection, statements: Sequence[str]) -> None:
    for statement in statements:
        conn.execute(statement)


@contextmanager
def _autocommit(conn: sqlite3.Connection) -> Iterator[None]:
    """Let the body manage transactions itself, restoring the old mode after."""
    saved = conn.isolation_level
    conn.isolation_level = None
    try:
        yield
    finally:
        conn.isolation_level = saved


@contextmanager
def _transaction(conn: sqlite3.Connection) -> Iterator[None]:
    """Run the body in one explicit transaction, rolling back on error."""
    with _autocommit(conn):
        try:
            conn.execute("begin")
        except sqlite3.Error as error:
            raise RuntimeError(f"could not begin schema transaction: {error}") from error
        try:
            yield
        except BaseException:
            conn.execute("rollback")
            raise
        try:
            conn.execute("commit")
        except sqlite3.Error as error:
            if conn.in_transaction:
                conn.execute("rollback")
            raise RuntimeError(f"could not commit schema transaction: {error}") from error


def user_version(conn: sqlite3.Connection) -> int:
    """The schema version recorded in the database header."""
    row = conn.execute("pragma user_version").fetchone()
    if row is None:
        raise RuntimeError("pragma user_version returned no rows")
    return int(row[0])


def setup_database(conn: sqlite3.Connection) -> None:
    """Apply connection pragmas, then create and migrate the schema.

    Raises RuntimeError when any step fails; the schema changes are then
    rolled back as a whole.
    """
    with _autocommit(conn):
        try:
            for pragma, value in _PRAGMAS.items():
                conn.execute(f"pragma {pragma}={value}")
        except sqlite3.Error as error:
            raise RuntimeError(f"could not apply pragmas: {error}") from error

    with _transaction(conn):
        try:
            _run_all(conn, _SCHEMA_V0)
        except sqlite3.Error as error:
            raise RuntimeError(f"could not create schema v0: {error}") from error

        try:
            version = user_version(conn)
        except sqlite3.Error as error:
            raise RuntimeError(f"could not read user_version: {error}") from error

        for from_version, statements in _MIGRATIONS:
            if version > from_version:
                continue
            to_version = from_version + 1
            log.info(
                "Updating database schema from %d to %d... (this might take a while)",
                from_version,
                to_version,
            )
            try:
                _run_all(conn, statements)
                conn.execute(f"pragma user_version = {to_version}")
            except sqlite3.Error as error:
                raise RuntimeError(
                    f"migration v{from_version} -> v{to_version} failed: {error}"
                ) from error
            version = to_version