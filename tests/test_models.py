import json

import pytest

from magnetico.persistence.models import (
    Database,
    DatabaseEngine,
    File,
    OrderingCriteria,
    SimpleTorrentSummary,
    Statistics,
    TorrentMetadata,
)


def test_torrent_metadata_json():
    tm = TorrentMetadata(info_hash=bytes([1, 2, 3, 4, 5, 6]))
    expected = (
        '{"infoHash":"010203040506","id":0,"name":"","size":0,'
        '"discoveredOn":0,"nFiles":0,"relevance":0}'
    )
    assert tm.to_json() == expected
    assert json.loads(tm.to_json())["infoHash"] == "010203040506"


def test_torrent_metadata_fractional_relevance():
    tm = TorrentMetadata(id=3, info_hash=b"\xff", name="x", relevance=0.5)
    assert tm.to_dict() == {
        "infoHash": "ff",
        "id": 3,
        "name": "x",
        "size": 0,
        "discoveredOn": 0,
        "nFiles": 0,
        "relevance": 0.5,
    }


def test_json_escapes_html_characters():
    tm = TorrentMetadata(name="a<b>&c")
    assert '"name":"a\\u003cb\\u003e\\u0026c"' in tm.to_json()
    assert json.loads(tm.to_json())["name"] == "a<b>&c"


def test_simple_torrent_summary_json():
    summary = SimpleTorrentSummary(
        info_hash="abcd", name="name", files=[File(size=100, path="a/b")]
    )
    assert summary.to_json() == (
        '{"infoHash":"abcd","name":"name","files":[{"size":100,"path":"a/b"}]}'
    )


def test_simple_torrent_summary_no_files():
    assert SimpleTorrentSummary("00", "n").to_json() == '{"infoHash":"00","name":"n","files":[]}'


def test_new_statistics_empty_and_independent():
    first = Statistics()
    second = Statistics()
    assert first.n_discovered == {} and first.n_files == {} and first.total_size == {}
    first.n_files["2018"] = 1
    assert second.n_files == {}


def test_engine_lookup_by_value():
    assert [e.value for e in DatabaseEngine] == [1, 2, 3, 4, 5]
    assert DatabaseEngine(1) is DatabaseEngine.SQLITE3
    assert DatabaseEngine(4) is DatabaseEngine.RABBITMQ
    assert DatabaseEngine(5) is DatabaseEngine.BITMAGNET
    with pytest.raises(ValueError):
        DatabaseEngine(0)


def test_ordering_lookup_by_value():
    assert OrderingCriteria(0) is OrderingCriteria.BY_RELEVANCE
    assert OrderingCriteria(6) is OrderingCriteria.BY_UPDATED_ON
    with pytest.raises(ValueError):
        OrderingCriteria(7)


def test_database_is_abstract():
    with pytest.raises(TypeError):
        Database()


class _MemoryDatabase(Database):
    def __init__(self):
        self.closed = False
        self.torrents = {}

    def engine(self):
        return DatabaseEngine.SQLITE3

    def does_torrent_exist(self, info_hash):
        return info_hash in self.torrents

    def add_new_torrent(self, info_hash, name, files):
        self.torrents[info_hash] = (name, list(files))

    def close(self):
        self.closed = True

    def get_number_of_torrents(self):
        return len(self.torrents)

    def get_number_of_query_torrents(self, query, epoch):
        return sum(query in name for name, _ in self.torrents.values())

    def query_torrents(self, query, epoch, order_by, ascending, limit, last_ordered_value, last_id):
        return []

    def get_torrent(self, info_hash):
        return None

    def get_files(self, info_hash):
        return self.torrents[info_hash][1]

    def get_statistics(self, from_, n):
        return Statistics()


def test_context_manager_closes():
    with _MemoryDatabase() as db:
        db.add_new_torrent(b"h", "name", [File(1, "p")])
        assert db.get_number_of_torrents() == 1
    assert db.closed is True


def test_context_manager_closes_on_error():
    db = _MemoryDatabase()
    with pytest.raises(RuntimeError):
        with db:
            db.add_new_torrent(b"h", "name", [File(2, "q")])
            raise RuntimeError("boom")
    assert db.closed is True
    assert db.get_files(b"h") == [File(size=2, path="q")]