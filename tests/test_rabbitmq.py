import json
import time
from types import SimpleNamespace

import pytest

from magnetico.persistence.models import DatabaseEngine, File, OrderingCriteria
from magnetico.persistence.rabbitmq import RabbitMQDatabase


class FakeChannel:
    def __init__(self):
        self.is_closed = False
        self.confirmed = False
        self.declared = []
        self.published = []
        self.fail = False

    def confirm_delivery(self):
        self.confirmed = True

    def queue_declare(self, queue, **kwargs):
        self.declared.append((queue, kwargs))
        return SimpleNamespace(method=SimpleNamespace(queue=queue))

    def basic_publish(self, exchange, routing_key, body, mandatory=False):
        if self.fail:
            raise ConnectionError("nack")
        self.published.append((exchange, routing_key, body))

    def close(self):
        self.is_closed = True


class FakeConnection:
    def __init__(self, params):
        self.params = params
        self.is_closed = False
        self.channels = []

    def channel(self):
        ch = FakeChannel()
        self.channels.append(ch)
        return ch

    def close(self):
        self.is_closed = True


def _recording_factory(connections):
    def factory(params):
        conn = FakeConnection(params)
        connections.append(conn)
        return conn

    return factory


@pytest.fixture
def connections():
    return []


@pytest.fixture
def db(connections):
    with RabbitMQDatabase(
        "amqp://localhost/", connection_factory=_recording_factory(connections)
    ) as database:
        yield database


def test_connect_declares_durable_queue(connections):
    database = RabbitMQDatabase(
        "amqp://localhost/", connection_factory=_recording_factory(connections)
    )
    try:
        assert database.engine() == DatabaseEngine.RABBITMQ
        assert len(connections) == 1
        channel = connections[0].channels[0]
        assert channel.confirmed is True
        queue, kwargs = channel.declared[0]
        assert queue == "magnetico"
        assert kwargs["durable"] is True
        assert kwargs["auto_delete"] is False
        assert connections[0].params.host == "localhost"
    finally:
        database.close()


def test_add_publishes_summary(db, connections):
    info_hash = bytes(range(20))
    files = [File(size=5, path="a/b"), File(size=7, path="c")]
    db.add_new_torrent(info_hash, "name", files)

    exchange, routing_key, body = connections[0].channels[0].published[0]
    assert exchange == ""
    assert routing_key == "magnetico"
    document = json.loads(body)
    assert document["infoHash"] == info_hash.hex()
    assert document["name"] == "name"
    assert document["files"] == [{"size": 5, "path": "a/b"}, {"size": 7, "path": "c"}]
    assert db.does_torrent_exist(info_hash)


def test_duplicate_is_refused(db, connections):
    db.add_new_torrent(b"hash", "name", [])
    with pytest.raises(RuntimeError, match="torrent already exists"):
        db.add_new_torrent(b"hash", "name", [])
    assert len(connections[0].channels[0].published) == 1


def test_failed_publish_is_not_cached(db, connections):
    connections[0].channels[0].fail = True
    with pytest.raises(ConnectionError):
        db.add_new_torrent(b"hash", "name", [])
    assert db.does_torrent_exist(b"hash") is False


def test_reconnects_when_channel_closed(db, connections):
    connections[0].channels[0].is_closed = True
    db.add_new_torrent(b"hash", "name", [])
    assert db.does_torrent_exist(b"hash") is True
    assert len(connections) == 2
    assert len(connections[1].channels[0].published) == 1


def test_close_closes_channel_and_connection(connections):
    database = RabbitMQDatabase(
        "amqp://localhost/", connection_factory=_recording_factory(connections)
    )
    database.close()
    assert connections[0].channels[0].is_closed is True
    assert connections[0].is_closed is True


def test_cleanup(db):
    db.cache[b"expired"] = time.monotonic() - 60
    db.cache[b"valid"] = time.monotonic() + 600
    db.cleanup()
    assert set(db.cache) == {b"valid"}


def test_engine_and_counts(db):
    assert db.engine() == DatabaseEngine.RABBITMQ
    assert db.get_number_of_torrents() == 0
    assert db.get_number_of_query_torrents("q", 0) == 0


def test_unsupported_operations(db):
    with pytest.raises(RuntimeError, match="query not supported"):
        db.query_torrents("q", 0, OrderingCriteria.BY_RELEVANCE, True, 10, None, None)
    with pytest.raises(RuntimeError, match="fetch not supported"):
        db.get_torrent(b"h")
    with pytest.raises(RuntimeError, match="file fetch not supported"):
        db.get_files(b"h")
    with pytest.raises(RuntimeError, match="statistics not supported"):
        db.get_statistics("", 0)