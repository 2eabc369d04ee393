import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from magnetico.persistence.bitmagnet import BitmagnetDatabase, make_bitmagnet
from magnetico.persistence.models import DatabaseEngine, File, OrderingCriteria


@pytest.fixture
def server():
    received = []

    class Handler(BaseHTTPRequestHandler):
        def do_POST(self):
            length = int(self.headers["Content-Length"])
            received.append((self.headers["Content-Type"], self.rfile.read(length)))
            self.send_response(200)
            self.end_headers()
            self.wfile.write(b"OK")

        def log_message(self, *args):
            pass

    httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{httpd.server_address[1]}", received
    finally:
        httpd.shutdown()
        httpd.server_close()


@pytest.fixture
def db():
    with BitmagnetDatabase("", debug=True, source_name="testsource") as database:
        yield database


def test_add_new_torrent(server):
    url, received = server
    with BitmagnetDatabase(url, debug=True, source_name="testsource") as b:
        info_hash = b"testhash"
        files = [File(size=100), File(size=200)]
        b.add_new_torrent(info_hash, "testname", files)
        assert b.does_torrent_exist(info_hash)

        with pytest.raises(RuntimeError, match="torrent already exists"):
            b.add_new_torrent(info_hash, "testname", files)

    assert len(received) == 1
    content_type, body = received[0]
    assert content_type == "application/json"
    assert body.endswith(b"\n")
    document = json.loads(body)
    assert document["infoHash"] == info_hash.hex()
    assert document["name"] == "testname"
    assert document["size"] == 300
    assert document["source"] == "testsource"
    assert document["publishedAt"].endswith("Z")


def test_post_failure_is_not_cached():
    with BitmagnetDatabase("http://127.0.0.1:1/none") as b:
        with pytest.raises(ConnectionError):
            b.add_new_torrent(b"testhash", "testname", [File(size=1)])
        assert not b.does_torrent_exist(b"testhash")


def test_get_number_of_torrents(db):
    assert db.get_number_of_torrents() == 0
    assert db.get_number_of_query_torrents("query", 0) == 0


def test_query_torrents(db):
    with pytest.raises(RuntimeError, match="query not supported"):
        db.query_torrents(
            "example query", 1234567890, OrderingCriteria.BY_RELEVANCE, True, 10, None, None
        )


def test_get_torrent(db):
    with pytest.raises(RuntimeError, match="fetch not supported"):
        db.get_torrent(b"infoHash")


def test_get_files(db):
    with pytest.raises(RuntimeError, match="file fetch not supported"):
        db.get_files(b"infoHash")


def test_get_statistics(db):
    with pytest.raises(RuntimeError, match="statistics not supported"):
        db.get_statistics("", 0)


def test_engine(db):
    assert db.engine() == DatabaseEngine.BITMAGNET


def test_cleanup(db):
    db.cache[b"expiredInfoHash"] = time.monotonic() - 60
    db.cache[b"validInfoHash"] = time.monotonic() + 600
    db.cleanup()
    assert b"expiredInfoHash" not in db.cache
    assert b"validInfoHash" in db.cache


def test_does_torrent_exist(db):
    info_hash = b"testhash"
    assert db.does_torrent_exist(info_hash) is False
    db.cache[info_hash] = time.monotonic() + 600
    assert db.does_torrent_exist(info_hash) is True


@pytest.mark.parametrize(
    "url, want_debug, want_source, want_url",
    [
        ("bitmagnet://example.com?debug=true&source=testsource", True, "testsource", "http://example.com"),
        ("bitmagnet://example.com", False, "magnetico", "http://example.com"),
        ("bitmagnets://example.com/import#frag", False, "magnetico", "https://example.com/import"),
    ],
)
def test_make_bitmagnet(url, want_debug, want_source, want_url):
    with make_bitmagnet(url) as b:
        assert b.debug is want_debug
        assert b.source_name == want_source
        assert b.url == want_url


def test_make_bitmagnet_invalid_url():
    with pytest.raises(ValueError):
        make_bitmagnet("://example.com")