"""Process-wide counters describing what the crawler has been doing."""

from __future__ import annotations

import re
import threading
from collections.abc import Sequence

NAMESPACE = "magnetico"

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_:]")


class Counter:
    """A monotonically increasing, thread-safe counter."""

    def __init__(self, name: str, help_text: str, namespace: str = NAMESPACE) -> None:
        self.name = f"{namespace}_{name}" if namespace else name
        self.help_text = help_text
        self._value = 0
        self._lock = threading.Lock()

    def inc(self) -> None:
        """Add one to the counter."""
        with self._lock:
            self._value += 1

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:
        return f"Counter({self.name!r}, value={self.value})"


class Stats:
    """The set of counters kept by the crawler."""

    def __init__(self) -> None:
        self.bootstrap = Counter(
            "bootstrap", "Number of times the bootstrap process has been triggered"
        )
        self.write_error = Counter(
            "write_error",
            "Number of times there was an error writing a message to the UDP socket",
        )
        self.read_error = Counter(
            "read_error",
            "Number of times there was an error reading a message from the UDP socket",
        )
        self.rt_clearing = Counter(
            "rt_clearing", "Number of times the routing table has been cleared"
        )
        self.non_utf8 = Counter(
            "non_utf8",
            "Number of times a torrent has been ignored due to its name not being UTF-8 compliant",
        )
        self.check_error = Counter(
            "check_error",
            "Number of times there was an error checking whether a torrent exists",
        )
        self.add_error = Counter(
            "add_error",
            "Number of times there was an error adding a torrent to the database",
        )
        self.mse_encryption = Counter(
            "mse_encryption",
            "Number of times a peer connection has been obfuscated with MSE",
        )
        self.extensions: dict[str, Counter] = {}
        self._lock = threading.Lock()

    def inc_bootstrap(self) -> None:
        self.bootstrap.inc()

    def inc_udp_error(self, write: bool) -> None:
        """Count a UDP write error when write is true, else a read error."""
        (self.write_error if write else self.read_error).inc()

    def inc_rt_clearing(self) -> None:
        self.rt_clearing.inc()

    def inc_non_utf8(self) -> None:
        self.non_utf8.inc()

    def inc_db_error(self, add: bool) -> None:
        """Count a failed insert when add is true, else a failed existence check."""
        (self.add_error if add else self.check_error).inc()

    def inc_leech(self, peer_extensions: Sequence[int]) -> None:
        """Count an obfuscated leech and the 8-byte extension set the peer announced."""
        values = bytes(peer_extensions)
        if len(values) != 8:
            raise ValueError(f"peer extensions must be 8 bytes, got {len(values)}")
        self.mse_encryption.inc()

        rendered = "[" + " ".join(str(b) for b in values) + "]"
        extension_set = _INVALID_NAME_CHARS.sub("_", rendered)
        with self._lock:
            counter = self.extensions.get(extension_set)
            if counter is None:
                counter = Counter(
                    "extension" + extension_set,
                    "Number of times a peer connection has been negotiated with a given extension set",
                )
                self.extensions[extension_set] = counter
        counter.inc()

    def collect(self) -> list[Counter]:
        """Every counter, the fixed ones first and then one per extension set."""
        counters = [
            self.bootstrap,
            self.write_error,
            self.read_error,
            self.rt_clearing,
            self.non_utf8,
            self.check_error,
            self.add_error,
            self.mse_encryption,
        ]
        with self._lock:
            counters.extend(self.extensions.values())
        return counters


_instance: Stats | None = None
_instance_lock = threading.Lock()


def get_instance() -> Stats:
    """The process-wide Stats, created on first use."""
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = Stats()
    return _instance