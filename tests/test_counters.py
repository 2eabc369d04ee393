import threading

import pytest

from magnetico.stats.counters import Counter, Stats, get_instance


def test_collect_counts_all_counters_and_one_extension():
    stats = Stats()
    stats.inc_bootstrap()
    stats.inc_udp_error(True)
    stats.inc_udp_error(False)
    stats.inc_rt_clearing()
    stats.inc_non_utf8()
    stats.inc_db_error(False)
    stats.inc_db_error(True)
    stats.inc_leech(bytes(8))

    assert len(stats.collect()) == 9


def test_each_increment_hits_its_counter():
    stats = Stats()
    stats.inc_udp_error(True)
    stats.inc_db_error(True)
    stats.inc_db_error(True)
    assert stats.write_error.value == 1
    assert stats.read_error.value == 0
    assert stats.add_error.value == 2
    assert stats.check_error.value == 0


def test_get_instance_is_a_singleton():
    first = get_instance()
    second = get_instance()
    assert first is second
    assert isinstance(first.extensions, dict)


def test_leech_extension_name_and_reuse():
    stats = Stats()
    stats.inc_leech(bytes(8))
    stats.inc_leech(bytes(8))
    assert list(stats.extensions) == ["_0_0_0_0_0_0_0_0_"]
    counter = stats.extensions["_0_0_0_0_0_0_0_0_"]
    assert counter.name == "magnetico_extension_0_0_0_0_0_0_0_0_"
    assert counter.value == 2
    assert stats.mse_encryption.value == 2


def test_distinct_extension_sets_get_distinct_counters():
    stats = Stats()
    stats.inc_leech(bytes(8))
    stats.inc_leech(bytes([0, 0, 0, 0, 0, 16, 0, 5]))
    assert len(stats.extensions) == 2
    assert len(stats.collect()) == 10


def test_leech_rejects_wrong_length():
    stats = Stats()
    with pytest.raises(ValueError):
        stats.inc_leech(bytes(7))
    assert stats.mse_encryption.value == 0


def test_counter_is_thread_safe():
    counter = Counter("test", "help")
    threads = [
        threading.Thread(target=lambda: [counter.inc() for _ in range(1000)])
        for _ in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert counter.value == 8000
    assert counter.name == "magnetico_test"