import os
import stat

import pytest

from counter_service import CounterLockError, CounterReadError, CounterWriteError, FileCounterStore


def test_load_missing_file_raises(tmp_path):
    store = FileCounterStore(tmp_path / "counter.txt")
    with pytest.raises(CounterReadError) as exc:
        store.load()
    assert exc.value.path == tmp_path / "counter.txt"
    assert isinstance(exc.value.error, FileNotFoundError)


@pytest.mark.parametrize("content", ["", "abc", "1.5", "1_000", "12 13", "0x10", " 17", "17\n", "\uff11\uff17"])
def test_load_unparseable_returns_none(tmp_path, content):
    path = tmp_path / "counter.txt"
    path.write_text(content, encoding="utf-8")
    assert FileCounterStore(path).load() is None


def test_load_undecodable_returns_none(tmp_path):
    path = tmp_path / "counter.txt"
    path.write_bytes(b"\xff\xfe7")
    assert FileCounterStore(path).load() is None


@pytest.mark.parametrize("content, expected", [("17", 17), ("+3", 3), ("-2", -2), ("007", 7)])
def test_load_decimal(tmp_path, content, expected):
    path = tmp_path / "counter.txt"
    path.write_text(content)
    assert FileCounterStore(path).load() == expected


def test_save_overwrites_without_delimiter(tmp_path):
    path = tmp_path / "nested" / "counter.txt"
    store = FileCounterStore(path)

    store.save(100)
    store.save(7)

    assert path.read_text() == "7"
    assert store.load() == 7


def test_save_creates_file_world_readable(tmp_path):
    path = tmp_path / "counter.txt"
    FileCounterStore(path).save(1)

    umask = os.umask(0)
    os.umask(umask)
    assert stat.S_IMODE(path.stat().st_mode) == 0o644 & ~umask


def test_save_failure_raises_write_error(tmp_path):
    store = FileCounterStore(tmp_path)
    with pytest.raises(CounterWriteError) as exc:
        store.save(1)
    assert isinstance(exc.value.error, OSError)


def test_lock_creates_sibling_lock_file(tmp_path):
    store = FileCounterStore(tmp_path / "counter.txt")
    with store.lock():
        assert (tmp_path / "counter.lock").exists()


def test_lock_failure_raises_lock_error(tmp_path):
    plain = tmp_path / "plain"
    plain.write_text("")
    store = FileCounterStore(plain / "counter.txt")

    with pytest.raises(CounterLockError) as exc:
        with store.lock():
            pass
    assert exc.value.path == plain / "counter.lock"
