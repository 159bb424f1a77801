import pytest

from gemflows.core.memory import Memory


def test_memory_set_and_read():
    m = Memory()
    m.set("topic", "cats")
    assert m["topic"] == "cats"
    assert m.get("topic") == "cats"
    assert m.get("nope") is None
    assert "topic" in m and "nope" not in m
    assert len(m) == 1
    assert dict(m) == {"topic": "cats"}


def test_memory_is_write_once():
    m = Memory()
    m.set("topic", "cats")
    with pytest.raises(KeyError):
        m.set("topic", "dogs")
    assert m["topic"] == "cats"


def test_memory_snapshot_is_independent():
    m = Memory()
    m.set("a", "1")
    snap = m.snapshot()
    m.set("b", "2")
    assert snap == {"a": "1"}
    assert m.as_dict() == {"a": "1", "b": "2"}
