import pytest

from app.storage.operation_cache import OperationCache


def test_evicts_least_recently_updated():
    cache = OperationCache(capacity=2)
    cache.record("op-a", "predicting")
    cache.record("op-b", "predicting")
    cache.record("op-a", "running")
    cache.record("op-c", "predicting")

    names = [entry["operation_name"] for entry in cache.snapshot()]
    assert names == ["op-a", "op-c"]
    assert cache.get("op-b") is None
    assert cache.get("op-a")["status"] == "running"
    assert len(cache) == 2


def test_ignores_empty_names_and_rejects_zero_capacity():
    cache = OperationCache(capacity=1)
    cache.record("", "done")
    assert cache.snapshot() == []
    with pytest.raises(ValueError):
        OperationCache(capacity=0)
