# tests/services/test_kv_store.py
from unittest.mock import MagicMock

import pytest
import redis

from rolegate.core.errors import StoreError
from rolegate.services.kv_store import MemoryKeyValueStore, RedisKeyValueStore
from rolegate.services.nonce import NonceManager


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


def test_memory_store_expires_entries_after_ttl():
    clock = FakeClock()
    store = MemoryKeyValueStore(max_entries=10, clock=clock)
    store.set("nonce:1", {"nonce": "abc"}, ttl_seconds=5)

    clock.now += 4.9
    assert store.get("nonce:1") == {"nonce": "abc"}

    clock.now += 0.1
    assert store.get("nonce:1") is None


def test_memory_store_evicts_oldest_when_full():
    store = MemoryKeyValueStore(max_entries=2)
    store.set("a", {"v": 1}, 60)
    store.set("b", {"v": 2}, 60)
    store.set("c", {"v": 3}, 60)

    assert len(store) == 2
    assert store.get("a") is None
    assert store.get("b") == {"v": 2}
    assert store.get("c") == {"v": 3}


def test_memory_store_overwrite_refreshes_position():
    store = MemoryKeyValueStore(max_entries=2)
    store.set("a", {"v": 1}, 60)
    store.set("b", {"v": 2}, 60)
    store.set("a", {"v": 10}, 60)
    store.set("c", {"v": 3}, 60)

    assert store.get("a") == {"v": 10}
    assert store.get("b") is None


def test_memory_store_returns_copies():
    store = MemoryKeyValueStore()
    store.set("k", {"v": 1}, 60)
    value = store.get("k")
    value["v"] = 2
    assert store.get("k") == {"v": 1}


def test_memory_store_delete_is_idempotent():
    store = MemoryKeyValueStore()
    store.delete("missing")
    store.set("k", {"v": 1}, 60)
    store.delete("k")
    store.delete("k")
    assert store.get("k") is None


def test_memory_store_rejects_non_positive_ttl():
    with pytest.raises(ValueError):
        MemoryKeyValueStore().set("k", {}, 0)


def test_redis_store_round_trips_json_with_prefix_and_ttl():
    client = MagicMock()
    client.get.return_value = b'{"nonce": "abc", "message_id": null}'
    store = RedisKeyValueStore(client, prefix="test:")

    store.set("nonce:1", {"nonce": "abc"}, 300)
    client.set.assert_called_once_with("test:nonce:1", '{"nonce": "abc"}', ex=300)

    assert store.get("nonce:1") == {"nonce": "abc", "message_id": None}
    client.get.assert_called_once_with("test:nonce:1")


def test_redis_store_wraps_backend_errors():
    client = MagicMock()
    client.get.side_effect = redis.ConnectionError("down")
    client.delete.side_effect = redis.ConnectionError("down")
    store = RedisKeyValueStore(client)

    with pytest.raises(StoreError):
        store.get("k")
    with pytest.raises(StoreError):
        store.delete("k")


@pytest.mark.parametrize("stored", [b"\xff not json", b"{truncated", "plain text"])
def test_redis_store_rejects_corrupt_values(stored):
    client = MagicMock()
    client.get.return_value = stored
    store = RedisKeyValueStore(client)

    with pytest.raises(StoreError):
        store.get("nonce:u1")


def test_corrupt_redis_nonce_is_a_negative_result():
    client = MagicMock()
    client.get.return_value = b"\xff not json"
    manager = NonceManager(RedisKeyValueStore(client), ttl_seconds=60)

    check = manager.consume("u1", "abc")

    assert check.valid is False
