from __future__ import annotations

import asyncio
import json

import pytest
from cryptography.fernet import Fernet

from state.backends import JsonFileBackend, MemoryBackend
from state.kv_store import KeyValueStore
from state.models import StorageError


class FakeClock:
    def __init__(self, t: float = 1_000.0) -> None:
        self.t = t

    def __call__(self) -> float:  # acts like time.time
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


class _BrokenBackend(MemoryBackend):
    def set_items(self, items):
        raise OSError("disk full")

    def keys(self):
        raise OSError("io error")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "value",
    ["text", 42, 3.5, True, None, [1, "two", {"three": 3}], {"nested": {"a": [1, 2]}, "b": None}],
)
async def test_set_then_get_returns_equal_value(value):
    store = KeyValueStore(MemoryBackend())
    assert (await store.set("k", value)).value is True
    assert (await store.get("k", default="missing")).value == value


@pytest.mark.asyncio
async def test_get_missing_returns_default():
    store = KeyValueStore()
    res = await store.get("nope", default={"d": 1})
    assert res.ok
    assert res.value == {"d": 1}


@pytest.mark.asyncio
async def test_get_parse_failure_returns_default_with_error():
    backend = MemoryBackend({"k": "{not json"})
    store = KeyValueStore(backend)

    res = await store.get("k", default="fallback")
    assert not res.ok
    assert res.value == "fallback"
    assert isinstance(res.error, StorageError)
    assert res.error.operation == "get"
    assert res.error.key == "k"
    with pytest.raises(StorageError):
        res.unwrap()


@pytest.mark.asyncio
async def test_set_unserializable_returns_false_and_writes_nothing():
    backend = MemoryBackend()
    store = KeyValueStore(backend)

    res = await store.set("k", {"bad": object()})
    assert res.value is False
    assert not res
    assert backend.keys() == []

    nan = await store.set("n", float("nan"))
    assert nan.value is False


@pytest.mark.asyncio
async def test_backend_write_failure_is_downgraded():
    store = KeyValueStore(_BrokenBackend())
    res = await store.set("k", "v")
    assert res.value is False
    assert res.error is not None and "disk full" in res.error.message

    keys = await store.all_keys()
    assert keys.value == []
    assert not keys.ok


@pytest.mark.asyncio
async def test_remove_exists_and_clear():
    store = KeyValueStore()
    await store.set("a", 1)
    await store.set("b", 2)

    assert (await store.exists("a")).value is True
    assert (await store.remove("a")).value is True
    assert (await store.exists("a")).value is False
    # removing a missing key is still a success
    assert (await store.remove("a")).value is True

    assert sorted((await store.all_keys()).value) == ["b"]
    assert (await store.clear()).value is True
    assert (await store.all_keys()).value == []


@pytest.mark.asyncio
async def test_exists_true_for_stored_null():
    store = KeyValueStore()
    await store.set("k", None)
    assert (await store.exists("k")).value is True


@pytest.mark.asyncio
async def test_get_multiple_maps_corrupt_key_to_none_only():
    backend = MemoryBackend({"good": json.dumps({"x": 1}), "bad": "{{{", "also": "7"})
    store = KeyValueStore(backend)

    res = await store.get_multiple(["good", "bad", "also", "missing"])
    assert res.ok
    assert res.value == {"good": {"x": 1}, "bad": None, "also": 7, "missing": None}


@pytest.mark.asyncio
async def test_set_multiple_is_all_or_nothing_on_serialization_error():
    backend = MemoryBackend()
    store = KeyValueStore(backend)

    bad = await store.set_multiple({"a": 1, "b": object(), "c": 3})
    assert bad.value is False
    assert backend.keys() == []

    good = await store.set_multiple({"a": 1, "c": [3]})
    assert good.value is True
    assert (await store.get_multiple(["a", "c"])).value == {"a": 1, "c": [3]}


@pytest.mark.asyncio
async def test_remove_multiple():
    store = KeyValueStore()
    await store.set_multiple({"a": 1, "b": 2, "c": 3})
    assert (await store.remove_multiple(["a", "c", "zzz"])).value is True
    assert (await store.all_keys()).value == ["b"]


@pytest.mark.asyncio
async def test_merge_shallow_merges_and_defaults_to_empty_object():
    store = KeyValueStore()

    assert (await store.merge("prefs", {"theme": "dark"})).value is True
    assert (await store.get("prefs")).value == {"theme": "dark"}

    await store.merge("prefs", {"lang": "en", "theme": "light"})
    assert (await store.get("prefs")).value == {"theme": "light", "lang": "en"}

    # a non-object value is replaced
    await store.set("scalar", 5)
    await store.merge("scalar", {"a": 1})
    assert (await store.get("scalar")).value == {"a": 1}


@pytest.mark.asyncio
async def test_expiration_visible_before_deadline_and_gone_after():
    clock = FakeClock()
    backend = MemoryBackend()
    store = KeyValueStore(backend, clock=clock)

    await store.set_with_expiration("k", {"v": 1}, 1_000)
    clock.advance(0.5)
    assert (await store.get_with_expiration("k")).value == {"v": 1}

    # exactly at the deadline the value is gone
    clock.advance(0.5)
    res = await store.get_with_expiration("k", default="gone")
    assert res.value == "gone"
    assert backend.get_item("k") is None


@pytest.mark.asyncio
async def test_expiration_with_real_wait():
    store = KeyValueStore()
    await store.set_with_expiration("k", "v", 100)
    await asyncio.sleep(0.15)

    assert (await store.get_with_expiration("k")).value is None
    assert (await store.exists("k")).value is False


@pytest.mark.asyncio
async def test_get_with_expiration_ignores_plain_values():
    store = KeyValueStore()
    await store.set("plain", {"value": 1})
    assert (await store.get_with_expiration("plain", default="d")).value == "d"
    # the plain value itself is left alone
    assert (await store.exists("plain")).value is True


@pytest.mark.asyncio
async def test_cleanup_expired_counts_and_removes_only_expired():
    clock = FakeClock()
    store = KeyValueStore(MemoryBackend({"corrupt": "<<"}), clock=clock)

    await store.set_with_expiration("short1", 1, 100)
    await store.set_with_expiration("short2", 2, 200)
    await store.set_with_expiration("long", 3, 60_000)
    await store.set("plain", {"expiration": "soon"})

    clock.advance(1.0)
    res = await store.cleanup_expired()
    assert res.value == 2
    assert sorted((await store.all_keys()).value) == ["corrupt", "long", "plain"]

    assert (await store.cleanup_expired()).value == 0


@pytest.mark.asyncio
async def test_storage_info_sorted_by_size():
    store = KeyValueStore()
    await store.set("small", 1)
    await store.set("big", "x" * 50)

    info = (await store.get_storage_info()).value
    assert info.total_keys == 2
    assert info.key_info[0].key == "big"
    assert info.total_size == sum(k.size for k in info.key_info)


@pytest.mark.asyncio
async def test_secure_values_are_encrypted_at_rest():
    backend = MemoryBackend()
    store = KeyValueStore(backend, fernet_key=Fernet.generate_key())

    assert (await store.set_secure("pin", {"code": "1234"})).value is True
    raw = backend.get_item("secure_pin")
    assert raw is not None and "1234" not in raw

    assert (await store.get_secure("pin")).value == {"code": "1234"}
    assert (await store.remove_secure("pin")).value is True
    assert (await store.get_secure("pin", default="none")).value == "none"


@pytest.mark.asyncio
async def test_secure_store_accepts_text_key():
    key = Fernet.generate_key()
    backend = MemoryBackend()
    await KeyValueStore(backend, fernet_key=key.decode("ascii")).set_secure("pin", "1234")

    assert (await KeyValueStore(backend, fernet_key=key).get_secure("pin")).value == "1234"


def test_malformed_fernet_key_is_rejected():
    with pytest.raises(ValueError):
        KeyValueStore(MemoryBackend(), fernet_key="not-a-key")


@pytest.mark.asyncio
async def test_secure_value_with_wrong_key_returns_default():
    backend = MemoryBackend()
    writer = KeyValueStore(backend, fernet_key=Fernet.generate_key())
    reader = KeyValueStore(backend, fernet_key=Fernet.generate_key())

    await writer.set_secure("pin", "1234")
    res = await reader.get_secure("pin", default="d")
    assert res.value == "d"
    assert not res.ok


@pytest.mark.asyncio
async def test_secure_without_key_stores_plainly():
    backend = MemoryBackend()
    store = KeyValueStore(backend)

    await store.set_secure("pin", "1234")
    assert backend.get_item("secure_pin") == '"1234"'
    assert (await store.get_secure("pin")).value == "1234"


@pytest.mark.asyncio
async def test_json_file_backend_survives_restart(tmp_path):
    path = tmp_path / "nested" / "store.json"
    first = KeyValueStore(JsonFileBackend(path))
    await first.set_multiple({"user_token": "abc", "user_data": {"id": "1"}})

    second = KeyValueStore(JsonFileBackend(path))
    res = await second.get_multiple(["user_token", "user_data"])
    assert res.value == {"user_token": "abc", "user_data": {"id": "1"}}

    await second.remove("user_token")
    third = KeyValueStore(JsonFileBackend(path))
    assert (await third.exists("user_token")).value is False
    # no temp files left behind
    assert sorted(p.name for p in path.parent.iterdir()) == ["store.json"]


def test_json_file_backend_ignores_corrupt_file(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("not json at all", encoding="utf-8")

    backend = JsonFileBackend(path)
    assert backend.keys() == []

    backend.set_items({"k": '"v"'})
    assert json.loads(path.read_text(encoding="utf-8")) == {"k": '"v"'}


def test_json_file_backend_drops_non_string_payloads(tmp_path):
    path = tmp_path / "store.json"
    path.write_text(json.dumps({"ok": '"v"', "bad": 5}), encoding="utf-8")

    backend = JsonFileBackend(path)
    assert backend.get_items(["ok", "bad"]) == {"ok": '"v"', "bad": None}
