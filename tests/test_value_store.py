from __future__ import annotations

import asyncio
import threading
import os
from pathlib import Path

import pytest

from localstate._codec import TaggedValueCodec
from localstate.exceptions import (
    LocalDecodeError,
    LocalEncodeError,
    LocalIOError,
    LocalValidationError,
)
from localstate import value as value_module
from localstate.value import ValueStore


def _value_file(tmp_path: Path, key: str) -> Path:
    return tmp_path / "value" / key


@pytest.mark.asyncio
async def test_get_unknown_key_returns_none(tmp_path: Path) -> None:
    store = ValueStore(str(tmp_path))

    assert await store.get("missing") is None
    assert (tmp_path / "value").is_dir()


@pytest.mark.asyncio
async def test_set_then_get_and_last_write_wins(tmp_path: Path) -> None:
    store = ValueStore(str(tmp_path))

    await store.set("mode", "auto")
    assert await store.get("mode") == "auto"

    await store.set("mode", {"level": 3})
    assert await store.get("mode") == {"level": 3}


@pytest.mark.asyncio
async def test_set_none_removes_file_and_key(tmp_path: Path) -> None:
    store = ValueStore(str(tmp_path))

    await store.set("k", 42)
    assert _value_file(tmp_path, "k").exists()

    await store.set("k", None)
    assert not _value_file(tmp_path, "k").exists()
    assert await store.get("k") is None

    # Removing an already-absent key is a no-op.
    await store.set("k", None)


@pytest.mark.asyncio
async def test_fresh_store_reads_value_written_by_previous_store(tmp_path: Path) -> None:
    first = ValueStore(str(tmp_path))
    await first.set("token", b"\x00\x01secret")
    await first.set("count", 7)

    second = ValueStore(str(tmp_path))
    assert await second.get("token") == b"\x00\x01secret"
    assert await second.get("count") == 7


@pytest.mark.asyncio
async def test_value_file_is_owner_only_and_newline_terminated(tmp_path: Path) -> None:
    store = ValueStore(str(tmp_path))
    await store.set("secret", "hunter2")

    path = _value_file(tmp_path, "secret")
    assert path.stat().st_mode & 0o777 == 0o600
    text = path.read_text()
    assert text.endswith("\n")
    assert TaggedValueCodec().decode(text) == "hunter2"


@pytest.mark.asyncio
async def test_memory_wins_once_warm(tmp_path: Path) -> None:
    store = ValueStore(str(tmp_path))
    await store.set("k", "memory")

    # An external writer is not noticed once the key is warm.
    _value_file(tmp_path, "k").write_text(TaggedValueCodec().encode("disk") + "\n")
    assert await store.get("k") == "memory"


@pytest.mark.asyncio
async def test_absent_key_stays_absent_after_warm_up(tmp_path: Path) -> None:
    store = ValueStore(str(tmp_path))
    assert await store.get("k") is None

    _value_file(tmp_path, "k").write_text(TaggedValueCodec().encode("late") + "\n")
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_corrupt_file_raises_and_is_retried(tmp_path: Path) -> None:
    store = ValueStore(str(tmp_path))
    (tmp_path / "value").mkdir()
    path = _value_file(tmp_path, "k")
    path.write_text("not base64 at all!\n")

    with pytest.raises(LocalDecodeError):
        await store.get("k")
    assert "k" not in store._warm  # noqa: SLF001

    path.write_text(TaggedValueCodec().encode([1, 2]) + "\n")
    assert await store.get("k") == [1, 2]


@pytest.mark.asyncio
async def test_unreadable_value_raises_io_error(tmp_path: Path) -> None:
    store = ValueStore(str(tmp_path))
    # A directory where the value file should be cannot be read.
    _value_file(tmp_path, "k").mkdir(parents=True)

    with pytest.raises(LocalIOError):
        await store.get("k")
    assert "k" not in store._warm  # noqa: SLF001


@pytest.mark.asyncio
async def test_failed_write_leaves_memory_untouched(tmp_path: Path) -> None:
    store = ValueStore(str(tmp_path))
    await store.set("k", "old")
    os.remove(_value_file(tmp_path, "k"))
    _value_file(tmp_path, "k").mkdir()

    with pytest.raises(LocalIOError):
        await store.set("k", "new")
    assert await store.get("k") == "old"


@pytest.mark.asyncio
async def test_unencodable_value_is_rejected_before_disk(tmp_path: Path) -> None:
    store = ValueStore(str(tmp_path))

    with pytest.raises(LocalEncodeError):
        await store.set("k", object())
    assert not _value_file(tmp_path, "k").exists()
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_prefix_that_is_a_file_raises_io_error(tmp_path: Path) -> None:
    (tmp_path / "value").write_text("")
    store = ValueStore(str(tmp_path))

    with pytest.raises(LocalIOError):
        await store.get("k")
    with pytest.raises(LocalIOError):
        await store.set("k", 1)


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["", ".", "..", "a/b", "nul\x00"])
async def test_invalid_keys_rejected(tmp_path: Path, key: str) -> None:
    store = ValueStore(str(tmp_path))

    with pytest.raises(LocalValidationError):
        await store.get(key)
    with pytest.raises(LocalValidationError):
        await store.set(key, 1)
    with pytest.raises(LocalValidationError):
        await store.watch(key)


@pytest.mark.asyncio
async def test_cached_values_are_copied(tmp_path: Path) -> None:
    store = ValueStore(str(tmp_path))
    value = {"items": [1]}
    await store.set("k", value)

    value["items"].append(2)
    got = await store.get("k")
    assert got == {"items": [1]}

    got["items"].append(3)
    assert await store.get("k") == {"items": [1]}


@pytest.mark.asyncio
async def test_concurrent_disjoint_keys_do_not_interfere(tmp_path: Path) -> None:
    store = ValueStore(str(tmp_path))

    async def worker(i: int) -> None:
        key = f"key{i}"
        for n in range(5):
            await store.set(key, f"{i}-{n}")
            assert await store.get(key) == f"{i}-{n}"

    await asyncio.wait_for(asyncio.gather(*(worker(i) for i in range(20))), timeout=30)

    for i in range(20):
        assert await store.get(f"key{i}") == f"{i}-4"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "value",
    [
        {"name": "x", "nested": {"list": [1, 2.5, None, True]}},
        [["a"], {"b": b"c".hex()}],
        b"\x00raw",
        -3,
    ],
)
async def test_hot_and_cold_reads_agree(tmp_path: Path, value: object) -> None:
    store = ValueStore(str(tmp_path))
    await store.set("k", value)

    hot = await store.get("k")
    cold = await ValueStore(str(tmp_path)).get("k")
    assert hot == cold == value


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [{1: "a"}, (1, 2), bytearray(b"x")])
async def test_values_that_would_change_on_disk_are_rejected(tmp_path: Path, value: object) -> None:
    store = ValueStore(str(tmp_path))

    with pytest.raises(LocalEncodeError):
        await store.set("k", value)
    assert not _value_file(tmp_path, "k").exists()


@pytest.mark.asyncio
async def test_cancelled_set_still_commits_to_memory_and_watchers(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = ValueStore(str(tmp_path))
    await store.set("k", "old")
    assert await store.get("k") == "old"
    watch = await store.watch("k")
    await asyncio.wait_for(anext(watch), timeout=2.0)

    started = threading.Event()
    release = threading.Event()
    real_write = value_module._value_write  # noqa: SLF001

    def gated_write(path: str, text: str, mode: int) -> None:
        started.set()
        release.wait(5)
        real_write(path, text, mode)

    monkeypatch.setattr(value_module, "_value_write", gated_write)

    setter = asyncio.create_task(store.set("k", "new"))
    loop = asyncio.get_running_loop()
    assert await loop.run_in_executor(None, started.wait, 5)

    setter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await setter
    release.set()

    assert await store.get("k") == "new"
    assert await ValueStore(str(tmp_path)).get("k") == "new"
    await asyncio.wait_for(anext(watch), timeout=2.0)
    await watch.aclose()
