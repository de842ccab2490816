"""Tests for DurableStore: JSON records with per-path write ordering."""

import asyncio
import json

import pytest

from conductor.storage import DurableStore

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def test_root_created_on_construction(tmp_path) -> None:
    root = tmp_path / "fresh"
    assert not root.exists()
    DurableStore(root=root)
    assert root.is_dir()


def test_resolve_maps_logical_path_to_json_file(store) -> None:
    target = store.resolve("conversations/index")
    assert target == store.root / "conversations" / "index.json"


def test_sanitize_replaces_unsafe_characters() -> None:
    assert DurableStore.sanitize_name("conv abc!") == "conv_abc_"
    assert DurableStore.sanitize_name(".hidden") == "hidden"


def test_sanitize_empty_raises() -> None:
    with pytest.raises(ValueError, match="empty after sanitization"):
        DurableStore.sanitize_name("...")


def test_parent_segments_rejected(store) -> None:
    with pytest.raises(ValueError, match="empty after sanitization"):
        store.resolve("../../etc/passwd")


def test_empty_path_rejected(store) -> None:
    with pytest.raises(ValueError, match="resolves to empty"):
        store.resolve("//")


# ---------------------------------------------------------------------------
# Read / write
# ---------------------------------------------------------------------------


async def test_missing_record_returns_fallback(store) -> None:
    assert await store.read("nothing", {"items": []}) == {"items": []}
    assert await store.read("nothing") is None


async def test_fallback_is_copied(store) -> None:
    fallback = {"items": []}
    record = await store.read("nothing", fallback)
    record["items"].append(1)
    assert fallback == {"items": []}


async def test_write_then_read(store) -> None:
    await store.write("personality", {"name": "Oni"})
    assert await store.read("personality") == {"name": "Oni"}
    on_disk = json.loads((store.root / "personality.json").read_text())
    assert on_disk == {"name": "Oni"}


async def test_write_leaves_no_temp_files(store) -> None:
    await store.write("a/b", {"x": 1})
    assert [p.name for p in (store.root / "a").iterdir()] == ["b.json"]


async def test_delete(store) -> None:
    await store.write("gone", {"x": 1})
    assert await store.exists("gone")
    assert await store.delete("gone") is True
    assert await store.delete("gone") is False
    assert not await store.exists("gone")


# ---------------------------------------------------------------------------
# Corruption
# ---------------------------------------------------------------------------


async def test_corrupt_record_reads_as_fallback(store) -> None:
    path = store.root / "memories.json"
    path.write_text("{not json")
    assert await store.read("memories", {"memories": []}) == {"memories": []}
    # Reading never rewrites the file.
    assert path.read_text() == "{not json"


async def test_update_quarantines_corrupt_record(store) -> None:
    path = store.root / "memories.json"
    path.write_text("{not json")

    result = await store.update(
        "memories", lambda r: {"memories": [*r["memories"], 1]}, {"memories": []}
    )

    assert result == {"memories": [1]}
    assert json.loads(path.read_text()) == {"memories": [1]}
    assert (store.root / "memories.json.corrupt").read_text() == "{not json"


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


async def test_concurrent_updates_are_serialized(store) -> None:
    async def add(n: int) -> None:
        await store.update("counter", lambda r: {"items": [*r["items"], n]}, {"items": []})

    await asyncio.gather(*(add(n) for n in range(50)))

    record = await store.read("counter")
    assert sorted(record["items"]) == list(range(50))


async def test_update_fn_error_leaves_record_untouched(store) -> None:
    await store.write("stable", {"v": 1})

    def boom(record):
        raise RuntimeError("nope")

    with pytest.raises(RuntimeError):
        await store.update("stable", boom)
    assert await store.read("stable") == {"v": 1}


async def test_different_paths_do_not_share_a_lock(store) -> None:
    assert store._lock_for("a") is not store._lock_for("b")
    assert store._lock_for("a") is store._lock_for("a")
