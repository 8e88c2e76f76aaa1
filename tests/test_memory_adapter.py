import asyncio
import json

import pytest

from polycrud.adapters import LocalAdapter, MemoryAdapter
from polycrud.errors import BackendRequestError, NotFoundError, UnsupportedResourceError
from polycrud.models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    Pagination,
    Sort,
    SortOrder,
    UpdateParams,
)
from polycrud.types import CrudProvider


# ==========================================================
# Listing
# ==========================================================

class TestMemoryGetList:

    def test_implements_provider_contract(self, memory_provider):
        assert isinstance(memory_provider, CrudProvider)

    @pytest.mark.asyncio
    async def test_sorted_page(self, memory_provider):
        result = await memory_provider.get_list(GetListParams(
            resource="items",
            pagination=Pagination(1, 2),
            sort=Sort("qty", SortOrder.DESC),
        ))

        assert [r["id"] for r in result.data] == [3, 2]
        assert result.total == 3
        assert result.estimated is False

    @pytest.mark.asyncio
    async def test_filter_then_paginate(self, memory_provider):
        result = await memory_provider.get_list(GetListParams(
            resource="items",
            pagination=Pagination(2, 1),
            filter={"qty": {"operator": "gte", "value": 10}},
        ))

        assert [r["id"] for r in result.data] == [3]
        assert result.total == 2

    @pytest.mark.asyncio
    async def test_pages_cover_every_row_once(self, memory_provider):
        seen = []
        for page in (1, 2):
            result = await memory_provider.get_list(GetListParams(
                resource="items", pagination=Pagination(page, 2), sort=Sort("id")))
            assert len(result.data) <= 2
            assert result.total == 3
            seen.extend(r["id"] for r in result.data)

        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_empty_resource(self, memory_provider):
        result = await memory_provider.get_list(GetListParams(resource="nothing"))
        assert result.data == []
        assert result.total == 0

    @pytest.mark.asyncio
    async def test_results_are_copies(self, memory_provider):
        result = await memory_provider.get_list(GetListParams(resource="items"))
        result.data[0]["name"] = "changed"

        again = await memory_provider.get_one(GetOneParams("items", 1))
        assert again.data["name"] == "a"

    @pytest.mark.asyncio
    async def test_strict_resources(self):
        provider = MemoryAdapter({"items": []}, resources={"items": "items"},
                                 strict_resources=True)
        with pytest.raises(UnsupportedResourceError):
            await provider.get_list(GetListParams(resource="orders"))


# ==========================================================
# Single-record operations
# ==========================================================

class TestMemoryMutations:

    @pytest.mark.asyncio
    async def test_get_one_accepts_string_id(self, memory_provider):
        result = await memory_provider.get_one(GetOneParams("items", "2"))
        assert result.data["name"] == "b"

    @pytest.mark.asyncio
    async def test_get_one_missing(self, memory_provider):
        with pytest.raises(NotFoundError) as exc:
            await memory_provider.get_one(GetOneParams("items", 99))
        assert exc.value.record_id == 99
        assert exc.value.resource == "items"

    @pytest.mark.asyncio
    async def test_create_assigns_next_id(self, memory_provider):
        created = await memory_provider.create(CreateParams("items", {"name": "d", "qty": 1}))
        assert created.data["id"] == 4

        fetched = await memory_provider.get_one(GetOneParams("items", 4))
        assert fetched.data == {"id": 4, "name": "d", "qty": 1}

    @pytest.mark.asyncio
    async def test_create_duplicate_id(self, memory_provider):
        with pytest.raises(BackendRequestError) as exc:
            await memory_provider.create(CreateParams("items", {"id": 1, "name": "dup"}))
        assert exc.value.status == 409
        assert exc.value.retryable is False

    @pytest.mark.asyncio
    async def test_create_with_explicit_id_advances_counter(self, memory_provider):
        await memory_provider.create(CreateParams("items", {"id": 10, "name": "x"}))
        created = await memory_provider.create(CreateParams("items", {"name": "y"}))
        assert created.data["id"] == 11

    @pytest.mark.asyncio
    async def test_update_merges_and_keeps_id(self, memory_provider):
        updated = await memory_provider.update(
            UpdateParams("items", 2, {"qty": 11, "id": 999}))
        assert updated.data == {"id": 2, "name": "b", "qty": 11}

    @pytest.mark.asyncio
    async def test_update_missing(self, memory_provider):
        with pytest.raises(NotFoundError):
            await memory_provider.update(UpdateParams("items", 42, {"qty": 1}))

    @pytest.mark.asyncio
    async def test_delete_returns_prior_state(self, memory_provider):
        deleted = await memory_provider.delete_one(DeleteParams("items", 1))
        assert deleted.data == {"id": 1, "name": "a", "qty": 5}

        with pytest.raises(NotFoundError):
            await memory_provider.get_one(GetOneParams("items", 1))
        with pytest.raises(NotFoundError):
            await memory_provider.delete_one(DeleteParams("items", 1))

    @pytest.mark.asyncio
    async def test_snapshot(self, memory_provider):
        await memory_provider.delete_one(DeleteParams("items", 3))
        assert [r["id"] for r in memory_provider.snapshot("items")] == [1, 2]


# ==========================================================
# Local JSON file
# ==========================================================

class TestLocalAdapter:

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        provider = LocalAdapter(tmp_path / "store.json")
        result = await provider.get_list(GetListParams(resource="items"))
        assert result.total == 0

    @pytest.mark.asyncio
    async def test_mutations_persist(self, tmp_path):
        path = tmp_path / "nested" / "store.json"
        provider = LocalAdapter(path)

        await provider.create(CreateParams("notes", {"title": "first"}))
        await provider.create(CreateParams("notes", {"title": "second"}))
        await provider.update(UpdateParams("notes", 1, {"title": "edited"}))
        await provider.delete_one(DeleteParams("notes", 2))

        on_disk = json.loads(path.read_text(encoding="utf-8"))
        assert on_disk == {"notes": [{"id": 1, "title": "edited"}]}

        reopened = LocalAdapter(path)
        result = await reopened.get_one(GetOneParams("notes", 1))
        assert result.data["title"] == "edited"

    @pytest.mark.asyncio
    async def test_reads_existing_file(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text(json.dumps({"items": [{"id": 7, "name": "seed"}]}), encoding="utf-8")

        provider = LocalAdapter(path)
        created = await provider.create(CreateParams("items", {"name": "next"}))
        assert created.data["id"] == 8

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("[1, 2", encoding="utf-8")

        with pytest.raises(BackendRequestError, match="Failed to read"):
            await LocalAdapter(path).get_list(GetListParams(resource="items"))

    @pytest.mark.asyncio
    async def test_concurrent_first_writes_keep_every_record(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text(json.dumps({"items": [{"id": 1, "name": "seed"}]}), encoding="utf-8")
        provider = LocalAdapter(path)

        created = await asyncio.gather(*(
            provider.create(CreateParams("items", {"name": f"n{i}"})) for i in range(5)
        ))

        assert sorted(r.data["id"] for r in created) == [2, 3, 4, 5, 6]
        on_disk = json.loads(path.read_text(encoding="utf-8"))
        assert len(on_disk["items"]) == 6
        assert list(tmp_path.glob("*.tmp")) == []

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back_memory(self, tmp_path, monkeypatch):
        provider = LocalAdapter(tmp_path / "store.json")
        await provider.create(CreateParams("items", {"name": "kept"}))

        def broken(snapshot):
            raise BackendRequestError("Failed to write local store: disk full")

        monkeypatch.setattr(provider, "_write_file", broken)
        with pytest.raises(BackendRequestError, match="disk full"):
            await provider.create(CreateParams("items", {"name": "lost"}))

        result = await provider.get_list(GetListParams(resource="items"))
        assert [r["name"] for r in result.data] == ["kept"]
        with pytest.raises(BackendRequestError):
            await provider.update(UpdateParams("items", 1, {"name": "changed"}))
        assert (await provider.get_one(GetOneParams("items", 1))).data["name"] == "kept"
