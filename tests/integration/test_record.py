"""
Integration tests for the table gateway and record lifecycle.

Tests cover:
- Save, find, update and destroy
- Model state machine and its errors
- Write serialization per record
- Auto-increment counters and their compensation
- Finders: find_by, where, all, first, last
- Table lookup and connection handling
"""

import asyncio

import pytest

from dynamic_record import (
    AlreadyDestroyedError,
    DynamicCollection,
    DynamicRecord,
    ModelState,
    NotPersistedError,
    StoreError,
    TableNotFoundError,
    ValidationError,
)


class TestModelLifecycle:
    """Save, update and destroy of single records."""

    @pytest.mark.asyncio
    async def test_save_and_find_by(self, Random, rows):
        model = Random.Model(rows[0])
        assert model.state == ModelState.NEW

        assert await model.save() is model

        found = await Random.find_by({"string": "Velit tempor."})
        assert found.data == rows[0]
        assert found.state == ModelState.SAVED
        assert found.identity == model.identity
        assert "_id" not in found.data
        assert model.original == rows[0]

    @pytest.mark.asyncio
    async def test_find_by_no_match(self, Random):
        assert await Random.find_by({"string": "Magna dolor."}) is None

    @pytest.mark.asyncio
    async def test_model_copies_data(self, Random, rows):
        model = Random.Model(rows[0])
        rows[0]["int"] = 0

        assert model.data["int"] == 42

    @pytest.mark.asyncio
    async def test_save_twice_without_changes(self, store, Random, rows):
        model = Random.Model(rows[0])
        await model.save()
        snapshot = store.documents("random_table")

        await model.save()

        assert store.documents("random_table") == snapshot

    @pytest.mark.asyncio
    async def test_update(self, store, Random, rows):
        model = await Random.Model(rows[0]).save()

        model.data["int"] = 7
        await model.save()

        documents = store.documents("random_table")
        assert len(documents) == 1
        assert documents[0]["int"] == 7
        assert model.original["int"] == 7

    @pytest.mark.asyncio
    async def test_update_hydrated_model(self, store, Random, rows):
        await Random.Model(rows[0]).save()
        found = await Random.find_by({"int": 42})

        found.data["string"] = "Magna dolor."
        await found.save()

        assert [d["string"] for d in store.documents("random_table")] == ["Magna dolor."]

    @pytest.mark.asyncio
    async def test_update_matches_snapshot_without_identity(self, store, Random, rows):
        await store.collection("random_table").insert_one(rows[0])
        model = Random.Model(rows[0], preserve_original=True)
        assert model.state == ModelState.SAVED

        model.data["float"] = 1.5
        await model.save()

        assert store.documents("random_table")[0]["float"] == 1.5

    @pytest.mark.asyncio
    async def test_invalid_update_leaves_store_unchanged(self, store, Random, rows):
        model = await Random.Model(rows[0]).save()

        model.data["int"] = "forty-two"
        with pytest.raises(ValidationError):
            await model.save()

        assert store.documents("random_table")[0]["int"] == 42
        assert model.original["int"] == 42

    @pytest.mark.asyncio
    async def test_invalid_insert(self, store, Random):
        model = Random.Model({"string": 42})

        with pytest.raises(ValidationError) as exc_info:
            await model.save()

        assert exc_info.value.code == "VALIDATION_ERROR"
        assert [(e["field"], e["type"]) for e in exc_info.value.errors] == [("string", "string_type")]
        assert model.state == ModelState.NEW
        assert store.documents("random_table") == []

    @pytest.mark.asyncio
    async def test_destroy(self, store, Random, rows):
        model = await Random.Model(rows[0]).save()

        assert await model.destroy() is model

        assert model.state == ModelState.DESTROYED
        assert model.data is None
        assert model.original is None
        assert store.documents("random_table") == []

    @pytest.mark.asyncio
    async def test_destroy_removes_only_own_record(self, store, Random, rows):
        first = await Random.Model(rows[0]).save()
        await Random.Model(rows[1]).save()

        await first.destroy()

        assert [d["string"] for d in store.documents("random_table")] == [rows[1]["string"]]

    @pytest.mark.asyncio
    async def test_destroy_unsaved(self, Random, rows):
        with pytest.raises(NotPersistedError, match="Model not saved in database yet."):
            await Random.Model(rows[0]).destroy()

    @pytest.mark.asyncio
    async def test_destroyed_model_is_terminal(self, Random, rows):
        model = await Random.Model(rows[0]).save()
        await model.destroy()

        with pytest.raises(AlreadyDestroyedError):
            await model.destroy()
        with pytest.raises(AlreadyDestroyedError):
            await model.save()

    @pytest.mark.asyncio
    async def test_store_failure_on_insert(self, store, Random, rows):
        store.fail_next("random_table", "insert_one", StoreError("disk full", operation="insert_one"))
        model = Random.Model(rows[0])

        with pytest.raises(StoreError, match="disk full"):
            await model.save()

        assert model.state == ModelState.NEW
        await model.save()
        assert model.state == ModelState.SAVED


class TestWriteSerialization:
    """Concurrent save/destroy calls on one Model."""

    @pytest.mark.asyncio
    async def test_save_then_destroy(self, store, Random, rows):
        model = Random.Model(rows[0])

        await asyncio.gather(model.save(), model.destroy())

        assert model.state == ModelState.DESTROYED
        assert store.documents("random_table") == []

    @pytest.mark.asyncio
    async def test_concurrent_saves_insert_once(self, store, Random, rows):
        model = Random.Model(rows[0])

        await asyncio.gather(model.save(), model.save(), model.save())

        assert len(store.documents("random_table")) == 1

    @pytest.mark.asyncio
    async def test_failure_does_not_block_queue(self, store, Random, rows):
        model = Random.Model(rows[0])

        results = await asyncio.gather(model.destroy(), model.save(), return_exceptions=True)

        assert isinstance(results[0], NotPersistedError)
        assert results[1] is model
        assert len(store.documents("random_table")) == 1


class TestAutoIncrement:
    """Counter assignment and compensation."""

    @pytest.mark.asyncio
    async def test_sequences_assigned_in_order(self, Counted):
        first = await Counted.Model({"name": "a"}).save()
        second = await Counted.Model({"name": "b"}).save()

        assert first.data["id"] == 1
        assert second.data["id"] == 2
        assert await Counted.schema.sequences("counted_table") == {"id": 2}

    @pytest.mark.asyncio
    async def test_concurrent_inserts_get_distinct_values(self, store, Counted):
        models = [Counted.Model({"name": f"row {i}"}) for i in range(10)]

        await asyncio.gather(*(model.save() for model in models))

        assert sorted(model.data["id"] for model in models) == list(range(1, 11))
        assert sorted(d["id"] for d in store.documents("counted_table")) == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_assigned_value_overrides_data(self, Counted):
        model = await Counted.Model({"id": 99, "name": "a"}).save()

        assert model.data["id"] == 1

    @pytest.mark.asyncio
    async def test_update_keeps_sequence(self, Counted):
        model = await Counted.Model({"name": "a"}).save()

        model.data["name"] = "b"
        await model.save()

        assert model.data["id"] == 1
        assert await Counted.schema.sequences("counted_table") == {"id": 1}

    @pytest.mark.asyncio
    async def test_failed_validation_unwinds_counter(self, store, Counted):
        with pytest.raises(ValidationError):
            await Counted.Model({"name": 42}).save()

        assert await Counted.schema.sequences("counted_table") == {"id": 0}
        assert store.documents("counted_table") == []

        model = await Counted.Model({"name": "a"}).save()
        assert model.data["id"] == 1

    @pytest.mark.asyncio
    async def test_failed_insert_unwinds_counter(self, store, Counted):
        store.fail_next("counted_table", "insert_one", StoreError("boom", operation="insert_one"))

        with pytest.raises(StoreError, match="boom"):
            await Counted.Model({"name": "a"}).save()

        assert await Counted.schema.sequences("counted_table") == {"id": 0}

    @pytest.mark.asyncio
    async def test_failed_increment_is_not_unwound(self, store, Counted):
        await Counted.Model({"name": "a"}).save()
        store.fail_next("_counters", "increment", StoreError("counter down", operation="increment"))

        with pytest.raises(StoreError, match="counter down"):
            await Counted.Model({"name": "b"}).save()

        assert await Counted.schema.sequences("counted_table") == {"id": 1}

    @pytest.mark.asyncio
    async def test_failed_decrement_keeps_original_error(self, monkeypatch, Counted, caplog):
        async def broken_decrement(table_slug, column_label, issued):
            raise StoreError("counter down", operation="increment")

        monkeypatch.setattr(Counted.schema, "_decrement_counter", broken_decrement)

        with pytest.raises(ValidationError):
            await Counted.Model({"name": 42}).save()

        assert await Counted.schema.sequences("counted_table") == {"id": 1}
        assert "Could not decrement counter counted_table.id" in caplog.text

    @pytest.mark.asyncio
    async def test_failed_insert_never_reuses_value(self, monkeypatch, store, Counted):
        """A value issued to a failed insert is not handed out again once the counter moved on."""
        decrement = Counted.schema._decrement_counter

        async def decrement_after_other_insert(table_slug, column_label, issued):
            await Counted.Model({"name": "b"}).save()
            return await decrement(table_slug, column_label, issued)

        monkeypatch.setattr(Counted.schema, "_decrement_counter", decrement_after_other_insert)
        with pytest.raises(ValidationError):
            await Counted.Model({"name": 42}).save()
        monkeypatch.undo()

        await Counted.Model({"name": "c"}).save()

        ids = sorted(d["id"] for d in store.documents("counted_table"))
        assert ids == [2, 3]
        assert await Counted.schema.sequences("counted_table") == {"id": 3}

    @pytest.mark.asyncio
    async def test_concurrent_failed_and_successful_inserts_get_distinct_values(self, store, Counted):
        results = await asyncio.gather(
            Counted.Model({}).save(),
            Counted.Model({"name": "b"}).save(),
            return_exceptions=True,
        )
        await Counted.Model({"name": "c"}).save()

        assert isinstance(results[0], ValidationError)
        ids = [d["id"] for d in store.documents("counted_table")]
        assert len(ids) == 2
        assert len(set(ids)) == 2

    @pytest.mark.asyncio
    async def test_cancelled_insert_unwinds_counter(self, monkeypatch, Counted):
        started = asyncio.Event()

        async def blocked_compile(schema_ref):
            started.set()
            await asyncio.Event().wait()

        monkeypatch.setattr(Counted.validator, "compile_async", blocked_compile)
        task = asyncio.ensure_future(Counted.Model({"name": "a"}).save())
        await started.wait()
        assert await Counted.schema.sequences("counted_table") == {"id": 1}

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await Counted.schema.sequences("counted_table") == {"id": 0}


class TestFinders:
    """find_by, where, all, first and last."""

    @pytest.fixture
    async def saved(self, Random, rows):
        """The three rows saved in order."""
        for row in rows:
            await Random.Model(row).save()
        return rows

    @pytest.mark.asyncio
    async def test_where(self, Random, saved):
        found = await Random.where({"int": 42})

        assert isinstance(found, DynamicCollection)
        assert found.data == saved[:2]
        assert all(model.state == ModelState.SAVED for model in found)

    @pytest.mark.asyncio
    async def test_where_no_match(self, Random, saved):
        found = await Random.where({"int": 0})

        assert isinstance(found, DynamicCollection)
        assert found == []

    @pytest.mark.asyncio
    async def test_where_order_by_field(self, Random, saved):
        found = await Random.where({}, "float")

        # Equal floats keep store order
        assert [m.data["string"] for m in found] == [
            saved[1]["string"],
            saved[2]["string"],
            saved[0]["string"],
        ]

    @pytest.mark.asyncio
    async def test_where_order_by_missing_field_sorts_last(self, Random, saved):
        await Random.Model({"string": "Magna dolor."}).save()

        found = await Random.where({}, "int")

        assert [m.data.get("int") for m in found] == [42, 42, 10958, None]

    @pytest.mark.asyncio
    async def test_where_order_by_key_function(self, Random, saved):
        found = await Random.where({}, lambda row: -row["int"])

        assert found[0].data == saved[2]

    @pytest.mark.asyncio
    async def test_where_order_by_comparator(self, Random, saved):
        def by_int_descending(a, b):
            return b["int"] - a["int"]

        found = await Random.where({}, by_int_descending)

        assert [m.data["int"] for m in found] == [10958, 42, 42]
        assert found[1].data == saved[0]

    @pytest.mark.asyncio
    async def test_where_order_by_key_function_with_default_argument(self, Random, saved):
        found = await Random.where({}, lambda row, field="float": row[field])

        assert found[-1].data == saved[0]

    @pytest.mark.asyncio
    async def test_where_invalid_order_by(self, Random, saved):
        with pytest.raises(TypeError):
            await Random.where({}, 3)

    @pytest.mark.asyncio
    async def test_all(self, Random, saved):
        assert (await Random.all()).data == saved

    @pytest.mark.asyncio
    async def test_first_and_last(self, Random, saved):
        assert (await Random.first()).data == saved[0]
        assert (await Random.last()).data == saved[2]
        assert (await Random.first(2)).data == saved[:2]
        assert (await Random.last(2)).data == [saved[2], saved[1]]
        assert (await Random.first(10)).data == saved
        assert (await Random.last(0)).data == []

    @pytest.mark.asyncio
    async def test_first_and_last_on_empty_table(self, Random):
        assert await Random.first() is None
        assert await Random.last() is None

        first = await Random.first(3)
        last = await Random.last(3)
        assert isinstance(first, DynamicCollection) and first == []
        assert isinstance(last, DynamicCollection) and last == []

    @pytest.mark.asyncio
    async def test_last_is_saved(self, store, Random, saved):
        newest = await Random.last()

        await newest.destroy()

        assert len(store.documents("random_table")) == 2


class TestValidateColumns:
    """Model.validate() against declared columns."""

    @pytest.mark.asyncio
    async def test_validate_against_table_descriptor(self, Random, rows):
        await Random.ready()

        assert Random.Model(rows[0]).validate()
        assert not Random.Model({"int": "42"}).validate()
        assert not Random.Model({"unknown": 1}).validate()

    @pytest.mark.asyncio
    async def test_validate_against_columns(self, Random, rows):
        descriptor = await Random.schema.read("random_table")

        assert Random.Model({"int": 1}).validate(descriptor.columns)
        assert not Random.Model({"float": True}).validate(descriptor)

    @pytest.mark.asyncio
    async def test_destroyed_model_is_invalid(self, Random, rows):
        model = await Random.Model(rows[0]).save()
        await model.destroy()

        assert not model.validate()


class TestGateway:
    """Table lookup and connection handling."""

    @pytest.mark.asyncio
    async def test_missing_table(self, store, registry):
        Missing = DynamicRecord("missing_table", store=store)

        with pytest.raises(TableNotFoundError, match="Table with name missing_table does not exist"):
            await Missing.find_by({})
        with pytest.raises(TableNotFoundError):
            await Missing.Model({"string": "Magna dolor."}).save()
        with pytest.raises(TableNotFoundError):
            await Missing.all()

    @pytest.mark.asyncio
    async def test_ready_connects_store(self, store, registry):
        await store.close()
        Random = DynamicRecord("random_table", store=store)

        await Random.ready()

        assert store.is_connected
        assert Random.schema.table_slug == "random_table"

    @pytest.mark.asyncio
    async def test_close_connection(self, store, Random, rows):
        await Random.Model(rows[0]).save()

        await Random.close_connection()

        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_context_manager(self, store, registry, rows):
        async with DynamicRecord("random_table", store=store) as Random:
            await Random.Model(rows[0]).save()
            assert await Random.find_by({"int": 42}) is not None

        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_gateways_share_store(self, store, Random, rows):
        Other = DynamicRecord("random_table", store=store)

        await Random.Model(rows[0]).save()

        assert (await Other.first()).data == rows[0]

    @pytest.mark.asyncio
    async def test_repr(self, Random):
        assert repr(Random) == "DynamicRecord('random_table')"
