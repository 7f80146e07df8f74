"""Tests for graph/store.py.

Covers:
- get_or_create idempotence and atomicity under concurrent callers
- insert FK and natural-key checks
- lazy, restartable RowQuery in insertion order
- reclassify whitelist
- load_rows with preset ids and self-referencing foreign keys
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from impactscope.core.errors import ErrorCode, IntegrityViolation, InternalError
from impactscope.graph.models import (
    ReferenceType,
    ReferenceTypeRecord,
    Resource,
    Service,
    SourceFile,
    Step,
    TestFunction,
)
from impactscope.graph.store import RelationalStore


def _service(store: RelationalStore, rid: int, name: str) -> int:
    return store.get_or_create(Service, (name,), lambda: Service(resource_id=rid, name=name))


def _test_row(rid: int, file_id: int, name: str, **fields: object) -> TestFunction:
    return TestFunction(
        resource_id=rid,
        file_id=file_id,
        name=name,
        line=1,
        visibility_type_id=int(ReferenceType.PUBLIC),
        **fields,
    )


@pytest.fixture
def file_id(store: RelationalStore, resource_id: int) -> int:
    service_id = _service(store, resource_id, "network")
    return store.insert(
        SourceFile(resource_id=resource_id, service_id=service_id, path="internal/services/a.go")
    )


class TestSeededReferenceTypes:
    def test_given_new_store_when_read_then_enumeration_is_seeded(
        self, store: RelationalStore
    ) -> None:
        # When
        rows = store.rows(ReferenceTypeRecord)

        # Then
        assert {(r.id, r.name) for r in rows} == {(int(m), m.name) for m in ReferenceType}
        external = store.get(ReferenceTypeRecord, int(ReferenceType.EXTERNAL))
        assert external is not None
        assert external.dimension == "resolution,visibility"


class TestGetOrCreate:
    """Idempotent get-or-create on natural keys."""

    def test_given_existing_key_when_called_again_then_same_id_and_builder_not_called(
        self, store: RelationalStore, resource_id: int
    ) -> None:
        # Given
        first = _service(store, resource_id, "network")
        calls: list[str] = []

        def builder() -> Service:
            calls.append("built")
            return Service(resource_id=resource_id, name="network")

        # When
        second = store.get_or_create(Service, ("network",), builder)

        # Then
        assert second == first
        assert calls == []
        assert store.count(Service) == 1

    def test_given_builder_with_other_key_when_called_then_internal_error(
        self, store: RelationalStore, resource_id: int
    ) -> None:
        with pytest.raises(InternalError):
            store.get_or_create(
                Service, ("network",), lambda: Service(resource_id=resource_id, name="compute")
            )

        assert store.count(Service) == 0

    def test_given_concurrent_callers_when_same_key_then_exactly_one_row(
        self, store: RelationalStore, resource_id: int
    ) -> None:
        """N threads racing on the same key all observe the same id."""
        # Given
        workers = 16
        barrier = threading.Barrier(workers)

        def race(_: int) -> int:
            barrier.wait()
            return _service(store, resource_id, "network")

        # When
        with ThreadPoolExecutor(max_workers=workers) as pool:
            ids = list(pool.map(race, range(workers)))

        # Then
        assert len(set(ids)) == 1
        assert store.count(Service) == 1
        assert store.lookup(Service, ("network",)) == ids[0]


class TestInsert:
    """FK and natural-key enforcement on insert."""

    def test_given_missing_fk_target_when_insert_then_violation(
        self, store: RelationalStore, resource_id: int
    ) -> None:
        # When / Then
        with pytest.raises(IntegrityViolation) as exc_info:
            store.insert(SourceFile(resource_id=resource_id, service_id=999, path="x.go"))

        assert exc_info.value.code == ErrorCode.STORE_FOREIGN_KEY
        assert exc_info.value.details["column"] == "service_id"
        assert store.count(SourceFile) == 0

    def test_given_missing_reference_type_when_insert_then_violation(
        self, store: RelationalStore, resource_id: int, file_id: int
    ) -> None:
        row = _test_row(resource_id, file_id, "TestX")
        row.visibility_type_id = 77

        with pytest.raises(IntegrityViolation):
            store.insert(row)

    def test_given_taken_natural_key_when_insert_then_duplicate_key(
        self, store: RelationalStore, resource_id: int
    ) -> None:
        # Given
        _service(store, resource_id, "network")

        # When / Then
        with pytest.raises(IntegrityViolation) as exc_info:
            store.insert(Service(resource_id=resource_id, name="network"))
        assert exc_info.value.code == ErrorCode.STORE_DUPLICATE_KEY

    def test_given_distinct_step_indexes_when_inserted_then_two_rows(
        self, store: RelationalStore, resource_id: int, file_id: int
    ) -> None:
        test_id = store.insert(_test_row(resource_id, file_id, "TestX"))
        step = dict(
            resource_id=resource_id,
            test_function_id=test_id,
            line=3,
            target_name="basic",
            resolution_type_id=int(ReferenceType.EXTERNAL),
            visibility_type_id=int(ReferenceType.EXTERNAL),
        )

        store.insert(Step(step_index=1, **step))
        store.insert(Step(step_index=2, **step))

        assert store.count(Step) == 2


class TestQuery:
    """Lazy, restartable queries."""

    def test_given_rows_when_iterated_then_insertion_order(
        self, store: RelationalStore, resource_id: int
    ) -> None:
        for name in ("zeta", "alpha", "mid"):
            _service(store, resource_id, name)

        names = [s.name for s in store.query(Service)]

        assert names == ["zeta", "alpha", "mid"]

    def test_given_query_when_iterated_twice_then_reflects_later_inserts(
        self, store: RelationalStore, resource_id: int
    ) -> None:
        # Given
        query = store.query(Service)
        _service(store, resource_id, "a")
        first = query.all()

        # When
        _service(store, resource_id, "b")
        second = query.all()

        # Then
        assert [s.name for s in first] == ["a"]
        assert [s.name for s in second] == ["a", "b"]

    def test_criteria_and_predicate_combine(
        self, store: RelationalStore, resource_id: int
    ) -> None:
        for name in ("network", "compute", "netapp"):
            _service(store, resource_id, name)

        rows = store.query(
            Service,
            Service.name != "compute",
            predicate=lambda s: s.name.startswith("net"),
        ).all()

        assert [s.name for s in rows] == ["network", "netapp"]

    def test_first_and_ids(self, store: RelationalStore, resource_id: int) -> None:
        a = _service(store, resource_id, "a")
        b = _service(store, resource_id, "b")

        assert store.query(Service).ids() == [a, b]
        first = store.query(Service, Service.name == "b").first()
        assert first is not None and first.id == b
        assert store.query(Service, Service.name == "none").first() is None

    def test_row_counts_cover_every_table(self, store: RelationalStore) -> None:
        counts = store.row_counts()

        assert counts["reference_types"] == len(ReferenceType)
        assert counts["resources"] == 0
        assert len(counts) == 11


class TestReclassify:
    """Field-scoped updates."""

    def test_given_whitelisted_field_when_reclassify_then_updated(
        self, store: RelationalStore, resource_id: int, file_id: int
    ) -> None:
        # Given
        parent = store.insert(_test_row(resource_id, file_id, "TestParent"))
        child = store.insert(_test_row(resource_id, file_id, "TestChild"))

        # When
        row = store.reclassify(TestFunction, child, sequential_parent_id=parent)

        # Then
        assert row.sequential_parent_id == parent
        stored = store.get(TestFunction, child)
        assert stored is not None and stored.sequential_parent_id == parent

    def test_given_structural_field_when_reclassify_then_field_locked(
        self, store: RelationalStore, resource_id: int, file_id: int
    ) -> None:
        child = store.insert(_test_row(resource_id, file_id, "TestChild"))

        with pytest.raises(IntegrityViolation) as exc_info:
            store.reclassify(TestFunction, child, name="renamed")

        assert exc_info.value.code == ErrorCode.STORE_FIELD_LOCKED
        stored = store.get(TestFunction, child)
        assert stored is not None and stored.name == "TestChild"

    def test_given_dangling_fk_when_reclassify_then_violation(
        self, store: RelationalStore, resource_id: int, file_id: int
    ) -> None:
        child = store.insert(_test_row(resource_id, file_id, "TestChild"))

        with pytest.raises(IntegrityViolation):
            store.reclassify(TestFunction, child, sequential_parent_id=4242)

    def test_given_unknown_row_when_reclassify_then_row_not_found(
        self, store: RelationalStore
    ) -> None:
        with pytest.raises(IntegrityViolation) as exc_info:
            store.reclassify(TestFunction, 4242, sequential_parent_id=None)

        assert exc_info.value.code == ErrorCode.STORE_ROW_NOT_FOUND


class TestLoadRows:
    """Bulk load with preset ids (import path)."""

    def test_given_rows_with_ids_when_loaded_then_ids_and_keys_preserved(
        self, store: RelationalStore
    ) -> None:
        # When
        loaded = store.load_rows(Resource, [Resource(id=7, identifier="azurerm_x")])

        # Then
        assert loaded == 1
        assert store.lookup(Resource, ("azurerm_x",)) == 7
        assert store.exists("resources", 7)
        with pytest.raises(IntegrityViolation):
            store.insert(Resource(identifier="azurerm_x"))

    def test_given_child_before_parent_when_loaded_then_self_fk_resolves(
        self, store: RelationalStore
    ) -> None:
        # Given
        store.load_rows(Resource, [Resource(id=1, identifier="r")])
        store.load_rows(Service, [Service(id=1, resource_id=1, name="s")])
        store.load_rows(SourceFile, [SourceFile(id=1, resource_id=1, service_id=1, path="p")])
        child = _test_row(1, 1, "TestChild", sequential_parent_id=2)
        child.id = 1
        parent = _test_row(1, 1, "TestParent")
        parent.id = 2

        # When
        store.load_rows(TestFunction, [child, parent])

        # Then
        stored = store.get(TestFunction, 1)
        assert stored is not None and stored.sequential_parent_id == 2

    def test_given_missing_parent_when_loaded_then_violation(self, store: RelationalStore) -> None:
        with pytest.raises(IntegrityViolation):
            store.load_rows(Service, [Service(id=1, resource_id=99, name="s")])
