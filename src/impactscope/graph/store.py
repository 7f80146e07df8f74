"""In-memory relational store for one discovery run.

This module provides:
- RelationalStore: SQLite (in-memory) tables with natural-key dedup indexes
- RowQuery: lazy, restartable query results in insertion order

All mutation goes through get_or_create/insert (and reclassify for the
refinement pass). A single re-entrant lock is the atomicity boundary: the
natural-key index is checked and the row inserted under it, so concurrent
callers racing on the same key observe exactly one row.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any, Generic, TypeVar

import structlog
from sqlalchemy import event, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from impactscope.core.errors import IntegrityViolation, InternalError
from impactscope.graph.models import TABLES, natural_key, reference_type_rows

logger = structlog.get_logger()

T = TypeVar("T", bound=SQLModel)


class RowQuery(Generic[T]):
    """Lazy query over one table.

    Nothing is read until iteration; every iteration re-executes the query, so
    the same RowQuery can be consumed repeatedly and reflects later inserts.
    """

    def __init__(
        self,
        store: RelationalStore,
        model: type[T],
        criteria: tuple[Any, ...],
        predicate: Callable[[T], bool] | None,
    ) -> None:
        self._store = store
        self._model = model
        self._criteria = criteria
        self._predicate = predicate

    def __iter__(self) -> Iterator[T]:
        rows = self._store._fetch(self._model, self._criteria)
        if self._predicate is None:
            return iter(rows)
        return (row for row in rows if self._predicate(row))

    def all(self) -> list[T]:
        return list(self)

    def first(self) -> T | None:
        return next(iter(self), None)

    def ids(self) -> list[int]:
        return [row.id for row in self if row.id is not None]


class RelationalStore:
    """Typed tables with surrogate keys and natural-key get-or-create."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        event.listen(self.engine, "connect", _configure_pragmas)
        SQLModel.metadata.create_all(self.engine, tables=[m.__table__ for m in TABLES])  # type: ignore[attr-defined]

        self._keys: dict[type[SQLModel], dict[tuple[Any, ...], int]] = {m: {} for m in TABLES}
        self._ids: dict[str, set[int]] = {m.__tablename__: set() for m in TABLES}  # type: ignore[misc]

        for record in reference_type_rows():
            self.insert(record)

    # =========================================================================
    # Writes
    # =========================================================================

    def get_or_create(
        self,
        model: type[T],
        key: tuple[Any, ...],
        builder: Callable[[], T],
    ) -> int:
        """Return the id of the row with ``key``, building and inserting it if absent.

        Idempotent: an existing row is returned untouched and ``builder`` is
        not called.
        """
        with self._lock:
            existing = self._keys[model].get(key)
            if existing is not None:
                return existing
            record = builder()
            built_key = natural_key(record)
            if built_key != key:
                raise InternalError.unexpected(
                    "builder produced a row with a different natural key",
                    table=model.__tablename__,
                    requested=list(key),
                    built=list(built_key or ()),
                )
            return self._insert_locked(record)

    def insert(self, record: SQLModel) -> int:
        """Insert one row and return its id.

        Raises:
            IntegrityViolation: A foreign key references a missing row, or the
                natural key is already taken.
        """
        with self._lock:
            return self._insert_locked(record)

    def reclassify(self, model: type[T], row_id: int, **fields: Any) -> T:
        """Update classification fields of one row in place.

        Only the fields in the model's ``__reclassifiable__`` whitelist may
        change; structural fields are immutable after insert.
        """
        table = model.__tablename__
        locked = set(fields) - model.__reclassifiable__  # type: ignore[attr-defined]
        if locked:
            raise IntegrityViolation.field_locked(table, sorted(locked))  # type: ignore[arg-type]

        with self._lock:
            self._check_foreign_keys(model, fields)
            with Session(self.engine, expire_on_commit=False) as session:
                row = session.get(model, row_id)
                if row is None:
                    raise IntegrityViolation.row_not_found(table, row_id)  # type: ignore[arg-type]
                for name, value in fields.items():
                    setattr(row, name, value)
                session.add(row)
                try:
                    session.commit()
                except IntegrityError as e:
                    raise IntegrityViolation.foreign_key(table, ",".join(fields), str(e.orig)) from e  # type: ignore[arg-type]
            logger.debug("row_reclassified", table=table, id=row_id, fields=sorted(fields))
            return row

    def load_rows(self, model: type[T], rows: Iterable[T]) -> int:
        """Bulk-load rows with preset ids (import path). Returns rows loaded.

        Natural-key indexes are rebuilt from the loaded rows. Self-referencing
        foreign keys are written in a second pass so row order does not matter.
        """
        batch = list(rows)
        table = model.__tablename__
        mapper_table = model.__table__  # type: ignore[attr-defined]
        self_refs = [
            fk.parent.name for fk in mapper_table.foreign_keys if fk.column.table is mapper_table
        ]

        with self._lock:
            batch_ids = {row.id for row in batch}
            if None in batch_ids:
                raise InternalError.unexpected("imported row without id", table=table)
            pending: dict[tuple[Any, ...], int] = {}
            for row in batch:
                values = row.model_dump()
                self._check_foreign_keys(model, values, extra_ids={table: batch_ids})  # type: ignore[arg-type]
                key = natural_key(row)
                if key is not None:
                    if key in self._keys[model] or key in pending:
                        raise IntegrityViolation.duplicate_key(table, key)  # type: ignore[arg-type]
                    pending[key] = row.id  # type: ignore[assignment]

            deferred: list[tuple[int, dict[str, Any]]] = []
            with Session(self.engine, expire_on_commit=False) as session:
                for row in batch:
                    values = row.model_dump()
                    late = {name: values[name] for name in self_refs if values[name] is not None}
                    if late:
                        deferred.append((row.id, late))  # type: ignore[arg-type]
                        for name in late:
                            values[name] = None
                    session.add(model.model_validate(values))
                session.commit()
                for row_id, late in deferred:
                    stored = session.get(model, row_id)
                    for name, value in late.items():
                        setattr(stored, name, value)
                    session.add(stored)
                session.commit()

            self._keys[model].update(pending)
            self._ids[table].update(batch_ids)  # type: ignore[index, arg-type]
        return len(batch)

    # =========================================================================
    # Reads
    # =========================================================================

    def query(
        self,
        model: type[T],
        *criteria: Any,
        predicate: Callable[[T], bool] | None = None,
    ) -> RowQuery[T]:
        """Lazy query; SQL criteria and/or a Python predicate. Insertion order."""
        return RowQuery(self, model, criteria, predicate)

    def get(self, model: type[T], row_id: int) -> T | None:
        with self._lock, Session(self.engine, expire_on_commit=False) as session:
            return session.get(model, row_id)

    def lookup(self, model: type[SQLModel], key: tuple[Any, ...]) -> int | None:
        """Id of the row with this natural key, if any."""
        with self._lock:
            return self._keys[model].get(key)

    def count(self, model: type[SQLModel], *criteria: Any) -> int:
        with self._lock, Session(self.engine) as session:
            stmt = select(func.count()).select_from(model).where(*criteria)
            return int(session.exec(stmt).one())

    def rows(self, model: type[T]) -> list[T]:
        return self.query(model).all()

    def row_counts(self) -> dict[str, int]:
        return {m.__tablename__: self.count(m) for m in TABLES}  # type: ignore[misc]

    def exists(self, table: str, row_id: int) -> bool:
        with self._lock:
            return row_id in self._ids[table]

    # =========================================================================
    # Internals
    # =========================================================================

    def _fetch(self, model: type[T], criteria: tuple[Any, ...]) -> list[T]:
        stmt = select(model).where(*criteria).order_by(model.id)  # type: ignore[attr-defined]
        with self._lock, Session(self.engine, expire_on_commit=False) as session:
            return list(session.exec(stmt).all())

    def _insert_locked(self, record: SQLModel) -> int:
        model = type(record)
        table = model.__tablename__
        self._check_foreign_keys(model, record.model_dump())
        key = natural_key(record)
        if key is not None and key in self._keys[model]:
            raise IntegrityViolation.duplicate_key(table, key)  # type: ignore[arg-type]

        with Session(self.engine, expire_on_commit=False) as session:
            session.add(record)
            try:
                session.commit()
            except IntegrityError as e:
                raise IntegrityViolation.duplicate_key(table, key or (record.id,)) from e  # type: ignore[arg-type]
            row_id = record.id  # type: ignore[attr-defined]

        if key is not None:
            self._keys[model][key] = row_id
        self._ids[table].add(row_id)  # type: ignore[index]
        return int(row_id)

    def _check_foreign_keys(
        self,
        model: type[SQLModel],
        values: Mapping[str, Any],
        extra_ids: Mapping[str, set[int | None]] | None = None,
    ) -> None:
        for fk in model.__table__.foreign_keys:  # type: ignore[attr-defined]
            column = fk.parent.name
            if column not in values or values[column] is None:
                continue
            target = fk.column.table.name
            value = values[column]
            if value in self._ids[target]:
                continue
            if extra_ids and value in extra_ids.get(target, ()):
                continue
            raise IntegrityViolation.foreign_key(model.__tablename__, column, value)  # type: ignore[arg-type]


def _configure_pragmas(dbapi_conn: Any, _connection_record: Any) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
