"""Export/import of a finished graph.

Layout of an export directory::

    <out>/manifest.json        schema + reference-type versions, row counts, diagnostics
    <out>/<table>.csv          one per table, header = column names

Cells: foreign keys as integers, booleans ``true``/``false``, null as an empty
cell. Importing reloads every table in FK order with the original ids and
rebuilds the natural-key indexes, so query-only sessions see the same graph.
"""

from __future__ import annotations

import csv
import json
import typing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError
from sqlmodel import SQLModel

from impactscope.core.errors import ImpactScopeError, MissingInputError
from impactscope.graph.models import (
    REFERENCE_TYPE_VERSION,
    TABLES,
    ReferenceTypeRecord,
    Resource,
    reference_type_rows,
)
from impactscope.graph.store import RelationalStore

logger = structlog.get_logger()

T = TypeVar("T", bound=SQLModel)

SCHEMA_VERSION = 1
MANIFEST_NAME = "manifest.json"


@dataclass
class ExportManifest:
    resource: str
    row_counts: dict[str, int]
    diagnostics: dict[str, Any] = field(default_factory=dict)
    schema_version: int = SCHEMA_VERSION
    reference_type_version: int = REFERENCE_TYPE_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "reference_type_version": self.reference_type_version,
            "resource": self.resource,
            "row_counts": self.row_counts,
            "diagnostics": self.diagnostics,
        }


@dataclass
class ImportedGraph:
    store: RelationalStore
    manifest: ExportManifest


def _columns(model: type[SQLModel]) -> list[str]:
    return list(model.model_fields)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _nullable(model: type[SQLModel], column: str) -> bool:
    annotation = model.model_fields[column].annotation
    return type(None) in typing.get_args(annotation)


def export_store(
    store: RelationalStore,
    out_dir: Path,
    diagnostics: dict[str, Any] | None = None,
) -> ExportManifest:
    """Write every table plus the manifest to ``out_dir``."""
    resource = store.query(Resource).first()
    out_dir.mkdir(parents=True, exist_ok=True)

    for model in TABLES:
        columns = _columns(model)
        path = out_dir / f"{model.__tablename__}.csv"
        with path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(columns)
            for row in store.rows(model):
                writer.writerow([_cell(getattr(row, c)) for c in columns])

    manifest = ExportManifest(
        resource=resource.identifier if resource is not None else "",
        row_counts=store.row_counts(),
        diagnostics=diagnostics or {},
    )
    (out_dir / MANIFEST_NAME).write_text(json.dumps(manifest.to_dict(), indent=2) + "\n")
    logger.info("export_written", path=str(out_dir), rows=sum(manifest.row_counts.values()))
    return manifest


def read_manifest(in_dir: Path) -> ExportManifest:
    path = in_dir / MANIFEST_NAME
    if not path.is_file():
        raise MissingInputError.export_not_found(str(in_dir))
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        manifest = ExportManifest(
            resource=data["resource"],
            row_counts={k: int(v) for k, v in data["row_counts"].items()},
            diagnostics=data.get("diagnostics") or {},
            schema_version=int(data["schema_version"]),
            reference_type_version=int(data["reference_type_version"]),
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
        raise MissingInputError.export_invalid(str(in_dir), f"bad manifest: {e}") from e

    if manifest.schema_version != SCHEMA_VERSION:
        raise MissingInputError.export_invalid(
            str(in_dir), f"schema version {manifest.schema_version}, expected {SCHEMA_VERSION}"
        )
    if manifest.reference_type_version != REFERENCE_TYPE_VERSION:
        raise MissingInputError.export_invalid(
            str(in_dir),
            f"reference type version {manifest.reference_type_version}, "
            f"expected {REFERENCE_TYPE_VERSION}",
        )
    return manifest


def _read_rows(in_dir: Path, model: type[T]) -> list[T]:
    path = in_dir / f"{model.__tablename__}.csv"
    if not path.is_file():
        raise MissingInputError.export_invalid(str(in_dir), f"missing {path.name}")
    columns = _columns(model)
    with path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames != columns:
            raise MissingInputError.export_invalid(
                str(in_dir), f"{path.name} columns {reader.fieldnames}, expected {columns}"
            )
        rows = []
        for raw in reader:
            values = {
                c: (None if raw[c] == "" and _nullable(model, c) else raw[c]) for c in columns
            }
            try:
                rows.append(model.model_validate(values))
            except ValidationError as e:
                raise MissingInputError.export_invalid(
                    str(in_dir), f"{path.name} line {reader.line_num}: {e.error_count()} errors"
                ) from e
    return rows


def import_store(in_dir: Path) -> ImportedGraph:
    """Rebuild a store from an export directory.

    Raises:
        MissingInputError: The directory has no manifest, or the export is
            incomplete, from another schema, or inconsistent.
    """
    manifest = read_manifest(in_dir)
    store = RelationalStore()

    for model in TABLES:
        rows = _read_rows(in_dir, model)
        if model is ReferenceTypeRecord:
            # Seeded by the store; the export must carry the same enumeration
            expected = {(r.id, r.name) for r in reference_type_rows()}
            if {(r.id, r.name) for r in rows} != expected:
                raise MissingInputError.export_invalid(str(in_dir), "reference types differ")
            continue
        try:
            store.load_rows(model, rows)
        except ImpactScopeError as e:
            raise MissingInputError.export_invalid(str(in_dir), e.message) from e

    counts = store.row_counts()
    if counts != manifest.row_counts:
        raise MissingInputError.export_invalid(str(in_dir), "row counts differ from manifest")

    logger.info("export_imported", path=str(in_dir), rows=sum(counts.values()))
    return ImportedGraph(store=store, manifest=manifest)
