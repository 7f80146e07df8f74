"""Graph integrity verification.

Run after the refinement pass (and after import) to prove the store holds no
dangling or ambiguous state.

Integrity checks:
1. Foreign key violations (any FK column pointing at a missing row)
2. Unresolved targets tagged with anything other than EXTERNAL
3. EXTERNAL resolution with non-EXTERNAL visibility or a service-impact tag
4. Resolved edges still missing their service-impact tag
5. Stub rows without the sentinel line and marker body
6. Duplicate natural keys

A failing report is a programming error; the pipeline raises IntegrityViolation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import text

from impactscope.core.errors import IntegrityViolation
from impactscope.graph.models import (
    EXTERNAL_MARKER,
    STUB_LINE,
    TABLES,
    ReferenceType,
    SequentialLink,
    Step,
    TemplateCall,
)

if TYPE_CHECKING:
    from impactscope.graph.store import RelationalStore

_EXTERNAL = int(ReferenceType.EXTERNAL)

# (table, target FK column) for every classified edge table
_EDGE_TARGETS: tuple[tuple[str, str], ...] = (
    (Step.__tablename__, "template_function_id"),  # type: ignore[has-type]
    (TemplateCall.__tablename__, "target_function_id"),  # type: ignore[has-type]
    (SequentialLink.__tablename__, "target_function_id"),  # type: ignore[has-type]
)

_NATURAL_KEYS: tuple[tuple[str, str], ...] = (
    ("resources", "identifier"),
    ("services", "name"),
    ("source_files", "path"),
    ("structs", "name"),
    ("steps", "test_function_id, step_index"),
    ("sequential_links", "entry_function_id, \"group\", key, target_name"),
)


@dataclass
class IntegrityIssue:
    """A single integrity issue detected."""

    category: str  # 'fk_violation', 'dangling_target', 'external_tags', ...
    table: str | None
    message: str
    count: int = 1

    def __str__(self) -> str:
        where = f"{self.table}: " if self.table else ""
        return f"{self.category} {where}{self.message} ({self.count})"


@dataclass
class IntegrityReport:
    """Result of integrity verification."""

    passed: bool
    issues: list[IntegrityIssue] = field(default_factory=list)
    rows_checked: int = 0

    def add_issue(self, issue: IntegrityIssue) -> None:
        """Add an issue and mark as failed."""
        self.issues.append(issue)
        self.passed = False

    def raise_if_failed(self) -> None:
        if self.passed:
            return
        summary = ", ".join(sorted({i.category for i in self.issues}))
        raise IntegrityViolation.invariant_failed(summary, [str(i) for i in self.issues])


class IntegrityChecker:
    """Verifies the graph invariants of a populated store.

    Usage::

        report = IntegrityChecker(store).verify()
        report.raise_if_failed()

    ``final=False`` skips the checks that only hold once refinement has run
    (forward references may still be pending during discovery).
    """

    def __init__(self, store: RelationalStore) -> None:
        self._store = store

    def verify(self, *, final: bool = True) -> IntegrityReport:
        """Run all integrity checks and return report."""
        report = IntegrityReport(passed=True)
        report.rows_checked = sum(self._store.row_counts().values())

        self._check_foreign_keys(report)
        self._check_external_tags(report)
        self._check_stub_markers(report)
        self._check_natural_keys(report)
        if final:
            self._check_dangling_targets(report)
            self._check_service_impact(report)

        return report

    def _count(self, sql: str) -> int:
        with self._store.engine.connect() as conn:
            return int(conn.execute(text(sql)).scalar() or 0)

    def _check_foreign_keys(self, report: IntegrityReport) -> None:
        for model in TABLES:
            table = model.__tablename__
            for fk in model.__table__.foreign_keys:  # type: ignore[attr-defined]
                column = fk.parent.name
                target = fk.column.table.name
                orphans = self._count(
                    f"SELECT COUNT(*) FROM {table} WHERE {column} IS NOT NULL "
                    f"AND {column} NOT IN (SELECT id FROM {target})"
                )
                if orphans:
                    report.add_issue(
                        IntegrityIssue(
                            category="fk_violation",
                            table=table,
                            message=f"{column} points to missing {target} rows",
                            count=orphans,
                        )
                    )

    def _check_dangling_targets(self, report: IntegrityReport) -> None:
        """Null target FK must be paired with EXTERNAL; steps and links never stay null."""
        for table, column in _EDGE_TARGETS:
            dangling = self._count(
                f"SELECT COUNT(*) FROM {table} WHERE {column} IS NULL "
                f"AND resolution_type_id != {_EXTERNAL}"
            )
            if dangling:
                report.add_issue(
                    IntegrityIssue(
                        category="dangling_target",
                        table=table,
                        message="null target with a non-EXTERNAL resolution",
                        count=dangling,
                    )
                )
            if table == TemplateCall.__tablename__:
                continue
            unresolved = self._count(f"SELECT COUNT(*) FROM {table} WHERE {column} IS NULL")
            if unresolved:
                report.add_issue(
                    IntegrityIssue(
                        category="missing_stub",
                        table=table,
                        message="unresolved target without a stub row",
                        count=unresolved,
                    )
                )

    def _check_external_tags(self, report: IntegrityReport) -> None:
        for table, _ in _EDGE_TARGETS:
            bad = self._count(
                f"SELECT COUNT(*) FROM {table} WHERE resolution_type_id = {_EXTERNAL} "
                f"AND (visibility_type_id != {_EXTERNAL} OR service_impact_type_id IS NOT NULL)"
            )
            if bad:
                report.add_issue(
                    IntegrityIssue(
                        category="external_tags",
                        table=table,
                        message="EXTERNAL edge with guessed visibility or service impact",
                        count=bad,
                    )
                )

    def _check_service_impact(self, report: IntegrityReport) -> None:
        for table, column in _EDGE_TARGETS:
            missing = self._count(
                f"SELECT COUNT(*) FROM {table} WHERE resolution_type_id != {_EXTERNAL} "
                f"AND {column} IS NOT NULL AND service_impact_type_id IS NULL"
            )
            if missing:
                report.add_issue(
                    IntegrityIssue(
                        category="service_impact_pending",
                        table=table,
                        message="resolved edge without service impact",
                        count=missing,
                    )
                )

    def _check_stub_markers(self, report: IntegrityReport) -> None:
        for table in ("test_functions", "template_functions"):
            bad = self._count(
                f"SELECT COUNT(*) FROM {table} WHERE is_external = 1 "
                f"AND (line != {STUB_LINE} OR body IS NULL OR body != '{EXTERNAL_MARKER}' "
                f"OR file_id IS NOT NULL)"
            )
            if bad:
                report.add_issue(
                    IntegrityIssue(
                        category="stub_marker",
                        table=table,
                        message="external row without sentinel line or marker body",
                        count=bad,
                    )
                )

    def _check_natural_keys(self, report: IntegrityReport) -> None:
        for table, columns in _NATURAL_KEYS:
            dupes = self._count(
                f"SELECT COUNT(*) FROM (SELECT 1 FROM {table} "
                f"GROUP BY {columns} HAVING COUNT(*) > 1)"
            )
            if dupes:
                report.add_issue(
                    IntegrityIssue(
                        category="duplicate_key",
                        table=table,
                        message=f"duplicate natural key ({columns})",
                        count=dupes,
                    )
                )


__all__ = [
    "IntegrityChecker",
    "IntegrityIssue",
    "IntegrityReport",
]
