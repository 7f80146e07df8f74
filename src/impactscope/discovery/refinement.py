"""Cross-file and integrity refinement.

Runs once after discovery and sequential expansion. Forward references (null
target, CROSS_FILE) are re-resolved against the now-complete tables; those that
still have no row become EXTERNAL. Steps and sequential links that remain
without a target get External stub rows so every FK they carry is valid.

Only rows still pending are touched, so a second run changes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from impactscope.discovery.resolve import TargetResolver
from impactscope.discovery.sequential import stub_test_function
from impactscope.graph.classifier import (
    EXTERNAL_CLASSIFICATION,
    External,
    Resolved,
    function_visibility,
)
from impactscope.graph.models import (
    EXTERNAL_MARKER,
    STUB_LINE,
    ReferenceType,
    SequentialLink,
    SourceFile,
    Step,
    Struct,
    TemplateCall,
    TemplateFunction,
    TestFunction,
)

if TYPE_CHECKING:
    from impactscope.discovery.context import RunContext

logger = structlog.get_logger()

_CROSS_FILE = int(ReferenceType.CROSS_FILE)


@dataclass
class RefinementReport:
    template_calls_resolved: int = 0
    template_calls_externalized: int = 0
    steps_resolved: int = 0
    steps_externalized: int = 0
    step_stubs: int = 0
    link_stubs: int = 0
    parents_assigned: int = 0

    @property
    def changed(self) -> int:
        return (
            self.template_calls_resolved
            + self.template_calls_externalized
            + self.steps_resolved
            + self.steps_externalized
            + self.step_stubs
            + self.link_stubs
            + self.parents_assigned
        )


def stub_template_function(
    ctx: RunContext, name: str, location_hint: str | None, struct: str | None = None
) -> int:
    """Get or create the External TemplateFunction stub for ``struct.name``.

    Stubs are keyed by receiver, so same-named methods of different structs stay apart.
    """
    rid = ctx.rid
    struct_id: int | None = None
    if struct:
        owner = struct
        struct_id = ctx.store.get_or_create(
            Struct, (owner,), lambda: Struct(resource_id=rid, file_id=None, name=owner)
        )
    return ctx.store.get_or_create(
        TemplateFunction,
        (True, None, struct_id, name),
        lambda: TemplateFunction(
            resource_id=rid,
            file_id=None,
            struct_id=struct_id,
            name=name,
            line=STUB_LINE,
            visibility_type_id=int(function_visibility(name)),
            is_external=True,
            body=EXTERNAL_MARKER,
            location_hint=location_hint,
        ),
    )


class RefinementPass:
    """Single final sweep leaving no row in a provisional state."""

    def __init__(self, ctx: RunContext) -> None:
        self._ctx = ctx
        self._store = ctx.store
        self._resolver = TargetResolver(ctx)
        self._paths: dict[int, str] = {}

    def run(self) -> RefinementReport:
        report = RefinementReport()
        self._refine_template_calls(report)
        self._refine_steps(report)
        self._refine_links(report)
        self._assign_parents(report)
        logger.info(
            "refinement_completed",
            template_calls_resolved=report.template_calls_resolved,
            template_calls_externalized=report.template_calls_externalized,
            steps_resolved=report.steps_resolved,
            steps_externalized=report.steps_externalized,
            step_stubs=report.step_stubs,
            link_stubs=report.link_stubs,
            parents_assigned=report.parents_assigned,
        )
        return report

    def _path(self, file_id: int | None) -> str:
        if file_id is None:
            return ""
        if file_id not in self._paths:
            row = self._store.get(SourceFile, file_id)
            self._paths[file_id] = row.path if row is not None else ""
        return self._paths[file_id]

    def _refine_template_calls(self, report: RefinementReport) -> None:
        pending = self._store.query(
            TemplateCall,
            TemplateCall.target_function_id.is_(None),  # type: ignore[union-attr]
            TemplateCall.resolution_type_id == _CROSS_FILE,
        )
        for call in pending:
            source = self._store.get(TemplateFunction, call.source_function_id)
            path = self._path(source.file_id if source is not None else None)
            lookup = self._resolver.template(call.target_name, call.target_struct, path)
            match lookup.resolution(path):
                case Resolved(row_id=row_id):
                    classification = self._resolver.classify(lookup, path)
                    self._store.reclassify(
                        TemplateCall,
                        call.id,  # type: ignore[arg-type]
                        target_function_id=row_id,
                        **classification.as_fields(),
                    )
                    report.template_calls_resolved += 1
                case External():
                    self._store.reclassify(
                        TemplateCall,
                        call.id,  # type: ignore[arg-type]
                        **EXTERNAL_CLASSIFICATION.as_fields(),
                    )
                    report.template_calls_externalized += 1

    def _refine_steps(self, report: RefinementReport) -> None:
        pending = self._store.query(
            Step,
            Step.template_function_id.is_(None),  # type: ignore[union-attr]
        )
        for step in pending:
            test = self._store.get(TestFunction, step.test_function_id)
            path = self._path(test.file_id if test is not None else None)

            if step.resolution_type_id == _CROSS_FILE:
                lookup = self._resolver.template(step.target_name, step.target_struct, path)
                resolution = lookup.resolution(path)
                if isinstance(resolution, Resolved):
                    classification = self._resolver.classify(lookup, path)
                    self._store.reclassify(
                        Step,
                        step.id,  # type: ignore[arg-type]
                        template_function_id=resolution.row_id,
                        **classification.as_fields(),
                    )
                    report.steps_resolved += 1
                    continue
                hint = resolution.location_hint
                report.steps_externalized += 1
            else:
                hint = None

            stub_id = stub_template_function(
                self._ctx, step.target_name, hint, step.target_struct
            )
            self._store.reclassify(
                Step,
                step.id,  # type: ignore[arg-type]
                template_function_id=stub_id,
                **EXTERNAL_CLASSIFICATION.as_fields(),
            )
            report.step_stubs += 1

    def _refine_links(self, report: RefinementReport) -> None:
        pending = self._store.query(
            SequentialLink,
            SequentialLink.target_function_id.is_(None),  # type: ignore[union-attr]
        )
        for link in pending:
            stub_id = stub_test_function(self._ctx, link.target_name, None)
            self._store.reclassify(
                SequentialLink,
                link.id,  # type: ignore[arg-type]
                target_function_id=stub_id,
                **EXTERNAL_CLASSIFICATION.as_fields(),
            )
            report.link_stubs += 1

    def _assign_parents(self, report: RefinementReport) -> None:
        """First orchestrator (lowest link id) becomes the target's parent."""
        parents: dict[int, int | None] = {
            t.id: t.sequential_parent_id  # type: ignore[misc]
            for t in self._store.query(TestFunction)
        }
        for link in self._store.query(SequentialLink):
            target = link.target_function_id
            entry = link.entry_function_id
            if target is None or parents.get(target) is not None:
                continue
            if self._reaches(parents, entry, target):
                continue
            self._store.reclassify(TestFunction, target, sequential_parent_id=entry)
            parents[target] = entry
            report.parents_assigned += 1

    @staticmethod
    def _reaches(parents: dict[int, int | None], start: int, target: int) -> bool:
        """True if ``target`` is ``start`` or one of its ancestors."""
        seen: set[int] = set()
        node: int | None = start
        while node is not None and node not in seen:
            if node == target:
                return True
            seen.add(node)
            node = parents.get(node)
        return False
