"""Per-file fact ingestion into the relational store.

Turns one FileFacts document into Service/SourceFile/Struct/TestFunction/
TemplateFunction/Step/TemplateCall/DirectReference rows. Safe to call from
several worker threads at once: every write goes through get_or_create or
insert, and a file is ingested at most once per run (RunContext.claim).

Cross-file targets whose rows do not exist yet are recorded as forward
references (null target, CROSS_FILE, no service impact) and finalized by the
refinement pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from impactscope.discovery.resolve import Lookup, TargetResolver
from impactscope.discovery.universe import Location
from impactscope.facts.models import CallFact, FileFacts, FunctionFact
from impactscope.graph.classifier import function_visibility
from impactscope.graph.models import (
    DirectReference,
    Service,
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

FunctionKey = tuple[str | None, str]  # (struct, name)


@dataclass
class IngestStats:
    path: str
    tests: int = 0
    templates: int = 0
    steps: int = 0
    template_calls: int = 0
    direct_references: int = 0
    sequential_calls: int = 0


@dataclass
class _FileState:
    """Row ids created for one file, keyed by (struct, name)."""

    path: str
    service: str
    file_id: int
    declared: dict[str, list[FunctionFact]]
    templates: dict[FunctionKey, int] = field(default_factory=dict)
    tests: dict[str, int] = field(default_factory=dict)

    def declared_struct(self, name: str, struct: str | None) -> str | None:
        """Struct of the declaration ``name`` refers to; ``struct`` wins if given."""
        if struct is not None:
            return struct
        candidates = self.declared.get(name, [])
        return candidates[0].struct if candidates else None

    def declaration(self, name: str, struct: str | None) -> FunctionFact | None:
        for fn in self.declared.get(name, []):
            if struct is None or fn.struct == struct:
                return fn
        return None

    def template_id(self, name: str, struct: str | None) -> int | None:
        if struct is not None:
            return self.templates.get((struct, name))
        for (_, tname), tid in self.templates.items():
            if tname == name:
                return tid
        return None


class FactIngestor:
    """Writes one file's facts into the store."""

    def __init__(self, ctx: RunContext) -> None:
        self._ctx = ctx
        self._store = ctx.store
        self._resolver = TargetResolver(ctx)
        self._prefixes = tuple(ctx.config.scan.test_prefixes)

    def ingest(self, facts: FileFacts) -> IngestStats:
        ctx = self._ctx
        rid = ctx.rid
        path = facts.path
        service = ctx.universe.service_of(path)

        service_id = self._store.get_or_create(
            Service, (service,), lambda: Service(resource_id=rid, name=service)
        )
        file_id = self._store.get_or_create(
            SourceFile,
            (path,),
            lambda: SourceFile(resource_id=rid, service_id=service_id, path=path),
        )

        declared: dict[str, list[FunctionFact]] = {}
        for fn in facts.functions:
            declared.setdefault(fn.name, []).append(fn)
        state = _FileState(path=path, service=service, file_id=file_id, declared=declared)
        stats = IngestStats(path=path)

        self._ingest_templates(facts, state, stats)
        self._ingest_tests(facts, state, stats)
        self._ingest_literals(facts, state, stats)
        self._ingest_steps(facts, state, stats)
        self._ingest_template_calls(facts, state, stats)

        sequential = facts.calls_of("sequential")
        if sequential:
            ctx.defer_sequential(path, sequential)
            stats.sequential_calls = len(sequential)

        logger.debug(
            "file_ingested",
            path=path,
            service=service,
            tests=stats.tests,
            templates=stats.templates,
            steps=stats.steps,
            template_calls=stats.template_calls,
            direct_references=stats.direct_references,
        )
        return stats

    # =========================================================================
    # Declarations
    # =========================================================================

    def _struct_id(self, name: str | None, file_id: int) -> int | None:
        if not name:
            return None
        rid = self._ctx.rid
        return self._store.get_or_create(
            Struct, (name,), lambda: Struct(resource_id=rid, file_id=file_id, name=name)
        )

    def _template_keys(self, facts: FileFacts, state: _FileState) -> set[FunctionKey]:
        keys: set[FunctionKey] = set()
        for fn in facts.functions:
            if fn.produces_artifact and not fn.is_test:
                keys.add((fn.struct, fn.name))
        for lit in facts.literals:
            keys.add((state.declared_struct(lit.function, lit.struct), lit.function))
        for call in facts.calls_of("template"):
            keys.add((state.declared_struct(call.caller, call.caller_struct), call.caller))
        # Declared here and used as a configuration builder
        for call in facts.calls:
            if call.kind == "sequential" or call.embedded or not call.callee:
                continue
            decl = state.declaration(call.callee, call.callee_struct)
            if decl is not None and not decl.is_test:
                keys.add((decl.struct, decl.name))
        return keys

    def _ingest_templates(self, facts: FileFacts, state: _FileState, stats: IngestStats) -> None:
        keys = sorted(self._template_keys(facts, state), key=lambda k: (k[0] or "", k[1]))
        for struct, name in keys:
            decl = state.declaration(name, struct)
            line = decl.line if decl is not None else 0
            state.templates[(struct, name)] = self._template_row(state, name, struct, line)
            stats.templates += 1

    def _template_row(
        self,
        state: _FileState,
        name: str,
        struct: str | None,
        line: int,
        *,
        anonymous: bool = False,
    ) -> int:
        rid = self._ctx.rid
        struct_id = self._struct_id(struct, state.file_id)
        return self._store.get_or_create(
            TemplateFunction,
            (False, state.file_id, struct_id, name),
            lambda: TemplateFunction(
                resource_id=rid,
                file_id=state.file_id,
                struct_id=struct_id,
                name=name,
                line=line,
                produces_artifact=True,
                is_anonymous=anonymous,
                visibility_type_id=int(function_visibility(name, anonymous=anonymous)),
            ),
        )

    def _test_prefix(self, name: str) -> str | None:
        for prefix in self._prefixes:
            if name.startswith(prefix):
                return prefix
        return None

    def _ingest_tests(self, facts: FileFacts, state: _FileState, stats: IngestStats) -> None:
        sequential = facts.calls_of("sequential")
        entries = {c.caller for c in sequential}

        names: set[str] = set()
        for fn in facts.functions:
            if (fn.struct, fn.name) in state.templates and not fn.is_test:
                continue
            if fn.is_test or self._test_prefix(fn.name) is not None:
                names.add(fn.name)
        names.update(c.caller for c in facts.calls_of("step"))
        names.update(entries)
        # Sequentially referenced tests declared in this same file
        names.update(c.callee for c in sequential if c.callee in state.declared)

        for name in sorted(names):
            decl = state.declaration(name, None)
            state.tests[name] = self._test_row(
                state,
                name,
                struct=decl.struct if decl is not None else None,
                line=decl.line if decl is not None else 0,
                is_entry=name in entries,
            )
            stats.tests += 1

    def _test_row(
        self,
        state: _FileState,
        name: str,
        *,
        struct: str | None,
        line: int,
        is_entry: bool = False,
    ) -> int:
        rid = self._ctx.rid
        struct_id = self._struct_id(struct, state.file_id)
        return self._store.get_or_create(
            TestFunction,
            (False, state.file_id, name),
            lambda: TestFunction(
                resource_id=rid,
                file_id=state.file_id,
                struct_id=struct_id,
                name=name,
                line=line,
                prefix=self._test_prefix(name) or "",
                visibility_type_id=int(function_visibility(name)),
                is_sequential_entry=is_entry,
            ),
        )

    def _ingest_literals(self, facts: FileFacts, state: _FileState, stats: IngestStats) -> None:
        rid = self._ctx.rid
        for lit in facts.literals:
            template_id = state.template_id(lit.function, lit.struct)
            if template_id is None:
                continue
            self._store.insert(
                DirectReference(
                    resource_id=rid,
                    template_function_id=template_id,
                    occurrence_kind=lit.kind,
                    context=lit.context,
                    context_line=lit.context_line,
                )
            )
            stats.direct_references += 1

    # =========================================================================
    # Edges
    # =========================================================================

    def _resolve_callee(self, state: _FileState, call: CallFact) -> Lookup:
        """Locate a configuration callee, materializing same-file definitions."""
        lookup = self._resolver.template(call.callee, call.callee_struct, state.path)
        location = lookup.location
        if location is not None and location.path == state.path and lookup.row_id is None:
            row_id = self._template_row(state, call.callee, location.struct, location.line)
            state.templates[(location.struct, call.callee)] = row_id
            lookup = Lookup(name=call.callee, location=location, row_id=row_id)
        return lookup

    def _closure_row(self, state: _FileState, call: CallFact, index: int) -> tuple[str, int]:
        """Template row for a configuration built inside the caller's own body."""
        name = f"{call.caller}.func{index}" if call.anonymous else call.callee
        row_id = self._template_row(state, name, None, call.line, anonymous=call.anonymous)
        state.templates.setdefault((None, name), row_id)
        return name, row_id

    def _ingest_steps(self, facts: FileFacts, state: _FileState, stats: IngestStats) -> None:
        rid = self._ctx.rid
        counters: dict[str, int] = {}
        for call in facts.calls_of("step"):
            counters[call.caller] = counters.get(call.caller, 0) + 1
            index = call.index if call.index is not None else counters[call.caller]
            test_id = state.tests[call.caller]

            if call.embedded:
                name, target_id = self._closure_row(state, call, index)
                here = Location(
                    path=state.path, service=state.service, struct=None, line=call.line
                )
                lookup = Lookup(name=name, location=here, row_id=target_id)
                classification = self._resolver.classify(
                    lookup, state.path, embedded=True, anonymous=call.anonymous
                )
                if call.anonymous and call.callee:
                    self._insert_template_call(state, target_id, call, stats)
            else:
                lookup = self._resolve_callee(state, call)
                classification = self._resolver.classify(lookup, state.path)

            location = lookup.location
            target_struct = location.struct if location is not None else call.callee_struct
            self._store.get_or_create(
                Step,
                (test_id, index),
                lambda: Step(
                    resource_id=rid,
                    test_function_id=test_id,
                    step_index=index,
                    line=call.line,
                    target_name=lookup.name,
                    target_struct=target_struct,
                    template_function_id=lookup.row_id,
                    ambiguous=location is not None and location.ambiguous,
                    **classification.as_fields(),
                ),
            )
            stats.steps += 1

    def _ingest_template_calls(
        self, facts: FileFacts, state: _FileState, stats: IngestStats
    ) -> None:
        for call in facts.calls_of("template"):
            source_id = state.template_id(call.caller, call.caller_struct)
            if source_id is None:
                continue
            self._insert_template_call(state, source_id, call, stats)

    def _insert_template_call(
        self,
        state: _FileState,
        source_id: int,
        call: CallFact,
        stats: IngestStats,
    ) -> None:
        lookup = self._resolve_callee(state, call)
        classification = self._resolver.classify(lookup, state.path)
        location = lookup.location
        self._store.insert(
            TemplateCall(
                resource_id=self._ctx.rid,
                source_function_id=source_id,
                target_name=call.callee,
                target_struct=location.struct if location is not None else call.callee_struct,
                target_function_id=lookup.row_id,
                line=call.line,
                ambiguous=location is not None and location.ambiguous,
                **classification.as_fields(),
            )
        )
        stats.template_calls += 1
