"""Sequential pattern expansion.

An orchestrator test registers other tests by reference inside a grouped/keyed
collection (``"group": {"key": testFn}``) instead of calling them. The
referenced tests often live in files that neither the literal scan nor the
closure ever reaches, so every name is located against the full candidate
universe. Each group/key entry yields exactly one SequentialLink; a target
without a row gets an External stub TestFunction so the link still points at
a real row.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from impactscope.core.errors import InternalError
from impactscope.discovery.resolve import Lookup, TargetResolver
from impactscope.facts.models import CallFact
from impactscope.graph.classifier import EXTERNAL_CLASSIFICATION, function_visibility
from impactscope.graph.models import (
    EXTERNAL_MARKER,
    STUB_LINE,
    SequentialLink,
    SourceFile,
    TestFunction,
)

if TYPE_CHECKING:
    from impactscope.discovery.closure import ClosureEngine
    from impactscope.discovery.context import RunContext
    from impactscope.discovery.scanner import Scanner

logger = structlog.get_logger()


@dataclass
class SequentialResult:
    links: int = 0
    resolved: int = 0
    stubs: int = 0
    files_added: int = 0


def stub_test_function(ctx: RunContext, name: str, location_hint: str | None) -> int:
    """Get or create the External TestFunction stub for ``name``."""
    rid = ctx.rid
    return ctx.store.get_or_create(
        TestFunction,
        (True, None, name),
        lambda: TestFunction(
            resource_id=rid,
            file_id=None,
            name=name,
            line=STUB_LINE,
            visibility_type_id=int(function_visibility(name)),
            is_external=True,
            body=EXTERNAL_MARKER,
            location_hint=location_hint,
        ),
    )


class SequentialExpander:
    """Materializes SequentialLink rows for every deferred sequential fact."""

    def __init__(self, ctx: RunContext, scanner: Scanner, closure: ClosureEngine) -> None:
        self._ctx = ctx
        self._store = ctx.store
        self._scanner = scanner
        self._closure = closure
        self._resolver = TargetResolver(ctx)

    def expand(self) -> SequentialResult:
        result = SequentialResult()
        if self._ctx.config.discovery.expand_sequential_scope:
            result.files_added = self._expand_scope()

        for path, call in self._pending():
            self._link(path, call, result)

        logger.info(
            "sequential_expanded",
            links=result.links,
            resolved=result.resolved,
            stubs=result.stubs,
            files_added=result.files_added,
        )
        return result

    def _pending(self) -> list[tuple[str, CallFact]]:
        return sorted(
            self._ctx.pending_sequential,
            key=lambda item: (item[0], item[1].line, item[1].group or "", item[1].key or ""),
        )

    def _expand_scope(self) -> int:
        """Pull files defining referenced tests into scope, then re-close.

        Newly ingested files may declare further orchestrators, so this repeats
        until no new defining file turns up.
        """
        added = 0
        handled = 0
        while handled < len(self._ctx.pending_sequential):
            batch = list(self._ctx.pending_sequential[handled:])
            handled = len(self._ctx.pending_sequential)
            new_files = set()
            for path, call in batch:
                location = self._resolver.locate(call.callee, None, path)
                if location is not None and not self._ctx.in_scope(location.path):
                    new_files.add(location.path)
            if not new_files:
                continue
            for new_path in sorted(new_files):
                if self._scanner.ingest_path(new_path) is not None:
                    added += 1
            self._closure.run(new_files)

        self._ctx.diagnostics.files_added_by_sequential += added
        self._ctx.diagnostics.files_in_scope = len(self._ctx.scope)
        return added

    def _target(self, path: str, call: CallFact) -> Lookup:
        lookup = self._resolver.test(call.callee, path)
        location = lookup.location
        if lookup.row_id is None and location is not None and self._ctx.in_scope(location.path):
            # Defined in a scanned file but never registered as a test there
            file_id = self._store.lookup(SourceFile, (location.path,))
            if file_id is not None:
                rid = self._ctx.rid
                row_id = self._store.get_or_create(
                    TestFunction,
                    (False, file_id, call.callee),
                    lambda: TestFunction(
                        resource_id=rid,
                        file_id=file_id,
                        name=call.callee,
                        line=location.line,
                        visibility_type_id=int(function_visibility(call.callee)),
                    ),
                )
                lookup = Lookup(name=call.callee, location=location, row_id=row_id)
        return lookup

    def _link(self, path: str, call: CallFact, result: SequentialResult) -> None:
        """Create the link for one group/key entry unless it already exists."""
        ctx = self._ctx
        file_id = self._store.lookup(SourceFile, (path,))
        entry_id = self._store.lookup(TestFunction, (False, file_id, call.caller))
        if entry_id is None:
            raise InternalError.unexpected(
                "orchestrator was not ingested", orchestrator=call.caller, path=path
            )

        group = call.group or ""
        key = call.key or ""
        natural = (entry_id, group, key, call.callee)
        if self._store.lookup(SequentialLink, natural) is not None:
            return

        lookup = self._target(path, call)
        if lookup.row_id is not None:
            classification = self._resolver.classify(lookup, path)
            target_id = lookup.row_id
            result.resolved += 1
        else:
            classification = EXTERNAL_CLASSIFICATION
            hint = lookup.location.path if lookup.location is not None else None
            target_id = stub_test_function(ctx, call.callee, hint)
            result.stubs += 1
            logger.debug("sequential_stub", orchestrator=call.caller, target=call.callee, hint=hint)

        rid = ctx.rid
        location = lookup.location
        self._store.get_or_create(
            SequentialLink,
            natural,
            lambda: SequentialLink(
                resource_id=rid,
                entry_function_id=entry_id,
                target_function_id=target_id,
                target_name=call.callee,
                group=group,
                key=key,
                line=call.line,
                ambiguous=location is not None and location.ambiguous,
                **classification.as_fields(),
            ),
        )
        result.links += 1
