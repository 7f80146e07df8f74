"""Transitive closure over the template-call graph.

Worklist algorithm: starting from the seed files, follow every unresolved
outgoing TemplateCall of every template defined in the frontier, locate the
callee anywhere in the candidate universe, and ingest defining files that are
new. A seen-set keyed by path admits each file at most once, so the loop runs
at most (file count) iterations. Callees that cannot be located stay EXTERNAL
and add nothing.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from impactscope.discovery.resolve import TargetResolver
from impactscope.discovery.universe import Location
from impactscope.graph.models import ReferenceType, SourceFile, TemplateCall, TemplateFunction

if TYPE_CHECKING:
    from impactscope.discovery.context import RunContext
    from impactscope.discovery.scanner import Scanner

logger = structlog.get_logger()


@dataclass
class ClosureResult:
    iterations: int = 0
    added: list[str] = field(default_factory=list)

    @property
    def files_added(self) -> int:
        return len(self.added)


class ClosureEngine:
    """Expands the analysis scope along template calls until a fixed point."""

    def __init__(self, ctx: RunContext, scanner: Scanner) -> None:
        self._ctx = ctx
        self._store = ctx.store
        self._scanner = scanner
        self._resolver = TargetResolver(ctx)

    def run(self, seed: Iterable[str]) -> ClosureResult:
        result = ClosureResult()
        frontier = sorted(set(seed))
        seen = set(self._ctx.scope) | set(frontier)

        for path in frontier:
            # No-op for files the scan already ingested
            self._scanner.ingest_path(path)

        while frontier:
            result.iterations += 1
            discovered: set[str] = set()
            for path in frontier:
                for location in self._outgoing(path):
                    if location.path not in seen:
                        seen.add(location.path)
                        discovered.add(location.path)

            logger.info(
                "closure_iteration",
                iteration=result.iterations,
                frontier=len(frontier),
                discovered=len(discovered),
            )
            if not discovered:
                break

            frontier = sorted(discovered)
            for path in frontier:
                if self._scanner.ingest_path(path) is not None:
                    result.added.append(path)

        diagnostics = self._ctx.diagnostics
        diagnostics.closure_iterations += result.iterations
        diagnostics.files_added_by_closure += result.files_added
        diagnostics.files_in_scope = len(self._ctx.scope)
        logger.info(
            "closure_completed",
            iterations=result.iterations,
            files_added=result.files_added,
            scope=len(self._ctx.scope),
        )
        return result

    def _outgoing(self, path: str) -> Iterator[Location]:
        """Definitions of this file's not-yet-linked template callees."""
        file_id = self._store.lookup(SourceFile, (path,))
        if file_id is None:
            return
        template_ids = self._store.query(
            TemplateFunction, TemplateFunction.file_id == file_id
        ).ids()
        if not template_ids:
            return
        pending = self._store.query(
            TemplateCall,
            TemplateCall.source_function_id.in_(template_ids),  # type: ignore[attr-defined]
            TemplateCall.target_function_id.is_(None),  # type: ignore[union-attr]
            TemplateCall.resolution_type_id == int(ReferenceType.CROSS_FILE),
        )
        for call in pending:
            location = self._resolver.locate(call.target_name, call.target_struct, path)
            if location is not None:
                yield location
