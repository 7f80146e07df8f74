"""Read-only views over a finished (or imported) graph.

Views:
- direct: a step's template contains the target literal
- indirect: a step's template reaches a literal-bearing template through one
  or more template calls
- sequential: orchestrators and the tests they register by reference
- combined: union of the three, reasons merged per test
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from impactscope.graph.models import (
    DirectReference,
    SequentialLink,
    Service,
    SourceFile,
    Step,
    Struct,
    TemplateCall,
    TemplateFunction,
    TestFunction,
)
from impactscope.graph.store import RelationalStore


class View(str, Enum):
    DIRECT = "direct"
    INDIRECT = "indirect"
    SEQUENTIAL = "sequential"
    COMBINED = "combined"


@dataclass
class ImpactedTest:
    """A test that must be re-run, with why."""

    name: str
    path: str
    service: str
    struct: str | None = None
    is_external: bool = False
    reasons: set[str] = field(default_factory=set)
    via: set[str] = field(default_factory=set)

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "path": self.path,
            "service": self.service,
            "struct": self.struct,
            "is_external": self.is_external,
            "reasons": sorted(self.reasons),
            "via": sorted(self.via),
        }


class QueryEngine:
    """Answers the four views from store contents only."""

    def __init__(self, store: RelationalStore) -> None:
        self._store = store
        self._files = {f.id: f for f in store.query(SourceFile)}
        self._services = {s.id: s.name for s in store.query(Service)}
        self._structs = {s.id: s.name for s in store.query(Struct)}
        self._templates = {t.id: t for t in store.query(TemplateFunction)}
        self._tests = {t.id: t for t in store.query(TestFunction)}

    def view(self, view: View | str) -> list[ImpactedTest]:
        match View(view):
            case View.DIRECT:
                return self.direct()
            case View.INDIRECT:
                return self.indirect()
            case View.SEQUENTIAL:
                return self.sequential()
            case View.COMBINED:
                return self.combined()

    def direct(self) -> list[ImpactedTest]:
        return self._finish(self._collect_direct({}))

    def indirect(self) -> list[ImpactedTest]:
        return self._finish(self._collect_indirect({}))

    def sequential(self) -> list[ImpactedTest]:
        return self._finish(self._collect_sequential({}))

    def combined(self) -> list[ImpactedTest]:
        found: dict[int, ImpactedTest] = {}
        self._collect_direct(found)
        self._collect_indirect(found)
        self._collect_sequential(found)
        return self._finish(found)

    # =========================================================================
    # Graph walks
    # =========================================================================

    def literal_templates(self) -> set[int]:
        return {r.template_function_id for r in self._store.query(DirectReference)}

    def reaching_templates(self) -> set[int]:
        """Templates reaching a literal template through one or more calls."""
        callers: dict[int, set[int]] = {}
        for call in self._store.query(TemplateCall):
            if call.target_function_id is not None:
                callers.setdefault(call.target_function_id, set()).add(call.source_function_id)

        reached: set[int] = set()
        queue = deque(self.literal_templates())
        while queue:
            node = queue.popleft()
            for caller in callers.get(node, ()):
                if caller not in reached:
                    reached.add(caller)
                    queue.append(caller)
        return reached

    def _collect_direct(self, found: dict[int, ImpactedTest]) -> dict[int, ImpactedTest]:
        literal = self.literal_templates()
        for step in self._store.query(Step):
            if step.template_function_id in literal:
                entry = self._entry(found, step.test_function_id)
                entry.reasons.add(View.DIRECT.value)
                entry.via.add(self._template_name(step.template_function_id))  # type: ignore[arg-type]
        return found

    def _collect_indirect(self, found: dict[int, ImpactedTest]) -> dict[int, ImpactedTest]:
        literal = self.literal_templates()
        reaching = self.reaching_templates() - literal
        for step in self._store.query(Step):
            if step.template_function_id in reaching:
                entry = self._entry(found, step.test_function_id)
                entry.reasons.add(View.INDIRECT.value)
                entry.via.add(self._template_name(step.template_function_id))  # type: ignore[arg-type]
        return found

    def _collect_sequential(self, found: dict[int, ImpactedTest]) -> dict[int, ImpactedTest]:
        for link in self._store.query(SequentialLink):
            orchestrator = self._entry(found, link.entry_function_id)
            orchestrator.reasons.add(View.SEQUENTIAL.value)
            orchestrator.via.add(f"{link.group}/{link.key}:{link.target_name}")
            if link.target_function_id is not None:
                target = self._entry(found, link.target_function_id)
                target.reasons.add(View.SEQUENTIAL.value)
                target.via.add(self._tests[link.entry_function_id].name)
        return found

    # =========================================================================
    # Helpers
    # =========================================================================

    def _template_name(self, template_id: int) -> str:
        template = self._templates[template_id]
        struct = self._structs.get(template.struct_id) if template.struct_id else None
        return f"{struct}.{template.name}" if struct else template.name

    def _entry(self, found: dict[int, ImpactedTest], test_id: int) -> ImpactedTest:
        if test_id in found:
            return found[test_id]
        test = self._tests[test_id]
        source = self._files.get(test.file_id) if test.file_id is not None else None
        if source is not None:
            path = source.path
            service = self._services.get(source.service_id, "")
        else:
            path = test.location_hint or ""
            service = ""
        found[test_id] = ImpactedTest(
            name=test.name,
            path=path,
            service=service,
            struct=self._structs.get(test.struct_id) if test.struct_id else None,
            is_external=test.is_external,
        )
        return found[test_id]

    @staticmethod
    def _finish(found: dict[int, ImpactedTest]) -> list[ImpactedTest]:
        return sorted(found.values(), key=lambda t: (t.path, t.name))
