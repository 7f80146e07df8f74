"""Target lookup shared by ingestion, closure, sequential expansion and refinement.

A lookup has two halves: where the name is defined in the candidate universe
(Location, scope-independent) and whether that definition already has a row
in the store (row_id). Classification needs both: the row decides whether the
callee's service is known yet.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from impactscope.discovery.context import AmbiguousResolution
from impactscope.discovery.universe import Location
from impactscope.graph.classifier import Classification, External, RawEdge, Resolution, Resolved
from impactscope.graph.models import SourceFile, Struct, TemplateFunction, TestFunction

if TYPE_CHECKING:
    from impactscope.discovery.context import RunContext

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class Lookup:
    name: str
    location: Location | None
    row_id: int | None

    @property
    def located(self) -> bool:
        return self.location is not None

    def resolution(self, referenced_by: str) -> Resolution:
        if self.row_id is not None and self.location is not None:
            return Resolved(self.row_id, self.location.path, self.location.service)
        hint = self.location.path if self.location is not None else None
        return External(self.name, referenced_by, location_hint=hint)


class TargetResolver:
    """Locates callees and classifies the resulting edges."""

    def __init__(self, ctx: RunContext) -> None:
        self._ctx = ctx
        self._store = ctx.store
        self._universe = ctx.universe

    def locate(self, name: str, struct: str | None, from_path: str) -> Location | None:
        """Same file first, then the whole universe (same service, then path order)."""
        local = self._universe.files.get(from_path)
        if local is not None:
            decl = local.declares(name, struct)
            if decl is not None:
                return Location(
                    path=from_path,
                    service=local.service,
                    struct=decl.struct,
                    line=decl.line,
                    candidates=(from_path,),
                )
        location = self._universe.index.locate(
            name, struct, prefer_service=self._universe.service_of(from_path)
        )
        if location is not None and location.ambiguous:
            self._ctx.diagnostics.record_ambiguous(
                AmbiguousResolution(
                    name=name,
                    referenced_from=from_path,
                    chosen=location.path,
                    candidates=location.candidates,
                )
            )
            logger.info(
                "ambiguous_resolution",
                name=name,
                referenced_from=from_path,
                chosen=location.path,
                candidates=len(location.candidates),
            )
        return location

    def template(self, name: str, struct: str | None, from_path: str) -> Lookup:
        location = self.locate(name, struct, from_path)
        row_id = None
        if location is not None:
            row_id = self.template_row(name, location)
        return Lookup(name=name, location=location, row_id=row_id)

    def test(self, name: str, from_path: str) -> Lookup:
        location = self.locate(name, None, from_path)
        row_id = None
        if location is not None:
            file_id = self._store.lookup(SourceFile, (location.path,))
            if file_id is not None:
                row_id = self._store.lookup(TestFunction, (False, file_id, name))
        return Lookup(name=name, location=location, row_id=row_id)

    def template_row(self, name: str, location: Location) -> int | None:
        file_id = self._store.lookup(SourceFile, (location.path,))
        if file_id is None:
            return None
        struct_id = None
        if location.struct:
            struct_id = self._store.lookup(Struct, (location.struct,))
            if struct_id is None:
                return None
        return self._store.lookup(TemplateFunction, (False, file_id, struct_id, name))

    def classify(
        self,
        lookup: Lookup,
        from_path: str,
        *,
        embedded: bool = False,
        anonymous: bool = False,
    ) -> Classification:
        location = lookup.location
        edge = RawEdge(
            callee_name=lookup.name,
            caller_path=from_path,
            callee_path=location.path if location is not None else None,
            caller_service=self._universe.service_of(from_path),
            # Known only once the target row exists
            callee_service=(
                location.service if location is not None and lookup.row_id is not None else None
            ),
            embedded=embedded,
            anonymous=anonymous,
        )
        result = self._ctx.classifier.classify(edge)
        logger.debug(
            "edge_classified",
            caller=from_path,
            callee=lookup.name,
            resolution=result.resolution.name,
            visibility=result.visibility.name,
            service_impact=result.service_impact.name if result.service_impact else None,
        )
        return result
