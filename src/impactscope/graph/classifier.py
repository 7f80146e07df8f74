"""Per-edge classification across resolution, visibility and service impact.

The three dimensions are independent, except that an EXTERNAL resolution forces
EXTERNAL visibility: a definition that was never seen gets no guessed casing.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from impactscope.graph.models import ReferenceType

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class RawEdge:
    """One caller→callee edge as seen during population.

    ``callee_path`` is None when the callee's defining file is unknown.
    ``callee_service`` is None until the target row has been identified.
    """

    callee_name: str
    caller_path: str
    callee_path: str | None
    caller_service: str
    callee_service: str | None = None
    embedded: bool = False
    anonymous: bool = False


@dataclass(frozen=True, slots=True)
class Classification:
    resolution: ReferenceType
    visibility: ReferenceType
    service_impact: ReferenceType | None

    @property
    def is_external(self) -> bool:
        return self.resolution is ReferenceType.EXTERNAL

    def as_fields(self) -> dict[str, int | None]:
        """Column values for Step/TemplateCall/SequentialLink rows."""
        return {
            "resolution_type_id": int(self.resolution),
            "visibility_type_id": int(self.visibility),
            "service_impact_type_id": (
                int(self.service_impact) if self.service_impact is not None else None
            ),
        }


@dataclass(frozen=True, slots=True)
class Resolved:
    """Target located; ``row_id`` is the target row."""

    row_id: int
    path: str
    service: str


@dataclass(frozen=True, slots=True)
class External:
    """Target not located in the scanned scope."""

    name: str
    referenced_by: str
    location_hint: str | None = None


Resolution = Resolved | External

EXTERNAL_CLASSIFICATION = Classification(
    resolution=ReferenceType.EXTERNAL,
    visibility=ReferenceType.EXTERNAL,
    service_impact=None,
)


def function_visibility(name: str, *, anonymous: bool = False) -> ReferenceType:
    """Visibility of a declared function by identifier casing."""
    if anonymous or not name:
        return ReferenceType.PRIVATE
    return ReferenceType.PUBLIC if name[0].isupper() else ReferenceType.PRIVATE


def service_impact(caller_service: str | None, callee_service: str | None) -> ReferenceType | None:
    if caller_service is None or callee_service is None:
        return None
    if caller_service == callee_service:
        return ReferenceType.SAME_SERVICE
    return ReferenceType.CROSS_SERVICE


class ReferenceClassifier:
    """Assigns the three tags to a raw edge. Stateless."""

    def classify(self, edge: RawEdge) -> Classification:
        resolution = self._resolution(edge)
        if resolution is ReferenceType.EXTERNAL:
            return EXTERNAL_CLASSIFICATION

        visibility = function_visibility(edge.callee_name, anonymous=edge.anonymous)
        impact = service_impact(edge.caller_service, edge.callee_service)
        return Classification(resolution=resolution, visibility=visibility, service_impact=impact)

    @staticmethod
    def _resolution(edge: RawEdge) -> ReferenceType:
        # Most specific wins
        if edge.embedded:
            return ReferenceType.SAME_FUNCTION
        if edge.callee_path is None:
            return ReferenceType.EXTERNAL
        if edge.callee_path == edge.caller_path:
            return ReferenceType.SAME_FILE
        return ReferenceType.CROSS_FILE
