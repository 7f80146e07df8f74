"""Relational graph store, tables and edge classification."""

from impactscope.graph.classifier import (
    Classification,
    External,
    RawEdge,
    ReferenceClassifier,
    Resolution,
    Resolved,
    function_visibility,
)
from impactscope.graph.integrity import IntegrityChecker, IntegrityIssue, IntegrityReport
from impactscope.graph.models import (
    REFERENCE_TYPE_VERSION,
    TABLES,
    DirectReference,
    OccurrenceKind,
    ReferenceType,
    ReferenceTypeRecord,
    Resource,
    SequentialLink,
    Service,
    SourceFile,
    Step,
    Struct,
    TemplateCall,
    TemplateFunction,
    TestFunction,
)
from impactscope.graph.store import RelationalStore, RowQuery

__all__ = [
    "Classification",
    "External",
    "RawEdge",
    "ReferenceClassifier",
    "Resolution",
    "Resolved",
    "function_visibility",
    "IntegrityChecker",
    "IntegrityIssue",
    "IntegrityReport",
    "REFERENCE_TYPE_VERSION",
    "TABLES",
    "DirectReference",
    "OccurrenceKind",
    "ReferenceType",
    "ReferenceTypeRecord",
    "Resource",
    "SequentialLink",
    "Service",
    "SourceFile",
    "Step",
    "Struct",
    "TemplateCall",
    "TemplateFunction",
    "TestFunction",
    "RelationalStore",
    "RowQuery",
]
