"""Structural fact models and providers."""

from impactscope.facts.models import CallFact, Declaration, FileFacts, FunctionFact, LiteralFact
from impactscope.facts.provider import (
    AnalyzerCommandProvider,
    FactProvider,
    JsonFactProvider,
    map_analyzer_output,
    scan_declarations,
)

__all__ = [
    "CallFact",
    "Declaration",
    "FileFacts",
    "FunctionFact",
    "LiteralFact",
    "AnalyzerCommandProvider",
    "FactProvider",
    "JsonFactProvider",
    "map_analyzer_output",
    "scan_declarations",
]
