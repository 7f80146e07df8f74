"""Discovery: parallel scan, closure, sequential expansion and refinement."""

from impactscope.discovery.closure import ClosureEngine, ClosureResult
from impactscope.discovery.context import (
    AmbiguousResolution,
    PartialFactFailure,
    RunContext,
    RunDiagnostics,
)
from impactscope.discovery.ingest import FactIngestor, IngestStats
from impactscope.discovery.pipeline import (
    DiscoveryOutcome,
    DiscoveryResult,
    build_provider,
    check_inputs,
    run_discovery,
)
from impactscope.discovery.refinement import RefinementPass, RefinementReport
from impactscope.discovery.scanner import Scanner, ScanResult
from impactscope.discovery.sequential import SequentialExpander, SequentialResult
from impactscope.discovery.universe import CandidateUniverse, DefinitionIndex, Location

__all__ = [
    "ClosureEngine",
    "ClosureResult",
    "AmbiguousResolution",
    "PartialFactFailure",
    "RunContext",
    "RunDiagnostics",
    "FactIngestor",
    "IngestStats",
    "DiscoveryOutcome",
    "DiscoveryResult",
    "build_provider",
    "check_inputs",
    "run_discovery",
    "RefinementPass",
    "RefinementReport",
    "Scanner",
    "ScanResult",
    "SequentialExpander",
    "SequentialResult",
    "CandidateUniverse",
    "DefinitionIndex",
    "Location",
]
