"""Explicit per-run state shared by every discovery component."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import structlog

from impactscope.config.models import ImpactScopeConfig
from impactscope.core.errors import FactError, InternalError
from impactscope.discovery.universe import CandidateUniverse
from impactscope.facts.models import CallFact
from impactscope.facts.provider import FactProvider
from impactscope.graph.classifier import ReferenceClassifier
from impactscope.graph.store import RelationalStore


@dataclass(frozen=True, slots=True)
class PartialFactFailure:
    """One file contributed no facts; the run continued."""

    path: str
    code: str
    reason: str


@dataclass(frozen=True, slots=True)
class AmbiguousResolution:
    """A name matched several definitions; ``chosen`` won the tie-break."""

    name: str
    referenced_from: str
    chosen: str
    candidates: tuple[str, ...]


@dataclass
class RunDiagnostics:
    """Run-level counters and non-fatal conditions. Exported in the manifest."""

    files_scanned: int = 0
    files_matched: int = 0
    files_in_scope: int = 0
    closure_iterations: int = 0
    files_added_by_closure: int = 0
    files_added_by_sequential: int = 0
    failures: list[PartialFactFailure] = field(default_factory=list)
    ambiguous: list[AmbiguousResolution] = field(default_factory=list)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def record_failure(self, error: FactError) -> None:
        failure = PartialFactFailure(path=error.path, code=error.error_name, reason=error.message)
        with self._lock:
            if failure not in self.failures:
                self.failures.append(failure)

    def record_ambiguous(self, entry: AmbiguousResolution) -> None:
        with self._lock:
            if entry not in self.ambiguous:
                self.ambiguous.append(entry)

    def to_dict(self) -> dict[str, Any]:
        return {
            "files_scanned": self.files_scanned,
            "files_matched": self.files_matched,
            "files_in_scope": self.files_in_scope,
            "closure_iterations": self.closure_iterations,
            "files_added_by_closure": self.files_added_by_closure,
            "files_added_by_sequential": self.files_added_by_sequential,
            "failures": [asdict(f) for f in sorted(self.failures, key=lambda f: f.path)],
            "ambiguous": [
                {**asdict(a), "candidates": list(a.candidates)}
                for a in sorted(self.ambiguous, key=lambda a: (a.referenced_from, a.name))
            ],
        }


@dataclass
class RunContext:
    """Everything one discovery run needs; passed explicitly to each component."""

    config: ImpactScopeConfig
    repo_root: Path
    target: str
    store: RelationalStore
    provider: FactProvider
    universe: CandidateUniverse
    diagnostics: RunDiagnostics = field(default_factory=RunDiagnostics)
    classifier: ReferenceClassifier = field(default_factory=ReferenceClassifier)
    resource_id: int | None = None
    scope: set[str] = field(default_factory=set)
    pending_sequential: list[tuple[str, CallFact]] = field(default_factory=list)
    logger: Any = field(default_factory=structlog.get_logger)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def claim(self, path: str) -> bool:
        """Add ``path`` to the scope. False if it was already there."""
        with self._lock:
            if path in self.scope:
                return False
            self.scope.add(path)
            return True

    def in_scope(self, path: str) -> bool:
        with self._lock:
            return path in self.scope

    def defer_sequential(self, path: str, calls: list[CallFact]) -> None:
        with self._lock:
            self.pending_sequential.extend((path, c) for c in calls)

    def read_source(self, path: str) -> str:
        try:
            return (self.repo_root / path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise FactError.read_failed(path, str(e)) from e

    @property
    def rid(self) -> int:
        if self.resource_id is None:
            raise InternalError.unexpected("resource row not created yet")
        return self.resource_id
