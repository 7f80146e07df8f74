"""Candidate file universe and whole-universe definition lookup.

Every candidate file is registered here during the initial scan, matched or
not. Closure discovery and sequential expansion locate names against this
index regardless of which files are currently in scope.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from impactscope.facts.models import Declaration

UNKNOWN_SERVICE = "_unknown"


def infer_service(path: str, marker: str) -> str:
    """Owning service of a repo-relative path.

    The path segment following ``marker`` names the service
    (``internal/services/network/x_test.go`` → ``network``); otherwise the
    parent directory name is used.
    """
    parts = PurePosixPath(path).parts
    dirs = parts[:-1]
    if marker in dirs:
        idx = dirs.index(marker)
        if idx + 1 < len(dirs):
            return dirs[idx + 1]
    if dirs:
        return dirs[-1]
    return UNKNOWN_SERVICE


@dataclass
class UniverseFile:
    path: str
    service: str
    matched: bool = False
    declarations: list[Declaration] = field(default_factory=list)

    def declares(self, name: str, struct: str | None = None) -> Declaration | None:
        for decl in self.declarations:
            if decl.name == name and (struct is None or decl.struct == struct):
                return decl
        return None


@dataclass(frozen=True, slots=True)
class Location:
    """Where a name was found; ``candidates`` lists every matching path."""

    path: str
    service: str
    struct: str | None
    line: int
    candidates: tuple[str, ...] = ()

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1


class DefinitionIndex:
    """Name → defining files across the whole candidate universe.

    Tie-break when several files define the name: a candidate in
    ``prefer_service`` first, then the lexicographically first path.
    """

    def __init__(self) -> None:
        self._by_name: dict[str, list[tuple[str, str, Declaration]]] = {}
        self._lock = threading.Lock()

    def add(self, path: str, service: str, declarations: list[Declaration]) -> None:
        with self._lock:
            for decl in declarations:
                self._by_name.setdefault(decl.name, []).append((path, service, decl))

    def locate(
        self,
        name: str,
        struct: str | None = None,
        prefer_service: str | None = None,
    ) -> Location | None:
        entries = self._by_name.get(name, [])
        if struct is not None:
            entries = [e for e in entries if e[2].struct == struct]
        if not entries:
            return None

        ranked = sorted(entries, key=lambda e: (e[1] != prefer_service, e[0], e[2].line))
        path, service, decl = ranked[0]
        candidates = tuple(sorted({e[0] for e in entries}))
        return Location(
            path=path,
            service=service,
            struct=decl.struct,
            line=decl.line,
            candidates=candidates,
        )

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_name.values())


class CandidateUniverse:
    """All candidate files plus the definition index over them."""

    def __init__(self, service_marker: str) -> None:
        self.service_marker = service_marker
        self.files: dict[str, UniverseFile] = {}
        self.index = DefinitionIndex()
        self._lock = threading.Lock()

    def register(self, path: str, *, matched: bool, declarations: list[Declaration]) -> UniverseFile:
        entry = UniverseFile(
            path=path,
            service=infer_service(path, self.service_marker),
            matched=matched,
            declarations=declarations,
        )
        with self._lock:
            self.files[path] = entry
        self.index.add(path, entry.service, declarations)
        return entry

    def service_of(self, path: str) -> str:
        entry = self.files.get(path)
        if entry is not None:
            return entry.service
        return infer_service(path, self.service_marker)

    def matched_paths(self) -> list[str]:
        return sorted(p for p, f in self.files.items() if f.matched)

    def __contains__(self, path: object) -> bool:
        return path in self.files

    def __len__(self) -> int:
        return len(self.files)
