"""Parallel candidate scan.

Phase 1 reads every candidate file, tests it for the target literal and
registers its declarations in the universe index. Phase 2 extracts and ingests
facts for the matching files. Both phases are I/O bound and run on a small
thread pool; a single file's failure is recorded and never aborts the run.
"""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from impactscope.core.errors import FactError
from impactscope.discovery.ingest import FactIngestor, IngestStats
from impactscope.facts.models import Declaration, FileFacts

if TYPE_CHECKING:
    from impactscope.discovery.context import RunContext

logger = structlog.get_logger()


def literal_pattern(target: str) -> re.Pattern[str]:
    """Whole-identifier match, so ``azurerm_x`` does not match ``azurerm_x_y``."""
    return re.compile(rf"(?<![\w]){re.escape(target)}(?![\w])")


@dataclass
class ScanResult:
    scanned: int = 0
    matched: list[str] = field(default_factory=list)
    failed: int = 0


class Scanner:
    """Builds the candidate universe and ingests the literal matches."""

    def __init__(self, ctx: RunContext) -> None:
        self._ctx = ctx
        self._pattern = literal_pattern(ctx.target)
        self._ingestor = FactIngestor(ctx)
        self._max_workers = ctx.config.scan.max_workers
        self._max_bytes = ctx.config.scan.max_file_size_kb * 1024

    def candidate_paths(self) -> list[str]:
        scan = self._ctx.config.scan
        root = self._ctx.repo_root
        services_root = root / scan.services_dir
        return sorted(
            p.relative_to(root).as_posix()
            for p in services_root.rglob(scan.file_glob)
            if p.is_file()
        )

    # =========================================================================
    # Phase 1: universe
    # =========================================================================

    def scan_universe(self) -> ScanResult:
        paths = self.candidate_paths()
        result = ScanResult(scanned=len(paths))

        with ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="impactscope-scan",
        ) as pool:
            outcomes = list(pool.map(self._probe, paths))

        for path, matched, ok in outcomes:
            if matched:
                result.matched.append(path)
            if not ok:
                result.failed += 1

        diagnostics = self._ctx.diagnostics
        diagnostics.files_scanned = result.scanned
        diagnostics.files_matched = len(result.matched)
        logger.info(
            "universe_scanned",
            files=result.scanned,
            matched=len(result.matched),
            failed=result.failed,
            definitions=len(self._ctx.universe.index),
        )
        return result

    def _probe(self, path: str) -> tuple[str, bool, bool]:
        """Read one file, test for the literal, collect declarations."""
        ctx = self._ctx
        matched = False
        declarations: list[Declaration] = []
        ok = True
        try:
            size = (ctx.repo_root / path).stat().st_size
            if size > self._max_bytes:
                raise FactError.read_failed(
                    path, f"{size // 1024} KB exceeds scan.max_file_size_kb"
                )
            source = ctx.read_source(path)
            matched = self._pattern.search(source) is not None
            declarations = ctx.provider.declarations(path, source)
        except FactError as e:
            ctx.diagnostics.record_failure(e)
            logger.warning("probe_failed", path=path, error=e.error_name, reason=e.message)
            ok = False
        except OSError as e:
            ctx.diagnostics.record_failure(FactError.read_failed(path, str(e)))
            logger.warning("probe_failed", path=path, error="FACT_READ_FAILED", reason=str(e))
            ok = False
        ctx.universe.register(path, matched=matched, declarations=declarations)
        return path, matched, ok

    # =========================================================================
    # Phase 2: ingestion
    # =========================================================================

    def ingest_matched(self, paths: list[str]) -> list[IngestStats]:
        with ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="impactscope-ingest",
        ) as pool:
            results = list(pool.map(self.ingest_path, paths))
        stats = [r for r in results if r is not None]
        logger.info("matched_files_ingested", files=len(stats))
        return stats

    def ingest_path(self, path: str) -> IngestStats | None:
        """Extract and ingest one file. None if it was already in scope."""
        ctx = self._ctx
        if not ctx.claim(path):
            return None
        return self._ingestor.ingest(self._extract(path))

    def _extract(self, path: str) -> FileFacts:
        ctx = self._ctx
        try:
            source = ctx.read_source(path)
            return ctx.provider.extract(path, source, ctx.target)
        except FactError as e:
            # Opaque leaf: the file is in scope but contributes nothing
            ctx.diagnostics.record_failure(e)
            logger.warning("facts_unavailable", path=path, error=e.error_name, reason=e.message)
            return FileFacts.empty(path)
