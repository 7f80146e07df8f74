"""Discovery pipeline: scan → closure → sequential expansion → refinement → verify.

Usage::

    result = run_discovery("azurerm_resource_group", repo_root, config)
    if result.found:
        export_store(result.store, out_dir, result.diagnostics)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import structlog

from impactscope.config.models import ImpactScopeConfig
from impactscope.core.errors import MissingInputError
from impactscope.core.logging import set_run_id
from impactscope.discovery.closure import ClosureEngine, ClosureResult
from impactscope.discovery.context import RunContext, RunDiagnostics
from impactscope.discovery.refinement import RefinementPass, RefinementReport
from impactscope.discovery.scanner import Scanner
from impactscope.discovery.sequential import SequentialExpander, SequentialResult
from impactscope.discovery.universe import CandidateUniverse
from impactscope.facts.provider import AnalyzerCommandProvider, FactProvider, JsonFactProvider
from impactscope.graph.integrity import IntegrityChecker
from impactscope.graph.models import Resource
from impactscope.graph.store import RelationalStore

logger = structlog.get_logger()


class DiscoveryOutcome(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"  # zero files contain the literal


@dataclass
class DiscoveryResult:
    target: str
    outcome: DiscoveryOutcome
    store: RelationalStore
    diagnostics: RunDiagnostics
    run_id: str
    closure: ClosureResult | None = None
    sequential: SequentialResult | None = None
    refinement: RefinementReport | None = None

    @property
    def found(self) -> bool:
        return self.outcome is DiscoveryOutcome.FOUND


def build_provider(config: ImpactScopeConfig, repo_root: Path) -> FactProvider:
    """Pre-extracted facts when analyzer.facts_dir is set, else the analyzer command."""
    analyzer = config.analyzer
    if analyzer.facts_dir:
        facts_dir = Path(analyzer.facts_dir).expanduser()
        if not facts_dir.is_absolute():
            facts_dir = repo_root / facts_dir
        return JsonFactProvider(facts_dir)
    return AnalyzerCommandProvider(analyzer.command, repo_root, timeout=analyzer.timeout_sec)


def check_inputs(repo_root: Path, config: ImpactScopeConfig) -> None:
    """Fail before any store mutation if the source tree is absent."""
    if not repo_root.is_dir():
        raise MissingInputError.root_not_found(str(repo_root))
    if not (repo_root / config.scan.services_dir).is_dir():
        raise MissingInputError.subtree_not_found(str(repo_root), config.scan.services_dir)


def run_discovery(
    target: str,
    repo_root: Path,
    config: ImpactScopeConfig,
    *,
    provider: FactProvider | None = None,
) -> DiscoveryResult:
    """Run one discovery for ``target`` over ``repo_root``.

    Raises:
        MissingInputError: Repository root or services directory missing.
        IntegrityViolation: The finished graph breaks an invariant.
    """
    repo_root = repo_root.resolve()
    check_inputs(repo_root, config)

    run_id = set_run_id()
    log = logger.bind(target=target)
    store = RelationalStore()
    ctx = RunContext(
        config=config,
        repo_root=repo_root,
        target=target,
        store=store,
        provider=provider or build_provider(config, repo_root),
        universe=CandidateUniverse(config.scan.service_marker),
        logger=log,
    )

    log.info("discovery_started", repo=str(repo_root), workers=config.scan.max_workers)
    scanner = Scanner(ctx)
    scan = scanner.scan_universe()
    if not scan.matched:
        log.warning("target_not_found", files_scanned=scan.scanned)
        return DiscoveryResult(
            target=target,
            outcome=DiscoveryOutcome.NOT_FOUND,
            store=store,
            diagnostics=ctx.diagnostics,
            run_id=run_id,
        )

    ctx.resource_id = store.get_or_create(
        Resource, (target,), lambda: Resource(identifier=target)
    )
    scanner.ingest_matched(scan.matched)

    closure = ClosureEngine(ctx, scanner)
    closure_result = closure.run(scan.matched)
    sequential = SequentialExpander(ctx, scanner, closure).expand()
    refinement = RefinementPass(ctx).run()

    ctx.diagnostics.files_in_scope = len(ctx.scope)
    IntegrityChecker(store).verify().raise_if_failed()

    log.info(
        "discovery_completed",
        files_in_scope=len(ctx.scope),
        failures=len(ctx.diagnostics.failures),
        rows=sum(store.row_counts().values()),
    )
    return DiscoveryResult(
        target=target,
        outcome=DiscoveryOutcome.FOUND,
        store=store,
        diagnostics=ctx.diagnostics,
        run_id=run_id,
        closure=closure_result,
        sequential=sequential,
        refinement=refinement,
    )
