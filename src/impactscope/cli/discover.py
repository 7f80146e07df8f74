"""impactscope discover command - build and export the impact graph."""

from pathlib import Path
from typing import Any

import click

from impactscope.config.loader import load_config
from impactscope.core.errors import ImpactScopeError
from impactscope.core.logging import configure_logging
from impactscope.core.progress import Reporter, pluralize
from impactscope.discovery.pipeline import run_discovery
from impactscope.query.engine import QueryEngine
from impactscope.query.export import export_store

EXIT_NOT_FOUND = 2


@click.command()
@click.argument("targets", nargs=-1, required=True)
@click.option(
    "--repo",
    "repo",
    default=".",
    type=click.Path(path_type=Path),
    help="Repository root (default: current directory)",
)
@click.option(
    "--out",
    "out",
    type=click.Path(path_type=Path),
    default=None,
    help="Export directory; one sub-directory per target (default: export.output_dir)",
)
@click.option(
    "--facts-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Read pre-extracted facts instead of running the analyzer",
)
@click.option("--workers", type=int, default=None, help="Parallel scan workers")
@click.option(
    "--expand-sequential",
    is_flag=True,
    help="Pull files defining sequentially referenced tests into scope",
)
@click.pass_context
def discover_command(
    ctx: click.Context,
    targets: tuple[str, ...],
    repo: Path,
    out: Path | None,
    facts_dir: Path | None,
    workers: int | None,
    expand_sequential: bool,
) -> None:
    """Discover tests impacted by each TARGET and export the graph.

    TARGET is a resource identifier such as azurerm_resource_group. Exits with
    status 2 if any target is referenced by no scanned file.
    """
    repo_root = repo.resolve()
    overrides: dict[str, Any] = {}
    if facts_dir is not None:
        overrides["analyzer"] = {"facts_dir": str(facts_dir.resolve())}
    if workers is not None:
        overrides["scan"] = {"max_workers": workers}
    if expand_sequential:
        overrides["discovery"] = {"expand_sequential_scope": True}

    try:
        config = load_config(repo_root if repo_root.is_dir() else None, **overrides)
    except ImpactScopeError as e:
        raise click.ClickException(str(e)) from e

    if (ctx.obj or {}).get("verbose"):
        config.logging.level = "DEBUG"
    configure_logging(config=config.logging)

    out_root = out if out is not None else Path(config.export.output_dir)
    reporter = Reporter()
    missing: list[str] = []

    for target in targets:
        try:
            with reporter.task(f"Discovering tests for {target}"):
                result = run_discovery(target, repo_root, config)
        except ImpactScopeError as e:
            raise click.ClickException(str(e)) from e

        if not result.found:
            reporter.status(
                f"No file under {config.scan.services_dir} references {target}; nothing exported",
                style="warning",
                indent=2,
            )
            missing.append(target)
            continue

        out_dir = out_root / target
        export_store(result.store, out_dir, result.diagnostics.to_dict())

        diagnostics = result.diagnostics
        tests = QueryEngine(result.store).combined()
        reporter.status(
            f"{pluralize(len(tests), 'impacted test')} across "
            f"{pluralize(diagnostics.files_in_scope, 'file')} "
            f"({diagnostics.files_matched} matched, "
            f"{diagnostics.files_added_by_closure} via closure)",
            indent=2,
        )
        if diagnostics.failures:
            reporter.status(
                f"{pluralize(len(diagnostics.failures), 'file')} contributed no facts",
                style="warning",
                indent=2,
            )
        reporter.status(f"Exported to {out_dir}", style="success", indent=2)

    if missing:
        ctx.exit(EXIT_NOT_FOUND)
