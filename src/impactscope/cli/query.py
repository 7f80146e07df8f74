"""impactscope query command - answer impact views from an export."""

import json
from pathlib import Path

import click
from rich.console import Console

from impactscope.core.errors import ImpactScopeError
from impactscope.core.progress import Reporter, pluralize
from impactscope.query.engine import QueryEngine, View
from impactscope.query.export import import_store


@click.command()
@click.argument("export_dir", type=click.Path(path_type=Path))
@click.option(
    "--view",
    type=click.Choice([v.value for v in View]),
    default=View.COMBINED.value,
    show_default=True,
    help="Which impacted tests to list",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def query_command(export_dir: Path, view: str, as_json: bool) -> None:
    """List impacted tests from a discover export.

    EXPORT_DIR is one target's export directory (it holds manifest.json).
    """
    try:
        graph = import_store(export_dir)
    except ImpactScopeError as e:
        raise click.ClickException(str(e)) from e

    tests = QueryEngine(graph.store).view(view)

    if as_json:
        click.echo(
            json.dumps(
                {
                    "resource": graph.manifest.resource,
                    "view": view,
                    "tests": [t.to_dict() for t in tests],
                },
                indent=2,
            )
        )
        return

    reporter = Reporter(Console())
    if not tests:
        reporter.status(f"No {view} impacts for {graph.manifest.resource}", style="warning")
        return
    reporter.table(
        f"{graph.manifest.resource}: {pluralize(len(tests), 'impacted test')} ({view})",
        ["Test", "Service", "Path", "Reasons", "Via"],
        [
            [
                f"{t.struct}.{t.name}" if t.struct else t.name,
                t.service or "-",
                t.path or "-",
                ", ".join(sorted(t.reasons)),
                ", ".join(sorted(t.via)),
            ]
            for t in tests
        ],
    )
