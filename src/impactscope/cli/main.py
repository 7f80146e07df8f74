"""impactscope CLI - impactscope command."""

import click

from impactscope.cli.discover import discover_command
from impactscope.cli.query import query_command
from impactscope.core.logging import configure_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="impactscope")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """impactscope - find the acceptance tests impacted by a resource change."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    configure_logging(level="DEBUG" if verbose else "WARNING")


cli.add_command(discover_command, name="discover")
cli.add_command(query_command, name="query")


if __name__ == "__main__":
    cli()
