import asyncio
import json
import typing as t
from collections import defaultdict
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as package_version
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from batchfetch.cli.callbacks import endpoints_callback, positive_float_callback
from batchfetch.config import CoalescerSettings
from batchfetch.core import Coalescer
from batchfetch.grouping import endpoint_group
from batchfetch.logging import logging_context, setup_logging

app = typer.Typer(no_args_is_help=True)

# module level so tests can swap in a client bound to a mock transport
client_factory: t.Any = None


async def _fetch_all(*, coalescer: Coalescer, endpoints: list[str]) -> list[tuple[bool, t.Any]]:
    results = await asyncio.gather(
        *(coalescer.submit(endpoint) for endpoint in endpoints),
        return_exceptions=True,
    )
    await coalescer.close()
    return [
        (False, str(result)) if isinstance(result, Exception) else (True, result)
        for result in results
    ]


@app.command(name="fetch")
def fetch_endpoints(
    endpoints: Annotated[
        list[str],
        typer.Argument(help="Endpoints to fetch, e.g. /api/users/1", callback=endpoints_callback),
    ],
    base_url: Annotated[
        str | None, typer.Option(help="Base URL of the server hosting the batch endpoint")
    ] = None,
    debounce_seconds: Annotated[
        float | None,
        typer.Option(help="Debounce window in seconds", callback=positive_float_callback),
    ] = None,
    group_depth: Annotated[
        int | None, typer.Option(help="Number of path segments forming the group key", min=1)
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print results as JSON")] = False,
    verbose: Annotated[bool, typer.Option("-v", "--verbose", help="Show debug logs")] = False,
):
    """Fetch endpoints concurrently through one coalescer"""
    setup_logging(level="DEBUG" if verbose else "WARNING")
    settings = CoalescerSettings.from_env(
        base_url=base_url,
        debounce_seconds=debounce_seconds,
        group_depth=group_depth,
    )
    if not settings.base_url and client_factory is None:
        typer.echo("A base URL is required (--base-url or BATCHFETCH_BASE_URL)")
        raise typer.Exit(2)
    coalescer = Coalescer.from_settings(settings, client_factory=client_factory)
    with logging_context(command="fetch"):
        results = asyncio.run(_fetch_all(coalescer=coalescer, endpoints=endpoints))

    if as_json:
        # one entry per argument, in command-line order, so repeats are kept
        payload = [
            {"endpoint": endpoint, "ok": ok, "data" if ok else "error": value}
            for endpoint, (ok, value) in zip(endpoints, results)
        ]
        typer.echo(json.dumps(payload, indent=2, default=str))
    else:
        table = Table("Endpoint", "Group", "Status", "Data", title="Batch results")
        for endpoint, (ok, value) in zip(endpoints, results):
            table.add_row(
                endpoint,
                coalescer.batch_key(endpoint),
                "[green]ok[/green]" if ok else f"[red]{value}[/red]",
                json.dumps(value, default=str) if ok else "",
            )
        Console().print(table)

    if not all(ok for ok, _ in results):
        raise typer.Exit(1)


@app.command(name="groups")
def show_groups(
    endpoints: Annotated[
        list[str],
        typer.Argument(help="Endpoints to group", callback=endpoints_callback),
    ],
    group_depth: Annotated[
        int, typer.Option(help="Number of path segments forming the group key", min=1)
    ] = 2,
):
    """Show how endpoints would be grouped into batch calls"""
    grouped: dict[str, list[str]] = defaultdict(list)
    for endpoint in endpoints:
        grouped[endpoint_group(endpoint, depth=group_depth)].append(endpoint)
    table = Table("Group", "Endpoints", title="Endpoint groups")
    for group, members in grouped.items():
        table.add_row(group, "\n".join(members))
    console = Console()
    console.print(table)
    console.print(f"{len(endpoints)} request(s) -> {len(grouped)} batch call(s)")


@app.command()
def version():
    """Get the version of the package"""
    try:
        typer.echo(package_version("batchfetch"))
    except PackageNotFoundError:
        typer.echo("unknown")
    raise typer.Exit()
