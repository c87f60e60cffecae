"""
graphbridge CLI - query GraphQL APIs as foreign tables

Usage:
    graphbridge --setup linear.yaml tables
    graphbridge --setup linear.yaml describe linear_issues
    graphbridge --setup linear.yaml import-schema linear_server --into linear
    graphbridge --setup linear.yaml scan linear_issues -c id -c title -w "title ilike '%bug%'" -l 10
"""

import logging
import re
import sys
from typing import Any, Optional

import click
from rich.logging import RichHandler

from graphbridge import __version__
from graphbridge.cli.formatters import get_formatter
from graphbridge.core.bridge import Bridge
from graphbridge.core.models import Predicate
from graphbridge.errors import BridgeError

_WHERE = re.compile(
    r"^\s*(?P<column>\w+)\s+"
    r"(?P<op>is\s+not\s+null|is\s+null|not\s+ilike|not\s+like|ilike|like|<>|!=|<=|>=|=|<|>)"
    r"\s*(?P<value>.*?)\s*$",
    re.IGNORECASE,
)


def parse_where(text: str) -> Predicate:
    """
    Parse a --where clause: "column operator value"

    Quoted values are strings; NULL is None; anything else is passed
    through as text and compared in the column's type.

    Raises:
        click.BadParameter: If the clause cannot be parsed
    """
    match = _WHERE.match(text)
    if not match:
        raise click.BadParameter(f"expected 'column operator value', got {text!r}", param_hint="--where")

    op = " ".join(match.group("op").upper().split())
    raw = match.group("value")

    if op in ("IS NULL", "IS NOT NULL"):
        if raw:
            raise click.BadParameter(f"unexpected value after {op}: {raw!r}", param_hint="--where")
        return Predicate(match.group("column"), op)

    if not raw:
        raise click.BadParameter(f"missing value in {text!r}", param_hint="--where")
    return Predicate(match.group("column"), op, _literal(raw))


def _literal(raw: str) -> Any:
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ("'", '"'):
        quote = raw[0]
        return raw[1:-1].replace(quote * 2, quote)
    if raw.upper() == "NULL":
        return None
    return raw


def setup_logging(verbosity: int) -> None:
    """Route graphbridge logs through rich: -v for INFO, -vv for DEBUG"""
    if verbosity <= 0:
        return
    level = logging.INFO if verbosity == 1 else logging.DEBUG

    handler = RichHandler(console=None, show_path=verbosity > 1, rich_tracebacks=True, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    logger = logging.getLogger("graphbridge")
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False


@click.group()
@click.version_option(version=__version__, prog_name="graphbridge")
@click.option(
    "--setup",
    "-s",
    "setup_file",
    type=click.Path(exists=True, dir_okay=False),
    envvar="GRAPHBRIDGE_SETUP",
    default=None,
    help="YAML setup file with servers, tables and imports (env: GRAPHBRIDGE_SETUP)",
)
@click.option("--verbose", "-v", count=True, help="Log remote queries (-v) or everything (-vv)")
@click.pass_context
def cli(ctx: click.Context, setup_file: Optional[str], verbose: int):
    """
    graphbridge - query GraphQL APIs as read-only foreign tables
    """
    setup_logging(verbose)

    ctx.ensure_object(dict)
    bridge = ctx.obj.get("bridge")
    if bridge is None:
        bridge = Bridge()
        ctx.call_on_close(bridge.close)
        ctx.obj["bridge"] = bridge

    if setup_file:
        try:
            bridge.load_setup(setup_file)
        except BridgeError as e:
            _fail(e)


@cli.command()
@click.pass_obj
def tables(obj: dict):
    """List declared and imported foreign tables"""
    bridge: Bridge = obj["bridge"]
    rows = [
        {
            "table": table.qualified_name,
            "server": table.server.name,
            "object": table.object_name,
            "columns": len(table.columns),
            "options": ", ".join(f"{k}={v}" for k, v in table.options.items()) or None,
        }
        for table in bridge.tables.values()
    ]
    _emit(get_formatter("table").format(rows, ["table", "server", "object", "columns", "options"],
                                 no_color=not sys.stdout.isatty()))


@cli.command()
@click.argument("name")
@click.option("--object", "is_object", is_flag=True, help="Describe a catalog object instead of a table")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json", "csv"], case_sensitive=False),
    default="table",
    help="Output format (default: table)",
)
@click.pass_obj
def describe(obj: dict, name: str, is_object: bool, output_format: str):
    """
    Show the columns of a foreign table (or of a catalog object)

    Examples:

        \b
        $ graphbridge -s linear.yaml describe linear_issues
        $ graphbridge describe --object project_issues
    """
    bridge: Bridge = obj["bridge"]
    try:
        columns = bridge.catalog.describe(name) if is_object else bridge.describe(name)
    except BridgeError as e:
        _fail(e)

    rows = [
        {
            "column": col.name,
            "type": col.type.sql_name,
            "nullable": col.nullable,
            "remote field": ".".join(col.path) + (f" {{ {' '.join(col.subfields)} }}" if col.subfields else ""),
            "pushdown": col.pushdown,
        }
        for col in columns
    ]
    _emit(get_formatter(output_format.lower()).format(rows, no_color=not sys.stdout.isatty()))


@cli.command()
@click.pass_obj
def objects(obj: dict):
    """List the remote objects the catalog knows about"""
    bridge: Bridge = obj["bridge"]
    rows = [
        {
            "object": definition.name,
            "query": definition.shape(),
            "filter": definition.filter_type,
            "required options": ", ".join(definition.required_options) or None,
        }
        for definition in bridge.catalog.objects.values()
    ]
    _emit(get_formatter("table").format(rows, no_color=not sys.stdout.isatty()))


@cli.command("import-schema")
@click.argument("server")
@click.option("--into", "into", required=True, help="Local schema the tables are created in")
@click.option("--remote-schema", default=None, help="Remote schema name (informational)")
@click.option("--limit-to", multiple=True, help="Only import these objects (repeatable)")
@click.option("--except", "exclude", multiple=True, help="Skip these objects (repeatable)")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["ddl", "table"], case_sensitive=False),
    default="ddl",
    help="Print CREATE FOREIGN TABLE statements or a table listing (default: ddl)",
)
@click.pass_obj
def import_schema(obj: dict, server: str, into: str, remote_schema: Optional[str],
                  limit_to: tuple, exclude: tuple, output_format: str):
    """
    Introspect SERVER and create one foreign table per remote object

    Examples:

        \b
        $ graphbridge -s linear.yaml import-schema linear_server --into linear
        $ graphbridge -s linear.yaml import-schema linear_server --into linear --limit-to issues --limit-to teams
    """
    bridge: Bridge = obj["bridge"]
    try:
        created = bridge.import_foreign_schema(
            server, into, remote_schema=remote_schema, limit_to=limit_to or None, exclude=exclude
        )
    except BridgeError as e:
        _fail(e)

    if output_format.lower() == "ddl":
        click.echo(bridge.export_ddl(created))
        return

    rows = [
        {"table": t.qualified_name, "object": t.object_name, "columns": len(t.columns)}
        for t in created
    ]
    _emit(get_formatter("table").format(rows, ["table", "object", "columns"],
                                 no_color=not sys.stdout.isatty()))


@cli.command()
@click.argument("table")
@click.option("--column", "-c", "columns", multiple=True, help="Column to select (repeatable, default: all)")
@click.option("--where", "-w", "where", multiple=True, help="Predicate 'column op value' (repeatable, AND'd)")
@click.option("--limit", "-l", type=click.IntRange(min=0), default=None, help="Maximum number of rows")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json", "csv"], case_sensitive=False),
    default="table",
    help="Output format (default: table)",
)
@click.option("--output", "-o", type=click.Path(), default=None, help="Write output to file instead of stdout")
@click.option("--explain", is_flag=True, help="Show the remote query and host operators instead of results")
@click.option("--prefetch", is_flag=True, help="Fetch the next page while the current one is printed")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.pass_obj
def scan(obj: dict, table: str, columns: tuple, where: tuple, limit: Optional[int], output_format: str,
         output: Optional[str], explain: bool, prefetch: bool, no_color: bool):
    """
    SELECT from a foreign table

    Equality on id columns and '%text%' LIKE/ILIKE patterns are sent to
    the remote API; everything else is evaluated locally.

    Examples:

        \b
        $ graphbridge -s linear.yaml scan linear_issues
        $ graphbridge -s linear.yaml scan linear.issues -c id -c title -w "state = 'Todo'" -l 20
        $ graphbridge -s linear.yaml scan linear.issues -w "team_id = 'abc'" --explain
        $ graphbridge -s linear.yaml scan linear.teams -f csv -o teams.csv
    """
    fmt = output_format.lower()
    bridge: Bridge = obj["bridge"]
    predicates = [parse_where(text) for text in where]

    try:
        result = bridge.select(table, list(columns), predicates, limit, prefetch=prefetch)
        if explain:
            click.echo(result.explain())
            return
        rows = result.to_list()
    except BridgeError as e:
        _fail(e)

    output_text = get_formatter(fmt).format(
        rows,
        result.columns,
        no_color=no_color or output is not None or not sys.stdout.isatty(),
        show_footer=not output,
    )

    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(output_text)
        click.echo(f"{len(rows)} row(s) written to {output} ({fmt} format)", err=True)
    else:
        _emit(output_text)

    logging.getLogger("graphbridge").info(f"Scan stats: {result.stats}")


def _emit(text: str) -> None:
    # csv and table output already end with a newline
    click.echo(text, nl=not text.endswith("\n"))


def _fail(error: Exception):
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


if __name__ == "__main__":
    cli()
