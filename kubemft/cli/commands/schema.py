"""The ``schema`` command group: register CRD schemas used by ``pack``."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.table import Table

from kubemft.cli.common import console, err_console, load_settings, reporting_errors
from kubemft.schema import SchemaRegistry, parse_group_kind

schema_app = typer.Typer(
    name="schema",
    help="Manage CRD schemas used to validate manifests.",
    no_args_is_help=True,
    add_completion=False,
)


def _registry() -> SchemaRegistry:
    return SchemaRegistry(load_settings().schema_dir)


@schema_app.command(name="add", help="Register the schemas of a CRD file.")
def schema_add_cmd(
    file: Path = typer.Option(..., "--file", "-f", help="CustomResourceDefinition YAML file."),
) -> None:
    with reporting_errors("schema add"):
        added = _registry().add(file)
    if not added:
        console.print("[yellow]No versions with an openAPIV3Schema found.[/yellow]")
        return
    for info in added:
        console.print(f"[green]Registered[/green] {info.group}/{info.kind} {info.version}")


@schema_app.command(name="list", help="List registered schemas.")
def schema_list_cmd(
    output: str = typer.Option("table", "--output", "-o", help="Output format: table or json."),
) -> None:
    if output not in ("table", "json"):
        err_console.print(f"[bold red]Unknown output format:[/bold red] {output}")
        raise typer.Exit(code=2)
    with reporting_errors("schema list"):
        schemas = _registry().list()

    if output == "json":
        typer.echo(json.dumps([s.model_dump() for s in schemas], indent=2))
        return
    if not schemas:
        console.print("[dim]No schemas registered.[/dim]")
        return
    table = Table(title="Schemas")
    table.add_column("Group", style="cyan")
    table.add_column("Kind")
    table.add_column("Version")
    for info in schemas:
        table.add_row(info.group, info.kind, info.version)
    console.print(table)


@schema_app.command(name="delete", help="Remove every version of a registered schema.")
def schema_delete_cmd(
    group_kind: str = typer.Argument(..., help="Schema to remove, as <group>/<kind>."),
) -> None:
    with reporting_errors("schema delete"):
        group, kind = parse_group_kind(group_kind)
        removed = _registry().delete(group, kind)
    console.print(f"[green]Deleted[/green] {group}/{kind} ({len(removed)} version(s))")
