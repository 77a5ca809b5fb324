"""Local artifact commands: pack, dump, path, list, delete, cp, gc."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import typer
from rich.table import Table

from kubemft.cli.common import (
    console,
    err_console,
    key_store,
    load_settings,
    open_repository,
    reporting_errors,
)
from kubemft.core.repository import Registry
from kubemft.schema import SchemaRegistry, SchemaValidator
from kubemft.workflows import PackOptions, pack

_OUTPUT_FORMATS = ("table", "json")


def pack_cmd(
    reference: str = typer.Argument(..., help="Target reference, e.g. registry.example.com/app:v1."),
    file: Path = typer.Option(..., "--file", "-f", help="Path to the manifest file to pack."),
    skip_validation: bool = typer.Option(False, "--skip-validation", help="Skip manifest validation."),
    skip_sign: bool = typer.Option(False, "--skip-sign", help="Skip signing the packed manifest."),
    key: str = typer.Option("default", "--key", help="Name of the private key used for signing."),
) -> None:
    """Save a Kubernetes manifest as an artifact and sign it."""
    settings = load_settings()
    repo = open_repository(reference, settings)
    options = PackOptions(skip_sign=skip_sign, key_name=key, skip_validation=skip_validation)
    with reporting_errors("pack"):
        validator = SchemaValidator(SchemaRegistry(settings.schema_dir))
        result = pack(repo, file, options, key_store(settings), validator)
    console.print(f"[green]Packed[/green] {repo.ref} [dim]{result.digest}[/dim]")
    if result.signature is not None:
        console.print(f"[green]Signed[/green] [dim]{result.signature.digest}[/dim]")


def dump_cmd(
    reference: str = typer.Argument(..., help="Artifact reference."),
) -> None:
    """Write the stored manifest to stdout."""
    repo = open_repository(reference, load_settings())
    with reporting_errors("dump"):
        content = repo.dump()
    sys.stdout.buffer.write(content)
    sys.stdout.flush()


def path_cmd(
    reference: str = typer.Argument(..., help="Artifact reference."),
) -> None:
    """Print the filesystem path of the stored manifest."""
    repo = open_repository(reference, load_settings())
    with reporting_errors("path"):
        blob = repo.path()
    typer.echo(str(blob))


def list_cmd(
    output: str = typer.Option("table", "--output", "-o", help="Output format: table or json."),
) -> None:
    """List locally stored artifacts."""
    if output not in _OUTPUT_FORMATS:
        err_console.print(f"[bold red]Unknown output format:[/bold red] {output}")
        raise typer.Exit(code=2)
    entries = Registry(load_settings()).list()

    if output == "json":
        typer.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        console.print("[dim]No artifacts stored.[/dim]")
        return
    table = Table(title="Artifacts")
    table.add_column("Repository", style="cyan")
    table.add_column("Tag", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Created")
    for entry in entries:
        table.add_row(
            entry.repository,
            entry.tag,
            entry.size,
            entry.created.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


def delete_cmd(
    reference: str = typer.Argument(..., help="Artifact reference."),
    force: bool = typer.Option(False, "--force", help="Delete without asking for confirmation."),
) -> None:
    """Delete a tag and reclaim blobs nothing else uses."""
    repo = open_repository(reference, load_settings())
    if not force and not typer.confirm(f"Delete {repo.ref}?"):
        raise typer.Exit(code=0)
    with reporting_errors("delete"):
        result = repo.delete()
    if result is None:
        console.print(f"[dim]Nothing to delete:[/dim] {repo.ref} not found")
        return
    console.print(
        f"[green]Deleted[/green] {repo.ref} "
        f"[dim]({len(result.deleted_blobs)} blob(s) reclaimed)[/dim]"
    )


def cp_cmd(
    source: str = typer.Argument(..., help="Existing artifact reference."),
    destination: str = typer.Argument(..., help="New artifact reference."),
) -> None:
    """Copy an artifact (with its signatures) to another local reference."""
    settings = load_settings()
    repo = open_repository(source, settings)
    open_repository(destination, settings)
    with reporting_errors("cp"):
        result = repo.copy(destination)
    console.print(
        f"[green]Copied[/green] {repo.ref} -> {destination} "
        f"[dim]({len(result.copied)} copied, {len(result.skipped)} skipped)[/dim]"
    )


def gc_cmd(
    reference: str = typer.Argument(..., help="Repository whose unreachable blobs are removed."),
) -> None:
    """Remove blobs no tag references any more (e.g. after re-tagging)."""
    repo = open_repository(reference, load_settings())
    with reporting_errors("gc"):
        deleted = repo.prune()
    console.print(f"[green]Pruned[/green] {len(deleted)} blob(s) from {repo.name}")
