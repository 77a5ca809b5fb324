"""``sign`` / ``verify`` and the ``key`` command group."""

from __future__ import annotations

import sys
from pathlib import Path

import typer
from rich.table import Table

from kubemft.cli.common import console, key_store, load_settings, open_repository, reporting_errors
from kubemft.signature.keys import DEFAULT_KEY_NAME
from kubemft.signature.signer import Signer
from kubemft.signature.verifier import Verifier

key_app = typer.Typer(
    name="key",
    help="Manage signing and verification keys.",
    no_args_is_help=True,
    add_completion=False,
)


def sign_cmd(
    reference: str = typer.Argument(..., help="Artifact reference."),
    key: str = typer.Option(DEFAULT_KEY_NAME, "--key", help="Name of the private key."),
) -> None:
    """Attach a detached signature to a stored artifact."""
    settings = load_settings()
    repo = open_repository(reference, settings)
    with reporting_errors("sign"):
        result = Signer.from_key_store(key_store(settings), key).sign(repo.local(), repo.tag)
    console.print(f"[green]Signed[/green] {repo.ref} [dim]{result.digest}[/dim]")


def verify_cmd(
    reference: str = typer.Argument(..., help="Artifact reference."),
) -> None:
    """Check the artifact carries a signature from a trusted public key."""
    settings = load_settings()
    repo = open_repository(reference, settings)
    with reporting_errors("verify"):
        result = Verifier.from_key_store(key_store(settings)).verify(repo.local(), repo.tag)
    console.print(f"[green]Verified[/green] {repo.ref} [dim]by {result.signature}[/dim]")


@key_app.command(name="generate", help="Generate a P-256 key pair.")
def key_generate_cmd(
    name: str = typer.Option(DEFAULT_KEY_NAME, "--name", help="Key name."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing key."),
) -> None:
    with reporting_errors("key generate"):
        info = key_store(load_settings()).generate(name, force=force)
    console.print(f"[green]Generated[/green] {info.name} [dim]{info.path}[/dim]")


@key_app.command(name="list", help="List stored keys.")
def key_list_cmd() -> None:
    keys = key_store(load_settings()).list()
    if not keys:
        console.print("[dim]No keys found.[/dim]")
        return
    table = Table(title="Keys")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Path", style="dim")
    for info in keys:
        table.add_row(info.name, info.kind, str(info.path))
    console.print(table)


@key_app.command(name="export", help="Print a public key (PEM).")
def key_export_cmd(
    name: str = typer.Option(DEFAULT_KEY_NAME, "--name", help="Key name."),
    output: Path = typer.Option(None, "--output", "-o", help="Write to a file instead of stdout."),
) -> None:
    with reporting_errors("key export"):
        data = key_store(load_settings()).export_public(name)
    if output is None:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()
        return
    output.write_bytes(data)
    console.print(f"[green]Exported[/green] {name} to {output}")


@key_app.command(name="import", help="Import a PEM public key for verification.")
def key_import_cmd(
    file: Path = typer.Argument(..., help="Public key file."),
    name: str = typer.Option(None, "--name", help="Key name (defaults to the file name)."),
) -> None:
    with reporting_errors("key import"):
        info = key_store(load_settings()).import_public(file, name)
    console.print(f"[green]Imported[/green] {info.name} [dim]{info.path}[/dim]")


@key_app.command(name="delete", help="Delete a key.")
def key_delete_cmd(
    name: str = typer.Argument(..., help="Key name."),
    private: bool = typer.Option(False, "--private", help="Delete the private key instead of the public one."),
) -> None:
    store = key_store(load_settings())
    with reporting_errors("key delete"):
        if private:
            store.delete_private(name)
        else:
            store.delete_public(name)
    console.print(f"[green]Deleted[/green] {'private' if private else 'public'} key {name}")
